from __future__ import annotations

import logging
import os

from shopfront.core import config

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"


def validate_database_environment() -> None:
    env = os.getenv("ENVIRONMENT", os.getenv("ENV", "dev")).strip().lower()
    if env in {"prod", "production"} and config.DATABASE_URL.startswith("sqlite"):
        logger.critical("%s SQLite is forbidden in production", STARTUP_PREFIX)
        raise RuntimeError("SQLite is forbidden in production environment")


def validate_auth_environment() -> None:
    """Fail fast on verification material that can never work."""
    if config.ALLOW_LEGACY_JWT:
        if not config.LEGACY_JWT_SECRET:
            logger.critical("%s ALLOW_LEGACY_JWT is on but LEGACY_JWT_SECRET is empty", STARTUP_PREFIX)
            raise RuntimeError("Missing required environment variables: LEGACY_JWT_SECRET")
        if config.AUTH_JWT_SECRET and config.LEGACY_JWT_SECRET == config.AUTH_JWT_SECRET:
            logger.critical("%s legacy secret reuses the identity provider secret", STARTUP_PREFIX)
            raise RuntimeError("LEGACY_JWT_SECRET must differ from AUTH_JWT_SECRET")

    if not config.AUTH_JWT_SECRET and not config.AUTH_PROVIDER_URL:
        if config.IS_PROD:
            logger.critical("%s no token verification material configured", STARTUP_PREFIX)
            raise RuntimeError("Missing required environment variables: AUTH_PROVIDER_URL or AUTH_JWT_SECRET")
        logger.warning(
            "%s AUTH_PROVIDER_URL and AUTH_JWT_SECRET are empty; every bearer token will be rejected",
            STARTUP_PREFIX,
        )


def validate_runtime_environment() -> None:
    validate_database_environment()
    validate_auth_environment()
