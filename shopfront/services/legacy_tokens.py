from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt

from shopfront.core import config


def create_legacy_token(
    user,
    extra: Optional[Dict[str, Any]] = None,
    expires_minutes: Optional[int] = None,
    secret: Optional[str] = None,
) -> str:
    """Sign a local-account token.

    These tokens only authenticate while ALLOW_LEGACY_JWT is enabled. "sub"
    must be a string; "id" carries the numeric user id the legacy path reads.
    """
    signing_secret = secret if secret is not None else config.LEGACY_JWT_SECRET
    if not signing_secret:
        raise RuntimeError("LEGACY_JWT_SECRET is not configured")

    now = datetime.now(timezone.utc)
    minutes = expires_minutes if expires_minutes is not None else config.LEGACY_JWT_EXPIRE_MINUTES
    payload: Dict[str, Any] = {
        "sub": str(user.id),
        "id": int(user.id),
        "email": user.email,
        "role": user.role,
        "typ": "legacy",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=minutes)).timestamp()),
    }
    if extra:
        payload.update(extra)

    return jwt.encode(payload, signing_secret, algorithm=config.LEGACY_JWT_ALGORITHM)


def decode_legacy_token(token: str, secret: str) -> Dict[str, Any]:
    """Return the payload or raise jose.JWTError."""
    return jwt.decode(
        token,
        secret,
        algorithms=[config.LEGACY_JWT_ALGORITHM],
        options={"verify_aud": False},
    )
