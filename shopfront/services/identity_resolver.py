from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from shopfront.core.config import PROVISIONING_MAX_PER_WINDOW, PROVISIONING_WINDOW_SECONDS
from shopfront.core.errors import (
    AccountInactive,
    IdentityResolutionFailed,
    InternalAuthError,
    InvalidCredential,
    ProvisioningThrottled,
)
from shopfront.core.rate_limiter import RateLimiterService, RateLimitRule, SlidingWindowLimiter
from shopfront.models.user import User
from shopfront.services.audit import log_action
from shopfront.services.passwords import placeholder_password_hash
from shopfront.services.token_verifier import ExternalVerified, LegacyVerified, VerificationOutcome

logger = logging.getLogger(__name__)

PROVISIONING_BUCKET = "identity-provisioning"

provisioning_limiter = SlidingWindowLimiter(
    {PROVISIONING_BUCKET: RateLimitRule(PROVISIONING_MAX_PER_WINDOW, PROVISIONING_WINDOW_SECONDS)}
)


def normalize_email(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized or None


def _extract_legacy_user_id(claims: Dict[str, Any]) -> Optional[int]:
    raw = claims.get("id")
    if raw is None:
        return None
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return None


def _names_from_claims(claims: Dict[str, Any]) -> tuple[str, str]:
    metadata = claims.get("user_metadata") or {}
    full_name = (metadata.get("full_name") or "").strip()
    parts = full_name.split()
    first_name = metadata.get("first_name") or (parts[0] if parts else None) or "User"
    last_name = metadata.get("last_name") or (" ".join(parts[1:]) if len(parts) > 1 else None) or "User"
    return first_name, last_name


class IdentityResolver:
    """Map a verified credential onto a local ``User`` row.

    External credentials match on the provider subject id, then on email
    (backfilling the subject id), and finally provision a customer account when
    the caller allows it. Legacy credentials only look up the numeric ``id``.
    """

    def __init__(self, db: Session, *, limiter: Optional[RateLimiterService] = None) -> None:
        self.db = db
        self.limiter = limiter or provisioning_limiter

    def resolve(
        self,
        outcome: VerificationOutcome,
        *,
        allow_provisioning: bool = False,
        client_key: Optional[str] = None,
    ) -> User:
        try:
            if isinstance(outcome, ExternalVerified):
                user = self._resolve_external(
                    outcome.claims,
                    allow_provisioning=allow_provisioning,
                    client_key=client_key,
                )
            elif isinstance(outcome, LegacyVerified):
                user = self._resolve_legacy(outcome.claims)
            else:
                raise InvalidCredential()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise InternalAuthError(detail=str(exc)) from exc

        if not user.is_active():
            raise AccountInactive()
        return user

    def find_external(self, sub: Optional[str], email: Optional[str]) -> Optional[User]:
        user = None
        if sub:
            user = self.db.query(User).filter(User.auth_user_id == sub).first()
        if user is None and email:
            user = self.db.query(User).filter(User.email == email).first()
        return user

    def _resolve_external(
        self,
        claims: Dict[str, Any],
        *,
        allow_provisioning: bool,
        client_key: Optional[str],
    ) -> User:
        sub = str(claims.get("sub") or "").strip() or None
        email = normalize_email(claims.get("email"))
        if not sub and not email:
            raise IdentityResolutionFailed("Token carries neither a subject nor an email")

        user = self.find_external(sub, email)
        if user is not None:
            if sub and not user.auth_user_id:
                user.auth_user_id = sub
                self.db.commit()
                logger.info("Linked external identity user_id=%s", user.id)
            return user

        if not allow_provisioning:
            raise IdentityResolutionFailed()
        return self._provision(claims, sub=sub, email=email, client_key=client_key)

    def _provision(
        self,
        claims: Dict[str, Any],
        *,
        sub: Optional[str],
        email: Optional[str],
        client_key: Optional[str],
    ) -> User:
        decision = self.limiter.check(key=client_key or "anonymous", bucket=PROVISIONING_BUCKET)
        if not decision.allowed:
            logger.warning("Provisioning throttled client=%s sub=%s", client_key, sub)
            raise ProvisioningThrottled()

        first_name, last_name = _names_from_claims(claims)
        user = User(
            email=email or f"{sub}@local.user",
            password_hash=placeholder_password_hash(),
            first_name=first_name,
            last_name=last_name,
            role="customer",
            status="active",
            auth_user_id=sub,
        )
        self.db.add(user)
        try:
            self.db.flush()
            log_action(
                self.db,
                action="user.provisioned",
                user_id=user.id,
                entity_type="user",
                entity_id=user.id,
                meta={"auth_user_id": sub, "email": user.email, "issuer": claims.get("iss")},
            )
            self.db.commit()
        except IntegrityError:
            # A concurrent request provisioned the same identity first.
            self.db.rollback()
            existing = self.find_external(sub, email)
            if existing is None:
                raise
            logger.info("Provisioning lost race, reusing user_id=%s", existing.id)
            return existing

        self.db.refresh(user)
        logger.info("Provisioned user from external identity user_id=%s client=%s", user.id, client_key)
        return user

    def _resolve_legacy(self, claims: Dict[str, Any]) -> User:
        user_id = _extract_legacy_user_id(claims)
        if user_id is None:
            raise IdentityResolutionFailed("Invalid token (no user id)")

        user = self.db.get(User, user_id)
        if user is None:
            raise IdentityResolutionFailed("User not found")
        return user
