from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopfront.core.errors import InsufficientPermissions, InternalAuthError
from shopfront.models.shop_member import ShopMember

logger = logging.getLogger(__name__)

SCOPE_SHOP = "shop"
SCOPE_GLOBAL = "global"

MembershipLookup = Callable[[int, int], Optional[str]]


def normalize_role(role: str | None) -> str:
    return (role or "").strip().lower()


def normalize_roles(roles: Iterable[str] | str) -> frozenset[str]:
    if isinstance(roles, str):
        roles = [roles]
    return frozenset(normalize_role(role) for role in roles if normalize_role(role))


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    scope: str
    role: Optional[str] = None
    reason: Optional[str] = None


class AuthorizationPolicy:
    """Two-tier role check, independent of HTTP.

    With a shop, only the user's active membership role in that shop counts.
    Without one, the user's global role is compared instead.
    """

    def __init__(self, membership_lookup: MembershipLookup) -> None:
        self._membership_lookup = membership_lookup

    def decide(self, user, shop, roles: Iterable[str] | str) -> AuthorizationDecision:
        allowed_roles = normalize_roles(roles)

        if shop is not None:
            role = self._membership_lookup(int(shop.id), int(user.id))
            if role is None:
                return AuthorizationDecision(False, SCOPE_SHOP, reason="no_membership")
            role = normalize_role(role)
            if role not in allowed_roles:
                return AuthorizationDecision(False, SCOPE_SHOP, role=role, reason="role_denied")
            return AuthorizationDecision(True, SCOPE_SHOP, role=role)

        role = normalize_role(getattr(user, "role", None))
        if role not in allowed_roles:
            return AuthorizationDecision(False, SCOPE_GLOBAL, role=role, reason="role_denied")
        return AuthorizationDecision(True, SCOPE_GLOBAL, role=role)


class AuthorizationService:
    """Apply the policy to a request and persist the last-visited shop."""

    @staticmethod
    def active_membership(db: Session, shop_id: int, user_id: int) -> Optional[ShopMember]:
        return (
            db.query(ShopMember)
            .filter(
                ShopMember.shop_id == shop_id,
                ShopMember.user_id == user_id,
                ShopMember.status == "active",
            )
            .first()
        )

    @classmethod
    def policy_for(cls, db: Session) -> AuthorizationPolicy:
        def _lookup(shop_id: int, user_id: int) -> Optional[str]:
            membership = cls.active_membership(db, shop_id, user_id)
            return membership.role if membership is not None else None

        return AuthorizationPolicy(_lookup)

    @staticmethod
    def log_access_denied(*, decision: AuthorizationDecision, user, shop, request: Request | None) -> None:
        endpoint = f"{request.method} {request.url.path}" if request is not None else None
        logger.warning(
            "Access denied (%s): user_id=%s scope=%s role=%s shop_id=%s endpoint=%s",
            decision.reason,
            getattr(user, "id", None),
            decision.scope,
            decision.role,
            getattr(shop, "id", None),
            endpoint,
        )

    @staticmethod
    def record_last_shop(db: Session, user, shop) -> None:
        if getattr(user, "last_shop_id", None) == shop.id:
            return
        try:
            user.last_shop_id = shop.id
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.warning(
                "Could not record last shop user_id=%s shop_id=%s",
                getattr(user, "id", None),
                shop.id,
                exc_info=True,
            )

    @classmethod
    def ensure_role(
        cls,
        *,
        db: Session,
        user,
        shop,
        roles: Iterable[str] | str,
        request: Request | None = None,
    ) -> AuthorizationDecision:
        try:
            decision = cls.policy_for(db).decide(user, shop, roles)
        except SQLAlchemyError as exc:
            db.rollback()
            raise InternalAuthError("Authorization error", detail=str(exc)) from exc

        if not decision.allowed:
            cls.log_access_denied(decision=decision, user=user, shop=shop, request=request)
            raise InsufficientPermissions()

        if shop is not None:
            cls.record_last_shop(db, user, shop)
        return decision
