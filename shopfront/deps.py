# shopfront/deps.py
from __future__ import annotations

import logging
from typing import Iterable, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from shopfront.core.database import get_db
from shopfront.core.errors import InternalAuthError, InvalidCredential
from shopfront.core.request_context import bind_request_context, client_key
from shopfront.models.shop import Shop
from shopfront.models.user import User
from shopfront.services.authorization_service import AuthorizationService, normalize_roles
from shopfront.services.identity_resolver import IdentityResolver
from shopfront.services.tenant_resolver import TenantResolver
from shopfront.services.token_verifier import (
    ExternalVerified,
    TokenVerifier,
    VerificationFailed,
    VerificationOutcome,
    extract_bearer_token,
)

logger = logging.getLogger(__name__)

STAFF_ROLES = ("admin", "manager", "staff")


def get_token_verifier() -> TokenVerifier:
    return TokenVerifier.from_config()


def _attach_user(request: Request, user: User) -> User:
    request.state.user = user
    # Plain ids outlive the request session; observability reads these.
    request.state.user_id = user.id
    bind_request_context(user_id=str(user.id))
    return user


def verify_bearer_token(
    request: Request,
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> VerificationOutcome:
    """Read ``Authorization: Bearer`` and verify it.

    Failures become ``InvalidCredential`` (401); a key set that could not be
    fetched, or any unexpected error, becomes ``InternalAuthError`` (500).
    """
    token = extract_bearer_token(request.headers.get("authorization"))
    if not token:
        raise InvalidCredential("Access token is required")

    try:
        outcome = verifier.verify(token)
    except Exception as exc:
        logger.exception("Token verification crashed")
        raise InternalAuthError(detail=str(exc)) from exc

    if isinstance(outcome, VerificationFailed):
        if outcome.key_set_unavailable:
            raise InternalAuthError(detail=outcome.reason)
        raise InvalidCredential()

    request.state.auth = outcome
    return outcome


def get_current_user(
    request: Request,
    outcome: VerificationOutcome = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
) -> User:
    """Authenticated user from any accepted credential; never provisions."""
    user = IdentityResolver(db).resolve(outcome, allow_provisioning=False)
    return _attach_user(request, user)


def get_provisioned_user(
    request: Request,
    outcome: VerificationOutcome = Depends(verify_bearer_token),
    db: Session = Depends(get_db),
) -> User:
    """Identity-provider credentials only; creates the local user on first sight."""
    if not isinstance(outcome, ExternalVerified):
        raise InvalidCredential("Invalid identity provider token. Please login again.")

    user = IdentityResolver(db).resolve(
        outcome,
        allow_provisioning=True,
        client_key=client_key(request),
    )
    return _attach_user(request, user)


def resolve_shop(request: Request, db: Session = Depends(get_db)) -> Optional[Shop]:
    shop = TenantResolver.resolve(request, db)
    request.state.shop = shop
    request.state.shop_id = shop.id if shop is not None else None
    if shop is not None:
        bind_request_context(shop_id=str(shop.id))
    return shop


def require_shop(shop: Optional[Shop] = Depends(resolve_shop)) -> Shop:
    if shop is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Shop context is required")
    return shop


def require_role(roles: Iterable[str] | str):
    """Dependency factory: membership role inside a shop, global role outside one.

    The shop is resolved before the credential, so a suspended or unknown shop
    is rejected whatever token the caller presents.
    """
    allowed = normalize_roles(roles)

    def _dependency(
        request: Request,
        shop: Optional[Shop] = Depends(resolve_shop),
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> User:
        AuthorizationService.ensure_role(db=db, user=user, shop=shop, roles=allowed, request=request)
        return user

    return _dependency


def require_shop_role(roles: Iterable[str] | str):
    allowed = normalize_roles(roles)

    def _dependency(
        request: Request,
        shop: Shop = Depends(require_shop),
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> User:
        AuthorizationService.ensure_role(db=db, user=user, shop=shop, roles=allowed, request=request)
        return user

    return _dependency


def forbid_shop_context(shop: Optional[Shop] = Depends(resolve_shop)) -> None:
    if shop is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Platform operations do not accept a shop context",
        )


def require_platform_role(roles: Iterable[str] | str):
    """Global-role gate for platform routes.

    A shop context is refused before the credential is resolved, so a shop
    membership can never satisfy the check and a refused request writes nothing.
    """
    allowed = normalize_roles(roles)

    def _dependency(
        request: Request,
        _no_shop: None = Depends(forbid_shop_context),
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> User:
        AuthorizationService.ensure_role(db=db, user=user, shop=None, roles=allowed, request=request)
        return user

    return _dependency


require_platform_admin = require_platform_role(["admin"])
