from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shopfront.core.config import IS_DEV

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base for failures raised by the authentication/tenancy layer.

    Every subclass is terminal for the current request and maps to one HTTP
    status code.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Authentication error"
    headers: dict[str, str] | None = None

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class InvalidCredential(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid token. Please login again."
    headers = {"WWW-Authenticate": "Bearer"}


class IdentityResolutionFailed(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "User not linked. Please complete profile."
    headers = {"WWW-Authenticate": "Bearer"}


class AccountInactive(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Account is inactive. Please contact support."


class InvalidTenantSlug(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid shop slug format."


class ConflictingTenantContext(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Conflicting shop context was provided."


class TenantNotFound(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Shop not found"


class TenantSuspended(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Shop is suspended"


class InsufficientPermissions(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied. Insufficient permissions."


class ProvisioningThrottled(AuthError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many new accounts from this client, please try again later."


class InternalAuthError(AuthError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Authentication error"


def error_body(message: str, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "message": message}
    body.update({key: value for key, value in extra.items() if value is not None})
    return body


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.detail)
    extra = {"error": exc.detail} if IS_DEV and exc.status_code >= 500 else {}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, **extra),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in error.get("loc", ())[1:]), "message": error.get("msg")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("Validation failed", errors=errors),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    extra = {"error": str(exc)} if IS_DEV else {}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal server error", **extra),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
