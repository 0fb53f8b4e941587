from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class RequestContext:
    request_id: Optional[str] = None
    shop_id: Optional[str] = None
    user_id: Optional[str] = None


_EMPTY = RequestContext()
_CURRENT: ContextVar[RequestContext] = ContextVar("shopfront_request_context", default=_EMPTY)


def current_request_context() -> RequestContext:
    return _CURRENT.get()


def bind_request_context(**fields: Optional[str]) -> Token:
    """Merge the non-empty ``fields`` into the current context.

    Returns the token for ``reset_request_context``.
    """
    updates = {name: value for name, value in fields.items() if value is not None}
    return _CURRENT.set(replace(_CURRENT.get(), **updates))


def reset_request_context(token: Optional[Token] = None) -> None:
    if token is not None:
        _CURRENT.reset(token)
    else:
        _CURRENT.set(_EMPTY)


def client_key(request) -> str:
    """Caller address used for throttling: first X-Forwarded-For hop, else the peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"
