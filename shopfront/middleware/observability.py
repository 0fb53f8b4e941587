from __future__ import annotations

import logging
import re
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from shopfront.core.request_context import bind_request_context, reset_request_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def incoming_request_id(request: Request) -> str:
    """Reuse a caller-supplied id when it is safe to echo and log, else mint one."""
    candidate = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    if _REQUEST_ID_PATTERN.match(candidate):
        return candidate
    return str(uuid.uuid4())


def _state_id(request: Request, name: str) -> str | None:
    # Dependencies store plain ids; ORM rows on request.state may be detached by now.
    value = getattr(request.state, name, None)
    return str(value) if value is not None else None


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        request_id = incoming_request_id(request)
        request.state.request_id = request_id
        token = bind_request_context(request_id=request_id)

        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            shop_id = _state_id(request, "shop_id")
            user_id = _state_id(request, "user_id")
            logger.log(
                logging.ERROR if status_code >= 500 else logging.INFO,
                "request completed",
                extra={
                    "request_id": request_id,
                    "shop_id": shop_id,
                    "user_id": user_id,
                    "endpoint": request.url.path,
                    "method": request.method,
                    "status_code": status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            reset_request_context(token)
