from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import Optional

from shopfront.core.request_context import current_request_context

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

MASK = "***"

_BEARER = re.compile(r"(bearer\s+)[^\s\"',}]+", re.IGNORECASE)
_KEY_VALUE = re.compile(
    r"((?:access_token|refresh_token|token|password|secret|api_key)\s*[:=]\s*[\"']?)[^\s\"',}]+",
    re.IGNORECASE,
)
# Compact JWS: header.payload.signature, header always starts with '{"' -> "eyJ".
_JWT = re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]*")

# Record attributes passed through ``extra=`` that end up in the JSON line.
_EXTRA_FIELDS = ("endpoint", "method", "status_code", "duration_ms")


def mask_secrets(text: str) -> str:
    masked = _BEARER.sub(rf"\1{MASK}", text)
    masked = _KEY_VALUE.sub(rf"\1{MASK}", masked)
    return _JWT.sub(MASK, masked)


class JsonFormatter(logging.Formatter):
    """One JSON object per line, tagged with the current request, shop and user."""

    def format(self, record: logging.LogRecord) -> str:
        context = current_request_context()
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", None) or context.request_id,
            "shop_id": getattr(record, "shop_id", None) or context.shop_id,
            "user_id": getattr(record, "user_id", None) or context.user_id,
            "message": mask_secrets(record.getMessage()),
        }
        payload.update(
            {field: getattr(record, field) for field in _EXTRA_FIELDS if getattr(record, field, None) is not None}
        )
        if record.exc_info:
            payload["exc_info"] = mask_secrets(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: Optional[str] = None) -> None:
    resolved = (level or LOG_LEVEL).upper()
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(resolved)

    # Uvicorn installs its own handlers; route everything through the root one.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True
        uvicorn_logger.setLevel(resolved)
