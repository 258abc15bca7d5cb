from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from flask import Flask, g, has_request_context, request

from storefront.config import Config

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}
_CONTEXT_FIELDS = ("request_id", "path", "method", "user_id")
_REDACTED_KEYS = {"password", "current_password", "new_password", "token", "authorization", "jwt_secret"}


def _request_context() -> Dict[str, Optional[Any]]:
    if not has_request_context():
        return dict.fromkeys(_CONTEXT_FIELDS)
    user = getattr(g, "current_user", None)
    return {
        "request_id": getattr(g, "request_id", None),
        "path": request.path,
        "method": request.method,
        "user_id": getattr(user, "userID", None),
    }


class RequestContextFilter(logging.Filter):
    """Stamp request id, route and authenticated user onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for key, value in _request_context().items():
            setattr(record, key, value)
        return True


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: "***" if str(key).lower() in _REDACTED_KEYS else _redact(item)
            for key, item in value.items()
        }
    return value


class JsonFormatter(logging.Formatter):
    """One JSON object per line; credentials passed via ``extra=`` are masked."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": Config.APP_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update({key: getattr(record, key, None) for key in _CONTEXT_FIELDS})

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS and key not in _CONTEXT_FIELDS
        }
        if extra:
            payload["extra"] = _redact(extra)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(app: Flask) -> None:
    """Plain text logs by default; JSON lines on stdout when STRUCTURED_LOGS_ENABLED."""
    level = Config.LOG_LEVEL
    if not Config.STRUCTURED_LOGS_ENABLED:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
        app.logger.setLevel(level)
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestContextFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    # Replace rather than append so reloads do not double every line
    root_logger.handlers = [handler]
    app.logger.handlers = [handler]
    app.logger.propagate = False

    # Request lines are already emitted by the after_request hook
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    app.logger.debug("Structured logging configured for %s", Config.APP_NAME)


def ensure_request_id() -> str:
    """Reuse the caller's request id header when present, otherwise mint one."""
    request_id = getattr(g, "request_id", None)
    if not request_id:
        request_id = request.headers.get(Config.REQUEST_ID_HEADER) or uuid4().hex
        g.request_id = request_id
    return request_id
