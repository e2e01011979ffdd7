"""Structured logging setup.

Production emits one JSON object per line
(``{timestamp, level, message, context, requestId, metadata?, error?}``);
other environments get a human-readable line. Structured data is passed
through ``extra={"metadata": {...}}``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from contact_api.core.config import Settings
from contact_api.core.request_context import get_request_id

_HANDLER_NAME = "contact_api"


class RequestIDFilter(logging.Filter):
    """Attach the current request id to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = get_request_id() or "-"
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "context": record.name,
        }
        request_id = getattr(record, "request_id", None)
        if request_id and request_id != "-":
            entry["requestId"] = request_id
        metadata = getattr(record, "metadata", None)
        if metadata:
            entry["metadata"] = metadata
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            entry["error"] = {
                "name": type(exc).__name__,
                "message": str(exc),
                "stack": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s [%(levelname)s] %(name)s rid=%(request_id)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        metadata = getattr(record, "metadata", None)
        if metadata:
            line = f"{line} {metadata}"
        return line


def configure_logging(settings: Settings) -> None:
    """Install (or replace) the service handler on the root logger."""
    level = logging.DEBUG if settings.debug_logging else getattr(logging, settings.log_level.upper(), logging.INFO)
    if level < logging.INFO and not settings.debug_logging:
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        if handler.get_name() == _HANDLER_NAME:
            root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if settings.use_json_logs else HumanFormatter())
    handler.addFilter(RequestIDFilter())
    root_logger.addHandler(handler)

    # Noisy third-party loggers.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
