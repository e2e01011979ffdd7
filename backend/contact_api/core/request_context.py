"""Request correlation: one UUID v4 per inbound request, visible to every log record."""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional

REQUEST_ID_HEADER = "X-Request-ID"

# Async-safe: each request task sees its own value.
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


@dataclass(frozen=True)
class CorrelationContext:
    request_id: str
    source_address: str

    def as_dict(self) -> dict[str, str]:
        return {"requestId": self.request_id, "sourceAddress": self.source_address}


def generate_request_id() -> str:
    return str(uuid.uuid4())


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: Optional[str]):
    """Set the current request id; returns the token for ``reset_request_id``."""
    return request_id_var.set(request_id)


def reset_request_id(token) -> None:
    request_id_var.reset(token)
