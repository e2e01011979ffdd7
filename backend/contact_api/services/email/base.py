"""Abstract base for outbound email channels."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Optional


class EmailDeliveryError(RuntimeError):
    """A transport failed to hand the message to its provider."""

    def __init__(self, message: str, *, provider: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


@dataclass(frozen=True)
class EmailMessage:
    to: str
    from_email: str
    subject: str
    html: str
    text: str
    reply_to: Optional[str] = None


@dataclass(frozen=True)
class DeliveryOutcome:
    delivered: bool
    provider_message_id: Optional[str] = None
    failure_reason: Optional[str] = None
    provider: str = ""
    attempts: int = 1


class EmailChannel(abc.ABC):
    """Contract every transport (and every wrapper around one) implements.

    ``send`` returns a delivered outcome or raises; it never reports failure
    through the return value.
    """

    name: str = "base"

    @abc.abstractmethod
    async def send(self, message: EmailMessage) -> DeliveryOutcome:
        """Hand *message* to the provider."""


def require_credential(value: str, label: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{label} is required")
    return value
