"""Mock channel: records messages instead of sending them."""

from __future__ import annotations

from collections import deque
from typing import Iterable, Optional
from uuid import uuid4

from .base import DeliveryOutcome, EmailChannel, EmailDeliveryError, EmailMessage


class MockEmailChannel(EmailChannel):
    name = "mock"

    def __init__(self, failures: Optional[Iterable[Exception]] = None) -> None:
        self.sent: list[EmailMessage] = []
        self.attempts = 0
        self._failures: deque[Exception] = deque(failures or [])

    def fail_next(self, *errors: Exception) -> None:
        self._failures.extend(errors or [EmailDeliveryError("mock failure", provider=self.name)])

    async def send(self, message: EmailMessage) -> DeliveryOutcome:
        self.attempts += 1
        if self._failures:
            raise self._failures.popleft()
        self.sent.append(message)
        return DeliveryOutcome(delivered=True, provider_message_id=f"mock-{uuid4()}", provider=self.name)
