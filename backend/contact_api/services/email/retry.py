"""Retry with exponential backoff, and composable channel wrappers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Awaitable, Callable, TypeVar

from .base import DeliveryOutcome, EmailChannel, EmailMessage

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff(attempt: int, base_delay_seconds: float) -> float:
    # attempt is zero-based: 0.1s, 0.2s, 0.4s, ... for the default base
    return base_delay_seconds * (2 ** max(0, attempt))


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay_seconds: float = 0.1,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Run *fn* up to *max_retries* times in total; re-raise the last error."""
    attempts = max(1, int(max_retries))
    attempt = 0
    while True:
        try:
            return await fn()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            attempt += 1
            if attempt >= attempts:
                logger.warning("%s failed after %s attempts: %s", label, attempts, exc)
                raise
            delay = compute_backoff(attempt - 1, base_delay_seconds)
            logger.info(
                "%s failed (attempt %s/%s), retrying in %.3fs: %s",
                label,
                attempt,
                attempts,
                delay,
                exc,
            )
            await sleep(delay)


class RetryingEmailChannel(EmailChannel):
    """Wraps any channel; transparent to callers apart from the added latency."""

    def __init__(
        self,
        inner: EmailChannel,
        *,
        max_retries: int = 3,
        base_delay_seconds: float = 0.1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.inner = inner
        self.name = inner.name
        self._max_retries = max_retries
        self._base_delay_seconds = base_delay_seconds
        self._sleep = sleep

    async def send(self, message: EmailMessage) -> DeliveryOutcome:
        attempts = 0

        async def _attempt() -> DeliveryOutcome:
            nonlocal attempts
            attempts += 1
            return await self.inner.send(message)

        outcome = await retry_async(
            _attempt,
            max_retries=self._max_retries,
            base_delay_seconds=self._base_delay_seconds,
            sleep=self._sleep,
            label=f"email send via {self.inner.name}",
        )
        return replace(outcome, attempts=attempts)


class FallbackEmailChannel(EmailChannel):
    """Tries *primary*; on failure hands the same message to *secondary*."""

    def __init__(self, primary: EmailChannel, secondary: EmailChannel) -> None:
        self.primary = primary
        self.secondary = secondary
        self.name = f"{primary.name}+{secondary.name}"

    async def send(self, message: EmailMessage) -> DeliveryOutcome:
        try:
            return await self.primary.send(message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "Primary email channel %s failed, falling back to %s: %s",
                self.primary.name,
                self.secondary.name,
                exc,
            )
        return await self.secondary.send(message)
