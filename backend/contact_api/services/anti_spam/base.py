"""Abstract base for anti-spam verifiers."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field


class AntiSpamServiceError(RuntimeError):
    """The verification endpoint could not be reached or answered with a non-2xx status."""


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a challenge check. ``passed=False`` is a verdict, not an error."""

    passed: bool
    diagnostic_codes: tuple[str, ...] = field(default_factory=tuple)
    hostname: str | None = None


class AntiSpamVerifier(abc.ABC):
    """Contract that every anti-spam verifier must implement."""

    name: str = "base"

    @abc.abstractmethod
    async def verify(self, token: str, source_address: str) -> VerificationResult:
        """Check *token* for the caller at *source_address*.

        Raises ``AntiSpamServiceError`` when the verdict cannot be obtained.
        """
