"""Verifier factory: picks the anti-spam implementation from settings."""

from __future__ import annotations

import logging

from contact_api.core.config import Settings

from .base import AntiSpamServiceError, AntiSpamVerifier, VerificationResult
from .mock import MockAntiSpamVerifier
from .turnstile import TurnstileVerifier

logger = logging.getLogger(__name__)

__all__ = [
    "get_verifier",
    "AntiSpamServiceError",
    "AntiSpamVerifier",
    "MockAntiSpamVerifier",
    "TurnstileVerifier",
    "VerificationResult",
]


def get_verifier(settings: Settings) -> AntiSpamVerifier:
    """Return the configured verifier.

    The mock is only honoured outside production; a missing secret raises
    ``ValueError`` from ``TurnstileVerifier`` rather than degrading silently.
    """
    if settings.turnstile_mock_active:
        logger.warning("ENABLE_TURNSTILE_MOCK set, anti-spam checks always pass")
        return MockAntiSpamVerifier()

    return TurnstileVerifier(
        settings.turnstile_secret_key,
        verify_url=settings.turnstile_verify_url,
        timeout_seconds=settings.turnstile_timeout_seconds,
    )
