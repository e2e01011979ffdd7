"""Cloudflare Turnstile verifier."""

from __future__ import annotations

import logging
import time

import httpx

from .base import AntiSpamServiceError, AntiSpamVerifier, VerificationResult

logger = logging.getLogger(__name__)

TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"


class TurnstileVerifier(AntiSpamVerifier):
    name = "turnstile"

    def __init__(
        self,
        secret_key: str,
        *,
        verify_url: str = TURNSTILE_VERIFY_URL,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not secret_key or not secret_key.strip():
            raise ValueError("Turnstile secret key is required")
        self._secret_key = secret_key
        self._verify_url = verify_url
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def verify(self, token: str, source_address: str) -> VerificationResult:
        if not token or not token.strip():
            return VerificationResult(passed=False, diagnostic_codes=("missing-input-response",))

        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
                resp = await client.post(
                    self._verify_url,
                    json={
                        "secret": self._secret_key,
                        "response": token,
                        "remoteip": source_address,
                    },
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise AntiSpamServiceError(
                f"Turnstile API returned {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise AntiSpamServiceError(f"Turnstile verification failed: {exc}") from exc

        elapsed = (time.monotonic() - t0) * 1000
        if not isinstance(data, dict):
            raise AntiSpamServiceError("Turnstile API returned a non-object reply")

        codes = tuple(str(code) for code in (data.get("error-codes") or []))
        passed = data.get("success") is True
        logger.debug("Turnstile verdict passed=%s codes=%s latency_ms=%.2f", passed, codes, elapsed)
        return VerificationResult(passed=passed, diagnostic_codes=codes, hostname=data.get("hostname"))
