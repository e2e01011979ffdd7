"""Mock verifier: deterministic verdicts for tests and local development."""

from __future__ import annotations

from .base import AntiSpamVerifier, VerificationResult


class MockAntiSpamVerifier(AntiSpamVerifier):
    name = "mock"

    def __init__(self, result: VerificationResult | None = None) -> None:
        self._result = result or VerificationResult(passed=True, hostname="localhost")
        self.calls: list[tuple[str, str]] = []

    def set_result(self, result: VerificationResult) -> None:
        self._result = result

    def reset(self) -> None:
        self._result = VerificationResult(passed=True, hostname="localhost")
        self.calls.clear()

    async def verify(self, token: str, source_address: str) -> VerificationResult:
        self.calls.append((token, source_address))
        return self._result
