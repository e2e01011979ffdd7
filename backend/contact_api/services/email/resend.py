"""Resend HTTPS API transport."""

from __future__ import annotations

import logging
import time

import httpx

from .base import DeliveryOutcome, EmailChannel, EmailDeliveryError, EmailMessage, require_credential

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class ResendEmailChannel(EmailChannel):
    name = "resend"

    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = RESEND_API_URL,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = require_credential(api_key, "Resend API key")
        self._api_url = api_url
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def send(self, message: EmailMessage) -> DeliveryOutcome:
        payload = {
            "from": message.from_email,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        if message.reply_to:
            payload["reply_to"] = message.reply_to

        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
                resp = await client.post(
                    self._api_url,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "content-type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as exc:
            raise EmailDeliveryError(f"Resend transport error: {exc}", provider=self.name) from exc

        if resp.status_code >= 400:
            try:
                reason = (resp.json() or {}).get("message") or resp.reason_phrase
            except ValueError:
                reason = resp.reason_phrase
            raise EmailDeliveryError(
                f"Resend API error ({resp.status_code}): {reason}",
                provider=self.name,
                status_code=resp.status_code,
            )

        try:
            message_id = (resp.json() or {}).get("id")
        except ValueError:
            message_id = None
        elapsed = (time.monotonic() - t0) * 1000
        logger.info("Email accepted by Resend id=%s latency_ms=%.2f", message_id, elapsed)
        return DeliveryOutcome(delivered=True, provider_message_id=message_id, provider=self.name)
