"""SendGrid v3 HTTPS API transport."""

from __future__ import annotations

import logging
from email.utils import parseaddr
from typing import Any

import httpx

from .base import DeliveryOutcome, EmailChannel, EmailDeliveryError, EmailMessage, require_credential

logger = logging.getLogger(__name__)

SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"


def _address(value: str) -> dict[str, str]:
    display_name, addr = parseaddr(value)
    entry = {"email": addr or value}
    if display_name:
        entry["name"] = display_name
    return entry


class SendGridEmailChannel(EmailChannel):
    name = "sendgrid"

    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = SENDGRID_API_URL,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = require_credential(api_key, "SendGrid API key")
        self._api_url = api_url
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    def _payload(self, message: EmailMessage) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "personalizations": [{"to": [_address(message.to)]}],
            "from": _address(message.from_email),
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.text},
                {"type": "text/html", "value": message.html},
            ],
        }
        if message.reply_to:
            payload["reply_to"] = _address(message.reply_to)
        return payload

    async def send(self, message: EmailMessage) -> DeliveryOutcome:
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
                resp = await client.post(
                    self._api_url,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json=self._payload(message),
                )
        except httpx.HTTPError as exc:
            raise EmailDeliveryError(f"SendGrid transport error: {exc}", provider=self.name) from exc

        if resp.status_code >= 400:
            raise EmailDeliveryError(
                f"SendGrid API error ({resp.status_code})",
                provider=self.name,
                status_code=resp.status_code,
            )

        message_id = resp.headers.get("x-message-id")
        logger.info("Email accepted by SendGrid id=%s", message_id)
        return DeliveryOutcome(delivered=True, provider_message_id=message_id, provider=self.name)
