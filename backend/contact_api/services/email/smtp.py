"""Plain SMTP transport (blocking ``smtplib`` run in a worker thread)."""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage as MimeMessage
from email.utils import make_msgid
from typing import Optional

from .base import DeliveryOutcome, EmailChannel, EmailDeliveryError, EmailMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmtpConfig:
    host: str
    port: int
    user: Optional[str]
    password: Optional[str]
    use_tls: bool
    timeout_seconds: float = 20.0


def build_mime_message(message: EmailMessage) -> MimeMessage:
    msg = MimeMessage()
    msg["From"] = message.from_email
    msg["To"] = message.to
    msg["Subject"] = message.subject
    msg["Message-ID"] = make_msgid()
    if message.reply_to:
        msg["Reply-To"] = message.reply_to
    msg.set_content(message.text)
    msg.add_alternative(message.html, subtype="html")
    return msg


def send_email_via_smtp(*, smtp: SmtpConfig, msg: MimeMessage) -> None:
    context = ssl.create_default_context()

    # Port 465 uses implicit SSL (SMTP_SSL), port 587 uses STARTTLS
    if smtp.port == 465:
        server = smtplib.SMTP_SSL(smtp.host, smtp.port, timeout=smtp.timeout_seconds, context=context)
    else:
        server = smtplib.SMTP(smtp.host, smtp.port, timeout=smtp.timeout_seconds)
        if smtp.use_tls:
            server.starttls(context=context)
    try:
        if smtp.user and smtp.password:
            server.login(smtp.user, smtp.password)
        server.send_message(msg)
    finally:
        try:
            server.quit()
        except smtplib.SMTPException:
            # Message already handed over; a failed QUIT is not a delivery failure.
            pass


class SmtpEmailChannel(EmailChannel):
    name = "smtp"

    def __init__(self, smtp: SmtpConfig) -> None:
        if not smtp.host or not smtp.host.strip():
            raise ValueError("SMTP host is required")
        self._smtp = smtp

    async def send(self, message: EmailMessage) -> DeliveryOutcome:
        msg = build_mime_message(message)
        try:
            await asyncio.to_thread(send_email_via_smtp, smtp=self._smtp, msg=msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryError(f"SMTP error: {exc}", provider=self.name) from exc
        logger.info("Email handed to SMTP relay host=%s", self._smtp.host)
        return DeliveryOutcome(delivered=True, provider_message_id=msg["Message-ID"], provider=self.name)
