"""Channel factory: builds the configured transport(s) wrapped in retry."""

from __future__ import annotations

import logging

from contact_api.core.config import EMAIL_PROVIDERS, Settings

from .base import DeliveryOutcome, EmailChannel, EmailDeliveryError, EmailMessage
from .mock import MockEmailChannel
from .retry import FallbackEmailChannel, RetryingEmailChannel, retry_async

logger = logging.getLogger(__name__)

__all__ = [
    "create_email_channel",
    "build_transport",
    "DeliveryOutcome",
    "EmailChannel",
    "EmailDeliveryError",
    "EmailMessage",
    "FallbackEmailChannel",
    "MockEmailChannel",
    "RetryingEmailChannel",
    "retry_async",
]


def build_transport(provider_name: str, settings: Settings) -> EmailChannel:
    """Return a bare transport for *provider_name*.

    Unlike the anti-spam factory there is no silent downgrade: an unknown
    name or missing credential raises ``ValueError``.
    """
    name = (provider_name or "").lower().strip()

    if name not in EMAIL_PROVIDERS:
        raise ValueError(f"Unknown email provider: {provider_name!r}")

    if name == "mock":
        return MockEmailChannel()

    if name == "resend":
        from .resend import ResendEmailChannel

        return ResendEmailChannel(settings.resend_api_key, timeout_seconds=settings.email_timeout_seconds)

    if name == "sendgrid":
        from .sendgrid import SendGridEmailChannel

        return SendGridEmailChannel(settings.sendgrid_api_key, timeout_seconds=settings.email_timeout_seconds)

    from .smtp import SmtpConfig, SmtpEmailChannel

    return SmtpEmailChannel(
        SmtpConfig(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user or None,
            password=settings.smtp_password or None,
            use_tls=settings.smtp_use_tls,
            timeout_seconds=settings.email_timeout_seconds,
        )
    )


def create_email_channel(settings: Settings) -> EmailChannel:
    """Primary transport with retry, plus an optional retried fallback transport."""
    base_delay = max(0, settings.email_retry_base_delay_ms) / 1000.0

    def _retried(name: str) -> EmailChannel:
        return RetryingEmailChannel(
            build_transport(name, settings),
            max_retries=settings.email_max_retries,
            base_delay_seconds=base_delay,
        )

    providers = settings.email_providers
    channel = _retried(providers[0])
    if len(providers) > 1:
        channel = FallbackEmailChannel(channel, _retried(providers[1]))
    logger.info("Email channel configured: %s", channel.name)
    return channel
