"""Process-wide pipeline collaborators, owned by ``app.state``."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Request

from contact_api.core.config import Settings, get_settings
from contact_api.core.errors import ProblemError
from contact_api.core.request_context import CorrelationContext
from contact_api.services.anti_spam import get_verifier
from contact_api.services.contact_service import ContactService
from contact_api.services.email import create_email_channel
from contact_api.utils.alerting import DEFAULT_THRESHOLDS, ErrorReporter, FailureAlertTracker, LoggingErrorReporter
from contact_api.utils.rate_limit import FixedWindowRateLimiter, InMemoryRateLimitStore

logger = logging.getLogger(__name__)


class ContactPipeline:
    """Holds the long-lived pieces (rate-limit counters, reporter, alert counters).

    The ``ContactService`` itself needs credentials; it is built on first use
    so a process started with ``ALLOW_INVALID_CONFIG`` still answers
    ``/health``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
        error_reporter: Optional[ErrorReporter] = None,
        alert_tracker: Optional[FailureAlertTracker] = None,
    ) -> None:
        self.settings = settings
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter(
            InMemoryRateLimitStore(
                max_buckets=settings.rate_limit_max_buckets,
                prune_interval_seconds=settings.rate_limit_sweep_interval_seconds,
            ),
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
        self.error_reporter = error_reporter or LoggingErrorReporter()
        self.alert_tracker = alert_tracker or FailureAlertTracker(settings.alert_window_seconds, DEFAULT_THRESHOLDS)
        self._service: Optional[ContactService] = None

    def service(self) -> ContactService:
        if self._service is None:
            settings = self.settings
            self._service = ContactService(
                get_verifier(settings),
                self.rate_limiter,
                create_email_channel(settings),
                self.error_reporter,
                recipient=settings.email_to,
                sender=settings.email_from,
                request_timeout_seconds=settings.request_timeout_seconds,
                alert_tracker=self.alert_tracker,
                type_base_url=settings.problem_type_base_url,
            )
        return self._service


def get_contact_pipeline(request: Request) -> ContactPipeline:
    pipeline = getattr(request.app.state, "contact_pipeline", None)
    if pipeline is None:
        pipeline = ContactPipeline(get_settings())
        request.app.state.contact_pipeline = pipeline
    return pipeline


def get_contact_service(
    request: Request,
    pipeline: ContactPipeline = Depends(get_contact_pipeline),
) -> ContactService:
    try:
        return pipeline.service()
    except ValueError as exc:
        error = ProblemError.unexpected(
            "The contact service is not available",
            type_base_url=pipeline.settings.problem_type_base_url,
        )
        error.__cause__ = exc
        logger.error("Contact pipeline is misconfigured: %s", exc)
        pipeline.error_reporter.capture(
            error,
            context=CorrelationContext(
                request_id=getattr(request.state, "request_id", "-"),
                source_address=request.client.host if request.client else "unknown",
            ),
            tags={"stage": "bootstrap", "kind": error.kind.name},
        )
        raise error
