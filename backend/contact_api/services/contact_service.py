"""Contact request pipeline.

``ContactService.process`` runs one inbound request through a fixed
sequence of stages::

    RECEIVED -> VALIDATING -> VERIFYING_ANTI_SPAM -> CHECKING_RATE_LIMIT
             -> DELIVERING -> SUCCEEDED

The first stage that fails moves the run to FAILED and no later stage runs.
In particular the rate-limit counter only moves for requests that passed
validation and anti-spam verification. Every failure leaves ``process`` as
a ``ProblemError``; nothing unclassified escapes.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Any, Optional

from pydantic import ValidationError

from contact_api.core.errors import DEFAULT_TYPE_BASE_URL, ProblemError
from contact_api.core.request_context import CorrelationContext
from contact_api.schemas.contact import InboundMessage, field_errors_from, parse_contact_payload
from contact_api.services.anti_spam import AntiSpamServiceError, AntiSpamVerifier
from contact_api.services.email import DeliveryOutcome, EmailChannel, EmailDeliveryError
from contact_api.services.email_templates import build_contact_notification
from contact_api.utils.alerting import Breadcrumb, ErrorReporter, FailureAlertTracker
from contact_api.utils.rate_limit import FixedWindowRateLimiter

logger = logging.getLogger(__name__)


class PipelineStage(str, enum.Enum):
    RECEIVED = "received"
    VALIDATING = "validating"
    VERIFYING_ANTI_SPAM = "verifying_anti_spam"
    CHECKING_RATE_LIMIT = "checking_rate_limit"
    DELIVERING = "delivering"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PipelineRun:
    """Per-request bookkeeping: current stage plus one breadcrumb per stage entered."""

    def __init__(self, context: CorrelationContext) -> None:
        self.context = context
        self.stage = PipelineStage.RECEIVED
        self.failed_stage: Optional[PipelineStage] = None
        self.breadcrumbs: list[Breadcrumb] = []
        self._started = time.monotonic()
        self.enter(PipelineStage.RECEIVED)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self._started) * 1000

    def enter(self, stage: PipelineStage) -> None:
        self.stage = stage
        self.breadcrumbs.append(
            Breadcrumb(
                category="contact.pipeline",
                message=stage.value,
                data={"requestId": self.context.request_id},
            )
        )
        logger.debug("Contact pipeline stage=%s", stage.value, extra={"request_id": self.context.request_id})

    def fail(self) -> PipelineStage:
        if self.failed_stage is None:
            self.failed_stage = self.stage
            self.enter(PipelineStage.FAILED)
        return self.failed_stage


class ContactService:
    def __init__(
        self,
        verifier: AntiSpamVerifier,
        rate_limiter: FixedWindowRateLimiter,
        email_channel: EmailChannel,
        error_reporter: ErrorReporter,
        *,
        recipient: str,
        sender: str,
        request_timeout_seconds: float = 60.0,
        alert_tracker: Optional[FailureAlertTracker] = None,
        type_base_url: str = DEFAULT_TYPE_BASE_URL,
    ) -> None:
        self.verifier = verifier
        self.rate_limiter = rate_limiter
        self.email_channel = email_channel
        self.error_reporter = error_reporter
        self.recipient = recipient
        self.sender = sender
        self.request_timeout_seconds = request_timeout_seconds
        self.alert_tracker = alert_tracker
        self.type_base_url = type_base_url

    async def process(self, payload: Any, context: CorrelationContext) -> DeliveryOutcome:
        """Run *payload* through the pipeline; raise ``ProblemError`` on the first failure."""
        run = PipelineRun(context)
        try:
            return await asyncio.wait_for(self._run(payload, run), timeout=self.request_timeout_seconds)
        except ProblemError as exc:
            raise self._fail(run, exc)
        except asyncio.TimeoutError as exc:
            error = ProblemError.unexpected(
                f"The request did not complete within {self.request_timeout_seconds:g} seconds",
                type_base_url=self.type_base_url,
            )
            error.__cause__ = exc
            raise self._fail(run, error)
        except Exception as exc:
            raise self._fail(run, ProblemError.wrap(exc, type_base_url=self.type_base_url))

    # -- stages -------------------------------------------------------------

    async def _run(self, payload: Any, run: PipelineRun) -> DeliveryOutcome:
        run.enter(PipelineStage.VALIDATING)
        message = self._validate(payload, run.context)

        run.enter(PipelineStage.VERIFYING_ANTI_SPAM)
        await self._verify(message)

        run.enter(PipelineStage.CHECKING_RATE_LIMIT)
        self._admit(message)

        run.enter(PipelineStage.DELIVERING)
        outcome = await self._deliver(message)

        run.enter(PipelineStage.SUCCEEDED)
        logger.info(
            "Contact message delivered provider=%s id=%s attempts=%s",
            outcome.provider,
            outcome.provider_message_id,
            outcome.attempts,
            extra={
                "request_id": run.context.request_id,
                "metadata": {
                    "sourceAddress": run.context.source_address,
                    "durationMs": round(run.elapsed_ms, 2),
                },
            },
        )
        return outcome

    def _validate(self, payload: Any, context: CorrelationContext) -> InboundMessage:
        try:
            return parse_contact_payload(payload, source_address=context.source_address)
        except ValidationError as exc:
            raise ProblemError.validation(field_errors_from(exc), type_base_url=self.type_base_url) from exc
        except TypeError as exc:
            raise ProblemError.validation({"body": [str(exc)]}, type_base_url=self.type_base_url) from exc

    async def _verify(self, message: InboundMessage) -> None:
        try:
            result = await self.verifier.verify(message.anti_spam_token, message.source_address)
        except AntiSpamServiceError as exc:
            # Verifier unreachable: an infrastructure fault, never a pass.
            raise ProblemError.unexpected(
                "Anti-spam verification is temporarily unavailable",
                type_base_url=self.type_base_url,
            ) from exc
        if not result.passed:
            logger.info("Anti-spam verification rejected codes=%s", ",".join(result.diagnostic_codes) or "-")
            raise ProblemError.anti_spam(type_base_url=self.type_base_url)

    def _admit(self, message: InboundMessage) -> None:
        decision = self.rate_limiter.check_and_admit(message.source_address)
        if not decision.admitted:
            raise ProblemError.rate_limited(
                decision.retry_after_seconds or 1,
                type_base_url=self.type_base_url,
            )

    async def _deliver(self, message: InboundMessage) -> DeliveryOutcome:
        email = build_contact_notification(message, recipient=self.recipient, sender=self.sender)
        try:
            outcome = await self.email_channel.send(email)
        except Exception as exc:
            # Transport text stays in logs and reports only.
            raise ProblemError.delivery(type_base_url=self.type_base_url) from exc
        if not outcome.delivered:
            error = ProblemError.delivery(type_base_url=self.type_base_url)
            error.__cause__ = EmailDeliveryError(
                outcome.failure_reason or "Provider did not accept the message",
                provider=outcome.provider,
            )
            raise error
        return outcome

    # -- failure classification ----------------------------------------------

    def _fail(self, run: PipelineRun, error: ProblemError) -> ProblemError:
        stage = run.fail()
        context = run.context
        cause = error.__cause__
        metadata = {
            "stage": stage.value,
            "kind": error.kind.name,
            "status": error.status,
            "sourceAddress": context.source_address,
            "durationMs": round(run.elapsed_ms, 2),
        }
        if cause is not None:
            metadata["cause"] = f"{type(cause).__name__}: {cause}"

        if self.alert_tracker is not None:
            self.alert_tracker.record(error.kind.name, {"stage": stage.value})

        if not error.is_server_error:
            logger.warning(
                "Contact request rejected kind=%s stage=%s",
                error.kind.name,
                stage.value,
                extra={"request_id": context.request_id, "metadata": metadata},
            )
            return error

        logger.error(
            "Contact request failed kind=%s stage=%s",
            error.kind.name,
            stage.value,
            extra={"request_id": context.request_id, "metadata": metadata},
        )
        try:
            self.error_reporter.capture(
                error,
                context=context,
                tags={"stage": stage.value, "kind": error.kind.name},
                breadcrumbs=tuple(run.breadcrumbs),
            )
        except Exception:
            logger.exception("Error reporter failed", extra={"request_id": context.request_id})
        return error
