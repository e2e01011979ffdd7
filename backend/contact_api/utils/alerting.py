import abc
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Mapping, Optional, Sequence

from contact_api.core.request_context import CorrelationContext

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 3600
DEFAULT_THRESHOLDS = {
    "DELIVERY_FAILED": 3,
    "UNEXPECTED": 3,
    "ANTI_SPAM_FAILED": 20,
    "RATE_LIMITED": 20,
}


@dataclass(frozen=True)
class Breadcrumb:
    category: str
    message: str
    data: Mapping[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def as_dict(self) -> dict[str, Any]:
        return {"category": self.category, "message": self.message, "data": dict(self.data), "timestamp": self.timestamp}


class ErrorReporter(abc.ABC):
    """Sink for server-class (5xx) failures."""

    @abc.abstractmethod
    def capture(
        self,
        exc: BaseException,
        *,
        context: CorrelationContext,
        tags: Optional[Mapping[str, str]] = None,
        breadcrumbs: Sequence[Breadcrumb] = (),
    ) -> None:
        ...


class LoggingErrorReporter(ErrorReporter):
    """Reports to the log stream; an external tracker can subscribe to ``ALERT`` lines."""

    def capture(
        self,
        exc: BaseException,
        *,
        context: CorrelationContext,
        tags: Optional[Mapping[str, str]] = None,
        breadcrumbs: Sequence[Breadcrumb] = (),
    ) -> None:
        cause = exc.__cause__ or exc
        logger.error(
            "ALERT error_report exc=%s tags=%s",
            type(cause).__name__,
            dict(tags or {}),
            exc_info=(type(cause), cause, cause.__traceback__),
            extra={
                "request_id": context.request_id,
                "metadata": {
                    "request": context.as_dict(),
                    "tags": dict(tags or {}),
                    "breadcrumbs": [b.as_dict() for b in breadcrumbs],
                },
            },
        )


class FailureAlertTracker:
    """Counts failures per kind in a sliding window and raises an alert at each threshold multiple."""

    def __init__(self, window_seconds: int, thresholds: dict[str, int]) -> None:
        self._window_seconds = window_seconds
        self._thresholds = thresholds
        self._buckets: dict[str, deque[float]] = {}
        self._lock = Lock()

    def record(self, kind: str, metadata: Optional[dict] = None) -> bool:
        """Record one failure; returns True when this record triggered an alert."""
        if kind not in self._thresholds:
            return False
        limit = self._thresholds[kind]
        now = time.monotonic()
        with self._lock:
            bucket = self._buckets.get(kind)
            if bucket is None:
                bucket = deque()
                self._buckets[kind] = bucket
            cutoff = now - self._window_seconds
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()
            bucket.append(now)
            count = len(bucket)

        if count >= limit and count % limit == 0:
            logger.warning(
                "ALERT failure_kind=%s count=%s window_seconds=%s metadata=%s",
                kind,
                count,
                self._window_seconds,
                metadata or {},
            )
            return True
        return False

    def count(self, kind: str) -> int:
        with self._lock:
            bucket = self._buckets.get(kind)
            return len(bucket) if bucket else 0
