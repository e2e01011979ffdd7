"""Problem Details (RFC 7807) error taxonomy for the contact pipeline.

Every stage failure is a ``ProblemError`` tagged with one ``ProblemKind``.
The kind fixes the HTTP status, the category URI suffix and the title; the
named constructors enforce each kind's required extension.
"""

from __future__ import annotations

import enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from fastapi.responses import JSONResponse

PROBLEM_CONTENT_TYPE = "application/problem+json"
DEFAULT_TYPE_BASE_URL = "https://api.example.com/errors/"


class ProblemKind(enum.Enum):
    VALIDATION_FAILED = (400, "validation-error", "Validation Failed", "The request payload is invalid")
    ANTI_SPAM_FAILED = (403, "turnstile-error", "Turnstile Verification Failed", "Anti-spam verification failed")
    RATE_LIMITED = (429, "rate-limit-error", "Rate Limit Exceeded", "Too many requests. Please try again later.")
    DELIVERY_FAILED = (500, "email-error", "Email Sending Failed", "Failed to send email")
    UNEXPECTED = (500, "internal-server-error", "Internal Server Error", "An unexpected error occurred")

    def __init__(self, status: int, slug: str, title: str, default_detail: str) -> None:
        self.status = status
        self.slug = slug
        self.title = title
        self.default_detail = default_detail

    @property
    def is_server_error(self) -> bool:
        return self.status >= 500

    @classmethod
    def for_status(cls, status: int) -> "ProblemKind":
        """Best-fit kind for a bare HTTP status raised outside the pipeline."""
        if status >= 500:
            return cls.UNEXPECTED
        for kind in cls:
            if kind.status == status:
                return kind
        return cls.VALIDATION_FAILED


class ProblemError(Exception):
    """A classified pipeline failure, serialisable as Problem Details."""

    def __init__(
        self,
        kind: ProblemKind,
        detail: Optional[str] = None,
        *,
        instance: Optional[str] = None,
        extensions: Optional[Mapping[str, Any]] = None,
        type_base_url: str = DEFAULT_TYPE_BASE_URL,
    ) -> None:
        self._kind = kind
        self._detail = detail or kind.default_detail
        self._instance = instance
        self._extensions = MappingProxyType(dict(extensions or {}))
        self._type = f"{type_base_url.rstrip('/')}/{kind.slug}"
        super().__init__(self._detail)

    # -- named constructors -------------------------------------------------

    @classmethod
    def validation(
        cls,
        field_errors: Mapping[str, list[str]],
        detail: str = "One or more fields are invalid",
        **kwargs: Any,
    ) -> "ProblemError":
        frozen = {field: list(messages) for field, messages in field_errors.items()}
        return cls(ProblemKind.VALIDATION_FAILED, detail, extensions={"fieldErrors": frozen}, **kwargs)

    @classmethod
    def anti_spam(cls, detail: Optional[str] = None, **kwargs: Any) -> "ProblemError":
        return cls(ProblemKind.ANTI_SPAM_FAILED, detail, **kwargs)

    @classmethod
    def rate_limited(cls, retry_after_seconds: int, detail: Optional[str] = None, **kwargs: Any) -> "ProblemError":
        retry_after = max(1, int(retry_after_seconds))
        return cls(ProblemKind.RATE_LIMITED, detail, extensions={"retryAfterSeconds": retry_after}, **kwargs)

    @classmethod
    def delivery(cls, detail: Optional[str] = None, **kwargs: Any) -> "ProblemError":
        return cls(ProblemKind.DELIVERY_FAILED, detail, **kwargs)

    @classmethod
    def unexpected(cls, detail: Optional[str] = None, **kwargs: Any) -> "ProblemError":
        return cls(ProblemKind.UNEXPECTED, detail, **kwargs)

    @classmethod
    def wrap(cls, exc: BaseException, **kwargs: Any) -> "ProblemError":
        """Return ``exc`` if already classified, otherwise an UNEXPECTED error chained to it."""
        if isinstance(exc, ProblemError):
            return exc
        wrapped = cls.unexpected(**kwargs)
        wrapped.__cause__ = exc
        return wrapped

    # -- read-only attributes ----------------------------------------------

    @property
    def kind(self) -> ProblemKind:
        return self._kind

    @property
    def status(self) -> int:
        return self._kind.status

    @property
    def type(self) -> str:
        return self._type

    @property
    def title(self) -> str:
        return self._kind.title

    @property
    def detail(self) -> str:
        return self._detail

    @property
    def instance(self) -> Optional[str]:
        return self._instance

    @property
    def extensions(self) -> Mapping[str, Any]:
        return self._extensions

    @property
    def is_server_error(self) -> bool:
        return self._kind.is_server_error

    @property
    def retry_after_seconds(self) -> Optional[int]:
        return self._extensions.get("retryAfterSeconds")

    # -- serialisation -----------------------------------------------------

    def to_wire_format(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "type": self._type,
            "title": self.title,
            "status": self.status,
            "detail": self._detail,
        }
        if self._instance:
            body["instance"] = self._instance
        for key, value in self._extensions.items():
            body[key] = value
        return body

    def to_response(self, headers: Optional[Mapping[str, str]] = None) -> JSONResponse:
        response_headers = dict(headers or {})
        if self._kind is ProblemKind.RATE_LIMITED and self.retry_after_seconds is not None:
            response_headers["Retry-After"] = str(self.retry_after_seconds)
        return JSONResponse(
            status_code=self.status,
            content=self.to_wire_format(),
            headers=response_headers,
            media_type=PROBLEM_CONTENT_TYPE,
        )

    def __repr__(self) -> str:
        return f"ProblemError(kind={self._kind.name}, detail={self._detail!r})"
