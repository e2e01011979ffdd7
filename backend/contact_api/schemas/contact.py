"""Contact form request and response schemas."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_core import PydanticCustomError

NAME_MAX_LENGTH = 100
MESSAGE_MIN_LENGTH = 10
MESSAGE_MAX_LENGTH = 2000

_TYPE_MESSAGES = {
    "missing": "This field is required",
    "string_type": "Must be a string",
}


class ContactFormRequest(BaseModel):
    """Wire shape of ``POST /api/contact``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    name: str
    email: str
    message: str
    turnstile_token: str = Field(default="", alias="turnstileToken")

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not value:
            raise PydanticCustomError("name_blank", "Name cannot be empty")
        if len(value) > NAME_MAX_LENGTH:
            raise PydanticCustomError("name_too_long", "Name cannot exceed {max} characters", {"max": NAME_MAX_LENGTH})
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        try:
            result = validate_email(value, check_deliverability=False)
        except EmailNotValidError:
            raise PydanticCustomError("email_invalid", "Invalid email format") from None
        return result.normalized.lower()

    @field_validator("message")
    @classmethod
    def _check_message(cls, value: str) -> str:
        if len(value) < MESSAGE_MIN_LENGTH:
            raise PydanticCustomError(
                "message_too_short", "Message must be at least {min} characters", {"min": MESSAGE_MIN_LENGTH}
            )
        if len(value) > MESSAGE_MAX_LENGTH:
            raise PydanticCustomError(
                "message_too_long", "Message cannot exceed {max} characters", {"max": MESSAGE_MAX_LENGTH}
            )
        return value


class ContactSuccessResponse(BaseModel):
    success: bool = True
    message: str = "Message sent successfully"


@dataclass(frozen=True)
class InboundMessage:
    """A validated, normalised contact request. Never persisted."""

    name: str
    email: str
    body: str
    anti_spam_token: str
    source_address: str


def field_errors_from(exc: ValidationError) -> dict[str, list[str]]:
    """Flatten a pydantic ``ValidationError`` into ``{field: [message, ...]}``."""
    errors: dict[str, list[str]] = {}
    for item in exc.errors():
        loc = item.get("loc") or ()
        field = str(loc[0]) if loc else "body"
        message = _TYPE_MESSAGES.get(item.get("type", ""), item.get("msg", "Invalid value"))
        errors.setdefault(field, []).append(message)
    return errors


def parse_contact_payload(payload: Any, *, source_address: str) -> InboundMessage:
    """Validate a decoded JSON body.

    Raises ``ValidationError`` (pydantic) for field problems and ``TypeError``
    when the body is not a JSON object.
    """
    if not isinstance(payload, dict):
        raise TypeError("Request body must be a JSON object")
    form = ContactFormRequest.model_validate(payload)
    return InboundMessage(
        name=form.name,
        email=form.email,
        body=form.message,
        anti_spam_token=form.turnstile_token,
        source_address=source_address,
    )
