import pytest
from pydantic import ValidationError

from contact_api.schemas.contact import ContactFormRequest, field_errors_from, parse_contact_payload


def _errors(payload):
    with pytest.raises(ValidationError) as exc_info:
        ContactFormRequest.model_validate(payload)
    return field_errors_from(exc_info.value)


def test_normalises_fields(valid_payload):
    valid_payload.update({"name": "  Jane  ", "email": " Jane@Example.COM ", "message": "  " + "x" * 12 + "  "})

    message = parse_contact_payload(valid_payload, source_address="203.0.113.7")

    assert message.name == "Jane"
    assert message.email == "jane@example.com"
    assert message.body == "x" * 12
    assert message.anti_spam_token == "valid-token"
    assert message.source_address == "203.0.113.7"


def test_turnstile_token_defaults_to_blank(valid_payload):
    del valid_payload["turnstileToken"]
    assert parse_contact_payload(valid_payload, source_address="x").anti_spam_token == ""


@pytest.mark.parametrize(
    "field,value,expected",
    [
        ("name", "", "Name cannot be empty"),
        ("name", "n" * 101, "Name cannot exceed 100 characters"),
        ("email", "john@", "Invalid email format"),
        ("email", "john..doe@example.com", "Invalid email format"),
        ("email", "john doe@example.com", "Invalid email format"),
        ("message", "123456789", "Message must be at least 10 characters"),
        ("message", "m" * 2001, "Message cannot exceed 2000 characters"),
        ("name", 42, "Must be a string"),
    ],
)
def test_field_errors(valid_payload, field, value, expected):
    valid_payload[field] = value
    assert _errors(valid_payload) == {field: [expected]}


def test_boundaries_are_inclusive(valid_payload):
    valid_payload.update({"name": "n" * 100, "message": "m" * 10})
    parse_contact_payload(valid_payload, source_address="x")
    valid_payload["message"] = "m" * 2000
    parse_contact_payload(valid_payload, source_address="x")


def test_non_object_body_is_rejected():
    with pytest.raises(TypeError):
        parse_contact_payload("hello", source_address="x")
