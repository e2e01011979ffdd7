from __future__ import annotations

import re
from html import escape as html_escape

from contact_api.schemas.contact import InboundMessage
from contact_api.services.email.base import EmailMessage

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def header_safe(value: str) -> str:
    """Collapse control characters (CR, LF, tabs, ...) so *value* can sit in a mail header."""
    return " ".join(_CONTROL_CHARS.sub(" ", value).split())


def build_contact_text(message: InboundMessage) -> str:
    return (
        "New contact message\n"
        "\n"
        f"Name: {message.name}\n"
        f"Email: {message.email}\n"
        "Message:\n"
        f"{message.body}\n"
    )


def build_contact_html(message: InboundMessage) -> str:
    safe_name = html_escape(message.name)
    safe_email = html_escape(message.email)
    safe_body = html_escape(message.body).replace("\n", "<br/>")
    return (
        "<h2>New contact message</h2>"
        f"<p><strong>Name:</strong> {safe_name}</p>"
        f'<p><strong>Email:</strong> <a href="mailto:{safe_email}">{safe_email}</a></p>'
        "<p><strong>Message:</strong></p>"
        f"<p>{safe_body}</p>"
    )


def build_contact_notification(message: InboundMessage, *, recipient: str, sender: str) -> EmailMessage:
    """Notification sent to the site owner; replies go straight to the visitor."""
    return EmailMessage(
        to=recipient,
        from_email=sender,
        subject=f"Contact from {header_safe(message.name)}",
        html=build_contact_html(message),
        text=build_contact_text(message),
        reply_to=message.email,
    )
