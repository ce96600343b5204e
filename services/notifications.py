"""
Fire-and-forget notifications.

Delivery failures are logged and swallowed here so they can never roll back
booking or session state. The sender is looked up on
``app.extensions["notifier"]`` (a callable taking ``(recipient, template_data)``)
and defaults to e-mail over SMTP.
"""
import logging

from flask import current_app

from utils.emailer import send_email

logger = logging.getLogger(__name__)

SUBJECTS = {
    "request_received": "New session request",
    "payment_confirmed": "Payment received",
    "session_scheduled": "Your session has been scheduled",
    "request_rejected": "Your session request was declined",
    "session_cancelled": "Your session was cancelled",
}


def render(template_data: dict) -> tuple[str, str]:
    template = template_data.get("template", "")
    subject = SUBJECTS.get(template, "Session update")
    lines = [subject, ""]
    for key, value in sorted(template_data.items()):
        if key == "template" or value is None:
            continue
        lines.append(f"{key.replace('_', ' ').capitalize()}: {value}")
    return subject, "\n".join(lines)


def email_notifier(recipient, template_data: dict):
    subject, body = render(template_data)
    ok, err = send_email(recipient.email, subject, body)
    if not ok:
        raise RuntimeError(err or "send failed")


def notify(recipient, template_data: dict) -> bool:
    if recipient is None:
        return False
    sender = current_app.extensions.get("notifier", email_notifier)
    try:
        sender(recipient, template_data)
    except Exception:
        logger.warning(
            "notification %s to user %s failed",
            template_data.get("template"),
            getattr(recipient, "id", None),
            exc_info=True,
        )
        return False
    return True
