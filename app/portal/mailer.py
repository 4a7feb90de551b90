"""
Transactional email.

Every send goes through `dispatch`, which renders a template from templates/emails/,
hands it to the configured backend and records the attempt in `email_messages`.
A failed send never raises to the caller; the row is marked failed and can be retried
from the admin API.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from flask import current_app, render_template
from sqlalchemy.orm import Session

from app.portal.models import EmailMessage

logger = logging.getLogger(__name__)


class EmailError(RuntimeError):
    pass


class EmailBackend:
    def send(self, *, sender: str, to: str, subject: str, html: str) -> str:
        """Deliver one message. Returns the provider message id."""
        raise NotImplementedError


@dataclass(frozen=True)
class LogEmailBackend(EmailBackend):
    """Development/test backend: writes the message to the log instead of sending it."""

    def send(self, *, sender: str, to: str, subject: str, html: str) -> str:
        message_id = f"log-{uuid.uuid4().hex[:12]}"
        logger.info("EMAIL (log backend) id=%s from=%s to=%s subject=%s", message_id, sender, to, subject)
        return message_id


@dataclass(frozen=True)
class ResendEmailBackend(EmailBackend):
    api_key: str

    def send(self, *, sender: str, to: str, subject: str, html: str) -> str:
        if not self.api_key:
            raise EmailError("RESEND_API_KEY is not configured.")
        import resend

        resend.api_key = self.api_key
        try:
            response = resend.Emails.send({"from": sender, "to": [to], "subject": subject, "html": html})
        except Exception as e:
            raise EmailError(f"Failed to send email: {e}") from e
        message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        return str(message_id or "")


def email_from_config(config: dict) -> EmailBackend:
    backend = (config.get("EMAIL_BACKEND") or "log").strip().lower()
    if backend == "resend":
        return ResendEmailBackend(api_key=(config.get("RESEND_API_KEY") or "").strip())
    return LogEmailBackend()


def send_email_direct(to: str, subject: str, html: str) -> dict[str, Any]:
    """
    Send one message with the configured backend.
    Returns {"success": True, "message_id": ...} or {"success": False, "error": ...}; never raises.
    """
    to = (to or "").strip()
    if not to:
        return {"success": False, "error": "Recipient email is required"}
    backend = email_from_config(current_app.config)
    sender = current_app.config.get("EMAIL_FROM") or "no-reply@localhost"
    try:
        message_id = backend.send(sender=sender, to=to, subject=subject, html=html)
    except Exception as e:
        logger.error("Email send failed to=%s subject=%s: %s", to, subject, e)
        return {"success": False, "error": str(e)}
    return {"success": True, "message_id": message_id}


def render_email(template: str, **context: Any) -> str:
    context.setdefault("app_base_url", current_app.config.get("APP_BASE_URL") or "")
    return render_template(f"emails/{template}.html", **context)


def _deliver(msg: EmailMessage) -> EmailMessage:
    result = send_email_direct(msg.recipient, msg.subject, msg.html_body)
    msg.attempts = (msg.attempts or 0) + 1
    if result["success"]:
        msg.status = "sent"
        msg.provider_message_id = result.get("message_id") or None
        msg.error = None
        msg.sent_at = datetime.utcnow()
        if msg.scrub_on_send:
            msg.html_body = ""
    else:
        msg.status = "failed"
        msg.error = result.get("error")
    return msg


def dispatch(
    s: Session,
    *,
    template: str,
    to: str | None,
    subject: str,
    context: dict[str, Any] | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    scrub_on_send: bool = False,
) -> EmailMessage | None:
    """
    Render, send and log one email. Returns the log row (None when there is no recipient).
    With `scrub_on_send` the stored body is blanked after the first successful delivery,
    whether that is this call or an admin retry. The caller owns the transaction.
    """
    to = (to or "").strip()
    if not to:
        logger.info("Skipping email %s: no recipient", template)
        return None
    try:
        html = render_email(template, **(context or {}))
    except Exception as e:
        logger.exception("Email template %s failed to render", template)
        msg = EmailMessage(
            recipient=to,
            subject=subject,
            template=template,
            html_body="",
            status="failed",
            error=f"Template error: {e}",
            attempts=0,
            entity_type=entity_type,
            entity_id=entity_id,
            scrub_on_send=scrub_on_send,
        )
        s.add(msg)
        return msg

    msg = EmailMessage(
        recipient=to,
        subject=subject,
        template=template,
        html_body=html,
        status="pending",
        attempts=0,
        entity_type=entity_type,
        entity_id=entity_id,
        scrub_on_send=scrub_on_send,
    )
    s.add(msg)
    return _deliver(msg)


def retry_message(msg: EmailMessage) -> EmailMessage:
    if msg.status == "sent":
        raise ValueError("Email was already sent.")
    if not msg.html_body:
        raise ValueError("Email has no rendered body to resend.")
    return _deliver(msg)


def notify_staff(s: Session, *, template: str, subject: str, context: dict[str, Any], **kwargs: Any) -> EmailMessage | None:
    """Send an internal notification to the configured staff inbox."""
    return dispatch(
        s,
        template=template,
        to=current_app.config.get("STAFF_NOTIFICATION_EMAIL"),
        subject=subject,
        context=context,
        **kwargs,
    )
