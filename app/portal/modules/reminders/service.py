"""
Scheduled reminder jobs, run from scripts/send_reminders.py (cron) inside an app context.

Each job returns {"total": n, "sent": n, "failed": n}; a failed email is recorded in the
email log and the job carries on with the next patient.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import or_

from app.portal.mailer import dispatch

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

FORM_REMINDER_AFTER = timedelta(hours=48)


def _stale(column, cutoff: datetime):
    return or_(column.is_(None), column < cutoff)


def send_form_reminders(s: "Session", *, now: datetime | None = None) -> dict[str, Any]:
    """
    Remind patients about service agreements and consent forms that were activated more than
    48 hours ago and are still unsigned. A form is reminded at most once per 48 hours.
    """
    from app.portal.modules.consent.models import IbogaineConsentForm
    from app.portal.modules.consent.service import consent_link
    from app.portal.modules.service_agreement.models import ServiceAgreement

    now = now or datetime.utcnow()
    cutoff = now - FORM_REMINDER_AFTER
    base = current_app.config.get("APP_BASE_URL") or ""
    counts = {"total": 0, "sent": 0, "failed": 0}

    agreements = (
        s.query(ServiceAgreement)
        .filter(
            ServiceAgreement.is_activated.is_(True),
            ServiceAgreement.activated_at.isnot(None),
            ServiceAgreement.activated_at < cutoff,
            ServiceAgreement.completed_at.is_(None),
            _stale(ServiceAgreement.last_reminder_sent_at, cutoff),
        )
        .all()
    )
    for agreement in agreements:
        if agreement.patient_signature_data:
            continue
        counts["total"] += 1
        msg = dispatch(
            s,
            template="form_reminder",
            to=agreement.patient_email,
            subject="Reminder: Please Complete Your Service Agreement",
            context={
                "recipient_name": agreement.patient_first_name or "Patient",
                "form_name": "Service Agreement",
                "form_link": f"{base}/patient/service-agreement",
            },
            entity_type="ServiceAgreement",
            entity_id=str(agreement.id),
        )
        if msg is not None and msg.status == "sent":
            agreement.last_reminder_sent_at = now
            counts["sent"] += 1
        else:
            counts["failed"] += 1

    consents = (
        s.query(IbogaineConsentForm)
        .filter(
            IbogaineConsentForm.is_activated.is_(True),
            IbogaineConsentForm.activated_at.isnot(None),
            IbogaineConsentForm.activated_at < cutoff,
            IbogaineConsentForm.completed_at.is_(None),
            _stale(IbogaineConsentForm.last_reminder_sent_at, cutoff),
        )
        .all()
    )
    for consent in consents:
        if consent.signature_data:
            continue
        counts["total"] += 1
        msg = dispatch(
            s,
            template="form_reminder",
            to=consent.email,
            subject="Reminder: Please Complete Your Ibogaine Therapy Consent Form",
            context={
                "recipient_name": consent.first_name or "Patient",
                "form_name": "Ibogaine Therapy Consent Form",
                "form_link": consent_link(consent),
            },
            entity_type="IbogaineConsentForm",
            entity_id=str(consent.id),
        )
        if msg is not None and msg.status == "sent":
            consent.last_reminder_sent_at = now
            counts["sent"] += 1
        else:
            counts["failed"] += 1

    logger.info("Form reminders: %s sent, %s failed, %s total", counts["sent"], counts["failed"], counts["total"])
    return counts


def send_billing_reminders(s: "Session", *, today: date | None = None) -> dict[str, Any]:
    """
    Balance reminders for partial payments whose next reminder date has arrived.
    The reminder date is cleared once sent so staff can schedule the next one.
    """
    from app.portal.modules.billing.models import BillingPayment
    from app.portal.modules.billing.service import balance_due, send_balance_reminder_email
    from app.portal.modules.service_agreement.models import ServiceAgreement

    today = today or date.today()
    counts = {"total": 0, "sent": 0, "failed": 0}
    payments = (
        s.query(BillingPayment)
        .filter(
            BillingPayment.next_reminder_date.isnot(None),
            BillingPayment.next_reminder_date <= today,
            BillingPayment.is_full_payment.is_(False),
        )
        .order_by(BillingPayment.next_reminder_date.asc(), BillingPayment.id.asc())
        .all()
    )
    for payment in payments:
        agreement = s.get(ServiceAgreement, payment.service_agreement_id)
        if agreement is None or balance_due(s, agreement) <= 0:
            payment.next_reminder_date = None
            continue
        counts["total"] += 1
        msg = send_balance_reminder_email(s, agreement, next_reminder_date=payment.next_reminder_date)
        if msg is not None and msg.status == "sent":
            payment.balance_reminder_sent_at = datetime.utcnow()
            payment.next_reminder_date = None
            counts["sent"] += 1
        else:
            counts["failed"] += 1

    logger.info("Billing reminders: %s sent, %s failed, %s total", counts["sent"], counts["failed"], counts["total"])
    return counts
