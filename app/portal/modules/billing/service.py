from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.portal.audit import record_event
from app.portal.mailer import dispatch
from app.portal.utils import model_to_dict

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.models import EmailMessage, User
    from app.portal.modules.billing.models import BillingPayment
    from app.portal.modules.billing.schemas import BalanceReminderRequest, PaymentRecord, PaymentUpdate
    from app.portal.modules.service_agreement.models import ServiceAgreement

logger = logging.getLogger(__name__)

REMINDER_SUBJECT = "Reminder: Balance payment due"


def payment_to_dict(payment: "BillingPayment") -> dict[str, Any]:
    return model_to_dict(payment)


def format_money(amount: Decimal | float | int) -> str:
    return f"${Decimal(amount):,.2f}"


def _get_agreement(s: "Session", agreement_id: int) -> "ServiceAgreement":
    from app.portal.modules.service_agreement.models import ServiceAgreement

    agreement = s.get(ServiceAgreement, agreement_id)
    if not agreement:
        raise ValueError("Service agreement not found")
    return agreement


def total_received(s: "Session", agreement_id: int) -> Decimal:
    from app.portal.modules.billing.models import BillingPayment

    total = (
        s.query(func.coalesce(func.sum(BillingPayment.amount_received), 0))
        .filter(BillingPayment.service_agreement_id == agreement_id)
        .scalar()
    )
    return Decimal(str(total or 0))


def balance_due(s: "Session", agreement: "ServiceAgreement") -> Decimal:
    """Program fee minus every recorded payment, never below zero."""
    return max(Decimal("0"), Decimal(agreement.total_program_fee) - total_received(s, agreement.id))


def send_balance_reminder_email(
    s: "Session",
    agreement: "ServiceAgreement",
    *,
    amount_received: Decimal | None = None,
    next_reminder_date: date | None = None,
) -> "EmailMessage | None":
    return dispatch(
        s,
        template="balance_reminder",
        to=agreement.patient_email,
        subject=REMINDER_SUBJECT,
        context={
            "recipient_name": agreement.patient_name or "Client",
            "amount_received": format_money(amount_received) if amount_received else None,
            "balance_due": format_money(balance_due(s, agreement)),
            "next_payment_date": next_reminder_date.strftime("%A, %B %d, %Y") if next_reminder_date else None,
        },
        entity_type="ServiceAgreement",
        entity_id=str(agreement.id),
    )


def record_payment(s: "Session", data: "PaymentRecord", actor: "User") -> "BillingPayment":
    """
    Record a payment. A partial payment with a reminder requested (now, or on a next date)
    emails the patient their remaining balance straight away.
    """
    from app.portal.modules.billing.models import BillingPayment

    agreement = _get_agreement(s, data.service_agreement_id)
    if data.patient_id is not None and data.patient_id != agreement.patient_id:
        raise ValueError("Patient does not match service agreement")

    now = datetime.utcnow()
    payment = BillingPayment(
        patient_id=agreement.patient_id,
        service_agreement_id=agreement.id,
        amount_received=data.amount_received,
        is_full_payment=data.is_full_payment,
        payment_received_at=data.payment_received_at or now,
        next_reminder_date=data.next_reminder_date,
        recorded_by_user_id=actor.id,
        created_at=now,
        updated_at=now,
    )
    s.add(payment)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="billing.record_payment",
        entity_type="ServiceAgreement",
        entity_id=str(agreement.id),
        metadata={
            "payment_id": payment.id,
            "amount_received": payment.amount_received,
            "is_full_payment": payment.is_full_payment,
        },
    )

    if not data.is_full_payment and (data.send_reminder_now or data.next_reminder_date):
        msg = send_balance_reminder_email(
            s, agreement, amount_received=data.amount_received, next_reminder_date=data.next_reminder_date
        )
        if msg is not None and msg.status == "sent":
            payment.balance_reminder_sent_at = datetime.utcnow()
    return payment


def list_payments(s: "Session", agreement_id: int) -> list["BillingPayment"]:
    from app.portal.modules.billing.models import BillingPayment

    return (
        s.query(BillingPayment)
        .filter(BillingPayment.service_agreement_id == agreement_id)
        .order_by(BillingPayment.payment_received_at.desc(), BillingPayment.id.desc())
        .all()
    )


def billing_summary(s: "Session", agreement_id: int) -> dict[str, Any]:
    agreement = _get_agreement(s, agreement_id)
    received = total_received(s, agreement.id)
    return {
        "service_agreement_id": agreement.id,
        "total_program_fee": float(agreement.total_program_fee),
        "total_received": float(received),
        "balance_due": float(max(Decimal("0"), Decimal(agreement.total_program_fee) - received)),
    }


def send_balance_reminder(
    s: "Session", agreement_id: int, data: "BalanceReminderRequest", actor: "User"
) -> dict[str, Any]:
    from app.portal.modules.billing.models import BillingPayment

    agreement = _get_agreement(s, agreement_id)
    payment = None
    if data.payment_record_id is not None:
        payment = s.get(BillingPayment, data.payment_record_id)
        if not payment or payment.service_agreement_id != agreement.id:
            raise ValueError("Payment record not found")

    msg = send_balance_reminder_email(s, agreement, next_reminder_date=data.next_reminder_date)
    if msg is None or msg.status != "sent":
        return {"sent": False, "error": (msg.error if msg else None) or "Failed to send reminder email"}

    if payment is not None:
        payment.balance_reminder_sent_at = datetime.utcnow()
        payment.next_reminder_date = data.next_reminder_date
        payment.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="billing.send_reminder",
        entity_type="ServiceAgreement",
        entity_id=str(agreement.id),
        metadata={"payment_id": payment.id if payment else None, "email_id": msg.id},
    )
    return {"sent": True, "balance_due": float(balance_due(s, agreement))}


def turn_off_reminder(s: "Session", payment: "BillingPayment", actor: "User") -> "BillingPayment":
    payment.next_reminder_date = None
    payment.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="billing.reminder_off",
        entity_type="BillingPayment",
        entity_id=str(payment.id),
    )
    return payment


def update_payment(s: "Session", payment: "BillingPayment", data: "PaymentUpdate", actor: "User") -> "BillingPayment":
    before = {"amount_received": payment.amount_received, "is_full_payment": payment.is_full_payment}
    payment.amount_received = data.amount_received
    payment.is_full_payment = data.is_full_payment
    if data.payment_received_at is not None:
        payment.payment_received_at = data.payment_received_at
    if data.turn_off_reminder:
        payment.next_reminder_date = None
    payment.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="billing.update_payment",
        entity_type="BillingPayment",
        entity_id=str(payment.id),
        metadata={
            "before": before,
            "after": {"amount_received": payment.amount_received, "is_full_payment": payment.is_full_payment},
        },
    )
    return payment
