from __future__ import annotations

from flask import Blueprint, abort, g

from app.portal.db import db_session
from app.portal.modules.billing.models import BillingPayment
from app.portal.modules.billing.schemas import BalanceReminderRequest, PaymentRecord, PaymentUpdate
from app.portal.modules.billing.service import (
    billing_summary,
    list_payments,
    payment_to_dict,
    record_payment,
    send_balance_reminder,
    turn_off_reminder,
    update_payment,
)
from app.portal.rbac import require_permission
from app.portal.responses import fail, ok, parse_body

bp = Blueprint("billing", __name__)


def _get_payment_or_404(s, payment_id: int) -> BillingPayment:
    payment = s.get(BillingPayment, payment_id)
    if not payment:
        abort(404)
    return payment


@bp.post("/billing/payments")
@require_permission("billing.record")
def billing_record_payment():
    s = db_session()
    payment = record_payment(s, parse_body(PaymentRecord), g.current_user)
    s.commit()
    return ok(payment_to_dict(payment), 201)


@bp.get("/service-agreements/<int:agreement_id>/payments")
@require_permission("billing.view")
def billing_list_payments(agreement_id: int):
    s = db_session()
    return ok([payment_to_dict(p) for p in list_payments(s, agreement_id)])


@bp.get("/service-agreements/<int:agreement_id>/billing-summary")
@require_permission("billing.view")
def billing_summary_get(agreement_id: int):
    s = db_session()
    return ok(billing_summary(s, agreement_id))


@bp.post("/service-agreements/<int:agreement_id>/balance-reminder")
@require_permission("billing.record")
def billing_send_reminder(agreement_id: int):
    s = db_session()
    result = send_balance_reminder(s, agreement_id, parse_body(BalanceReminderRequest), g.current_user)
    s.commit()
    if not result["sent"]:
        return fail(result["error"])
    return ok(result)


@bp.post("/billing/payments/<int:payment_id>/reminder-off")
@require_permission("billing.manage")
def billing_reminder_off(payment_id: int):
    s = db_session()
    payment = turn_off_reminder(s, _get_payment_or_404(s, payment_id), g.current_user)
    s.commit()
    return ok(payment_to_dict(payment))


@bp.put("/billing/payments/<int:payment_id>")
@require_permission("billing.manage")
def billing_update_payment(payment_id: int):
    s = db_session()
    payment = update_payment(s, _get_payment_or_404(s, payment_id), parse_body(PaymentUpdate), g.current_user)
    s.commit()
    return ok(payment_to_dict(payment))
