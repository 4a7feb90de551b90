from datetime import date, datetime, timedelta

from app.portal.db import session_scope
from app.portal.models import EmailMessage
from app.portal.modules.billing.models import BillingPayment
from app.portal.modules.reminders.service import send_billing_reminders, send_form_reminders
from app.portal.modules.service_agreement.models import ServiceAgreement

from conftest import agreement_payload


def _run(app, job, **kwargs):
    with app.app_context():
        with session_scope(app) as s:
            return job(s, **kwargs)


def _agreement(api) -> int:
    api.login("owner@clinic.test")
    agreement_id = api.post("/api/service-agreements", json=agreement_payload()).json["data"]["id"]
    api.logout()
    return agreement_id


def test_form_reminder_after_48_hours_then_throttled(app, api):
    agreement_id = _agreement(api)

    assert _run(app, send_form_reminders)["total"] == 0

    with session_scope(app) as s:
        s.get(ServiceAgreement, agreement_id).activated_at = datetime.utcnow() - timedelta(hours=49)

    assert _run(app, send_form_reminders) == {"total": 1, "sent": 1, "failed": 0}
    assert _run(app, send_form_reminders)["total"] == 0

    # after another 48 hours it is due again
    later = datetime.utcnow() + timedelta(hours=49)
    assert _run(app, send_form_reminders, now=later)["sent"] == 1

    with session_scope(app) as s:
        msgs = s.query(EmailMessage).filter(EmailMessage.template == "form_reminder").all()
        assert len(msgs) == 2
        assert msgs[0].subject == "Reminder: Please Complete Your Service Agreement"


def test_signed_agreement_is_not_reminded(app, api):
    agreement_id = _agreement(api)
    api.login("jane@example.com")
    api.post(
        f"/api/service-agreements/{agreement_id}/submit",
        json={
            "payment_method": "card",
            "patient_signature_name": "Jane Doe",
            "patient_signature_first_name": "Jane",
            "patient_signature_last_name": "Doe",
            "patient_signature_date": "2026-10-02",
            "patient_signature_data": "data:image/png;base64,AAAA",
        },
    )
    with session_scope(app) as s:
        s.get(ServiceAgreement, agreement_id).activated_at = datetime.utcnow() - timedelta(days=5)

    counts = _run(app, send_form_reminders, now=datetime.utcnow() + timedelta(days=3))
    # the consent form created by automation is still open
    assert counts["sent"] == 1
    with session_scope(app) as s:
        msg = s.query(EmailMessage).filter(EmailMessage.template == "form_reminder").one()
        assert msg.subject == "Reminder: Please Complete Your Ibogaine Therapy Consent Form"


def test_billing_reminder_sent_on_due_date_and_cleared(app, api):
    agreement_id = _agreement(api)
    api.login("nurse@clinic.test")
    due = api.post(
        "/api/billing/payments",
        json={"service_agreement_id": agreement_id, "amount_received": 3000, "next_reminder_date": "2026-11-01"},
    ).json["data"]["id"]
    paid_up = api.post(
        "/api/billing/payments",
        json={"service_agreement_id": agreement_id, "amount_received": 1000, "next_reminder_date": "2026-12-01"},
    ).json["data"]["id"]

    assert _run(app, send_billing_reminders, today=date(2026, 10, 31))["total"] == 0

    counts = _run(app, send_billing_reminders, today=date(2026, 11, 1))
    assert counts == {"total": 1, "sent": 1, "failed": 0}

    with session_scope(app) as s:
        payment = s.get(BillingPayment, due)
        assert payment.next_reminder_date is None
        assert payment.balance_reminder_sent_at is not None
        assert s.get(BillingPayment, paid_up).next_reminder_date == date(2026, 12, 1)

    assert _run(app, send_billing_reminders, today=date(2026, 11, 2))["total"] == 0


def test_billing_reminder_skips_settled_balance(app, api):
    agreement_id = _agreement(api)
    api.login("nurse@clinic.test")
    payment_id = api.post(
        "/api/billing/payments",
        json={"service_agreement_id": agreement_id, "amount_received": 12000, "next_reminder_date": "2026-11-01"},
    ).json["data"]["id"]

    assert _run(app, send_billing_reminders, today=date(2026, 11, 5))["total"] == 0
    with session_scope(app) as s:
        assert s.get(BillingPayment, payment_id).next_reminder_date is None
