from app.portal.db import session_scope
from app.portal.models import EmailMessage, User

from conftest import agreement_payload


def _agreement(api) -> int:
    api.login("owner@clinic.test")
    agreement_id = api.post("/api/service-agreements", json=agreement_payload()).json["data"]["id"]
    api.logout()
    return agreement_id


def _reminders(app) -> list[EmailMessage]:
    with session_scope(app) as s:
        msgs = s.query(EmailMessage).filter(EmailMessage.template == "balance_reminder").all()
        s.expunge_all()
        return msgs


def test_partial_payment_updates_balance_and_reminds(app, api):
    agreement_id = _agreement(api)
    api.login("nurse@clinic.test")

    r = api.post(
        "/api/billing/payments",
        json={
            "service_agreement_id": agreement_id,
            "amount_received": "$4,000",
            "is_full_payment": False,
            "send_reminder_now": True,
        },
    )
    assert r.status_code == 201, r.json
    payment = r.json["data"]
    assert payment["amount_received"] == 4000.0
    assert payment["balance_reminder_sent_at"] is not None

    api.post("/api/billing/payments", json={"service_agreement_id": agreement_id, "amount_received": 1500})

    r = api.get(f"/api/service-agreements/{agreement_id}/billing-summary")
    assert r.json["data"] == {
        "service_agreement_id": agreement_id,
        "total_program_fee": 12000.0,
        "total_received": 5500.0,
        "balance_due": 6500.0,
    }

    r = api.get(f"/api/service-agreements/{agreement_id}/payments")
    assert [p["amount_received"] for p in r.json["data"]] == [1500.0, 4000.0]

    msgs = _reminders(app)
    assert len(msgs) == 1
    assert msgs[0].recipient == "jane@example.com"
    assert "$8,000.00" in msgs[0].html_body


def test_full_payment_does_not_remind(app, api):
    agreement_id = _agreement(api)
    api.login("nurse@clinic.test")
    r = api.post(
        "/api/billing/payments",
        json={"service_agreement_id": agreement_id, "amount_received": 12000, "is_full_payment": True, "send_reminder_now": True},
    )
    assert r.status_code == 201
    assert _reminders(app) == []
    r = api.get(f"/api/service-agreements/{agreement_id}/billing-summary")
    assert r.json["data"]["balance_due"] == 0.0


def test_payment_validation(app, api):
    agreement_id = _agreement(api)
    api.login("nurse@clinic.test")

    r = api.post("/api/billing/payments", json={"service_agreement_id": agreement_id, "amount_received": "-5"})
    assert r.status_code == 400
    assert r.json["error"] == "Amount received must be a valid number of 0 or more"

    r = api.post("/api/billing/payments", json={"service_agreement_id": 999, "amount_received": 10})
    assert r.status_code == 400
    assert r.json["error"] == "Service agreement not found"

    # signing links the agreement to the patient account
    api.logout()
    api.login("jane@example.com")
    api.post(
        f"/api/service-agreements/{agreement_id}/submit",
        json={
            "payment_method": "wire transfer",
            "patient_signature_name": "Jane Doe",
            "patient_signature_first_name": "Jane",
            "patient_signature_last_name": "Doe",
            "patient_signature_date": "2026-10-02",
            "patient_signature_data": "data:image/png;base64,AAAA",
        },
    )
    assert api.post("/api/billing/payments", json={"service_agreement_id": agreement_id, "amount_received": 10}).status_code == 403
    api.logout()

    with session_scope(app) as s:
        other_id = s.query(User).filter(User.email == "nurse@clinic.test").one().id
    api.login("nurse@clinic.test")
    r = api.post(
        "/api/billing/payments",
        json={"service_agreement_id": agreement_id, "patient_id": other_id, "amount_received": 10},
    )
    assert r.status_code == 400
    assert r.json["error"] == "Patient does not match service agreement"


def test_payment_against_unsigned_agreement(app, api):
    agreement_id = _agreement(api)
    with session_scope(app) as s:
        nurse_id = s.query(User).filter(User.email == "nurse@clinic.test").one().id
    api.login("nurse@clinic.test")

    # no patient is linked until the agreement is signed; a claimed patient cannot match
    r = api.post(
        "/api/billing/payments",
        json={"service_agreement_id": agreement_id, "patient_id": nurse_id, "amount_received": 10},
    )
    assert r.status_code == 400
    assert r.json["error"] == "Patient does not match service agreement"
    assert api.get(f"/api/service-agreements/{agreement_id}/payments").json["data"] == []

    r = api.post("/api/billing/payments", json={"service_agreement_id": agreement_id, "amount_received": 10})
    assert r.status_code == 201, r.json
    assert r.json["data"]["patient_id"] is None


def test_manual_reminder_and_owner_controls(app, api):
    agreement_id = _agreement(api)
    api.login("nurse@clinic.test")
    payment_id = api.post(
        "/api/billing/payments",
        json={"service_agreement_id": agreement_id, "amount_received": 2000, "next_reminder_date": "2026-12-01"},
    ).json["data"]["id"]

    r = api.post(
        f"/api/service-agreements/{agreement_id}/balance-reminder",
        json={"payment_record_id": payment_id, "next_reminder_date": "2026-12-15"},
    )
    assert r.status_code == 200, r.json
    assert r.json["data"] == {"sent": True, "balance_due": 10000.0}

    # owner-only
    assert api.post(f"/api/billing/payments/{payment_id}/reminder-off").status_code == 403
    api.logout()

    api.login("owner@clinic.test")
    r = api.post(f"/api/billing/payments/{payment_id}/reminder-off")
    assert r.status_code == 200
    assert r.json["data"]["next_reminder_date"] is None

    r = api.put(f"/api/billing/payments/{payment_id}", json={"amount_received": "2500", "is_full_payment": False})
    assert r.status_code == 200, r.json
    assert r.json["data"]["amount_received"] == 2500.0

    r = api.post(f"/api/service-agreements/{agreement_id}/balance-reminder", json={"payment_record_id": 999})
    assert r.status_code == 400
    assert r.json["error"] == "Payment record not found"

    assert len(_reminders(app)) == 2


def test_failed_reminder_reports_error(app, api):
    agreement_id = _agreement(api)
    app.config["EMAIL_BACKEND"] = "resend"
    api.login("nurse@clinic.test")
    r = api.post(f"/api/service-agreements/{agreement_id}/balance-reminder", json={})
    assert r.status_code == 400
    assert r.json["error"] == "RESEND_API_KEY is not configured."
