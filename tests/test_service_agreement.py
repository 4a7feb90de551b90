import json

from app.portal.db import session_scope
from app.portal.models import AuditEvent, EmailMessage

from conftest import agreement_payload, intake_payload


def _create(api, **overrides):
    api.login("owner@clinic.test")
    return api.post("/api/service-agreements", json=agreement_payload(**overrides))


def test_create_agreement_is_activated_and_emails_patient(app, api):
    intake_id = api.post("/api/intake", json=intake_payload()).json["data"]["id"]
    r = _create(api, intake_form_id=intake_id)
    assert r.status_code == 201, r.json
    data = r.json["data"]
    assert data["is_activated"] is True
    assert data["total_program_fee"] == 12000.0
    assert data["intake_form_id"] == intake_id
    assert data["program_type"] == "addiction"

    with session_scope(app) as s:
        msg = s.query(EmailMessage).filter(EmailMessage.template == "form_ready").one()
        assert msg.recipient == "jane@example.com"


def test_deposit_percentage_over_100_is_rejected(api):
    r = _create(api, deposit_percentage="150")
    assert r.status_code == 400
    assert r.json["error"] == "Deposit percentage must be between 0 and 100"


def test_fee_must_be_positive(api):
    r = _create(api, total_program_fee="0")
    assert r.status_code == 400
    assert r.json["error"] == "Total program fee must be a valid number greater than 0"

    r = api.post("/api/service-agreements", json=agreement_payload(total_program_fee="abc"))
    assert r.json["error"] == "Total program fee must be a valid number greater than 0"

    r = api.post("/api/service-agreements", json=agreement_payload(number_of_days="two"))
    assert r.json["error"] == "Number of days must be a positive whole number"


def test_non_admin_cannot_create_agreement(api):
    api.login("manager@clinic.test")
    r = api.post("/api/service-agreements", json=agreement_payload())
    assert r.status_code == 403


def test_patient_signs_agreement_once(api):
    agreement_id = _create(api).json["data"]["id"]
    api.logout()

    api.login("jane@example.com")
    r = api.get("/api/patient/service-agreement")
    assert r.status_code == 200
    assert r.json["data"]["id"] == agreement_id
    assert "activated_by_user_id" not in r.json["data"]

    submit = {
        "payment_method": "wire transfer",
        "patient_signature_name": "Jane Doe",
        "patient_signature_first_name": "Jane",
        "patient_signature_last_name": "Doe",
        "patient_signature_date": "2026-10-02",
        "patient_signature_data": "data:image/png;base64,AAAA",
    }
    r = api.post(f"/api/service-agreements/{agreement_id}/submit", json=submit)
    assert r.status_code == 200, r.json
    assert r.json["data"]["agreement"]["is_completed"] is True

    r = api.post(f"/api/service-agreements/{agreement_id}/submit", json=submit)
    assert r.status_code == 400
    assert r.json["error"] == "This service agreement has already been completed."


def test_patient_cannot_see_deactivated_agreement(api):
    agreement_id = _create(api).json["data"]["id"]
    r = api.post(f"/api/service-agreements/{agreement_id}/deactivate")
    assert r.status_code == 200
    assert r.json["data"]["is_activated"] is False
    api.logout()

    api.login("jane@example.com")
    r = api.get("/api/patient/service-agreement")
    assert r.status_code == 400
    assert r.json["error"] == "This form is not yet activated. Please wait for admin activation."


def test_patient_without_agreement(api):
    api.login("jane@example.com")
    r = api.get("/api/patient/service-agreement")
    assert r.status_code == 400
    assert r.json["error"].startswith("This form is not yet available")


def test_admin_field_update_is_audited(app, api):
    agreement_id = _create(api).json["data"]["id"]
    payload = agreement_payload(total_program_fee="15000", remaining_balance="9000", reason="Extended stay")
    r = api.put(f"/api/service-agreements/{agreement_id}/admin-fields", json=payload)
    assert r.status_code == 200, r.json
    assert r.json["data"]["total_program_fee"] == 15000.0

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "service_agreement.admin_update").one()
        assert ev.reason == "Extended stay"
        assert "total_program_fee" in ev.metadata_json


def test_upgrade_changes_fees(api):
    agreement_id = _create(api).json["data"]["id"]
    payload = agreement_payload(
        total_program_fee="20000",
        deposit_amount="10000",
        remaining_balance="10000",
        number_of_days=28,
        payment_method="card",
    )
    r = api.post(f"/api/service-agreements/{agreement_id}/upgrade", json=payload)
    assert r.status_code == 200, r.json
    assert r.json["data"]["number_of_days"] == 28
    assert r.json["data"]["payment_method"] == "card"


def _post_raw(api, payload):
    # stdlib json writes NaN / Infinity literals, which Flask's parser accepts
    return api.post("/api/service-agreements", data=json.dumps(payload), content_type="application/json")


def test_negative_deposit_percentage_is_rejected(api):
    r = _create(api, deposit_percentage="-1")
    assert r.status_code == 400
    assert r.json["error"] == "Deposit percentage must be between 0 and 100"


def test_non_finite_amounts_are_rejected(api):
    api.login("owner@clinic.test")
    r = _post_raw(api, agreement_payload(deposit_percentage=float("nan")))
    assert r.status_code == 400
    assert r.json["error"] == "Deposit percentage must be between 0 and 100"

    r = _post_raw(api, agreement_payload(total_program_fee=float("inf")))
    assert r.status_code == 400
    assert r.json["error"] == "Total program fee must be a valid number greater than 0"

    r = api.post("/api/service-agreements", json=agreement_payload(total_program_fee="Infinity"))
    assert r.json["error"] == "Total program fee must be a valid number greater than 0"


def test_garbage_amounts_are_not_stripped_into_numbers(api):
    for fee in ("1e5", "12abc3", "12.5.1", "--3"):
        r = _create(api, total_program_fee=fee)
        assert r.status_code == 400, fee
        assert r.json["error"] == "Total program fee must be a valid number greater than 0"

    r = _create(api, total_program_fee=" $ 12,500.50 ")
    assert r.status_code == 201, r.json
    assert r.json["data"]["total_program_fee"] == 12500.5
