from app.portal.db import session_scope
from app.portal.models import EmailMessage, User
from app.portal.modules.intake.models import PatientIntakeForm

from conftest import agreement_payload, intake_payload


def _sam_intake(api) -> int:
    payload = intake_payload(first_name="Sam", last_name="Lee", email="Sam@Example.com")
    return api.post("/api/intake", json=payload).json["data"]["id"]


def test_create_patient_account_links_forms(app, api):
    intake_id = _sam_intake(api)
    api.login("manager@clinic.test")
    account = {"email": "sam@example.com", "first_name": "Sam", "last_name": "Lee", "intake_form_id": intake_id}

    r = api.post("/api/patients/accounts", json=account)
    assert r.status_code == 201, r.json
    data = r.json["data"]
    assert data["email_sent"] is True
    assert data["linked_records"] == 1
    assert data["user"]["roles"] == ["patient"]
    assert data["user"]["must_change_password"] is True

    r = api.post("/api/patients/accounts", json=account)
    assert r.status_code == 400
    assert r.json["error"] == "An account with this email already exists."

    with session_scope(app) as s:
        user_id = s.query(User).filter(User.email == "sam@example.com").one().id
        assert s.get(PatientIntakeForm, intake_id).patient_id == user_id
        msg = s.query(EmailMessage).filter(EmailMessage.template == "patient_credentials").one()
        assert msg.status == "sent"
        assert msg.html_body == ""


def test_profile_aggregates_patient_records(api):
    intake_id = api.post("/api/intake", json=intake_payload()).json["data"]["id"]
    api.login("owner@clinic.test")
    agreement_id = api.post(
        "/api/service-agreements", json=agreement_payload(intake_form_id=intake_id)
    ).json["data"]["id"]

    for query in ("email=JANE@example.com", f"intake_form_id={intake_id}"):
        r = api.get(f"/api/patients/profile?{query}")
        assert r.status_code == 200, r.json
        profile = r.json["data"]
        assert profile["email"] == "jane@example.com"
        assert profile["account"]["email"] == "jane@example.com"
        assert profile["intake"]["id"] == intake_id
        assert [a["id"] for a in profile["service_agreements"]] == [agreement_id]
        assert profile["billing"][0]["balance_due"] == 12000.0
        assert profile["onboarding"] is None

    r = api.get("/api/patients/profile")
    assert r.status_code == 400
    assert r.json["error"] == "Provide patient_id, email or intake_form_id."

    assert api.get("/api/patients/profile?email=nobody@example.com").status_code == 404


def test_update_patient_details(app, api):
    intake_id = _sam_intake(api)
    api.login("owner@clinic.test")

    r = api.put(f"/api/patients/profile?intake_form_id={intake_id}", json={"phone": "555 222 3333", "last_name": "Park"})
    assert r.status_code == 200, r.json
    assert r.json["data"] == {"patient_id": None, "email": "sam@example.com"}

    r = api.put(f"/api/patients/profile?intake_form_id={intake_id}", json={"email": "jane@example.com"})
    assert r.status_code == 400
    assert r.json["error"] == "Another account already uses this email address."

    r = api.put(f"/api/patients/profile?intake_form_id={intake_id}", json={})
    assert r.json["error"] == "No fields to update"

    with session_scope(app) as s:
        intake = s.get(PatientIntakeForm, intake_id)
        assert intake.last_name == "Park"
        assert intake.phone_number == "555 222 3333"


def test_profile_is_owner_only(api):
    api.login("manager@clinic.test")
    assert api.get("/api/patients/profile?email=jane@example.com").status_code == 403
    assert api.put("/api/patients/profile?email=jane@example.com", json={"first_name": "J"}).status_code == 403


def test_credentials_email_is_blanked_after_retry(app, api):
    app.config["EMAIL_BACKEND"] = "resend"
    api.post("/api/intake", json=intake_payload(first_name="Sam", email="sam@example.com"))
    api.login("manager@clinic.test")
    r = api.post("/api/patients/accounts", json={"email": "sam@example.com", "first_name": "Sam", "last_name": "Lee"})
    assert r.status_code == 201, r.json
    assert r.json["data"]["email_sent"] is False
    api.logout()

    with session_scope(app) as s:
        # kept for the retry while undelivered
        msg = s.query(EmailMessage).filter(EmailMessage.template == "patient_credentials").one()
        assert msg.status == "failed"
        assert msg.scrub_on_send is True
        assert "sam@example.com" in msg.html_body
        message_id = msg.id
        confirmation = s.query(EmailMessage).filter(EmailMessage.template == "intake_confirmation").one()
        assert confirmation.scrub_on_send is False
        confirmation_id = confirmation.id

    app.config["EMAIL_BACKEND"] = "log"
    api.login("owner@clinic.test")
    for mid in (message_id, confirmation_id):
        r = api.post(f"/api/admin/emails/{mid}/retry")
        assert r.status_code == 200, r.json
        assert r.json["data"]["status"] == "sent"

    with session_scope(app) as s:
        assert s.get(EmailMessage, message_id).html_body == ""
        assert s.get(EmailMessage, confirmation_id).html_body != ""
