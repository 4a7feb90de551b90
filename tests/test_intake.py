from app.portal.db import session_scope
from app.portal.models import EmailMessage
from app.portal.modules.intake.models import PatientIntakeForm

from conftest import intake_payload


def test_public_intake_submission(app, api):
    r = api.post("/api/intake", json=intake_payload())
    assert r.status_code == 201, r.json
    intake_id = r.json["data"]["id"]

    with session_scope(app) as s:
        form = s.get(PatientIntakeForm, intake_id)
        assert form.email == "jane@example.com"
        assert form.patient_id is None
        assert form.filler_email is None
        emails = s.query(EmailMessage).filter(EmailMessage.template == "intake_confirmation").all()
        assert [m.recipient for m in emails] == ["jane@example.com"]
        assert emails[0].status == "sent"


def test_intake_filled_by_someone_else_emails_both(app, api):
    payload = intake_payload(
        filled_by="someone_else",
        filler_relationship="Sister",
        filler_first_name="Mary",
        filler_last_name="Doe",
        filler_email="mary@example.com",
        filler_phone="555-222-3333",
    )
    r = api.post("/api/intake", json=payload)
    assert r.status_code == 201, r.json

    with session_scope(app) as s:
        recipients = sorted(
            m.recipient for m in s.query(EmailMessage).filter(EmailMessage.template == "intake_confirmation")
        )
    assert recipients == ["jane@example.com", "mary@example.com"]


def test_intake_requires_filler_details(api):
    r = api.post("/api/intake", json=intake_payload(filled_by="someone_else"))
    assert r.status_code == 400
    assert r.json["error"] == "Please fill in all required information about yourself"


def test_intake_validation_messages(api):
    r = api.post("/api/intake", json=intake_payload(email="jane@localhost"))
    assert r.status_code == 400
    assert r.json["error"] == "Please enter a valid email address with a proper domain"

    r = api.post("/api/intake", json=intake_payload(privacy_policy_accepted=False))
    assert r.json["error"] == "You must accept the Privacy Policy to continue"

    r = api.post("/api/intake", json=intake_payload(program_type="spa"))
    assert r.json["error"] == "Please select a program type"

    r = api.post("/api/intake", json=intake_payload(phone_number="555-1234"))
    assert r.json["error"] == "Phone number must contain at least 10 digits"


def test_intake_submitted_by_patient_links_account(app, api):
    user = api.login("jane@example.com")
    r = api.post("/api/intake", json=intake_payload())
    assert r.status_code == 201
    with session_scope(app) as s:
        assert s.get(PatientIntakeForm, r.json["data"]["id"]).patient_id == user["id"]


def test_intake_list_is_staff_only(api):
    api.post("/api/intake", json=intake_payload())
    api.post("/api/intake", json=intake_payload(first_name="Sam", email="sam@example.com", program_type="neurological"))

    api.login("jane@example.com")
    assert api.get("/api/intake").status_code == 403
    api.logout()

    api.login("nurse@clinic.test")
    r = api.get("/api/intake")
    assert r.status_code == 200
    rows = r.json["data"]
    assert len(rows) == 2
    assert rows[0]["has_medical_history"] is False
    assert rows[0]["onboarding_status"] is None

    r = api.get("/api/intake?program_type=neurological")
    assert [row["first_name"] for row in r.json["data"]] == ["Sam"]

    r = api.get("/api/intake?q=sam@")
    assert len(r.json["data"]) == 1


def test_intake_detail_404(api):
    api.login("nurse@clinic.test")
    assert api.get("/api/intake/999").status_code == 404
