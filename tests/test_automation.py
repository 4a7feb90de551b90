from app.portal.db import session_scope
from app.portal.models import EmailMessage
from app.portal.modules.automation.service import auto_create_onboarding
from app.portal.modules.consent.models import IbogaineConsentForm
from app.portal.modules.onboarding.models import PatientOnboarding

from conftest import agreement_payload, consent_payload, intake_payload

SIGNED = {
    "payment_method": "wire transfer",
    "patient_signature_name": "Jane Doe",
    "patient_signature_first_name": "Jane",
    "patient_signature_last_name": "Doe",
    "patient_signature_date": "2026-10-02",
    "patient_signature_data": "data:image/png;base64,AAAA",
}


def test_agreement_to_consent_to_onboarding(app, api):
    intake_id = api.post("/api/intake", json=intake_payload()).json["data"]["id"]

    api.login("owner@clinic.test")
    agreement_id = api.post(
        "/api/service-agreements", json=agreement_payload(intake_form_id=intake_id)
    ).json["data"]["id"]
    api.logout()

    # Signing the agreement activates a consent form for the same patient.
    api.login("jane@example.com")
    r = api.post(f"/api/service-agreements/{agreement_id}/submit", json=SIGNED)
    assert r.status_code == 200, r.json
    automation = r.json["data"]["automation"]
    assert automation["action"] == "created_new"
    consent_id = automation["consent_id"]

    r = api.get("/api/patient/ibogaine-consent")
    assert r.status_code == 200
    consent = r.json["data"]
    assert consent["id"] == consent_id
    assert consent["is_activated"] is True
    assert consent["intake_form_id"] == intake_id
    assert consent["facilitator_doctor_name"] == "Dr. Omar Calderon"
    # prefilled from the intake application
    assert consent["phone_number"] == "(555) 123-4567"
    assert consent["address"].startswith("12 Palm Street")

    # Completing the consent moves the patient into onboarding.
    r = api.post("/api/ibogaine-consent", json=consent_payload(intake_form_id=intake_id))
    assert r.status_code == 201, r.json
    assert r.json["data"]["consent"]["id"] == consent_id
    automation = r.json["data"]["automation"]
    assert automation["action"] == "created_new"

    r = api.get("/api/patient/onboarding")
    assert r.status_code == 200
    onboarding = r.json["data"]
    assert onboarding["id"] == automation["onboarding_id"]
    assert onboarding["status"] == "in_progress"
    assert onboarding["program_type"] == "addiction"
    assert onboarding["forms_completed"] == 0
    assert set(onboarding["forms"]) == {"release", "outing-consent", "internal-regulations"}
    assert onboarding["forms"]["release"]["full_name"] == "Jane Doe"

    with session_scope(app) as s:
        templates = {m.template: m for m in s.query(EmailMessage).all()}
        assert templates["consent_confirmation"].recipient == "jane@example.com"
        assert templates["onboarding_forms"].recipient == "jane@example.com"
        staff = templates["staff_onboarding_notification"]
        assert staff.recipient == "staff@clinic.test"
        assert staff.subject == "Patient Automatically Moved to Onboarding - Jane Doe"
        assert s.query(PatientOnboarding).count() == 1


def test_consent_cannot_be_completed_twice(api):
    api.login("jane@example.com")
    r = api.post("/api/ibogaine-consent", json=consent_payload())
    assert r.status_code == 201, r.json
    r = api.post("/api/ibogaine-consent", json=consent_payload())
    assert r.status_code == 400
    assert r.json["error"] == "This consent form has already been completed."


def test_second_onboarding_is_not_created(app, api):
    api.login("owner@clinic.test")
    first = api.post("/api/ibogaine-consent", json=consent_payload()).json["data"]["automation"]
    assert first["action"] == "created_new"

    with app.app_context():
        with session_scope(app) as s:
            second = auto_create_onboarding(s, email="JANE@example.com", first_name="Jane", last_name="Doe")
    assert second == {"success": True, "action": "already_exists", "onboarding_id": first["onboarding_id"]}

    with session_scope(app) as s:
        assert s.query(PatientOnboarding).count() == 1
        assert s.query(IbogaineConsentForm).count() == 1


def test_patient_cannot_submit_consent_for_someone_else(api):
    api.login("jane@example.com")
    r = api.post("/api/ibogaine-consent", json=consent_payload(email="sam@example.com"))
    assert r.status_code == 403


def test_consent_requires_every_acknowledgement(api):
    api.login("jane@example.com")
    r = api.post("/api/ibogaine-consent", json=consent_payload(liability_release=False))
    assert r.status_code == 400
    assert r.json["error"] == "You must accept the liability release"


def test_manual_consent_activation_for_intake(api):
    intake_id = api.post("/api/intake", json=intake_payload()).json["data"]["id"]
    api.login("manager@clinic.test")
    r = api.post(f"/api/intake/{intake_id}/ibogaine-consent/activate")
    assert r.status_code == 200, r.json
    assert r.json["data"]["action"] == "created_new"

    r = api.post(f"/api/intake/{intake_id}/ibogaine-consent/activate")
    assert r.json["data"]["action"] == "already_activated"

    consent_id = r.json["data"]["consent_id"]
    api.post(f"/api/ibogaine-consent/{consent_id}/deactivate")
    r = api.post(f"/api/intake/{intake_id}/ibogaine-consent/activate")
    assert r.json["data"]["action"] == "activated_existing"


def test_form_defaults_drive_facilitator_name(api):
    api.login("owner@clinic.test")
    r = api.put("/api/form-defaults/ibogaine-consent", json={"facilitator_doctor_name": "Dr. Ana Ruiz"})
    assert r.status_code == 200
    assert api.get("/api/form-defaults/ibogaine-consent").json["data"]["facilitator_doctor_name"] == "Dr. Ana Ruiz"

    r = api.post("/api/ibogaine-consent", json=consent_payload())
    assert r.json["data"]["consent"]["facilitator_doctor_name"] == "Dr. Ana Ruiz"
