import io

from app.portal.db import session_scope
from app.portal.models import EmailMessage

from conftest import INTERNAL_REGULATIONS_FORM, OUTING_CONSENT_FORM, RELEASE_FORM, intake_payload

FORMS = {
    "release": RELEASE_FORM,
    "outing-consent": OUTING_CONSENT_FORM,
    "internal-regulations": INTERNAL_REGULATIONS_FORM,
}


def _onboard(api, **intake_overrides) -> int:
    intake_id = api.post("/api/intake", json=intake_payload(**intake_overrides)).json["data"]["id"]
    api.login("manager@clinic.test")
    r = api.post("/api/onboarding", json={"intake_form_id": intake_id})
    assert r.status_code == 201, r.json
    return r.json["data"]["id"]


def _pdf(name="result.pdf"):
    return (io.BytesIO(b"%PDF-1.4 test"), name, "application/pdf")


def test_move_to_onboarding_prefills_from_intake(api):
    onboarding_id = _onboard(api)
    r = api.get(f"/api/onboarding/{onboarding_id}")
    data = r.json["data"]
    assert data["email"] == "jane@example.com"
    assert data["emergency_contact_name"] == "John Doe"
    assert data["forms"]["internal-regulations"]["phone_number"] == "(555) 123-4567"

    r = api.post("/api/onboarding", json={"email": "JANE@example.com"})
    assert r.status_code == 400
    assert r.json["error"] == "Patient is already in onboarding."

    r = api.post("/api/onboarding", json={})
    assert r.status_code == 400

    r = api.get("/api/onboarding/status?email=jane@example.com")
    assert r.json["data"] == {"in_onboarding": True, "onboarding_id": onboarding_id, "status": "in_progress"}


def test_patient_completes_forms_then_staff_moves_to_management(app, api):
    onboarding_id = _onboard(api)
    api.logout()

    api.login("jane@example.com")
    r = api.post(f"/api/onboarding/{onboarding_id}/forms/release", json={**RELEASE_FORM, "risks_acknowledged": False})
    assert r.status_code == 400
    assert r.json["error"] == "You must acknowledge the risks"

    for key, payload in FORMS.items():
        r = api.post(f"/api/onboarding/{onboarding_id}/forms/{key}", json=payload)
        assert r.status_code == 201, r.json
    assert r.json["data"]["onboarding"]["forms_completed"] == 3
    assert r.json["data"]["onboarding"]["status"] == "completed"

    # patients cannot move themselves
    assert api.post(f"/api/onboarding/{onboarding_id}/move-to-management").status_code == 403
    api.logout()

    api.login("manager@clinic.test")
    r = api.post(f"/api/onboarding/{onboarding_id}/move-to-management")
    assert r.status_code == 201, r.json
    assert r.json["data"]["onboarding"]["status"] == "moved_to_management"
    management = r.json["data"]["management"]
    assert management["status"] == "active"
    assert management["program_type"] == "addiction"

    r = api.post(f"/api/onboarding/{onboarding_id}/move-to-management")
    assert r.status_code == 400
    assert r.json["error"] == "Patient is already in management"

    r = api.get("/api/patient-management?status=active")
    assert [m["id"] for m in r.json["data"]] == [management["id"]]

    r = api.post(f"/api/patient-management/{management['id']}/discharge", json={"discharge_notes": "Completed program"})
    assert r.status_code == 200, r.json
    assert r.json["data"]["status"] == "discharged"
    assert r.json["data"]["actual_departure_date"] is not None

    r = api.post(f"/api/patient-management/{management['id']}/discharge", json={})
    assert r.status_code == 400
    assert r.json["error"] == "Patient has already been discharged."


def test_move_to_management_requires_all_forms(api):
    onboarding_id = _onboard(api)
    api.post(f"/api/onboarding/{onboarding_id}/forms/release", json=RELEASE_FORM)
    r = api.post(f"/api/onboarding/{onboarding_id}/move-to-management")
    assert r.status_code == 400
    assert r.json["error"] == "All 3 forms must be completed before moving to patient management"


def test_other_patient_cannot_open_onboarding(api):
    onboarding_id = _onboard(api, first_name="Sam", email="sam@example.com")
    api.logout()
    api.login("jane@example.com")
    assert api.get(f"/api/onboarding/{onboarding_id}").status_code == 403
    r = api.post(f"/api/onboarding/{onboarding_id}/forms/release", json=RELEASE_FORM)
    assert r.status_code == 403


def test_staff_partial_edit_and_mark_completed(api):
    onboarding_id = _onboard(api)
    url = f"/api/onboarding/{onboarding_id}/forms/outing-consent"

    r = api.patch(url, json={"date_of_outing": "2026-11-01"})
    assert r.status_code == 200, r.json
    assert r.json["data"]["form"]["date_of_outing"] == "2026-11-01"
    assert r.json["data"]["form"]["is_completed"] is False

    r = api.patch(url, json={"proper_conduct": "yes"})
    assert r.status_code == 400
    assert r.json["error"] == "proper_conduct must be true or false"

    # merged record still misses acknowledgements
    r = api.patch(url, json={"signature_data": "sig", "mark_completed": True})
    assert r.status_code == 400

    r = api.patch(url, json={**OUTING_CONSENT_FORM, "mark_completed": True})
    assert r.status_code == 200, r.json
    assert r.json["data"]["form"]["is_completed"] is True
    assert r.json["data"]["onboarding"]["forms_completed"] == 1


def test_checklist_and_details(api):
    onboarding_id = _onboard(api)
    r = api.patch(f"/api/onboarding/{onboarding_id}/status", json={"payment_received": True})
    assert r.status_code == 200
    assert r.json["data"]["payment_received"] is True

    r = api.patch(f"/api/onboarding/{onboarding_id}/status", json={})
    assert r.json["error"] == "No fields to update"

    r = api.patch(f"/api/onboarding/{onboarding_id}/details", json={"priority": "urgent", "notes": "Call family"})
    assert r.status_code == 200
    assert r.json["data"]["priority"] == "urgent"

    r = api.patch(f"/api/onboarding/{onboarding_id}/details", json={"priority": "whenever"})
    assert r.json["error"] == "Priority must be one of: low, normal, high, urgent"


def test_medical_documents_notify_once_both_are_uploaded(app, api):
    onboarding_id = _onboard(api)
    api.logout()
    api.login("jane@example.com")

    url = f"/api/onboarding/{onboarding_id}/documents"
    r = api.post(url, data={"document_type": "xray", "file": _pdf()}, content_type="multipart/form-data")
    assert r.status_code == 400

    r = api.post(url, data={"document_type": "ekg", "file": _pdf("ekg.pdf")}, content_type="multipart/form-data")
    assert r.status_code == 201, r.json
    assert r.json["data"]["document"]["document_type"] == "ekg"

    with session_scope(app) as s:
        assert s.query(EmailMessage).filter(EmailMessage.template == "tapering_ready_notification").count() == 0

    r = api.post(url, data={"document_type": "bloodwork", "file": _pdf("labs.pdf")}, content_type="multipart/form-data")
    assert r.status_code == 201, r.json
    # replacing a document does not notify again
    r = api.post(url, data={"document_type": "ekg", "file": _pdf("ekg2.pdf")}, content_type="multipart/form-data")
    assert r.status_code == 201, r.json

    with session_scope(app) as s:
        msgs = s.query(EmailMessage).filter(EmailMessage.template == "tapering_ready_notification").all()
        assert [m.recipient for m in msgs] == ["director@clinic.test"]
        assert msgs[0].subject == "Client Ready for Tapering Schedule: Jane Doe"

    r = api.get("/api/patient/onboarding")
    assert sorted(d["document_type"] for d in r.json["data"]["documents"]) == ["bloodwork", "ekg"]


def test_delete_onboarding(api):
    onboarding_id = _onboard(api)
    r = api.delete(f"/api/onboarding/{onboarding_id}")
    assert r.status_code == 200
    assert api.get(f"/api/onboarding/{onboarding_id}").status_code == 404


def test_onboarding_create_validates_body(api):
    api.login("manager@clinic.test")
    r = api.post("/api/onboarding", json={"intake_form_id": "abc"})
    assert r.status_code == 400
    assert r.json["error"] == "Intake form id must be a positive whole number"

    r = api.post("/api/onboarding", json={"intake_form_id": -3})
    assert r.status_code == 400
    assert r.json["error"] == "Intake form id must be a positive whole number"

    r = api.post("/api/onboarding", json={"intake_form_id": "", "email": "  "})
    assert r.status_code == 400
    assert r.json["error"] == "Either intake_form_id or email is required."


def test_update_management_record(api):
    onboarding_id = _onboard(api)
    for key, payload in FORMS.items():
        api.post(f"/api/onboarding/{onboarding_id}/forms/{key}", json=payload)
    management_id = api.post(f"/api/onboarding/{onboarding_id}/move-to-management").json["data"]["management"]["id"]

    r = api.patch(
        f"/api/patient-management/{management_id}",
        json={"notes": "Prefers a ground-floor room", "priority": "high", "expected_departure_date": "2026-11-30"},
    )
    assert r.status_code == 200, r.json
    data = r.json["data"]
    assert data["notes"] == "Prefers a ground-floor room"
    assert data["priority"] == "high"
    assert data["expected_departure_date"] == "2026-11-30"

    r = api.patch(f"/api/patient-management/{management_id}", json={})
    assert r.status_code == 400
    assert r.json["error"] == "No fields to update"

    r = api.patch(f"/api/patient-management/{management_id}", json={"priority": "asap"})
    assert r.status_code == 400
    assert r.json["error"] == "Priority must be one of: low, normal, high, urgent"

    r = api.patch(f"/api/patient-management/{management_id}", json={"expected_departure_date": "30/11/2026"})
    assert r.status_code == 400
    assert r.json["error"] == "Date must be in YYYY-MM-DD format"

    assert api.get(f"/api/patient-management/{management_id}").json["data"]["priority"] == "high"
    api.logout()

    api.login("nurse@clinic.test")
    assert api.patch(f"/api/patient-management/{management_id}", json={"priority": "low"}).status_code == 403
