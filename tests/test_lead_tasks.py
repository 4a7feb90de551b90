from app.portal.db import session_scope
from app.portal.models import User

from conftest import intake_payload


def _user_id(app, email: str) -> int:
    with session_scope(app) as s:
        return s.query(User).filter(User.email == email).one().id


def _lead(api) -> int:
    return api.post("/api/intake", json=intake_payload()).json["data"]["id"]


def test_assigned_task_notifies_staff_member(app, api):
    intake_id = _lead(api)
    nurse_id = _user_id(app, "nurse@clinic.test")

    api.login("owner@clinic.test")
    staff = api.get("/api/staff/assignable").json["data"]
    assert {"id": nurse_id, "name": "Nurse Test"} in staff
    assert _user_id(app, "jane@example.com") not in [s["id"] for s in staff]

    r = api.post(
        f"/api/leads/{intake_id}/tasks",
        json={"title": "Call about deposit", "due_date": "2026-10-25", "assigned_to_user_id": nurse_id},
    )
    assert r.status_code == 201, r.json
    task = r.json["data"]
    assert task["status"] == "todo"
    assert task["assigned_to_name"] == "Nurse Test"
    assert task["created_by_name"] == "Owner Test"
    api.logout()

    api.login("nurse@clinic.test")
    notes = api.get("/api/notifications").json["data"]
    assert len(notes) == 1
    assert notes[0]["title"] == "Task assigned: Call about deposit"
    assert notes[0]["read_at"] is None

    r = api.post(f"/api/notifications/{notes[0]['id']}/read")
    assert r.status_code == 200
    assert r.json["data"]["read_at"] is not None

    r = api.post(f"/api/tasks/{task['id']}/status", json={"status": "done"})
    assert r.json["data"]["status"] == "done"
    r = api.post(f"/api/tasks/{task['id']}/status", json={"status": "blocked"})
    assert r.status_code == 400
    assert r.json["error"] == "Status must be one of: todo, in_progress, done"

    assert [t["id"] for t in api.get(f"/api/leads/{intake_id}/tasks").json["data"]] == [task["id"]]


def test_task_rules(app, api):
    intake_id = _lead(api)
    patient_id = _user_id(app, "jane@example.com")
    api.login("manager@clinic.test")

    r = api.post(f"/api/leads/{intake_id}/tasks", json={"title": "Follow up", "assigned_to_user_id": patient_id})
    assert r.status_code == 400
    assert r.json["error"] == "Tasks can only be assigned to staff members."

    r = api.post(f"/api/leads/{intake_id}/tasks", json={"title": " "})
    assert r.json["error"] == "Title is required"

    r = api.post("/api/leads/999/tasks", json={"title": "Follow up"})
    assert r.json["error"] == "Intake form not found."

    task_id = api.post(f"/api/leads/{intake_id}/tasks", json={"title": "Follow up"}).json["data"]["id"]
    r = api.patch(f"/api/tasks/{task_id}", json={})
    assert r.json["error"] == "No fields to update"
    r = api.patch(f"/api/tasks/{task_id}", json={"description": "Ask about flights"})
    assert r.json["data"]["description"] == "Ask about flights"

    assert api.delete(f"/api/tasks/{task_id}").status_code == 200
    assert api.get(f"/api/leads/{intake_id}/tasks").json["data"] == []


def test_lead_note(api):
    intake_id = _lead(api)
    api.login("doctor@clinic.test")
    r = api.get(f"/api/leads/{intake_id}/note")
    assert r.json["data"] == {"intake_form_id": intake_id, "notes": ""}

    r = api.put(f"/api/leads/{intake_id}/note", json={"notes": "Prefers WhatsApp"})
    assert r.status_code == 200
    api.put(f"/api/leads/{intake_id}/note", json={"notes": "Prefers email"})
    assert api.get(f"/api/leads/{intake_id}/note").json["data"]["notes"] == "Prefers email"


def test_patient_cannot_manage_tasks(api):
    intake_id = _lead(api)
    api.login("jane@example.com")
    assert api.get(f"/api/leads/{intake_id}/tasks").status_code == 403
    assert api.post(f"/api/leads/{intake_id}/tasks", json={"title": "x"}).status_code == 403
