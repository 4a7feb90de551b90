from app.portal.db import session_scope
from app.portal.models import AuditEvent

from conftest import intake_payload


def test_failed_email_is_logged_and_retried(app, api):
    app.config["EMAIL_BACKEND"] = "resend"
    r = api.post("/api/intake", json=intake_payload())
    # a failed confirmation never fails the submission
    assert r.status_code == 201, r.json

    api.login("manager@clinic.test")
    r = api.get("/api/admin/emails?status=failed")
    assert r.status_code == 200
    failed = r.json["data"]
    assert [m["template"] for m in failed] == ["intake_confirmation"]
    assert failed[0]["error"] == "RESEND_API_KEY is not configured."
    assert "html_body" not in failed[0]

    r = api.get("/api/admin/status")
    assert r.json["data"]["failed_emails"] == 1
    assert r.json["data"]["email_configured"] is False

    # retry needs email.retry
    assert api.post(f"/api/admin/emails/{failed[0]['id']}/retry").status_code == 403
    api.logout()

    app.config["EMAIL_BACKEND"] = "log"
    api.login("owner@clinic.test")
    r = api.post(f"/api/admin/emails/{failed[0]['id']}/retry")
    assert r.status_code == 200, r.json
    assert r.json["data"]["status"] == "sent"
    assert r.json["data"]["attempts"] == 2

    r = api.post(f"/api/admin/emails/{failed[0]['id']}/retry")
    assert r.status_code == 400
    assert r.json["error"] == "Email was already sent."

    assert api.get("/api/admin/emails?status=failed").json["data"] == []
    r = api.get("/api/admin/emails?recipient=jane@")
    assert len(r.json["data"]) == 1

    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "email.retry").count() == 1


def test_unknown_email_retry_is_404(api):
    api.login("owner@clinic.test")
    assert api.post("/api/admin/emails/999/retry").status_code == 404
