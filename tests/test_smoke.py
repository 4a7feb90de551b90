def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_and_admin_access(api):
    # Anonymous gets 401, not a redirect
    r = api.get("/api/admin/status")
    assert r.status_code == 401
    assert r.json["success"] is False

    user = api.login("owner@clinic.test")
    assert "owner" in user["roles"]
    assert "admin.view" in user["permissions"]

    r = api.get("/api/admin/status")
    assert r.status_code == 200
    assert r.json["data"]["db_connected"] is True
    assert r.json["data"]["email_backend"] == "log"


def test_staff_without_admin_permission_is_forbidden(api):
    api.login("nurse@clinic.test")
    r = api.get("/api/admin/status")
    assert r.status_code == 403
    assert r.json["success"] is False


def test_invalid_credentials(api):
    r = api.client.post("/auth/login", json={"email": "owner@clinic.test", "password": "wrong"})
    assert r.status_code == 401
    assert r.json["error"] == "Invalid credentials."


def test_me_requires_login(api):
    assert api.get("/auth/me").status_code == 401
    api.login("doctor@clinic.test")
    r = api.get("/auth/me")
    assert r.status_code == 200
    assert r.json["data"]["user"]["email"] == "doctor@clinic.test"


def test_unsafe_request_without_csrf_token_is_rejected(api):
    api.login("owner@clinic.test")
    r = api.client.post("/api/leads/1/tasks", json={"title": "Call back"})
    assert r.status_code == 400
    assert r.json["error"] == "CSRF token missing or invalid."


def test_change_password(api):
    api.login("doctor@clinic.test")
    r = api.post("/auth/change-password", json={"current_password": "pw", "new_password": "short"})
    assert r.status_code == 400
    r = api.post("/auth/change-password", json={"current_password": "pw", "new_password": "a-much-longer-pw"})
    assert r.status_code == 200
    api.logout()
    api.login("doctor@clinic.test", "a-much-longer-pw")


def test_audit_log_records_login(api):
    api.login("owner@clinic.test")
    r = api.get("/api/admin/audit?action=auth.login")
    assert r.status_code == 200
    actions = {e["action"] for e in r.json["data"]}
    assert "auth.login" in actions

    r = api.get("/api/admin/audit?date_from=not-a-date")
    assert r.status_code == 400


def test_unknown_route_is_json_404(client):
    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert r.json == {"success": False, "error": "Not found."}


def test_login_rate_limited_after_five_failures(api):
    for _ in range(5):
        r = api.client.post("/auth/login", json={"email": "owner@clinic.test", "password": "wrong"})
        assert r.status_code == 401
    # even the right password is refused inside the window
    r = api.client.post("/auth/login", json={"email": "owner@clinic.test", "password": "pw"})
    assert r.status_code == 429
    assert r.json["error"] == "Too many login attempts. Please wait 5 minutes."
