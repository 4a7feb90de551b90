import pytest
from werkzeug.security import generate_password_hash

from app.portal import auth, create_app
from app.portal.db import session_scope
from app.portal.models import Base, User
from app.portal.rbac import ensure_roles

PASSWORD = "pw"

# email -> role key
USERS = {
    "owner@clinic.test": "owner",
    "manager@clinic.test": "manager",
    "nurse@clinic.test": "nurse",
    "doctor@clinic.test": "doctor",
    "jane@example.com": "patient",
}


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("EMAIL_BACKEND", "log")
    monkeypatch.setenv("APP_BASE_URL", "http://portal.test")
    monkeypatch.setenv("STAFF_NOTIFICATION_EMAIL", "staff@clinic.test")
    monkeypatch.setenv("CLINICAL_DIRECTOR_EMAIL", "director@clinic.test")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "RESEND_API_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        roles = ensure_roles(s)
        for email, role_key in USERS.items():
            first, _, _ = email.partition("@")
            u = User(
                email=email,
                password_hash=generate_password_hash(PASSWORD),
                first_name=first.capitalize(),
                last_name="Test",
                is_active=True,
            )
            u.roles.append(roles[role_key])
            s.add(u)

    # login rate limiting is per process
    auth._login_attempts.clear()
    return app


class Api:
    """Test client wrapper that logs in and sends the CSRF header on unsafe methods."""

    def __init__(self, client):
        self.client = client
        self.token = None

    def csrf(self) -> str:
        self.token = self.client.get("/auth/csrf").json["data"]["csrf_token"]
        return self.token

    def login(self, email: str, password: str = PASSWORD) -> dict:
        r = self.client.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.json
        self.token = r.json["data"]["csrf_token"]
        return r.json["data"]["user"]

    def logout(self) -> None:
        self.client.post("/auth/logout")

    def get(self, url, **kwargs):
        return self.client.get(url, **kwargs)

    def _send(self, method, url, **kwargs):
        if self.token is None:
            self.csrf()
        headers = dict(kwargs.pop("headers", None) or {})
        headers.setdefault("X-CSRF-Token", self.token)
        return getattr(self.client, method)(url, headers=headers, **kwargs)

    def post(self, url, **kwargs):
        return self._send("post", url, **kwargs)

    def put(self, url, **kwargs):
        return self._send("put", url, **kwargs)

    def patch(self, url, **kwargs):
        return self._send("patch", url, **kwargs)

    def delete(self, url, **kwargs):
        return self._send("delete", url, **kwargs)


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def api(client):
    return Api(client)


def intake_payload(**overrides) -> dict:
    data = {
        "filled_by": "self",
        "program_type": "addiction",
        "first_name": "Jane",
        "last_name": "Doe",
        "email": "jane@example.com",
        "phone_number": "(555) 123-4567",
        "date_of_birth": "1990-04-12",
        "gender": "female",
        "address_line_1": "12 Palm Street",
        "city": "Cancun",
        "country": "Mexico",
        "zip_code": "77500",
        "emergency_contact_first_name": "John",
        "emergency_contact_last_name": "Doe",
        "emergency_contact_phone": "555-987-6543",
        "emergency_contact_relationship": "Brother",
        "privacy_policy_accepted": True,
    }
    data.update(overrides)
    return data


def agreement_payload(**overrides) -> dict:
    data = {
        "patient_first_name": "Jane",
        "patient_last_name": "Doe",
        "patient_email": "jane@example.com",
        "patient_phone_number": "555-123-4567",
        "total_program_fee": "$12,000",
        "deposit_amount": "6000",
        "deposit_percentage": "50",
        "remaining_balance": "6000",
        "number_of_days": 14,
        "provider_signature_name": "Dr. Omar Calderon",
        "provider_signature_date": "2026-10-01",
    }
    data.update(overrides)
    return data


def consent_payload(**overrides) -> dict:
    data = {
        "first_name": "Jane",
        "last_name": "Doe",
        "date_of_birth": "1990-04-12",
        "phone_number": "555-123-4567",
        "email": "jane@example.com",
        "address": "12 Palm Street, Cancun",
        "consent_for_treatment": True,
        "risks_and_benefits": True,
        "pre_screening_health_assessment": True,
        "voluntary_participation": True,
        "confidentiality": True,
        "liability_release": True,
        "payment_collection": True,
        "signature_data": "data:image/png;base64,AAAA",
        "signature_date": "2026-10-02",
        "signature_name": "Jane Doe",
    }
    data.update(overrides)
    return data


RELEASE_FORM = {
    "full_name": "Jane Doe",
    "date_of_birth": "1990-04-12",
    "phone_number": "555-123-4567",
    "email": "jane@example.com",
    "emergency_contact_name": "John Doe",
    "emergency_contact_phone": "555-987-6543",
    "voluntary_participation": True,
    "medical_conditions_disclosed": True,
    "risks_acknowledged": True,
    "medical_supervision_agreed": True,
    "confidentiality_understood": True,
    "liability_waiver_accepted": True,
    "compliance_agreed": True,
    "consent_to_treatment": True,
    "signature_data": "data:image/png;base64,AAAA",
    "signature_date": "2026-10-03",
}

OUTING_CONSENT_FORM = {
    "first_name": "Jane",
    "last_name": "Doe",
    "date_of_birth": "1990-04-12",
    "email": "jane@example.com",
    "protocol_compliance": True,
    "proper_conduct": True,
    "no_harassment": True,
    "substance_prohibition": True,
    "financial_penalties_accepted": True,
    "additional_consequences_understood": True,
    "declaration_read_understood": True,
    "signature_data": "data:image/png;base64,AAAA",
    "signature_date": "2026-10-03",
}

INTERNAL_REGULATIONS_FORM = {
    "first_name": "Jane",
    "last_name": "Doe",
    "email": "jane@example.com",
    "phone_number": "555-123-4567",
    "regulations_read_understood": True,
    "rights_acknowledged": True,
    "obligations_acknowledged": True,
    "coexistence_rules_acknowledged": True,
    "sanctions_acknowledged": True,
    "acceptance_confirmed": True,
    "signature_data": "data:image/png;base64,AAAA",
    "signature_date": "2026-10-03",
}
