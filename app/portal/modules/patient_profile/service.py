"""
Patient profile: one view over everything the clinic holds for a patient, keyed by account,
email or intake application, plus contact edits and patient login creation.
"""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import func, or_
from werkzeug.security import generate_password_hash

from app.portal.audit import record_event
from app.portal.mailer import dispatch
from app.portal.utils import model_to_dict, normalize_email

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.models import User
    from app.portal.modules.patient_profile.schemas import PatientAccountCreate, PatientDetailsUpdate


def _linked_models():
    """(model, email column name) for every table carrying a patient's account link."""
    from app.portal.modules.consent.models import IbogaineConsentForm
    from app.portal.modules.intake.models import PatientIntakeForm
    from app.portal.modules.medical_history.models import MedicalHistoryForm
    from app.portal.modules.onboarding.models import PatientOnboarding
    from app.portal.modules.patient_management.models import PatientManagement
    from app.portal.modules.service_agreement.models import ServiceAgreement

    return (
        (PatientIntakeForm, "email"),
        (MedicalHistoryForm, "email"),
        (ServiceAgreement, "patient_email"),
        (IbogaineConsentForm, "email"),
        (PatientOnboarding, "email"),
        (PatientManagement, "email"),
    )


def _matching(s: "Session", model, email_attr: str, *, email: str, patient_id: int | None):
    clauses = [func.lower(getattr(model, email_attr)) == email] if email else []
    if patient_id is not None:
        clauses.append(model.patient_id == patient_id)
    if not clauses:
        return []
    return s.query(model).filter(or_(*clauses)).order_by(model.created_at.desc(), model.id.desc()).all()


def resolve_patient(
    s: "Session", *, patient_id: int | None = None, email: str | None = None, intake_form_id: int | None = None
) -> tuple["User | None", str]:
    """The patient's account (if any) and their email."""
    from app.portal.models import User
    from app.portal.modules.intake.models import PatientIntakeForm

    user = s.get(User, patient_id) if patient_id is not None else None
    if user is not None:
        return user, normalize_email(user.email)
    if intake_form_id is not None:
        intake = s.get(PatientIntakeForm, intake_form_id)
        if intake is not None:
            email = intake.email
            if intake.patient_id is not None:
                user = s.get(User, intake.patient_id)
    email = normalize_email(email)
    if user is None and email:
        user = s.query(User).filter(func.lower(User.email) == email).one_or_none()
    return user, email


def get_patient_profile(
    s: "Session", *, patient_id: int | None = None, email: str | None = None, intake_form_id: int | None = None
) -> dict[str, Any] | None:
    from app.portal.auth import user_to_dict
    from app.portal.modules.billing.service import billing_summary
    from app.portal.modules.consent.service import consent_to_dict
    from app.portal.modules.intake.service import intake_to_dict
    from app.portal.modules.medical_history.service import medical_history_to_dict
    from app.portal.modules.onboarding.service import onboarding_to_dict
    from app.portal.modules.patient_management.service import management_to_dict
    from app.portal.modules.service_agreement.service import agreement_to_dict

    user, email = resolve_patient(s, patient_id=patient_id, email=email, intake_form_id=intake_form_id)
    if user is None and not email:
        return None
    pid = user.id if user else None

    rows = {model.__tablename__: _matching(s, model, attr, email=email, patient_id=pid) for model, attr in _linked_models()}
    if user is None and not any(rows.values()):
        return None

    intakes = rows["patient_intake_forms"]
    histories = rows["medical_history_forms"]
    agreements = rows["service_agreements"]
    consents = rows["ibogaine_consent_forms"]
    onboardings = rows["patient_onboarding"]
    managements = rows["patient_management"]

    return {
        "email": email,
        "account": user_to_dict(user) if user else None,
        "intake": intake_to_dict(intakes[0]) if intakes else None,
        "intake_forms": [intake_to_dict(f) for f in intakes],
        "medical_history": medical_history_to_dict(histories[0]) if histories else None,
        "service_agreements": [agreement_to_dict(a) for a in agreements],
        "consent": consent_to_dict(consents[0]) if consents else None,
        "onboarding": onboarding_to_dict(onboardings[0], include_forms=True) if onboardings else None,
        "management": management_to_dict(managements[0]) if managements else None,
        "billing": [billing_summary(s, a.id) for a in agreements],
    }


def update_patient_details(
    s: "Session",
    data: "PatientDetailsUpdate",
    actor: "User",
    *,
    patient_id: int | None = None,
    email: str | None = None,
    intake_form_id: int | None = None,
) -> dict[str, Any]:
    """
    Update name / phone / email on the patient's account and newest intake application.
    """
    from app.portal.models import User
    from app.portal.modules.intake.service import find_intake_by_email

    changes = {k: v for k, v in data.model_dump().items() if v is not None}
    if not changes:
        raise ValueError("No fields to update")
    user, current_email = resolve_patient(s, patient_id=patient_id, email=email, intake_form_id=intake_form_id)
    intake = find_intake_by_email(s, current_email)
    if user is None and intake is None:
        raise ValueError("Patient not found.")

    new_email = normalize_email(changes.get("email"))
    if new_email and new_email != current_email:
        clash = s.query(User).filter(func.lower(User.email) == new_email).one_or_none()
        if clash is not None and (user is None or clash.id != user.id):
            raise ValueError("Another account already uses this email address.")

    now = datetime.utcnow()
    before: dict[str, Any] = {}
    if user is not None:
        before.update({"first_name": user.first_name, "last_name": user.last_name, "phone": user.phone, "email": user.email})
        for key in ("first_name", "last_name", "phone"):
            if key in changes:
                setattr(user, key, changes[key])
        if new_email:
            user.email = new_email
        user.updated_at = now
    if intake is not None:
        before.setdefault("first_name", intake.first_name)
        before.setdefault("last_name", intake.last_name)
        before.setdefault("phone", intake.phone_number)
        before.setdefault("email", intake.email)
        for key in ("first_name", "last_name"):
            if key in changes:
                setattr(intake, key, changes[key])
        if "phone" in changes:
            intake.phone_number = changes["phone"]
        if new_email:
            intake.email = new_email
        intake.updated_at = now

    record_event(
        s,
        actor=actor,
        action="patient.update_details",
        entity_type="User" if user is not None else "PatientIntakeForm",
        entity_id=str(user.id if user is not None else intake.id),
        metadata={"before": before, "after": changes},
    )
    return {"patient_id": user.id if user else None, "email": new_email or current_email}


def _temporary_password() -> str:
    return secrets.token_urlsafe(9)


def create_patient_account(s: "Session", data: "PatientAccountCreate", actor: "User") -> dict[str, Any]:
    """
    Create a patient login with a temporary password, link the patient's existing forms
    to it and email the credentials.
    """
    from app.portal.models import Role, User

    email = normalize_email(data.email)
    if s.query(User).filter(func.lower(User.email) == email).one_or_none() is not None:
        raise ValueError("An account with this email already exists.")
    role = s.query(Role).filter(Role.key == "patient").one_or_none()
    if role is None:
        raise RuntimeError("Patient role is missing. Run scripts/init_db.py.")

    password = _temporary_password()
    now = datetime.utcnow()
    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
        is_active=True,
        must_change_password=True,
        created_at=now,
        updated_at=now,
    )
    user.roles.append(role)
    s.add(user)
    s.flush()

    linked = 0
    for model, attr in _linked_models():
        linked += (
            s.query(model)
            .filter(func.lower(getattr(model, attr)) == email, model.patient_id.is_(None))
            .update({model.patient_id: user.id}, synchronize_session="fetch")
        )

    record_event(
        s,
        actor=actor,
        action="patient.create_account",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": email, "linked_records": linked, "intake_form_id": data.intake_form_id},
    )
    base = current_app.config.get("APP_BASE_URL") or ""
    msg = dispatch(
        s,
        template="patient_credentials",
        to=email,
        subject="Your Patient Portal Login",
        context={
            "recipient_name": data.first_name,
            "email": email,
            "temporary_password": password,
            "login_link": f"{base}/login",
        },
        entity_type="User",
        entity_id=str(user.id),
        scrub_on_send=True,
    )
    email_sent = bool(msg and msg.status == "sent")
    return {"user": user, "linked_records": linked, "email_sent": email_sent}
