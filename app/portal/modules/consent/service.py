from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import func, or_

from app.portal.audit import record_event
from app.portal.mailer import dispatch
from app.portal.rbac import is_staff, owns_record, user_has_permission
from app.portal.utils import model_to_dict, normalize_email

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.models import User
    from app.portal.modules.consent.models import IbogaineConsentForm
    from app.portal.modules.consent.schemas import ConsentAdminUpdate, ConsentSubmit

logger = logging.getLogger(__name__)

CONSENT_FORM_TYPE = "ibogaine_consent"
NOT_AVAILABLE = "This form is not yet available. Please wait for admin to create and activate it."
NOT_ACTIVATED = "This form is not yet activated. Please wait for admin activation."


def consent_to_dict(consent: "IbogaineConsentForm") -> dict[str, Any]:
    d = model_to_dict(consent)
    d["is_completed"] = consent.is_completed
    return d


def get_form_defaults(s: "Session", form_type: str = CONSENT_FORM_TYPE) -> dict[str, Any]:
    from app.portal.modules.consent.models import FormDefault

    row = s.query(FormDefault).filter(FormDefault.form_type == form_type).one_or_none()
    return dict(row.default_values or {}) if row else {}


def default_facilitator_name(s: "Session") -> str:
    name = (get_form_defaults(s).get("facilitator_doctor_name") or "").strip()
    return name or current_app.config.get("DEFAULT_FACILITATOR_NAME") or ""


def set_form_defaults(s: "Session", values: dict[str, Any], actor: "User", form_type: str = CONSENT_FORM_TYPE) -> dict:
    from app.portal.modules.consent.models import FormDefault

    row = s.query(FormDefault).filter(FormDefault.form_type == form_type).one_or_none()
    if not row:
        row = FormDefault(form_type=form_type, default_values={})
        s.add(row)
    merged = {**(row.default_values or {}), **values}
    row.default_values = merged
    row.updated_at = datetime.utcnow()
    row.updated_by_user_id = actor.id
    record_event(
        s,
        actor=actor,
        action="form_defaults.update",
        entity_type="FormDefault",
        entity_id=form_type,
        metadata=values,
    )
    return merged


def find_consent(
    s: "Session",
    *,
    patient_id: int | None = None,
    intake_form_id: int | None = None,
    email: str | None = None,
    activated_only: bool = False,
) -> "IbogaineConsentForm | None":
    """Newest consent form matching any of: patient account, intake application, email."""
    from app.portal.modules.consent.models import IbogaineConsentForm

    clauses = []
    if patient_id is not None:
        clauses.append(IbogaineConsentForm.patient_id == patient_id)
    if intake_form_id is not None:
        clauses.append(IbogaineConsentForm.intake_form_id == intake_form_id)
    email = normalize_email(email)
    if email:
        clauses.append(func.lower(IbogaineConsentForm.email) == email)
    if not clauses:
        return None
    q = s.query(IbogaineConsentForm).filter(or_(*clauses))
    if activated_only:
        q = q.filter(IbogaineConsentForm.is_activated.is_(True))
    return q.order_by(IbogaineConsentForm.created_at.desc(), IbogaineConsentForm.id.desc()).first()


def consent_link(consent: "IbogaineConsentForm") -> str:
    base = current_app.config.get("APP_BASE_URL") or ""
    link = f"{base}/patient/ibogaine-consent"
    if consent.intake_form_id:
        link += f"?intake_form_id={consent.intake_form_id}"
    return link


def send_consent_link(s: "Session", consent: "IbogaineConsentForm") -> None:
    dispatch(
        s,
        template="form_ready",
        to=consent.email,
        subject="Your Ibogaine Therapy Consent Form Is Ready",
        context={
            "recipient_name": consent.first_name,
            "form_name": "Ibogaine Therapy Consent Form",
            "form_link": consent_link(consent),
        },
        entity_type="IbogaineConsentForm",
        entity_id=str(consent.id),
    )


def check_activation(s: "Session", user: "User") -> dict[str, Any]:
    """
    The patient's consent form with prefill values, or a message saying why it is not available yet.
    """
    from app.portal.modules.intake.service import find_intake_by_email

    consent = find_consent(s, patient_id=user.id, email=user.email)
    if not consent:
        raise ValueError(NOT_AVAILABLE)
    if not consent.is_activated:
        raise ValueError(NOT_ACTIVATED)
    data = consent_to_dict(consent)
    intake = find_intake_by_email(s, consent.email)
    if intake:
        for key in ("phone_number", "date_of_birth"):
            if not data.get(key):
                v = getattr(intake, key)
                data[key] = v.isoformat() if hasattr(v, "isoformat") else v
        if not data.get("address"):
            parts = [intake.address_line_1, intake.address_line_2, intake.city, intake.zip_code, intake.country]
            data["address"] = ", ".join(p for p in parts if p)
    if not data.get("facilitator_doctor_name"):
        data["facilitator_doctor_name"] = default_facilitator_name(s)
    return data


def check_access(user: "User", consent: "IbogaineConsentForm") -> None:
    if is_staff(user):
        return
    if not owns_record(user, patient_id=consent.patient_id, email=consent.email):
        raise PermissionError("You do not have access to this consent form.")
    if not consent.is_activated:
        raise ValueError(NOT_ACTIVATED)


def submit_consent(s: "Session", data: "ConsentSubmit", actor: "User") -> dict[str, Any]:
    """
    Complete the consent form. An activated form on file is filled in; otherwise a new,
    already-activated form is created. Completion moves the patient into onboarding.
    """
    from app.portal.modules.automation.service import auto_create_onboarding
    from app.portal.modules.consent.models import IbogaineConsentForm

    is_patient = user_has_permission(actor, "patient.portal") and not is_staff(actor)
    if is_patient and not owns_record(actor, patient_id=None, email=data.email):
        raise PermissionError("You can only submit your own consent form.")

    consent = find_consent(
        s,
        patient_id=actor.id if is_patient else None,
        intake_form_id=data.intake_form_id,
        email=data.email,
        activated_only=True,
    )
    if consent and is_patient:
        check_access(actor, consent)
    if consent and consent.is_completed:
        raise ValueError("This consent form has already been completed.")

    now = datetime.utcnow()
    values = data.model_dump()
    if consent is None:
        consent = IbogaineConsentForm(
            is_activated=True,
            activated_at=now,
            activated_by_user_id=None if is_patient else actor.id,
            created_at=now,
        )
        s.add(consent)
    for key, value in values.items():
        if key == "intake_form_id" and value is None:
            continue
        if key == "facilitator_doctor_name" and not value:
            value = consent.facilitator_doctor_name or default_facilitator_name(s)
        setattr(consent, key, value)
    if consent.patient_id is None and is_patient:
        consent.patient_id = actor.id
    consent.completed_at = now
    consent.updated_at = now
    s.flush()

    record_event(
        s,
        actor=actor,
        action="ibogaine_consent.complete",
        entity_type="IbogaineConsentForm",
        entity_id=str(consent.id),
        metadata={"email": consent.email, "intake_form_id": consent.intake_form_id},
    )
    dispatch(
        s,
        template="consent_confirmation",
        to=consent.email,
        subject="Ibogaine Therapy Consent Form Received",
        context={"recipient_name": consent.first_name},
        entity_type="IbogaineConsentForm",
        entity_id=str(consent.id),
    )

    automation = auto_create_onboarding(
        s,
        email=consent.email,
        first_name=consent.first_name,
        last_name=consent.last_name,
        intake_form_id=consent.intake_form_id,
        patient_id=consent.patient_id,
        actor=actor,
    )
    return {"consent": consent, "automation": automation}


def update_admin_fields(
    s: "Session", consent: "IbogaineConsentForm", data: "ConsentAdminUpdate", actor: "User"
) -> "IbogaineConsentForm":
    changes: dict[str, Any] = {}
    for key, value in data.model_dump().items():
        if key == "facilitator_doctor_name" and value is None:
            continue
        old = getattr(consent, key)
        if old != value:
            changes[key] = {"old": str(old) if old is not None else None, "new": str(value)}
            setattr(consent, key, value)
    if changes:
        consent.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=actor,
            action="ibogaine_consent.admin_update",
            entity_type="IbogaineConsentForm",
            entity_id=str(consent.id),
            metadata={"changes": changes},
        )
    return consent


def set_activation(s: "Session", consent: "IbogaineConsentForm", active: bool, actor: "User") -> "IbogaineConsentForm":
    if consent.is_activated == active:
        return consent
    now = datetime.utcnow()
    consent.is_activated = active
    consent.activated_at = now if active else None
    consent.activated_by_user_id = actor.id if active else None
    consent.updated_at = now
    record_event(
        s,
        actor=actor,
        action="ibogaine_consent.activate" if active else "ibogaine_consent.deactivate",
        entity_type="IbogaineConsentForm",
        entity_id=str(consent.id),
    )
    if active and not consent.is_completed:
        send_consent_link(s, consent)
    return consent
