from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import func, or_

from app.portal.audit import record_event
from app.portal.mailer import dispatch
from app.portal.rbac import user_has_permission
from app.portal.utils import model_to_dict, normalize_email

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.models import User
    from app.portal.modules.intake.models import PatientIntakeForm
    from app.portal.modules.intake.schemas import IntakeSubmit

logger = logging.getLogger(__name__)


def intake_to_dict(form: "PatientIntakeForm") -> dict[str, Any]:
    return model_to_dict(form, exclude=("user_agent",))


def find_intake_by_email(s: "Session", email: str | None) -> "PatientIntakeForm | None":
    """Newest intake application for an email (case-insensitive)."""
    from app.portal.modules.intake.models import PatientIntakeForm

    email = normalize_email(email)
    if not email:
        return None
    return (
        s.query(PatientIntakeForm)
        .filter(func.lower(PatientIntakeForm.email) == email)
        .order_by(PatientIntakeForm.created_at.desc(), PatientIntakeForm.id.desc())
        .first()
    )


def submit_intake_form(
    s: "Session",
    data: "IntakeSubmit",
    *,
    actor: "User | None" = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> "PatientIntakeForm":
    from app.portal.modules.intake.models import PatientIntakeForm

    now = datetime.utcnow()
    fields = data.model_dump()
    if fields["filled_by"] == "self":
        for key in ("filler_relationship", "filler_first_name", "filler_last_name", "filler_email", "filler_phone"):
            fields[key] = None
    form = PatientIntakeForm(
        **fields,
        patient_id=actor.id if user_has_permission(actor, "patient.portal") else None,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        created_at=now,
        updated_at=now,
    )
    s.add(form)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="intake.submit",
        entity_type="PatientIntakeForm",
        entity_id=str(form.id),
        metadata={"email": form.email, "program_type": form.program_type, "filled_by": form.filled_by},
    )

    context = {
        "patient_name": form.full_name,
        "scheduling_link": current_app.config.get("SCHEDULING_LINK") or "",
    }
    dispatch(
        s,
        template="intake_confirmation",
        to=form.email,
        subject="Thank You for Your Application",
        context={**context, "recipient_name": form.first_name},
        entity_type="PatientIntakeForm",
        entity_id=str(form.id),
    )
    if form.filled_by == "someone_else" and form.filler_email:
        dispatch(
            s,
            template="intake_confirmation",
            to=form.filler_email,
            subject="Thank You for Your Application",
            context={**context, "recipient_name": form.filler_first_name or "there"},
            entity_type="PatientIntakeForm",
            entity_id=str(form.id),
        )
    return form


def list_intake_forms(
    s: "Session",
    *,
    search: str | None = None,
    program_type: str | None = None,
    limit: int = 200,
) -> list[dict[str, Any]]:
    """
    Pipeline view: newest applications first, each flagged with how far the patient has progressed.
    """
    from app.portal.modules.consent.models import IbogaineConsentForm
    from app.portal.modules.intake.models import PatientIntakeForm
    from app.portal.modules.medical_history.models import MedicalHistoryForm
    from app.portal.modules.onboarding.models import PatientOnboarding
    from app.portal.modules.service_agreement.models import ServiceAgreement

    q = s.query(PatientIntakeForm)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(
            or_(
                PatientIntakeForm.first_name.ilike(like),
                PatientIntakeForm.last_name.ilike(like),
                PatientIntakeForm.email.ilike(like),
                PatientIntakeForm.phone_number.ilike(like),
            )
        )
    if program_type:
        q = q.filter(PatientIntakeForm.program_type == program_type)
    forms = q.order_by(PatientIntakeForm.created_at.desc(), PatientIntakeForm.id.desc()).limit(limit).all()
    if not forms:
        return []

    ids = [f.id for f in forms]
    emails = {normalize_email(f.email) for f in forms}
    with_history = {
        row[0]
        for row in s.query(MedicalHistoryForm.intake_form_id).filter(MedicalHistoryForm.intake_form_id.in_(ids)).all()
    }
    agreements_done = {
        row[0]
        for row in s.query(ServiceAgreement.intake_form_id)
        .filter(ServiceAgreement.intake_form_id.in_(ids), ServiceAgreement.completed_at.isnot(None))
        .all()
    }
    consents_done = {
        row[0]
        for row in s.query(IbogaineConsentForm.intake_form_id)
        .filter(IbogaineConsentForm.intake_form_id.in_(ids), IbogaineConsentForm.completed_at.isnot(None))
        .all()
    }
    onboarding_status = {
        normalize_email(row[0]): row[1]
        for row in s.query(PatientOnboarding.email, PatientOnboarding.status)
        .filter(func.lower(PatientOnboarding.email).in_(emails))
        .all()
    }

    out = []
    for f in forms:
        d = intake_to_dict(f)
        d["has_medical_history"] = f.id in with_history
        d["service_agreement_completed"] = f.id in agreements_done
        d["consent_completed"] = f.id in consents_done
        d["onboarding_status"] = onboarding_status.get(normalize_email(f.email))
        out.append(d)
    return out
