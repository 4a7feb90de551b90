from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.portal.audit import record_event
from app.portal.mailer import dispatch
from app.portal.rbac import user_has_permission
from app.portal.utils import model_to_dict

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.models import User
    from app.portal.modules.medical_history.models import MedicalHistoryForm
    from app.portal.modules.medical_history.schemas import MedicalHistorySubmit


def medical_history_to_dict(form: "MedicalHistoryForm") -> dict[str, Any]:
    return model_to_dict(form)


def submit_medical_history(
    s: "Session", data: "MedicalHistorySubmit", *, actor: "User | None" = None
) -> "MedicalHistoryForm":
    from app.portal.modules.intake.models import PatientIntakeForm
    from app.portal.modules.medical_history.models import MedicalHistoryForm

    intake = None
    if data.intake_form_id is not None:
        intake = s.get(PatientIntakeForm, data.intake_form_id)
        if not intake:
            raise ValueError("Intake form not found.")

    patient_id = intake.patient_id if intake else None
    if patient_id is None and user_has_permission(actor, "patient.portal"):
        patient_id = actor.id

    now = datetime.utcnow()
    form = MedicalHistoryForm(**data.model_dump(), patient_id=patient_id, created_at=now, updated_at=now)
    s.add(form)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="medical_history.submit",
        entity_type="MedicalHistoryForm",
        entity_id=str(form.id),
        metadata={"intake_form_id": form.intake_form_id, "email": form.email},
    )

    dispatch(
        s,
        template="medical_history_confirmation",
        to=form.email,
        subject="Medical History Form Received",
        context={"recipient_name": form.first_name, "patient_name": form.full_name},
        entity_type="MedicalHistoryForm",
        entity_id=str(form.id),
    )
    if intake and intake.filled_by == "someone_else" and intake.filler_email:
        dispatch(
            s,
            template="medical_history_confirmation",
            to=intake.filler_email,
            subject="Medical History Form Received",
            context={"recipient_name": intake.filler_first_name or "there", "patient_name": form.full_name},
            entity_type="MedicalHistoryForm",
            entity_id=str(form.id),
        )
    return form

