from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import func, or_

from app.portal.audit import record_event
from app.portal.mailer import dispatch
from app.portal.rbac import owns_record, user_has_permission
from app.portal.utils import model_to_dict, normalize_email

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.models import User
    from app.portal.modules.service_agreement.models import ServiceAgreement
    from app.portal.modules.service_agreement.schemas import (
        ServiceAgreementAdminUpdate,
        ServiceAgreementCreate,
        ServiceAgreementPatientSubmit,
        ServiceAgreementUpgrade,
    )

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "This form is not yet available. Please wait for admin to create and activate it."
NOT_ACTIVATED = "This form is not yet activated. Please wait for admin activation."

_FEE_FIELDS = ("total_program_fee", "deposit_amount", "deposit_percentage", "remaining_balance", "number_of_days")


def agreement_to_dict(agreement: "ServiceAgreement") -> dict[str, Any]:
    d = model_to_dict(agreement)
    d["is_completed"] = agreement.is_completed
    return d


def patient_view(agreement: "ServiceAgreement") -> dict[str, Any]:
    """What the patient sees: identity, fee block and provider signature, no staff bookkeeping."""
    return model_to_dict(
        agreement,
        exclude=("activated_by_user_id", "created_by_user_id", "updated_by_user_id", "last_reminder_sent_at"),
    )


def find_agreement_for_patient(s: "Session", user: "User") -> "ServiceAgreement | None":
    from app.portal.modules.service_agreement.models import ServiceAgreement

    return (
        s.query(ServiceAgreement)
        .filter(
            or_(
                ServiceAgreement.patient_id == user.id,
                func.lower(ServiceAgreement.patient_email) == normalize_email(user.email),
            )
        )
        .order_by(ServiceAgreement.created_at.desc(), ServiceAgreement.id.desc())
        .first()
    )


def _link_intake(s: "Session", intake_form_id: int | None, email: str):
    from app.portal.modules.intake.models import PatientIntakeForm
    from app.portal.modules.intake.service import find_intake_by_email

    if intake_form_id is not None:
        intake = s.get(PatientIntakeForm, intake_form_id)
        if not intake:
            raise ValueError("Intake form not found.")
        return intake
    return find_intake_by_email(s, email)


def create_service_agreement(s: "Session", data: "ServiceAgreementCreate", actor: "User") -> "ServiceAgreement":
    """
    Staff-created agreement. It is activated straight away and the patient is emailed a link to sign it.
    """
    from app.portal.modules.service_agreement.models import ServiceAgreement

    intake = _link_intake(s, data.intake_form_id, data.patient_email)
    now = datetime.utcnow()
    agreement = ServiceAgreement(
        **data.model_dump(exclude={"intake_form_id", "patient_id"}),
        intake_form_id=intake.id if intake else None,
        patient_id=data.patient_id if data.patient_id is not None else (intake.patient_id if intake else None),
        program_type=intake.program_type if intake else None,
        is_activated=True,
        activated_at=now,
        activated_by_user_id=actor.id,
        created_at=now,
        updated_at=now,
        created_by_user_id=actor.id,
        updated_by_user_id=actor.id,
    )
    s.add(agreement)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="service_agreement.create",
        entity_type="ServiceAgreement",
        entity_id=str(agreement.id),
        metadata={
            "patient_email": agreement.patient_email,
            "total_program_fee": str(agreement.total_program_fee),
            "intake_form_id": agreement.intake_form_id,
        },
    )
    send_form_ready_email(s, agreement)
    return agreement


def send_form_ready_email(s: "Session", agreement: "ServiceAgreement") -> None:
    base = current_app.config.get("APP_BASE_URL") or ""
    dispatch(
        s,
        template="form_ready",
        to=agreement.patient_email,
        subject="Your Service Agreement Is Ready to Sign",
        context={
            "recipient_name": agreement.patient_first_name,
            "form_name": "Service Agreement",
            "form_link": f"{base}/patient/service-agreement",
        },
        entity_type="ServiceAgreement",
        entity_id=str(agreement.id),
    )


def get_patient_service_agreement(s: "Session", user: "User") -> "ServiceAgreement":
    agreement = find_agreement_for_patient(s, user)
    if not agreement:
        raise ValueError(NOT_AVAILABLE)
    if not agreement.is_activated:
        raise ValueError(NOT_ACTIVATED)
    return agreement


def check_access(user: "User", agreement: "ServiceAgreement") -> None:
    """Staff see every agreement; a patient only their own and only once it is activated."""
    if user_has_permission(user, "intake.view"):
        return
    if not owns_record(user, patient_id=agreement.patient_id, email=agreement.patient_email):
        raise PermissionError("You do not have access to this service agreement.")
    if not agreement.is_activated:
        raise ValueError(NOT_ACTIVATED)


def submit_service_agreement(
    s: "Session", agreement: "ServiceAgreement", data: "ServiceAgreementPatientSubmit", actor: "User"
) -> dict[str, Any]:
    """
    Patient completes an activated agreement. Completion activates the ibogaine consent form.
    Returns the agreement plus the outcome of that automation step.
    """
    from app.portal.modules.automation.service import auto_activate_consent
    from app.portal.modules.intake.models import PatientIntakeForm

    check_access(actor, agreement)
    if not agreement.is_activated:
        raise ValueError(NOT_ACTIVATED)
    if agreement.is_completed:
        raise ValueError("This service agreement has already been completed.")

    now = datetime.utcnow()
    for key, value in data.model_dump().items():
        if key in ("uploaded_file_key", "uploaded_file_name") and value is None:
            continue
        setattr(agreement, key, value)
    if agreement.patient_id is None and user_has_permission(actor, "patient.portal"):
        agreement.patient_id = actor.id
    agreement.completed_at = now
    agreement.updated_at = now
    agreement.updated_by_user_id = actor.id
    s.flush()

    record_event(
        s,
        actor=actor,
        action="service_agreement.complete",
        entity_type="ServiceAgreement",
        entity_id=str(agreement.id),
        metadata={"payment_method": agreement.payment_method},
    )

    intake = s.get(PatientIntakeForm, agreement.intake_form_id) if agreement.intake_form_id else None
    context = {"patient_name": agreement.patient_name, "agreement": agreement_to_dict(agreement)}
    dispatch(
        s,
        template="service_agreement_confirmation",
        to=agreement.patient_email,
        subject="Service Agreement Received",
        context={**context, "recipient_name": agreement.patient_first_name},
        entity_type="ServiceAgreement",
        entity_id=str(agreement.id),
    )
    if intake and intake.filled_by == "someone_else" and intake.filler_email:
        dispatch(
            s,
            template="service_agreement_confirmation",
            to=intake.filler_email,
            subject="Service Agreement Received",
            context={**context, "recipient_name": intake.filler_first_name or "there"},
            entity_type="ServiceAgreement",
            entity_id=str(agreement.id),
        )

    automation = auto_activate_consent(
        s,
        intake_form_id=agreement.intake_form_id,
        email=agreement.patient_email,
        first_name=agreement.patient_first_name,
        last_name=agreement.patient_last_name,
        patient_id=agreement.patient_id,
        actor=actor,
    )
    return {"agreement": agreement, "automation": automation}


def update_admin_fields(
    s: "Session",
    agreement: "ServiceAgreement",
    data: "ServiceAgreementAdminUpdate",
    actor: "User",
    reason: str | None = None,
) -> "ServiceAgreement":
    changes: dict[str, Any] = {}
    for key, value in data.model_dump().items():
        old = getattr(agreement, key)
        if old != value:
            changes[key] = {"old": str(old) if old is not None else None, "new": str(value) if value is not None else None}
            setattr(agreement, key, value)
    if not changes:
        return agreement
    agreement.updated_at = datetime.utcnow()
    agreement.updated_by_user_id = actor.id
    record_event(
        s,
        actor=actor,
        action="service_agreement.admin_update",
        entity_type="ServiceAgreement",
        entity_id=str(agreement.id),
        reason=reason,
        metadata={"changes": changes},
    )
    return agreement


def upgrade_service_agreement(
    s: "Session", agreement: "ServiceAgreement", data: "ServiceAgreementUpgrade", actor: "User"
) -> "ServiceAgreement":
    """Change program length and fees on an existing agreement; signatures are kept."""
    before = {k: str(getattr(agreement, k)) for k in _FEE_FIELDS + ("payment_method",)}
    for key, value in data.model_dump().items():
        setattr(agreement, key, value)
    agreement.updated_at = datetime.utcnow()
    agreement.updated_by_user_id = actor.id
    record_event(
        s,
        actor=actor,
        action="service_agreement.upgrade",
        entity_type="ServiceAgreement",
        entity_id=str(agreement.id),
        metadata={"before": before, "after": {k: str(getattr(agreement, k)) for k in before}},
    )
    return agreement


def set_activation(s: "Session", agreement: "ServiceAgreement", active: bool, actor: "User") -> "ServiceAgreement":
    if agreement.is_activated == active:
        return agreement
    now = datetime.utcnow()
    agreement.is_activated = active
    agreement.activated_at = now if active else None
    agreement.activated_by_user_id = actor.id if active else None
    agreement.updated_at = now
    agreement.updated_by_user_id = actor.id
    record_event(
        s,
        actor=actor,
        action="service_agreement.activate" if active else "service_agreement.deactivate",
        entity_type="ServiceAgreement",
        entity_id=str(agreement.id),
    )
    if active and not agreement.is_completed:
        send_form_ready_email(s, agreement)
    return agreement
