from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import Boolean, Date, func

from app.portal.audit import record_event
from app.portal.mailer import dispatch
from app.portal.rbac import is_staff, owns_record
from app.portal.storage import store_upload
from app.portal.utils import model_to_dict, normalize_email, parse_date

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.models import User
    from app.portal.modules.onboarding.models import PatientOnboarding, TreatmentSchedule
    from app.portal.modules.onboarding.schemas import OnboardingDetailsUpdate
    from app.portal.storage import Storage

logger = logging.getLogger(__name__)

FORMS_TOTAL = 3
PROGRAM_TYPES = ("neurological", "mental_health", "addiction")


def _form_registry() -> dict[str, tuple[type, type, str, str]]:
    """form key -> (model, strict schema, onboarding relationship, onboarding completion flag)"""
    from app.portal.modules.onboarding.models import (
        OnboardingInternalRegulationsForm,
        OnboardingOutingConsentForm,
        OnboardingReleaseForm,
    )
    from app.portal.modules.onboarding.schemas import (
        InternalRegulationsSubmit,
        OutingConsentSubmit,
        ReleaseFormSubmit,
    )

    return {
        "release": (OnboardingReleaseForm, ReleaseFormSubmit, "release_form", "release_form_completed"),
        "outing-consent": (
            OnboardingOutingConsentForm,
            OutingConsentSubmit,
            "outing_consent_form",
            "outing_consent_completed",
        ),
        "internal-regulations": (
            OnboardingInternalRegulationsForm,
            InternalRegulationsSubmit,
            "internal_regulations_form",
            "internal_regulations_completed",
        ),
    }


def form_keys() -> tuple[str, ...]:
    return tuple(_form_registry())


def _form_entry(form_key: str) -> tuple[type, type, str, str]:
    entry = _form_registry().get(form_key)
    if not entry:
        raise ValueError(f"Unknown onboarding form: {form_key}")
    return entry


def onboarding_to_dict(onboarding: "PatientOnboarding", *, include_forms: bool = False) -> dict[str, Any]:
    d = model_to_dict(onboarding)
    d["full_name"] = onboarding.full_name
    d["forms_completed"] = onboarding.forms_completed
    d["forms_total"] = FORMS_TOTAL
    if include_forms:
        forms: dict[str, Any] = {}
        for key, (_model, _schema, rel, _flag) in _form_registry().items():
            form = getattr(onboarding, rel)
            forms[key] = model_to_dict(form) if form else None
        d["forms"] = forms
        d["documents"] = [model_to_dict(doc) for doc in onboarding.documents]
    return d


def onboarding_link(onboarding: "PatientOnboarding", *, staff: bool = False) -> str:
    base = current_app.config.get("APP_BASE_URL") or ""
    if staff:
        return f"{base}/onboarding/{onboarding.id}"
    return f"{base}/patient/onboarding"


def find_onboarding_by_email(s: "Session", email: str | None) -> "PatientOnboarding | None":
    from app.portal.modules.onboarding.models import PatientOnboarding

    email = normalize_email(email)
    if not email:
        return None
    return (
        s.query(PatientOnboarding)
        .filter(func.lower(PatientOnboarding.email) == email)
        .order_by(PatientOnboarding.created_at.desc(), PatientOnboarding.id.desc())
        .first()
    )


def send_onboarding_forms_email(s: "Session", onboarding: "PatientOnboarding") -> None:
    dispatch(
        s,
        template="onboarding_forms",
        to=onboarding.email,
        subject="Next Steps: Complete Your Onboarding Forms",
        context={
            "recipient_name": onboarding.first_name,
            "onboarding_link": onboarding_link(onboarding),
        },
        entity_type="PatientOnboarding",
        entity_id=str(onboarding.id),
    )


def create_onboarding_record(
    s: "Session",
    *,
    email: str,
    first_name: str,
    last_name: str,
    intake_form_id: int | None = None,
    patient_id: int | None = None,
    actor: "User | None" = None,
) -> "PatientOnboarding":
    """
    New onboarding record with the patient snapshot copied from their intake application,
    plus the three onboarding forms prefilled and activated.
    """
    from app.portal.modules.intake.models import PatientIntakeForm
    from app.portal.modules.intake.service import find_intake_by_email
    from app.portal.modules.onboarding.models import (
        OnboardingInternalRegulationsForm,
        OnboardingOutingConsentForm,
        OnboardingReleaseForm,
        PatientOnboarding,
    )

    intake = s.get(PatientIntakeForm, intake_form_id) if intake_form_id else None
    if intake is None:
        intake = find_intake_by_email(s, email)

    now = datetime.utcnow()
    onboarding = PatientOnboarding(
        patient_id=patient_id if patient_id is not None else (intake.patient_id if intake else None),
        intake_form_id=intake.id if intake else intake_form_id,
        first_name=first_name or (intake.first_name if intake else ""),
        last_name=last_name or (intake.last_name if intake else ""),
        email=email,
        status="in_progress",
        priority="normal",
        created_at=now,
        updated_at=now,
        created_by_user_id=actor.id if actor else None,
    )
    if intake:
        address = ", ".join(
            p for p in (intake.address_line_1, intake.address_line_2, intake.city, intake.zip_code, intake.country) if p
        )
        onboarding.phone_number = intake.phone_number
        onboarding.date_of_birth = intake.date_of_birth
        onboarding.address = address or None
        onboarding.emergency_contact_name = (
            f"{intake.emergency_contact_first_name} {intake.emergency_contact_last_name}".strip() or None
        )
        onboarding.emergency_contact_phone = intake.emergency_contact_phone
        onboarding.program_type = intake.program_type

    onboarding.release_form = OnboardingReleaseForm(
        full_name=onboarding.full_name,
        date_of_birth=onboarding.date_of_birth,
        phone_number=onboarding.phone_number,
        email=onboarding.email,
        emergency_contact_name=onboarding.emergency_contact_name,
        emergency_contact_phone=onboarding.emergency_contact_phone,
        emergency_contact_email=intake.emergency_contact_email if intake else None,
        emergency_contact_relationship=intake.emergency_contact_relationship if intake else None,
    )
    onboarding.outing_consent_form = OnboardingOutingConsentForm(
        first_name=onboarding.first_name,
        last_name=onboarding.last_name,
        date_of_birth=onboarding.date_of_birth,
        email=onboarding.email,
    )
    onboarding.internal_regulations_form = OnboardingInternalRegulationsForm(
        first_name=onboarding.first_name,
        last_name=onboarding.last_name,
        email=onboarding.email,
        phone_number=onboarding.phone_number,
    )
    s.add(onboarding)
    s.flush()
    return onboarding


def move_to_onboarding(
    s: "Session", *, intake_form_id: int | None = None, email: str | None = None, actor: "User"
) -> "PatientOnboarding":
    """Staff move an applicant into onboarding by hand (the automation does the same after consent)."""
    from app.portal.modules.intake.models import PatientIntakeForm
    from app.portal.modules.intake.service import find_intake_by_email

    if intake_form_id is not None:
        intake = s.get(PatientIntakeForm, intake_form_id)
    else:
        intake = find_intake_by_email(s, email)
    if not intake:
        raise ValueError("Intake form not found.")
    if find_onboarding_by_email(s, intake.email):
        raise ValueError("Patient is already in onboarding.")

    onboarding = create_onboarding_record(
        s,
        email=intake.email,
        first_name=intake.first_name,
        last_name=intake.last_name,
        intake_form_id=intake.id,
        patient_id=intake.patient_id,
        actor=actor,
    )
    record_event(
        s,
        actor=actor,
        action="onboarding.create",
        entity_type="PatientOnboarding",
        entity_id=str(onboarding.id),
        metadata={"intake_form_id": intake.id, "email": intake.email},
    )
    send_onboarding_forms_email(s, onboarding)
    return onboarding


def list_onboarding(s: "Session", *, status: str | None = None) -> list[dict[str, Any]]:
    from app.portal.modules.onboarding.models import PatientOnboarding

    q = s.query(PatientOnboarding)
    if status and status != "all":
        q = q.filter(PatientOnboarding.status == status)
    rows = q.order_by(PatientOnboarding.created_at.desc(), PatientOnboarding.id.desc()).all()
    return [onboarding_to_dict(o) for o in rows]


def check_onboarding_status(
    s: "Session", *, intake_form_id: int | None = None, email: str | None = None
) -> dict[str, Any]:
    from app.portal.modules.intake.models import PatientIntakeForm
    from app.portal.modules.onboarding.models import PatientOnboarding

    onboarding = None
    if intake_form_id is not None:
        onboarding = (
            s.query(PatientOnboarding)
            .filter(PatientOnboarding.intake_form_id == intake_form_id)
            .order_by(PatientOnboarding.id.desc())
            .first()
        )
        if onboarding is None and not email:
            intake = s.get(PatientIntakeForm, intake_form_id)
            email = intake.email if intake else None
    if onboarding is None:
        onboarding = find_onboarding_by_email(s, email)
    if onboarding is None:
        return {"in_onboarding": False, "onboarding_id": None, "status": None}
    return {"in_onboarding": True, "onboarding_id": onboarding.id, "status": onboarding.status}


def update_status(s: "Session", onboarding: "PatientOnboarding", patch: dict[str, Any], actor: "User"):
    """Tick or untick checklist items (payment received, travel arranged, medical clearance)."""
    from app.portal.modules.onboarding.models import CHECKLIST_FIELDS

    changes: dict[str, bool] = {}
    for key in CHECKLIST_FIELDS:
        if key in patch and patch[key] is not None:
            if not isinstance(patch[key], bool):
                raise ValueError(f"{key} must be true or false")
            changes[key] = patch[key]
    if not changes:
        raise ValueError("No fields to update")
    for key, value in changes.items():
        setattr(onboarding, key, value)
    onboarding.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="onboarding.update_status",
        entity_type="PatientOnboarding",
        entity_id=str(onboarding.id),
        metadata=changes,
    )
    return onboarding


def update_details(
    s: "Session", onboarding: "PatientOnboarding", data: "OnboardingDetailsUpdate", actor: "User"
) -> "PatientOnboarding":
    from app.portal.models import User as UserModel

    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValueError("No fields to update")
    assignee = changes.get("assigned_to_user_id")
    if assignee is not None and not is_staff(s.get(UserModel, assignee)):
        raise ValueError("Assignee must be an active staff member.")
    if "priority" in changes and changes["priority"] is None:
        changes.pop("priority")
    for key, value in changes.items():
        setattr(onboarding, key, value)
    onboarding.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="onboarding.update_details",
        entity_type="PatientOnboarding",
        entity_id=str(onboarding.id),
        metadata=changes,
    )
    return onboarding


def check_access(user: "User", onboarding: "PatientOnboarding") -> None:
    if is_staff(user):
        return
    if not owns_record(user, patient_id=onboarding.patient_id, email=onboarding.email):
        raise PermissionError("You do not have access to this onboarding record")


def _sync_completion(onboarding: "PatientOnboarding") -> None:
    for _model, _schema, rel, flag in _form_registry().values():
        form = getattr(onboarding, rel)
        setattr(onboarding, flag, bool(form and form.is_completed))
    if onboarding.status != "moved_to_management":
        onboarding.status = "completed" if onboarding.all_forms_completed else "in_progress"
    onboarding.updated_at = datetime.utcnow()


def _get_form(onboarding: "PatientOnboarding", form_key: str):
    _model, _schema, rel, _flag = _form_entry(form_key)
    form = getattr(onboarding, rel)
    if form is None:
        raise ValueError("Onboarding form not found.")
    return form


def submit_form(
    s: "Session", onboarding: "PatientOnboarding", form_key: str, payload: dict[str, Any], actor: "User"
):
    """Patient submission: strict validation, always completes the form."""
    _model, schema, _rel, _flag = _form_entry(form_key)
    check_access(actor, onboarding)
    form = _get_form(onboarding, form_key)
    if not form.is_activated:
        raise ValueError("This form is not yet activated. Please wait for admin activation.")
    if onboarding.status == "moved_to_management":
        raise ValueError("Onboarding is already complete for this patient.")

    data = schema.model_validate(payload)
    now = datetime.utcnow()
    for key, value in data.model_dump().items():
        setattr(form, key, value)
    form.is_completed = True
    form.completed_at = now
    form.updated_at = now
    _sync_completion(onboarding)
    record_event(
        s,
        actor=actor,
        action=f"onboarding.form_submit.{form_key}",
        entity_type="PatientOnboarding",
        entity_id=str(onboarding.id),
        metadata={"forms_completed": onboarding.forms_completed},
    )
    return form


def _coerce_patch(model: type, patch: dict[str, Any]) -> dict[str, Any]:
    """Type-check a partial staff patch against the form's columns. Unknown keys are ignored."""
    skip = {"id", "onboarding_id", "is_completed", "completed_at", "created_at", "updated_at"}
    out: dict[str, Any] = {}
    for col in model.__table__.columns:
        if col.key in skip or col.key not in patch:
            continue
        value = patch[col.key]
        if isinstance(col.type, Boolean):
            if not isinstance(value, bool):
                raise ValueError(f"{col.key} must be true or false")
        elif isinstance(col.type, Date):
            try:
                value = parse_date(value) if value is not None else None
            except (AttributeError, TypeError, ValueError):
                raise ValueError(f"{col.key} must be a date in YYYY-MM-DD format")
        elif value is not None:
            value = str(value).strip() or None
        out[col.key] = value
    return out


def admin_update_form(
    s: "Session",
    onboarding: "PatientOnboarding",
    form_key: str,
    patch: dict[str, Any],
    actor: "User",
    *,
    mark_completed: bool = False,
):
    """
    Staff edit of an onboarding form. Any subset of fields may be sent; with mark_completed
    the merged record must pass the same checks as a patient submission.
    """
    model, schema, _rel, _flag = _form_entry(form_key)
    form = _get_form(onboarding, form_key)
    changes = _coerce_patch(model, patch)
    if not changes and not mark_completed:
        raise ValueError("No fields to update")

    if mark_completed:
        merged = {col.key: getattr(form, col.key) for col in model.__table__.columns}
        merged.update(changes)
        data = schema.model_validate(merged)
        changes.update(data.model_dump())

    now = datetime.utcnow()
    for key, value in changes.items():
        setattr(form, key, value)
    if mark_completed and not form.is_completed:
        form.is_completed = True
        form.completed_at = now
    form.updated_at = now
    _sync_completion(onboarding)
    record_event(
        s,
        actor=actor,
        action=f"onboarding.form_admin_update.{form_key}",
        entity_type="PatientOnboarding",
        entity_id=str(onboarding.id),
        metadata={"fields": sorted(changes), "mark_completed": mark_completed},
    )
    return form


def _schedule_for(s: "Session", day: date, *, create: bool = False) -> "TreatmentSchedule | None":
    from app.portal.modules.onboarding.models import TreatmentSchedule

    row = s.query(TreatmentSchedule).filter(TreatmentSchedule.treatment_date == day).one_or_none()
    if row is None and create:
        row = TreatmentSchedule(
            treatment_date=day,
            capacity_max=int(current_app.config.get("TREATMENT_DAILY_CAPACITY") or 4),
            capacity_used=0,
        )
        s.add(row)
    return row


def assign_treatment_date(
    s: "Session", onboarding: "PatientOnboarding", treatment_date: date, actor: "User"
) -> "PatientOnboarding":
    if treatment_date < date.today():
        raise ValueError("Treatment date cannot be in the past")
    previous = onboarding.treatment_date
    if previous == treatment_date:
        return onboarding

    schedule = _schedule_for(s, treatment_date, create=True)
    if schedule.capacity_used >= schedule.capacity_max:
        raise ValueError(
            f"Date is at full capacity ({schedule.capacity_max} patients). Please select another date."
        )
    schedule.capacity_used += 1
    schedule.updated_at = datetime.utcnow()
    if previous is not None:
        old = _schedule_for(s, previous)
        if old is not None and old.capacity_used > 0:
            old.capacity_used -= 1
            old.updated_at = datetime.utcnow()

    onboarding.treatment_date = treatment_date
    onboarding.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="onboarding.assign_treatment_date",
        entity_type="PatientOnboarding",
        entity_id=str(onboarding.id),
        metadata={"old": previous, "new": treatment_date},
    )
    return onboarding


def treatment_calendar(s: "Session", *, start: date | None = None, end: date | None = None) -> list[dict[str, Any]]:
    """Capacity per date in [start, end] (default: today + 90 days) with the onboarding patients booked on it."""
    from app.portal.modules.onboarding.models import PatientOnboarding, TreatmentSchedule

    start = start or date.today()
    end = end or start + timedelta(days=90)
    schedule = (
        s.query(TreatmentSchedule)
        .filter(TreatmentSchedule.treatment_date >= start, TreatmentSchedule.treatment_date <= end)
        .order_by(TreatmentSchedule.treatment_date.asc())
        .all()
    )
    patients = (
        s.query(PatientOnboarding)
        .filter(
            PatientOnboarding.treatment_date.isnot(None),
            PatientOnboarding.treatment_date >= start,
            PatientOnboarding.treatment_date <= end,
            PatientOnboarding.status != "moved_to_management",
        )
        .all()
    )
    by_date: dict[date, list[dict[str, Any]]] = {}
    for p in patients:
        by_date.setdefault(p.treatment_date, []).append(
            {"id": p.id, "first_name": p.first_name, "last_name": p.last_name, "program_type": p.program_type}
        )
    return [
        {
            "treatment_date": row.treatment_date.isoformat(),
            "capacity_max": row.capacity_max,
            "capacity_used": row.capacity_used,
            "available": row.capacity_used < row.capacity_max,
            "patients": by_date.get(row.treatment_date, []),
        }
        for row in schedule
    ]


def next_available_date(s: "Session") -> date:
    """First date from today on that still has room. Dates with no schedule row are open."""
    today = date.today()
    full = {date.fromisoformat(day["treatment_date"]) for day in treatment_calendar(s, start=today) if not day["available"]}
    day = today
    while day in full:
        day += timedelta(days=1)
    return day


def record_medical_document(
    s: "Session",
    storage: "Storage",
    onboarding: "PatientOnboarding",
    *,
    document_type: str,
    filename: str | None,
    content_type: str | None,
    data: bytes,
    actor: "User",
):
    """
    Store an EKG or bloodwork upload (one current file per type). Once both are on file the
    clinical director is told the client is ready for a tapering schedule, once.
    """
    from app.portal.modules.onboarding.models import DOCUMENT_TYPES, OnboardingMedicalDocument

    if document_type not in DOCUMENT_TYPES:
        raise ValueError("Document type must be one of: ekg, bloodwork")
    if not owns_record(actor, patient_id=onboarding.patient_id, email=onboarding.email) and not is_staff(actor):
        raise PermissionError("You do not have access to this onboarding record")

    stored = store_upload(
        storage,
        prefix=f"onboarding/{onboarding.id}/{document_type}",
        filename=filename,
        content_type=content_type,
        data=data,
    )
    doc = next((d for d in onboarding.documents if d.document_type == document_type), None)
    if doc is None:
        doc = OnboardingMedicalDocument(document_type=document_type)
        onboarding.documents.append(doc)
    doc.storage_key = stored["key"]
    doc.file_name = stored["name"]
    doc.content_type = content_type
    doc.size_bytes = len(data)
    doc.uploaded_at = datetime.utcnow()
    doc.uploaded_by_user_id = actor.id
    s.flush()

    record_event(
        s,
        actor=actor,
        action="onboarding.document_upload",
        entity_type="PatientOnboarding",
        entity_id=str(onboarding.id),
        metadata={"document_type": document_type, "storage_key": doc.storage_key},
    )

    present = {d.document_type for d in onboarding.documents}
    if set(DOCUMENT_TYPES) <= present and onboarding.ready_for_tapering_notified_at is None:
        onboarding.ready_for_tapering_notified_at = datetime.utcnow()
        dispatch(
            s,
            template="tapering_ready_notification",
            to=current_app.config.get("CLINICAL_DIRECTOR_EMAIL") or current_app.config.get("STAFF_NOTIFICATION_EMAIL"),
            subject=f"Client Ready for Tapering Schedule: {onboarding.full_name}",
            context={
                "patient_name": onboarding.full_name,
                "patient_email": onboarding.email,
                "onboarding_link": onboarding_link(onboarding, staff=True),
            },
            entity_type="PatientOnboarding",
            entity_id=str(onboarding.id),
        )
    return {"document": model_to_dict(doc), "url": stored["url"]}


def move_to_management(s: "Session", onboarding: "PatientOnboarding", actor: "User"):
    from app.portal.modules.patient_management.models import PatientManagement

    if not onboarding.all_forms_completed:
        raise ValueError("All 3 forms must be completed before moving to patient management")
    existing = s.query(PatientManagement).filter(PatientManagement.onboarding_id == onboarding.id).first()
    if existing or onboarding.status == "moved_to_management":
        raise ValueError("Patient is already in management")
    if onboarding.program_type not in PROGRAM_TYPES:
        raise ValueError("Invalid program type. Cannot move to management.")

    now = datetime.utcnow()
    management = PatientManagement(
        onboarding_id=onboarding.id,
        patient_id=onboarding.patient_id,
        intake_form_id=onboarding.intake_form_id,
        first_name=onboarding.first_name,
        last_name=onboarding.last_name,
        email=onboarding.email,
        phone_number=onboarding.phone_number,
        date_of_birth=onboarding.date_of_birth,
        program_type=onboarding.program_type,
        arrival_date=date.today(),
        status="active",
        created_at=now,
        updated_at=now,
        created_by_user_id=actor.id,
    )
    s.add(management)
    onboarding.status = "moved_to_management"
    onboarding.moved_to_management_at = now
    onboarding.updated_at = now
    s.flush()
    record_event(
        s,
        actor=actor,
        action="onboarding.move_to_management",
        entity_type="PatientOnboarding",
        entity_id=str(onboarding.id),
        metadata={"management_id": management.id},
    )
    return management


def get_my_onboarding(s: "Session", user: "User") -> "PatientOnboarding | None":
    from app.portal.modules.onboarding.models import PatientOnboarding

    by_account = (
        s.query(PatientOnboarding)
        .filter(PatientOnboarding.patient_id == user.id)
        .order_by(PatientOnboarding.created_at.desc(), PatientOnboarding.id.desc())
        .first()
    )
    return by_account or find_onboarding_by_email(s, user.email)


def delete_onboarding(s: "Session", onboarding: "PatientOnboarding", actor: "User") -> None:
    if onboarding.treatment_date is not None:
        schedule = _schedule_for(s, onboarding.treatment_date)
        if schedule is not None and schedule.capacity_used > 0:
            schedule.capacity_used -= 1
    record_event(
        s,
        actor=actor,
        action="onboarding.delete",
        entity_type="PatientOnboarding",
        entity_id=str(onboarding.id),
        metadata={"email": onboarding.email, "status": onboarding.status},
    )
    s.delete(onboarding)
