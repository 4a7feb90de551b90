from __future__ import annotations

from flask import Blueprint, abort, current_app, g, request

from app.portal.db import db_session
from app.portal.models import User
from app.portal.modules.onboarding.models import PatientOnboarding
from app.portal.modules.onboarding.schemas import MoveToOnboarding, OnboardingDetailsUpdate, TreatmentDateAssign
from app.portal.modules.onboarding.service import (
    admin_update_form,
    assign_treatment_date,
    check_access,
    check_onboarding_status,
    delete_onboarding,
    get_my_onboarding,
    list_onboarding,
    move_to_management,
    move_to_onboarding,
    next_available_date,
    onboarding_to_dict,
    record_medical_document,
    submit_form,
    treatment_calendar,
    update_details,
    update_status,
)
from app.portal.rbac import require_login, require_permission
from app.portal.responses import fail, json_body, ok, parse_body
from app.portal.storage import storage_from_config
from app.portal.utils import model_to_dict, parse_date

bp = Blueprint("onboarding", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_onboarding_or_404(s, onboarding_id: int) -> PatientOnboarding:
    onboarding = s.get(PatientOnboarding, onboarding_id)
    if not onboarding:
        abort(404)
    return onboarding


def _query_date(name: str):
    raw = request.args.get(name)
    try:
        return parse_date(raw)
    except ValueError:
        raise ValueError(f"{name} must be a date in YYYY-MM-DD format")


@bp.post("/onboarding")
@require_permission("onboarding.manage")
def onboarding_create():
    s = db_session()
    data = parse_body(MoveToOnboarding)
    if data.intake_form_id is None and not data.email:
        return fail("Either intake_form_id or email is required.")
    onboarding = move_to_onboarding(s, intake_form_id=data.intake_form_id, email=data.email, actor=_current_user())
    s.commit()
    return ok(onboarding_to_dict(onboarding, include_forms=True), 201)


@bp.get("/onboarding")
@require_permission("onboarding.view")
def onboarding_list():
    s = db_session()
    return ok(list_onboarding(s, status=request.args.get("status")))


@bp.get("/onboarding/status")
@require_permission("onboarding.view")
def onboarding_status_check():
    s = db_session()
    return ok(
        check_onboarding_status(
            s,
            intake_form_id=request.args.get("intake_form_id", type=int),
            email=request.args.get("email"),
        )
    )


@bp.get("/onboarding/<int:onboarding_id>")
@require_login
def onboarding_detail(onboarding_id: int):
    s = db_session()
    onboarding = _get_onboarding_or_404(s, onboarding_id)
    check_access(_current_user(), onboarding)
    return ok(onboarding_to_dict(onboarding, include_forms=True))


@bp.patch("/onboarding/<int:onboarding_id>/status")
@require_permission("onboarding.manage")
def onboarding_update_status(onboarding_id: int):
    s = db_session()
    onboarding = _get_onboarding_or_404(s, onboarding_id)
    update_status(s, onboarding, json_body(), _current_user())
    s.commit()
    return ok(onboarding_to_dict(onboarding))


@bp.patch("/onboarding/<int:onboarding_id>/details")
@require_permission("onboarding.manage")
def onboarding_update_details(onboarding_id: int):
    s = db_session()
    onboarding = _get_onboarding_or_404(s, onboarding_id)
    update_details(s, onboarding, parse_body(OnboardingDetailsUpdate), _current_user())
    s.commit()
    return ok(onboarding_to_dict(onboarding))


@bp.post("/onboarding/<int:onboarding_id>/forms/<form_key>")
@require_permission("forms.submit")
def onboarding_form_submit(onboarding_id: int, form_key: str):
    s = db_session()
    onboarding = _get_onboarding_or_404(s, onboarding_id)
    form = submit_form(s, onboarding, form_key, json_body(), _current_user())
    s.commit()
    return ok({"form": model_to_dict(form), "onboarding": onboarding_to_dict(onboarding)}, 201)


@bp.patch("/onboarding/<int:onboarding_id>/forms/<form_key>")
@require_permission("onboarding.manage")
def onboarding_form_admin_update(onboarding_id: int, form_key: str):
    s = db_session()
    onboarding = _get_onboarding_or_404(s, onboarding_id)
    payload = json_body()
    mark_completed = payload.pop("mark_completed", False) is True
    form = admin_update_form(s, onboarding, form_key, payload, _current_user(), mark_completed=mark_completed)
    s.commit()
    return ok({"form": model_to_dict(form), "onboarding": onboarding_to_dict(onboarding)})


@bp.put("/onboarding/<int:onboarding_id>/treatment-date")
@require_permission("onboarding.manage")
def onboarding_assign_treatment_date(onboarding_id: int):
    s = db_session()
    onboarding = _get_onboarding_or_404(s, onboarding_id)
    data = parse_body(TreatmentDateAssign)
    assign_treatment_date(s, onboarding, data.treatment_date, _current_user())
    s.commit()
    return ok(onboarding_to_dict(onboarding))


@bp.get("/treatment-schedule")
@require_permission("onboarding.view")
def treatment_schedule_list():
    s = db_session()
    return ok(treatment_calendar(s, start=_query_date("start"), end=_query_date("end")))


@bp.get("/treatment-schedule/next-available")
@require_permission("onboarding.view")
def treatment_schedule_next():
    s = db_session()
    return ok(next_available_date(s).isoformat())


@bp.post("/onboarding/<int:onboarding_id>/documents")
@require_login
def onboarding_document_upload(onboarding_id: int):
    s = db_session()
    onboarding = _get_onboarding_or_404(s, onboarding_id)
    f = request.files.get("file")
    if not f:
        return fail("No file provided.")
    result = record_medical_document(
        s,
        storage_from_config(current_app.config),
        onboarding,
        document_type=(request.form.get("document_type") or "").strip().lower(),
        filename=f.filename,
        content_type=f.mimetype,
        data=f.read(),
        actor=_current_user(),
    )
    s.commit()
    return ok(result, 201)


@bp.post("/onboarding/<int:onboarding_id>/move-to-management")
@require_permission("onboarding.manage")
def onboarding_move_to_management(onboarding_id: int):
    from app.portal.modules.patient_management.service import management_to_dict

    s = db_session()
    onboarding = _get_onboarding_or_404(s, onboarding_id)
    management = move_to_management(s, onboarding, _current_user())
    s.commit()
    return ok({"onboarding": onboarding_to_dict(onboarding), "management": management_to_dict(management)}, 201)


@bp.get("/patient/onboarding")
@require_permission("patient.portal")
def patient_onboarding():
    s = db_session()
    onboarding = get_my_onboarding(s, _current_user())
    return ok(onboarding_to_dict(onboarding, include_forms=True) if onboarding else None)


@bp.delete("/onboarding/<int:onboarding_id>")
@require_permission("onboarding.manage")
def onboarding_delete(onboarding_id: int):
    s = db_session()
    onboarding = _get_onboarding_or_404(s, onboarding_id)
    delete_onboarding(s, onboarding, _current_user())
    s.commit()
    return ok({"deleted": onboarding_id})
