from __future__ import annotations

from flask import Blueprint, abort, current_app, g, request

from app.portal.db import db_session
from app.portal.modules.medical_history.models import MedicalHistoryForm
from app.portal.modules.medical_history.schemas import MedicalHistorySubmit
from app.portal.modules.medical_history.service import (
    medical_history_to_dict,
    submit_medical_history,
)
from app.portal.rbac import owns_record, require_login, require_permission, user_has_permission
from app.portal.responses import fail, ok, parse_body
from app.portal.storage import storage_from_config, store_upload

bp = Blueprint("medical_history", __name__)


@bp.post("/medical-history")
def medical_history_submit():
    s = db_session()
    data = parse_body(MedicalHistorySubmit)
    form = submit_medical_history(s, data, actor=getattr(g, "current_user", None))
    s.commit()
    return ok({"id": form.id}, 201)


@bp.post("/medical-history/upload")
def medical_history_upload():
    f = request.files.get("file")
    if not f:
        return fail("No file provided.")
    storage = storage_from_config(current_app.config)
    result = store_upload(
        storage,
        prefix="medical-history",
        filename=f.filename,
        content_type=f.mimetype,
        data=f.read(),
    )
    return ok(result, 201)


@bp.get("/medical-history/<int:form_id>")
@require_login
def medical_history_detail(form_id: int):
    s = db_session()
    form = s.get(MedicalHistoryForm, form_id)
    if not form:
        abort(404)
    user = g.current_user
    if not user_has_permission(user, "medical_history.view") and not owns_record(
        user, patient_id=form.patient_id, email=form.email
    ):
        abort(403)
    return ok(medical_history_to_dict(form))


@bp.get("/intake/<int:intake_id>/medical-history")
@require_permission("medical_history.view")
def medical_history_for_intake(intake_id: int):
    s = db_session()
    form = (
        s.query(MedicalHistoryForm)
        .filter(MedicalHistoryForm.intake_form_id == intake_id)
        .order_by(MedicalHistoryForm.created_at.desc(), MedicalHistoryForm.id.desc())
        .first()
    )
    return ok(medical_history_to_dict(form) if form else None)
