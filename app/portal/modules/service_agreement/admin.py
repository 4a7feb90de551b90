from __future__ import annotations

from flask import Blueprint, abort, current_app, g, request
from sqlalchemy import func

from app.portal.db import db_session
from app.portal.models import User
from app.portal.modules.service_agreement.models import ServiceAgreement
from app.portal.modules.service_agreement.schemas import (
    ServiceAgreementAdminUpdate,
    ServiceAgreementCreate,
    ServiceAgreementPatientSubmit,
    ServiceAgreementUpgrade,
)
from app.portal.modules.service_agreement.service import (
    agreement_to_dict,
    check_access,
    create_service_agreement,
    get_patient_service_agreement,
    patient_view,
    set_activation,
    submit_service_agreement,
    update_admin_fields,
    upgrade_service_agreement,
)
from app.portal.rbac import require_login, require_permission
from app.portal.responses import fail, json_body, ok, parse_body
from app.portal.storage import storage_from_config, store_upload
from app.portal.utils import normalize_email

bp = Blueprint("service_agreement", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_agreement_or_404(s, agreement_id: int) -> ServiceAgreement:
    agreement = s.get(ServiceAgreement, agreement_id)
    if not agreement:
        abort(404)
    return agreement


@bp.post("/service-agreements")
@require_permission("forms.admin_edit")
def service_agreement_create():
    s = db_session()
    data = parse_body(ServiceAgreementCreate)
    agreement = create_service_agreement(s, data, _current_user())
    s.commit()
    return ok(agreement_to_dict(agreement), 201)


@bp.get("/service-agreements")
@require_permission("intake.view")
def service_agreement_list():
    s = db_session()
    q = s.query(ServiceAgreement)
    intake_form_id = request.args.get("intake_form_id", type=int)
    email = normalize_email(request.args.get("email"))
    if intake_form_id:
        q = q.filter(ServiceAgreement.intake_form_id == intake_form_id)
    if email:
        q = q.filter(func.lower(ServiceAgreement.patient_email) == email)
    rows = q.order_by(ServiceAgreement.created_at.desc(), ServiceAgreement.id.desc()).all()
    return ok([agreement_to_dict(a) for a in rows])


@bp.get("/service-agreements/<int:agreement_id>")
@require_login
def service_agreement_detail(agreement_id: int):
    s = db_session()
    agreement = _get_agreement_or_404(s, agreement_id)
    user = _current_user()
    check_access(user, agreement)
    return ok(agreement_to_dict(agreement))


@bp.get("/patient/service-agreement")
@require_permission("patient.portal")
def patient_service_agreement():
    s = db_session()
    agreement = get_patient_service_agreement(s, _current_user())
    return ok(patient_view(agreement))


@bp.post("/service-agreements/<int:agreement_id>/submit")
@require_permission("forms.submit")
def service_agreement_submit(agreement_id: int):
    s = db_session()
    agreement = _get_agreement_or_404(s, agreement_id)
    data = parse_body(ServiceAgreementPatientSubmit)
    result = submit_service_agreement(s, agreement, data, _current_user())
    s.commit()
    return ok({"agreement": agreement_to_dict(result["agreement"]), "automation": result["automation"]})


@bp.post("/service-agreements/upload")
@require_permission("forms.submit")
def service_agreement_upload():
    f = request.files.get("file")
    if not f:
        return fail("No file provided.")
    result = store_upload(
        storage_from_config(current_app.config),
        prefix="service-agreements",
        filename=f.filename,
        content_type=f.mimetype,
        data=f.read(),
    )
    return ok(result, 201)


@bp.get("/service-agreements/<int:agreement_id>/admin-edit")
@require_permission("forms.admin_edit")
def service_agreement_admin_get(agreement_id: int):
    s = db_session()
    agreement = _get_agreement_or_404(s, agreement_id)
    return ok(agreement_to_dict(agreement))


@bp.put("/service-agreements/<int:agreement_id>/admin-fields")
@require_permission("forms.admin_edit")
def service_agreement_admin_update(agreement_id: int):
    s = db_session()
    agreement = _get_agreement_or_404(s, agreement_id)
    payload = json_body()
    reason = (payload.pop("reason", None) or "").strip() or None
    data = parse_body(ServiceAgreementAdminUpdate, payload)
    update_admin_fields(s, agreement, data, _current_user(), reason=reason)
    s.commit()
    return ok(agreement_to_dict(agreement))


@bp.post("/service-agreements/<int:agreement_id>/upgrade")
@require_permission("forms.admin_edit")
def service_agreement_upgrade(agreement_id: int):
    s = db_session()
    agreement = _get_agreement_or_404(s, agreement_id)
    data = parse_body(ServiceAgreementUpgrade)
    upgrade_service_agreement(s, agreement, data, _current_user())
    s.commit()
    return ok(agreement_to_dict(agreement))


@bp.post("/service-agreements/<int:agreement_id>/activate")
@require_permission("forms.activate")
def service_agreement_activate(agreement_id: int):
    s = db_session()
    agreement = _get_agreement_or_404(s, agreement_id)
    set_activation(s, agreement, True, _current_user())
    s.commit()
    return ok(agreement_to_dict(agreement))


@bp.post("/service-agreements/<int:agreement_id>/deactivate")
@require_permission("forms.activate")
def service_agreement_deactivate(agreement_id: int):
    s = db_session()
    agreement = _get_agreement_or_404(s, agreement_id)
    set_activation(s, agreement, False, _current_user())
    s.commit()
    return ok(agreement_to_dict(agreement))
