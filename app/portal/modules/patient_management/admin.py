from __future__ import annotations

from flask import Blueprint, abort, g, request

from app.portal.db import db_session
from app.portal.modules.patient_management.models import PatientManagement
from app.portal.modules.patient_management.schemas import DischargeRequest, ManagementUpdate
from app.portal.modules.patient_management.service import (
    discharge,
    list_management,
    management_to_dict,
    update_management,
)
from app.portal.rbac import require_permission
from app.portal.responses import ok, parse_body

bp = Blueprint("patient_management", __name__)


def _get_or_404(s, management_id: int) -> PatientManagement:
    m = s.get(PatientManagement, management_id)
    if not m:
        abort(404)
    return m


@bp.get("/patient-management")
@require_permission("management.view")
def management_list():
    s = db_session()
    return ok(list_management(s, status=request.args.get("status")))


@bp.get("/patient-management/<int:management_id>")
@require_permission("management.view")
def management_detail(management_id: int):
    s = db_session()
    return ok(management_to_dict(_get_or_404(s, management_id)))


@bp.patch("/patient-management/<int:management_id>")
@require_permission("management.manage")
def management_update(management_id: int):
    s = db_session()
    m = _get_or_404(s, management_id)
    update_management(s, m, parse_body(ManagementUpdate), g.current_user)
    s.commit()
    return ok(management_to_dict(m))


@bp.post("/patient-management/<int:management_id>/discharge")
@require_permission("management.manage")
def management_discharge(management_id: int):
    s = db_session()
    m = _get_or_404(s, management_id)
    discharge(s, m, parse_body(DischargeRequest), g.current_user)
    s.commit()
    return ok(management_to_dict(m))
