from __future__ import annotations

from flask import Blueprint, abort, g, request

from app.portal.auth import user_to_dict
from app.portal.db import db_session
from app.portal.modules.patient_profile.schemas import PatientAccountCreate, PatientDetailsUpdate
from app.portal.modules.patient_profile.service import (
    create_patient_account,
    get_patient_profile,
    update_patient_details,
)
from app.portal.rbac import require_permission
from app.portal.responses import ok, parse_body

bp = Blueprint("patient_profile", __name__)


def _lookup_args() -> dict:
    lookup = {
        "patient_id": request.args.get("patient_id", type=int),
        "email": (request.args.get("email") or "").strip() or None,
        "intake_form_id": request.args.get("intake_form_id", type=int),
    }
    if not any(v is not None for v in lookup.values()):
        raise ValueError("Provide patient_id, email or intake_form_id.")
    return lookup


@bp.get("/patients/profile")
@require_permission("patients.view_profile")
def patient_profile_get():
    s = db_session()
    profile = get_patient_profile(s, **_lookup_args())
    if profile is None:
        abort(404)
    return ok(profile)


@bp.put("/patients/profile")
@require_permission("patients.edit")
def patient_profile_update():
    s = db_session()
    lookup = _lookup_args()
    result = update_patient_details(s, parse_body(PatientDetailsUpdate), g.current_user, **lookup)
    s.commit()
    return ok(result)


@bp.post("/patients/accounts")
@require_permission("patients.create_account")
def patient_account_create():
    s = db_session()
    result = create_patient_account(s, parse_body(PatientAccountCreate), g.current_user)
    s.commit()
    return ok({**result, "user": user_to_dict(result["user"])}, 201)
