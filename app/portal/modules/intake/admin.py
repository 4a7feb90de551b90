from __future__ import annotations

from flask import Blueprint, abort, g, request

from app.portal.db import db_session
from app.portal.modules.intake.models import PatientIntakeForm
from app.portal.modules.intake.schemas import IntakeSubmit
from app.portal.modules.intake.service import intake_to_dict, list_intake_forms, submit_intake_form
from app.portal.rbac import require_permission
from app.portal.responses import ok, parse_body

bp = Blueprint("intake", __name__)


@bp.post("/intake")
def intake_submit():
    """Public application form."""
    s = db_session()
    data = parse_body(IntakeSubmit)
    form = submit_intake_form(
        s,
        data,
        actor=getattr(g, "current_user", None),
        ip_address=(request.headers.get("X-Forwarded-For") or request.remote_addr or "").split(",")[0].strip() or None,
        user_agent=request.headers.get("User-Agent"),
    )
    s.commit()
    return ok({"id": form.id}, 201)


@bp.get("/intake")
@require_permission("intake.view")
def intake_list():
    s = db_session()
    rows = list_intake_forms(
        s,
        search=(request.args.get("q") or "").strip() or None,
        program_type=(request.args.get("program_type") or "").strip() or None,
    )
    return ok(rows)


@bp.get("/intake/<int:intake_id>")
@require_permission("intake.view")
def intake_detail(intake_id: int):
    s = db_session()
    form = s.get(PatientIntakeForm, intake_id)
    if not form:
        abort(404)
    return ok(intake_to_dict(form))
