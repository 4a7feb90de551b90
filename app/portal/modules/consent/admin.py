from __future__ import annotations

from flask import Blueprint, abort, g, request
from sqlalchemy import func

from app.portal.db import db_session
from app.portal.models import User
from app.portal.modules.automation.service import auto_activate_consent
from app.portal.modules.consent.models import IbogaineConsentForm
from app.portal.modules.consent.schemas import ConsentAdminUpdate, ConsentDefaultsUpdate, ConsentSubmit
from app.portal.modules.consent.service import (
    check_access,
    check_activation,
    consent_to_dict,
    default_facilitator_name,
    get_form_defaults,
    set_activation,
    set_form_defaults,
    submit_consent,
    update_admin_fields,
)
from app.portal.modules.intake.models import PatientIntakeForm
from app.portal.rbac import require_login, require_permission
from app.portal.responses import ok, parse_body
from app.portal.utils import normalize_email

bp = Blueprint("consent", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_consent_or_404(s, consent_id: int) -> IbogaineConsentForm:
    consent = s.get(IbogaineConsentForm, consent_id)
    if not consent:
        abort(404)
    return consent


@bp.get("/patient/ibogaine-consent")
@require_permission("patient.portal")
def patient_consent():
    s = db_session()
    return ok(check_activation(s, _current_user()))


@bp.post("/ibogaine-consent")
@require_permission("forms.submit")
def consent_submit():
    s = db_session()
    data = parse_body(ConsentSubmit)
    result = submit_consent(s, data, _current_user())
    s.commit()
    return ok({"consent": consent_to_dict(result["consent"]), "automation": result["automation"]}, 201)


@bp.get("/ibogaine-consent")
@require_permission("intake.view")
def consent_list():
    s = db_session()
    q = s.query(IbogaineConsentForm)
    intake_form_id = request.args.get("intake_form_id", type=int)
    email = normalize_email(request.args.get("email"))
    if intake_form_id:
        q = q.filter(IbogaineConsentForm.intake_form_id == intake_form_id)
    if email:
        q = q.filter(func.lower(IbogaineConsentForm.email) == email)
    rows = q.order_by(IbogaineConsentForm.created_at.desc(), IbogaineConsentForm.id.desc()).all()
    return ok([consent_to_dict(c) for c in rows])


@bp.get("/ibogaine-consent/<int:consent_id>")
@require_login
def consent_detail(consent_id: int):
    s = db_session()
    consent = _get_consent_or_404(s, consent_id)
    check_access(_current_user(), consent)
    return ok(consent_to_dict(consent))


@bp.get("/ibogaine-consent/<int:consent_id>/admin-edit")
@require_permission("forms.admin_edit")
def consent_admin_get(consent_id: int):
    s = db_session()
    consent = _get_consent_or_404(s, consent_id)
    data = consent_to_dict(consent)
    data["default_facilitator_doctor_name"] = default_facilitator_name(s)
    return ok(data)


@bp.put("/ibogaine-consent/<int:consent_id>/admin-fields")
@require_permission("forms.admin_edit")
def consent_admin_update(consent_id: int):
    s = db_session()
    consent = _get_consent_or_404(s, consent_id)
    data = parse_body(ConsentAdminUpdate)
    update_admin_fields(s, consent, data, _current_user())
    s.commit()
    return ok(consent_to_dict(consent))


@bp.post("/ibogaine-consent/<int:consent_id>/activate")
@require_permission("forms.activate")
def consent_activate(consent_id: int):
    s = db_session()
    consent = _get_consent_or_404(s, consent_id)
    set_activation(s, consent, True, _current_user())
    s.commit()
    return ok(consent_to_dict(consent))


@bp.post("/ibogaine-consent/<int:consent_id>/deactivate")
@require_permission("forms.activate")
def consent_deactivate(consent_id: int):
    s = db_session()
    consent = _get_consent_or_404(s, consent_id)
    set_activation(s, consent, False, _current_user())
    s.commit()
    return ok(consent_to_dict(consent))


@bp.post("/intake/<int:intake_id>/ibogaine-consent/activate")
@require_permission("forms.activate")
def consent_activate_for_intake(intake_id: int):
    """Activate (or create) the consent form for an applicant without waiting for the service agreement."""
    s = db_session()
    intake = s.get(PatientIntakeForm, intake_id)
    if not intake:
        abort(404)
    result = auto_activate_consent(
        s,
        intake_form_id=intake.id,
        email=intake.email,
        first_name=intake.first_name,
        last_name=intake.last_name,
        patient_id=intake.patient_id,
        actor=_current_user(),
    )
    s.commit()
    return ok(result)


@bp.get("/form-defaults/ibogaine-consent")
@require_permission("intake.view")
def consent_defaults_get():
    s = db_session()
    defaults = get_form_defaults(s)
    defaults.setdefault("facilitator_doctor_name", default_facilitator_name(s))
    return ok(defaults)


@bp.put("/form-defaults/ibogaine-consent")
@require_permission("form_defaults.edit")
def consent_defaults_put():
    s = db_session()
    data = parse_body(ConsentDefaultsUpdate)
    merged = set_form_defaults(s, data.model_dump(), _current_user())
    s.commit()
    return ok(merged)
