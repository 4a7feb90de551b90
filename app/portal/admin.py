from datetime import datetime, time, timedelta

from flask import Blueprint, abort, current_app, g, request
from sqlalchemy import text

from app.portal.db import db_session
from app.portal.mailer import retry_message
from app.portal.models import AuditEvent, EmailMessage
from app.portal.rbac import require_permission
from app.portal.responses import ok
from app.portal.utils import model_to_dict, parse_date

bp = Blueprint("admin", __name__)


def _date_arg(name: str):
    raw = (request.args.get(name) or "").strip()
    try:
        return parse_date(raw)
    except ValueError:
        raise ValueError(f"{name} must be YYYY-MM-DD")


@bp.get("/status")
@require_permission("admin.view")
def status():
    s = db_session()
    cfg = current_app.config
    out = {
        "env": (cfg.get("ENV") or "development").strip().lower(),
        "db_connected": False,
        "db_error": None,
        "storage_backend": (cfg.get("STORAGE_BACKEND") or "local").strip().lower(),
        "storage_configured": True,
        "storage_error": None,
        "email_backend": (cfg.get("EMAIL_BACKEND") or "log").strip().lower(),
        "email_configured": True,
        "failed_emails": 0,
    }

    # DB connectivity (lightweight)
    try:
        s.execute(text("SELECT 1"))
        out["db_connected"] = True
        out["failed_emails"] = s.query(EmailMessage).filter(EmailMessage.status == "failed").count()
    except Exception as e:
        out["db_error"] = str(e)

    # Storage config (no network calls)
    if out["storage_backend"] == "s3":
        missing = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not cfg.get(k)]
        out["storage_configured"] = not missing
        if missing:
            out["storage_error"] = f"Missing: {', '.join(missing)}"
    if out["email_backend"] == "resend":
        out["email_configured"] = bool(cfg.get("RESEND_API_KEY"))
    return ok(out)


@bp.get("/audit")
@require_permission("admin.view")
def audit_list():
    """
    Last 200 audit events with simple filters:
    - action (contains)
    - actor_email (contains)
    - entity_type / entity_id (exact)
    - date range (YYYY-MM-DD, inclusive)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    entity_type = (request.args.get("entity_type") or "").strip()
    entity_id = (request.args.get("entity_id") or "").strip()
    date_from = _date_arg("date_from")
    date_to = _date_arg("date_to")

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id:
        q = q.filter(AuditEvent.entity_id == entity_id)
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date (treat as whole day)
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return ok([model_to_dict(e) for e in events])


@bp.get("/emails")
@require_permission("admin.view")
def email_list():
    s = db_session()
    q = s.query(EmailMessage)
    status_filter = (request.args.get("status") or "").strip().lower()
    if status_filter:
        q = q.filter(EmailMessage.status == status_filter)
    recipient = (request.args.get("recipient") or "").strip().lower()
    if recipient:
        q = q.filter(EmailMessage.recipient.like(f"%{recipient}%"))
    rows = q.order_by(EmailMessage.created_at.desc(), EmailMessage.id.desc()).limit(200).all()
    return ok([model_to_dict(m, exclude=("html_body",)) for m in rows])


@bp.post("/emails/<int:message_id>/retry")
@require_permission("email.retry")
def email_retry(message_id: int):
    from app.portal.audit import record_event

    s = db_session()
    msg = s.get(EmailMessage, message_id)
    if not msg:
        abort(404)
    retry_message(msg)
    record_event(
        s,
        actor=g.current_user,
        action="email.retry",
        entity_type="EmailMessage",
        entity_id=str(msg.id),
        metadata={"status": msg.status, "attempts": msg.attempts},
    )
    s.commit()
    return ok(model_to_dict(msg, exclude=("html_body",)))


@bp.get("/debug/permissions")
@require_permission("admin.view")
def debug_permissions():
    """Current user's roles and permissions, for chasing 403s."""
    user = g.current_user
    permissions = sorted(
        ({"role": role.key, "permission": perm.key, "name": perm.name} for role in user.roles for perm in role.permissions),
        key=lambda p: p["permission"],
    )
    return ok({"email": user.email, "roles": user.role_keys, "permissions": permissions})
