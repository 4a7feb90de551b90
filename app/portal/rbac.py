from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g
from sqlalchemy.orm import Session

from app.portal.models import Permission, Role, User

# Permission catalog: key -> display name.
PERMISSIONS: dict[str, str] = {
    "admin.view": "Admin: system status, audit log, email log",
    "email.retry": "Email: retry failed messages",
    "intake.view": "Intake: view applications and pipeline",
    "medical_history.view": "Medical history: view",
    "forms.submit": "Forms: submit patient forms",
    "forms.activate": "Forms: activate / deactivate patient forms",
    "forms.admin_edit": "Forms: edit admin fields",
    "form_defaults.edit": "Forms: edit defaults",
    "onboarding.view": "Onboarding: view",
    "onboarding.manage": "Onboarding: manage",
    "management.view": "Patient management: view",
    "management.manage": "Patient management: manage",
    "billing.view": "Billing: view payments",
    "billing.record": "Billing: record payments and send reminders",
    "billing.manage": "Billing: edit payments and turn off reminders",
    "tasks.manage": "Lead tasks and notes",
    "patients.view_profile": "Patients: view full profile",
    "patients.edit": "Patients: edit contact details",
    "patients.create_account": "Patients: create login accounts",
    "patient.portal": "Patient portal access",
}

STAFF_PERMISSIONS = (
    "intake.view",
    "medical_history.view",
    "onboarding.view",
    "management.view",
    "billing.view",
    "billing.record",
    "tasks.manage",
)
ADMIN_STAFF_PERMISSIONS = STAFF_PERMISSIONS + (
    "admin.view",
    "forms.activate",
    "onboarding.manage",
    "management.manage",
    "patients.create_account",
)
OWNER_PERMISSIONS = ADMIN_STAFF_PERMISSIONS + (
    "email.retry",
    "forms.submit",
    "forms.admin_edit",
    "form_defaults.edit",
    "billing.manage",
    "patients.view_profile",
    "patients.edit",
)

# role key -> (display name, permission keys)
ROLES: dict[str, tuple[str, tuple[str, ...]]] = {
    "owner": ("Owner", OWNER_PERMISSIONS),
    "admin": ("Administrator", OWNER_PERMISSIONS),
    "manager": ("Manager", ADMIN_STAFF_PERMISSIONS),
    "doctor": ("Doctor", STAFF_PERMISSIONS),
    "nurse": ("Nurse", STAFF_PERMISSIONS),
    "psych": ("Psychologist", STAFF_PERMISSIONS),
    "patient": ("Patient", ("patient.portal", "forms.submit")),
}


def ensure_roles(s: Session) -> dict[str, Role]:
    """
    Idempotently create every permission and role above and attach the role's permissions.
    Returns roles by key.
    """
    perms: dict[str, Permission] = {p.key: p for p in s.query(Permission).all()}
    for key, name in PERMISSIONS.items():
        if key not in perms:
            perms[key] = Permission(key=key, name=name)
            s.add(perms[key])

    roles: dict[str, Role] = {r.key: r for r in s.query(Role).all()}
    for key, (name, perm_keys) in ROLES.items():
        role = roles.get(key)
        if not role:
            role = Role(key=key, name=name)
            s.add(role)
            roles[key] = role
        for pk in perm_keys:
            if perms[pk] not in role.permissions:
                role.permissions.append(perms[pk])
    s.flush()
    return roles


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def is_staff(user: User | None) -> bool:
    return user_has_permission(user, "intake.view")


def owns_record(user: User | None, *, patient_id: int | None, email: str | None) -> bool:
    """A patient owns a form when it is linked to their account or carries their email."""
    if not user:
        return False
    if patient_id is not None and patient_id == user.id:
        return True
    return bool(email) and email.strip().lower() == user.email.strip().lower()


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated -> 401 so the client can send the user to its login page.
            if not user or not user.is_active:
                abort(401)
            # Authenticated but unauthorized -> 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            abort(401)
        return fn(*args, **kwargs)

    return wrapped
