from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.portal.audit import record_event
from app.portal.rbac import is_staff
from app.portal.utils import model_to_dict

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.models import User
    from app.portal.modules.lead_tasks.models import LeadNote, LeadTask, UserNotification
    from app.portal.modules.lead_tasks.schemas import NoteUpdate, TaskCreate, TaskStatusUpdate, TaskUpdate


def _display_name(user: "User | None") -> str | None:
    if user is None:
        return None
    return user.full_name or user.email


def task_to_dict(s: "Session", task: "LeadTask") -> dict[str, Any]:
    from app.portal.models import User

    d = model_to_dict(task)
    d["created_by_name"] = _display_name(s.get(User, task.created_by_user_id)) if task.created_by_user_id else None
    d["assigned_to_name"] = _display_name(s.get(User, task.assigned_to_user_id)) if task.assigned_to_user_id else None
    return d


def _require_intake(s: "Session", intake_form_id: int) -> None:
    from app.portal.modules.intake.models import PatientIntakeForm

    if s.get(PatientIntakeForm, intake_form_id) is None:
        raise ValueError("Intake form not found.")


def _check_assignee(s: "Session", user_id: int | None) -> None:
    from app.portal.models import User

    if user_id is not None and not is_staff(s.get(User, user_id)):
        raise ValueError("Tasks can only be assigned to staff members.")


def _notify_assignee(s: "Session", task: "LeadTask", actor: "User") -> None:
    from app.portal.modules.lead_tasks.models import UserNotification

    if task.assigned_to_user_id is None or task.assigned_to_user_id == actor.id:
        return
    s.add(
        UserNotification(
            user_id=task.assigned_to_user_id,
            type="task_assigned",
            entity_type="lead_task",
            entity_id=str(task.id),
            title=f"Task assigned: {task.title}",
            body=task.description,
            link_url=f"/patient-pipeline/patient-profile/{task.intake_form_id}",
        )
    )


def list_tasks(s: "Session", intake_form_id: int) -> list["LeadTask"]:
    from app.portal.modules.lead_tasks.models import LeadTask

    return (
        s.query(LeadTask)
        .filter(LeadTask.intake_form_id == intake_form_id)
        .order_by(LeadTask.created_at.desc(), LeadTask.id.desc())
        .all()
    )


def create_task(s: "Session", intake_form_id: int, data: "TaskCreate", actor: "User") -> "LeadTask":
    from app.portal.modules.lead_tasks.models import LeadTask

    _require_intake(s, intake_form_id)
    _check_assignee(s, data.assigned_to_user_id)
    now = datetime.utcnow()
    task = LeadTask(
        intake_form_id=intake_form_id,
        title=data.title,
        description=data.description,
        due_date=data.due_date,
        assigned_to_user_id=data.assigned_to_user_id,
        created_by_user_id=actor.id,
        status="todo",
        created_at=now,
        updated_at=now,
    )
    s.add(task)
    s.flush()
    _notify_assignee(s, task, actor)
    record_event(
        s,
        actor=actor,
        action="lead_task.create",
        entity_type="LeadTask",
        entity_id=str(task.id),
        metadata={"intake_form_id": intake_form_id, "assigned_to_user_id": task.assigned_to_user_id},
    )
    return task


def update_task(s: "Session", task: "LeadTask", data: "TaskUpdate", actor: "User") -> "LeadTask":
    changes = data.model_dump(exclude_unset=True)
    if "title" in changes and not changes["title"]:
        raise ValueError("Title is required")
    if not changes:
        raise ValueError("No fields to update")
    previous_assignee = task.assigned_to_user_id
    if "assigned_to_user_id" in changes:
        _check_assignee(s, changes["assigned_to_user_id"])
    for key, value in changes.items():
        setattr(task, key, value)
    task.updated_at = datetime.utcnow()
    if task.assigned_to_user_id != previous_assignee:
        _notify_assignee(s, task, actor)
    record_event(
        s,
        actor=actor,
        action="lead_task.update",
        entity_type="LeadTask",
        entity_id=str(task.id),
        metadata={"fields": sorted(changes)},
    )
    return task


def set_task_status(s: "Session", task: "LeadTask", data: "TaskStatusUpdate", actor: "User") -> "LeadTask":
    old = task.status
    task.status = data.status
    task.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="lead_task.status",
        entity_type="LeadTask",
        entity_id=str(task.id),
        metadata={"old": old, "new": task.status},
    )
    return task


def delete_task(s: "Session", task: "LeadTask", actor: "User") -> None:
    record_event(
        s,
        actor=actor,
        action="lead_task.delete",
        entity_type="LeadTask",
        entity_id=str(task.id),
        metadata={"title": task.title, "intake_form_id": task.intake_form_id},
    )
    s.delete(task)


def staff_for_assign(s: "Session") -> list[dict[str, Any]]:
    from app.portal.models import User

    users = s.query(User).filter(User.is_active.is_(True)).all()
    staff = [u for u in users if is_staff(u)]
    staff.sort(key=lambda u: (u.first_name or "", u.email))
    return [{"id": u.id, "name": _display_name(u)} for u in staff]


def my_notifications(s: "Session", user: "User", limit: int = 50) -> list["UserNotification"]:
    from app.portal.modules.lead_tasks.models import UserNotification

    return (
        s.query(UserNotification)
        .filter(UserNotification.user_id == user.id)
        .order_by(UserNotification.created_at.desc(), UserNotification.id.desc())
        .limit(limit)
        .all()
    )


def mark_notification_read(s: "Session", notification_id: int, user: "User") -> "UserNotification":
    from app.portal.modules.lead_tasks.models import UserNotification

    n = s.get(UserNotification, notification_id)
    if n is None or n.user_id != user.id:
        raise ValueError("Notification not found.")
    if n.read_at is None:
        n.read_at = datetime.utcnow()
    return n


def get_note(s: "Session", intake_form_id: int) -> "LeadNote | None":
    from app.portal.modules.lead_tasks.models import LeadNote

    return s.query(LeadNote).filter(LeadNote.intake_form_id == intake_form_id).one_or_none()


def upsert_note(s: "Session", intake_form_id: int, data: "NoteUpdate", actor: "User") -> "LeadNote":
    from app.portal.modules.lead_tasks.models import LeadNote

    _require_intake(s, intake_form_id)
    note = get_note(s, intake_form_id)
    now = datetime.utcnow()
    if note is None:
        note = LeadNote(intake_form_id=intake_form_id, created_at=now)
        s.add(note)
    note.notes = data.notes or ""
    note.updated_by_user_id = actor.id
    note.updated_at = now
    return note
