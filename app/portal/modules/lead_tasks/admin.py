from __future__ import annotations

from flask import Blueprint, abort, g

from app.portal.db import db_session
from app.portal.modules.lead_tasks.models import LeadTask
from app.portal.modules.lead_tasks.schemas import NoteUpdate, TaskCreate, TaskStatusUpdate, TaskUpdate
from app.portal.modules.lead_tasks.service import (
    create_task,
    delete_task,
    get_note,
    list_tasks,
    mark_notification_read,
    my_notifications,
    set_task_status,
    staff_for_assign,
    task_to_dict,
    update_task,
    upsert_note,
)
from app.portal.rbac import require_login, require_permission
from app.portal.responses import ok, parse_body
from app.portal.utils import model_to_dict

bp = Blueprint("lead_tasks", __name__)


def _get_task_or_404(s, task_id: int) -> LeadTask:
    task = s.get(LeadTask, task_id)
    if not task:
        abort(404)
    return task


@bp.get("/leads/<int:intake_id>/tasks")
@require_permission("tasks.manage")
def tasks_list(intake_id: int):
    s = db_session()
    return ok([task_to_dict(s, t) for t in list_tasks(s, intake_id)])


@bp.post("/leads/<int:intake_id>/tasks")
@require_permission("tasks.manage")
def tasks_create(intake_id: int):
    s = db_session()
    task = create_task(s, intake_id, parse_body(TaskCreate), g.current_user)
    s.commit()
    return ok(task_to_dict(s, task), 201)


@bp.patch("/tasks/<int:task_id>")
@require_permission("tasks.manage")
def tasks_update(task_id: int):
    s = db_session()
    task = update_task(s, _get_task_or_404(s, task_id), parse_body(TaskUpdate), g.current_user)
    s.commit()
    return ok(task_to_dict(s, task))


@bp.post("/tasks/<int:task_id>/status")
@require_permission("tasks.manage")
def tasks_status(task_id: int):
    s = db_session()
    task = set_task_status(s, _get_task_or_404(s, task_id), parse_body(TaskStatusUpdate), g.current_user)
    s.commit()
    return ok(task_to_dict(s, task))


@bp.delete("/tasks/<int:task_id>")
@require_permission("tasks.manage")
def tasks_delete(task_id: int):
    s = db_session()
    delete_task(s, _get_task_or_404(s, task_id), g.current_user)
    s.commit()
    return ok({"deleted": task_id})


@bp.get("/staff/assignable")
@require_permission("tasks.manage")
def tasks_staff_for_assign():
    s = db_session()
    return ok(staff_for_assign(s))


@bp.get("/notifications")
@require_login
def notifications_list():
    s = db_session()
    return ok([model_to_dict(n) for n in my_notifications(s, g.current_user)])


@bp.post("/notifications/<int:notification_id>/read")
@require_login
def notifications_mark_read(notification_id: int):
    s = db_session()
    n = mark_notification_read(s, notification_id, g.current_user)
    s.commit()
    return ok(model_to_dict(n))


@bp.get("/leads/<int:intake_id>/note")
@require_permission("tasks.manage")
def lead_note_get(intake_id: int):
    s = db_session()
    note = get_note(s, intake_id)
    return ok({"intake_form_id": intake_id, "notes": note.notes if note else ""})


@bp.put("/leads/<int:intake_id>/note")
@require_permission("tasks.manage")
def lead_note_put(intake_id: int):
    s = db_session()
    note = upsert_note(s, intake_id, parse_body(NoteUpdate), g.current_user)
    s.commit()
    return ok(model_to_dict(note))
