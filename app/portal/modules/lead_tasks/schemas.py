from app.portal.modules.lead_tasks.models import TASK_STATUSES
from app.portal.validation import Choice, FormSchema, OptionalDate, OptionalText, RequiredText


class TaskCreate(FormSchema):
    title: RequiredText("Title is required") = ""
    description: OptionalText = None
    due_date: OptionalDate = None
    assigned_to_user_id: int | None = None


class TaskUpdate(FormSchema):
    title: OptionalText = None
    description: OptionalText = None
    due_date: OptionalDate = None
    assigned_to_user_id: int | None = None


class TaskStatusUpdate(FormSchema):
    status: Choice(TASK_STATUSES, "Status must be one of: todo, in_progress, done") = ""


class NoteUpdate(FormSchema):
    notes: OptionalText = None
