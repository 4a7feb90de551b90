from app.portal.modules.onboarding.models import PRIORITIES
from app.portal.validation import FormSchema, OptionalChoice, OptionalDate, OptionalText


class ManagementUpdate(FormSchema):
    notes: OptionalText = None
    priority: OptionalChoice(PRIORITIES, "Priority must be one of: low, normal, high, urgent") = None
    expected_departure_date: OptionalDate = None


class DischargeRequest(FormSchema):
    status: OptionalChoice(("discharged", "transferred"), "Status must be discharged or transferred") = None
    actual_departure_date: OptionalDate = None
    discharge_notes: OptionalText = None
