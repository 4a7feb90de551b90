from datetime import datetime
from decimal import Decimal

from app.portal.validation import Amount, FormSchema, OptionalDate, PositiveInt

_AMOUNT_MESSAGE = "Amount received must be a valid number of 0 or more"


class PaymentRecord(FormSchema):
    service_agreement_id: PositiveInt("Service agreement is required") = None
    patient_id: int | None = None
    amount_received: Amount(_AMOUNT_MESSAGE, minimum=Decimal("0"), inclusive=True) = None
    is_full_payment: bool = False
    payment_received_at: datetime | None = None
    next_reminder_date: OptionalDate = None
    send_reminder_now: bool = False


class BalanceReminderRequest(FormSchema):
    payment_record_id: int | None = None
    next_reminder_date: OptionalDate = None


class PaymentUpdate(FormSchema):
    amount_received: Amount(_AMOUNT_MESSAGE, minimum=Decimal("0"), inclusive=True) = None
    is_full_payment: bool = False
    payment_received_at: datetime | None = None
    turn_off_reminder: bool = False
