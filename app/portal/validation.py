"""
Shared field types for the pydantic form schemas.

Every helper returns an Annotated type carrying its own user-facing message, so a
schema reads as a list of fields and the first failing field produces the error the
patient sees. Fields default to blank and FormSchema validates defaults, so a missing
field reports the same message as an empty one.
"""

import re
from datetime import date
from decimal import Decimal
from typing import Annotated, Any

from email_validator import EmailNotValidError, validate_email
from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict

from app.portal.utils import digits_only, parse_amount

_PHONE_RE = re.compile(r"^[\d\s\(\)\-\+\.]+$")


class FormSchema(BaseModel):
    model_config = ConfigDict(validate_default=True, extra="ignore")


def _to_text(v: Any) -> str:
    if v is None:
        return ""
    return str(v).strip()


def _to_optional_text(v: Any) -> str | None:
    text = _to_text(v)
    return text or None


def is_valid_email(value: str) -> bool:
    """Syntax and domain shape only; no DNS lookup."""
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def RequiredText(message: str):
    def check(v: str) -> str:
        if not v:
            raise ValueError(message)
        return v

    return Annotated[str, BeforeValidator(_to_text), AfterValidator(check)]


OptionalText = Annotated[str | None, BeforeValidator(_to_optional_text)]


def Email(message: str = "Please enter a valid email address"):
    def check(v: str) -> str:
        if not v or not is_valid_email(v):
            raise ValueError(message)
        return v

    return Annotated[str, BeforeValidator(_to_text), AfterValidator(check)]


def _check_optional_email(v: str | None) -> str | None:
    if v is not None and not is_valid_email(v):
        raise ValueError("Please enter a valid email address")
    return v


OptionalEmail = Annotated[str | None, BeforeValidator(_to_optional_text), AfterValidator(_check_optional_email)]


def Phone(required_message: str = "Phone number is required"):
    def check(v: str) -> str:
        if not v:
            raise ValueError(required_message)
        if not _PHONE_RE.match(v):
            raise ValueError("Please enter a valid phone number")
        if len(digits_only(v)) < 10:
            raise ValueError("Phone number must contain at least 10 digits")
        return v

    return Annotated[str, BeforeValidator(_to_text), AfterValidator(check)]


def _check_optional_phone(v: str | None) -> str | None:
    if v is not None and len(digits_only(v)) < 10:
        raise ValueError("Phone number must contain at least 10 digits")
    return v


OptionalPhone = Annotated[str | None, BeforeValidator(_to_optional_text), AfterValidator(_check_optional_phone)]


def _to_date(v: Any) -> date | None:
    if v is None or isinstance(v, date):
        return v
    text = str(v).strip()
    if not text:
        return None
    if not re.match(r"^\d{4}-\d{2}-\d{2}$", text):
        raise ValueError("Date must be in YYYY-MM-DD format")
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise ValueError("Date must be a valid calendar date")


def IsoDate(message: str = "Date is required"):
    def check(v: date | None) -> date:
        if v is None:
            raise ValueError(message)
        return v

    return Annotated[date | None, BeforeValidator(_to_date), AfterValidator(check)]


OptionalDate = Annotated[date | None, BeforeValidator(_to_date)]


def Accepted(message: str):
    """A checkbox the patient must tick."""

    def check(v: Any) -> bool:
        if v is not True:
            raise ValueError(message)
        return True

    return Annotated[Any, AfterValidator(check)]


def Choice(choices: tuple[str, ...], message: str):
    def check(v: str) -> str:
        if v not in choices:
            raise ValueError(message)
        return v

    return Annotated[str, BeforeValidator(_to_text), AfterValidator(check)]


def OptionalChoice(choices: tuple[str, ...], message: str):
    def check(v: str | None) -> str | None:
        if v is not None and v not in choices:
            raise ValueError(message)
        return v

    return Annotated[str | None, BeforeValidator(_to_optional_text), AfterValidator(check)]


def Amount(message: str, *, minimum: Decimal = Decimal("0"), inclusive: bool = False, maximum: Decimal | None = None):
    """Money or percentage typed by staff; currency symbols and commas are ignored."""

    def check(v: Any) -> Decimal:
        num = parse_amount(v)
        if num is None:
            raise ValueError(message)
        if num < minimum or (num == minimum and not inclusive):
            raise ValueError(message)
        if maximum is not None and num > maximum:
            raise ValueError(message)
        return num

    return Annotated[Any, AfterValidator(check)]


def _positive_int(v: Any, message: str) -> int:
    if isinstance(v, bool):
        raise ValueError(message)
    if isinstance(v, int):
        num = v
    else:
        text = _to_text(v)
        if not text.isdigit():
            raise ValueError(message)
        num = int(text)
    if num <= 0:
        raise ValueError(message)
    return num


def PositiveInt(message: str):
    def check(v: Any) -> int:
        return _positive_int(v, message)

    return Annotated[Any, AfterValidator(check)]


def OptionalPositiveInt(message: str):
    """Blank -> None; anything else must be a positive whole number."""

    def check(v: Any) -> int | None:
        if v is None or _to_text(v) == "":
            return None
        return _positive_int(v, message)

    return Annotated[Any, AfterValidator(check)]
