from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

_MONEY_NOISE = re.compile(r"[\s$,]")
_AMOUNT_RE = re.compile(r"^-?(\d+(\.\d*)?|\.\d+)$")


def parse_date(s: str | date | None) -> date | None:
    """Parse a YYYY-MM-DD date string. Blank -> None."""
    if s is None or isinstance(s, date):
        return s
    s = s.strip()
    if not s:
        return None
    return date.fromisoformat(s)


def parse_amount(value: Any) -> Decimal | None:
    """
    Money parsing: '$1,250.00' -> Decimal('1250.00'), '-5' stays negative.
    Only '$', ',' and whitespace are ignored; anything else, NaN and infinities -> None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            num = Decimal(str(value))
        except InvalidOperation:
            return None
        return num if num.is_finite() else None
    cleaned = _MONEY_NOISE.sub("", str(value))
    if not _AMOUNT_RE.match(cleaned):
        return None
    return Decimal(cleaned)


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def digits_only(value: str | None) -> str:
    return re.sub(r"\D", "", value or "")


def blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def model_to_dict(obj: Any, *, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
    """Column values of an ORM row, JSON-ready (dates as ISO strings, decimals as floats)."""
    out: dict[str, Any] = {}
    for col in obj.__table__.columns:
        if col.key in exclude:
            continue
        v = getattr(obj, col.key)
        if isinstance(v, (datetime, date)):
            v = v.isoformat()
        elif isinstance(v, Decimal):
            v = float(v)
        out[col.key] = v
    return out
