from __future__ import annotations

from typing import Any, TypeVar

from flask import jsonify, request
from pydantic import BaseModel, ValidationError

M = TypeVar("M", bound=BaseModel)


def ok(data: Any = None, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def fail(error: str, status: int = 400):
    return jsonify({"success": False, "error": error}), status


def first_error(exc: ValidationError) -> str:
    """
    The first validation problem as a single user-facing sentence.
    """
    errors = exc.errors()
    if not errors:
        return "Invalid input."
    err = errors[0]
    msg = str(err.get("msg") or "Invalid input.")
    if msg.startswith("Value error, "):
        return msg[len("Value error, "):]
    field = ".".join(str(p) for p in err.get("loc") or ()) or "input"
    if err.get("type") == "missing":
        return f"{field} is required"
    return f"{field}: {msg}"


def json_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        payload = request.form.to_dict()
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object.")
    payload.pop("csrf_token", None)
    return payload


def parse_body(schema: type[M], payload: dict[str, Any] | None = None) -> M:
    """Validate the request body against a schema. Raises pydantic.ValidationError."""
    return schema.model_validate(json_body() if payload is None else payload)
