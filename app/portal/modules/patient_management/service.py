from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from app.portal.audit import record_event
from app.portal.utils import model_to_dict

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.models import User
    from app.portal.modules.patient_management.models import PatientManagement
    from app.portal.modules.patient_management.schemas import DischargeRequest, ManagementUpdate


def management_to_dict(m: "PatientManagement") -> dict[str, Any]:
    d = model_to_dict(m)
    d["full_name"] = m.full_name
    return d


def list_management(s: "Session", *, status: str | None = None) -> list[dict[str, Any]]:
    from app.portal.modules.patient_management.models import MANAGEMENT_STATUSES, PatientManagement

    q = s.query(PatientManagement)
    if status and status != "all":
        if status not in MANAGEMENT_STATUSES:
            raise ValueError("Status must be one of: active, discharged, transferred")
        q = q.filter(PatientManagement.status == status)
    rows = q.order_by(PatientManagement.arrival_date.desc(), PatientManagement.id.desc()).all()
    return [management_to_dict(m) for m in rows]


def update_management(
    s: "Session", m: "PatientManagement", data: "ManagementUpdate", actor: "User"
) -> "PatientManagement":
    changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if not (k == "priority" and v is None)}
    if not changes:
        raise ValueError("No fields to update")
    for key, value in changes.items():
        setattr(m, key, value)
    m.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="management.update",
        entity_type="PatientManagement",
        entity_id=str(m.id),
        metadata=changes,
    )
    return m


def discharge(s: "Session", m: "PatientManagement", data: "DischargeRequest", actor: "User") -> "PatientManagement":
    if m.status != "active":
        raise ValueError("Patient has already been discharged.")
    now = datetime.utcnow()
    m.status = data.status or "discharged"
    m.discharged_at = now
    m.actual_departure_date = data.actual_departure_date or date.today()
    if data.discharge_notes:
        m.discharge_notes = data.discharge_notes
    m.updated_at = now
    record_event(
        s,
        actor=actor,
        action="management.discharge",
        entity_type="PatientManagement",
        entity_id=str(m.id),
        metadata={"status": m.status, "actual_departure_date": m.actual_departure_date},
    )
    return m
