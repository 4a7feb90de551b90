from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.portal.models import Base

PROGRAM_TYPES = ("neurological", "mental_health", "addiction")


class PatientIntakeForm(Base):
    __tablename__ = "patient_intake_forms"
    __table_args__ = (
        Index("idx_intake_email", "email"),
        Index("idx_intake_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    patient_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Who filled it: "self" or "someone_else"
    filled_by: Mapped[str] = mapped_column(String(32), nullable=False, default="self")
    filler_relationship: Mapped[str | None] = mapped_column(String(128), nullable=True)
    filler_first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    filler_last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    filler_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    filler_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    program_type: Mapped[str] = mapped_column(String(32), nullable=False)  # neurological, mental_health, addiction

    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(64), nullable=False)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    gender: Mapped[str | None] = mapped_column(String(32), nullable=True)

    address_line_1: Mapped[str] = mapped_column(String(255), nullable=False)
    address_line_2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(128), nullable=False)
    country: Mapped[str] = mapped_column(String(128), nullable=False)
    zip_code: Mapped[str] = mapped_column(String(32), nullable=False)

    emergency_contact_first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    emergency_contact_last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    emergency_contact_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    emergency_contact_phone: Mapped[str] = mapped_column(String(64), nullable=False)
    emergency_contact_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    emergency_contact_relationship: Mapped[str | None] = mapped_column(String(128), nullable=True)

    privacy_policy_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Request metadata
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def filler_name(self) -> str:
        return " ".join(p for p in (self.filler_first_name, self.filler_last_name) if p)
