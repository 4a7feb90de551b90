from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.portal.models import Base

MANAGEMENT_STATUSES = ("active", "discharged", "transferred")


class PatientManagement(Base):
    """A patient who has arrived at the facility, created from a completed onboarding."""

    __tablename__ = "patient_management"
    __table_args__ = (
        Index("idx_management_status", "status"),
        Index("idx_management_email", "email"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    onboarding_id: Mapped[int | None] = mapped_column(
        ForeignKey("patient_onboarding.id", ondelete="SET NULL"), nullable=True, unique=True
    )
    patient_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    intake_form_id: Mapped[int | None] = mapped_column(
        ForeignKey("patient_intake_forms.id", ondelete="SET NULL"), nullable=True
    )

    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    program_type: Mapped[str] = mapped_column(String(32), nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="normal")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    arrival_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expected_departure_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_departure_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    discharged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    discharge_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
