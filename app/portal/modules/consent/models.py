from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.portal.models import Base

CONSENT_ACKNOWLEDGEMENTS = (
    "consent_for_treatment",
    "risks_and_benefits",
    "pre_screening_health_assessment",
    "voluntary_participation",
    "confidentiality",
    "liability_release",
    "payment_collection",
)


class IbogaineConsentForm(Base):
    __tablename__ = "ibogaine_consent_forms"
    __table_args__ = (
        Index("idx_consent_intake", "intake_form_id"),
        Index("idx_consent_email", "email"),
        Index("idx_consent_patient", "patient_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    patient_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    intake_form_id: Mapped[int | None] = mapped_column(
        ForeignKey("patient_intake_forms.id", ondelete="SET NULL"), nullable=True
    )

    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    treatment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    facilitator_doctor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Acknowledgements (all must be true on completion)
    consent_for_treatment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    risks_and_benefits: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pre_screening_health_assessment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    voluntary_participation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confidentiality: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    liability_release: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_collection: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    signature_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    signature_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    signature_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_activated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    activated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    last_reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


class FormDefault(Base):
    """Per-form-type default values, e.g. the facilitator printed on new consent forms."""

    __tablename__ = "form_defaults"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    form_type: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "ibogaine_consent"
    default_values: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
