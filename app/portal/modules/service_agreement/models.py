from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.portal.models import Base


class ServiceAgreement(Base):
    """
    Financial agreement for a program. Staff fill in the fee block and provider signature
    and activate it; the patient then picks a payment method and signs.
    """

    __tablename__ = "service_agreements"
    __table_args__ = (
        Index("idx_service_agreements_intake", "intake_form_id"),
        Index("idx_service_agreements_email", "patient_email"),
        Index("idx_service_agreements_patient", "patient_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    patient_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    intake_form_id: Mapped[int | None] = mapped_column(
        ForeignKey("patient_intake_forms.id", ondelete="SET NULL"), nullable=True
    )

    patient_first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    patient_last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    patient_email: Mapped[str] = mapped_column(String(320), nullable=False)
    patient_phone_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    program_type: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Fee block (staff)
    total_program_fee: Mapped[Decimal] = mapped_column(Numeric(precision=10, scale=2), nullable=False)
    deposit_amount: Mapped[Decimal] = mapped_column(Numeric(precision=10, scale=2), nullable=False)
    deposit_percentage: Mapped[Decimal] = mapped_column(Numeric(precision=5, scale=2), nullable=False)
    remaining_balance: Mapped[Decimal] = mapped_column(Numeric(precision=10, scale=2), nullable=False)
    number_of_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Patient completion
    payment_method: Mapped[str | None] = mapped_column(String(128), nullable=True)
    patient_signature_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    patient_signature_first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    patient_signature_last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    patient_signature_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    patient_signature_data: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Provider signature (staff)
    provider_signature_name: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_signature_first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    provider_signature_last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    provider_signature_date: Mapped[date] = mapped_column(Date, nullable=False)
    provider_signature_data: Mapped[str | None] = mapped_column(Text, nullable=True)

    uploaded_file_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    uploaded_file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Activation
    is_activated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    activated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    last_reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    @property
    def patient_name(self) -> str:
        return f"{self.patient_first_name} {self.patient_last_name}".strip()

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None
