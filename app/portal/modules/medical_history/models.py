from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.portal.models import Base


class MedicalHistoryForm(Base):
    __tablename__ = "medical_history_forms"
    __table_args__ = (
        Index("idx_medical_history_intake", "intake_form_id"),
        Index("idx_medical_history_email", "email"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    intake_form_id: Mapped[int | None] = mapped_column(
        ForeignKey("patient_intake_forms.id", ondelete="SET NULL"), nullable=True
    )
    patient_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Identity
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)
    gender: Mapped[str] = mapped_column(String(16), nullable=False)  # M, F, other
    weight: Mapped[str] = mapped_column(String(64), nullable=False)
    height: Mapped[str] = mapped_column(String(64), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    emergency_contact_name: Mapped[str] = mapped_column(String(255), nullable=False)
    emergency_contact_phone: Mapped[str] = mapped_column(String(64), nullable=False)

    # Care team
    primary_care_provider: Mapped[str] = mapped_column(String(255), nullable=False)
    other_physicians: Mapped[str | None] = mapped_column(Text, nullable=True)
    practitioners_therapists: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Health history
    current_health_status: Mapped[str] = mapped_column(Text, nullable=False)
    reason_for_coming: Mapped[str] = mapped_column(Text, nullable=False)
    medical_conditions: Mapped[str] = mapped_column(Text, nullable=False)
    substance_use_history: Mapped[str] = mapped_column(Text, nullable=False)
    family_personal_health_info: Mapped[str | None] = mapped_column(Text, nullable=True)
    food_allergies_intolerance: Mapped[str | None] = mapped_column(Text, nullable=True)
    medications_medical_use: Mapped[str | None] = mapped_column(Text, nullable=True)
    medications_mental_health: Mapped[str | None] = mapped_column(Text, nullable=True)
    mental_health_conditions: Mapped[str | None] = mapped_column(Text, nullable=True)
    mental_health_treatment: Mapped[str] = mapped_column(Text, nullable=False)
    allergies: Mapped[str] = mapped_column(Text, nullable=False)
    previous_psychedelics_experiences: Mapped[str] = mapped_column(Text, nullable=False)
    dietary_lifestyle_habits: Mapped[str] = mapped_column(Text, nullable=False)
    physical_activity_exercise: Mapped[str] = mapped_column(Text, nullable=False)

    # Clinical evaluations on record
    has_physical_examination: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_cardiac_evaluation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_liver_function_tests: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_pregnant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Supporting document
    uploaded_file_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    uploaded_file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    signature_data: Mapped[str] = mapped_column(Text, nullable=False)
    signature_date: Mapped[date] = mapped_column(Date, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
