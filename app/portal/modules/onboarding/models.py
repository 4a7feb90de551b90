from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.portal.models import Base

ONBOARDING_STATUSES = ("in_progress", "completed", "moved_to_management")
PRIORITIES = ("low", "normal", "high", "urgent")
CHECKLIST_FIELDS = ("payment_received", "travel_arranged", "medical_clearance")
DOCUMENT_TYPES = ("ekg", "bloodwork")


class PatientOnboarding(Base):
    __tablename__ = "patient_onboarding"
    __table_args__ = (
        Index("idx_onboarding_email", "email"),
        Index("idx_onboarding_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    patient_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    intake_form_id: Mapped[int | None] = mapped_column(
        ForeignKey("patient_intake_forms.id", ondelete="SET NULL"), nullable=True
    )

    # Patient snapshot (copied from the intake application)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    emergency_contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    emergency_contact_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    program_type: Mapped[str | None] = mapped_column(String(32), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="in_progress")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="normal")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_to_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expected_arrival_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    treatment_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Checklist
    payment_received: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    travel_arranged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    medical_clearance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Form completion flags (mirrors the form rows)
    release_form_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    outing_consent_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    internal_regulations_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    ready_for_tapering_notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    moved_to_management_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    release_form: Mapped["OnboardingReleaseForm | None"] = relationship(
        back_populates="onboarding", cascade="all, delete-orphan", uselist=False, lazy="selectin"
    )
    outing_consent_form: Mapped["OnboardingOutingConsentForm | None"] = relationship(
        back_populates="onboarding", cascade="all, delete-orphan", uselist=False, lazy="selectin"
    )
    internal_regulations_form: Mapped["OnboardingInternalRegulationsForm | None"] = relationship(
        back_populates="onboarding", cascade="all, delete-orphan", uselist=False, lazy="selectin"
    )
    documents: Mapped[list["OnboardingMedicalDocument"]] = relationship(
        back_populates="onboarding", cascade="all, delete-orphan", lazy="selectin"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def forms_completed(self) -> int:
        return sum(
            1
            for flag in (self.release_form_completed, self.outing_consent_completed, self.internal_regulations_completed)
            if flag
        )

    @property
    def all_forms_completed(self) -> bool:
        return self.forms_completed == 3


class OnboardingFormMixin:
    is_activated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    signature_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    signature_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class OnboardingReleaseForm(OnboardingFormMixin, Base):
    __tablename__ = "onboarding_release_forms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    onboarding_id: Mapped[int] = mapped_column(
        ForeignKey("patient_onboarding.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    emergency_contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    emergency_contact_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    emergency_contact_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    emergency_contact_relationship: Mapped[str | None] = mapped_column(String(128), nullable=True)

    voluntary_participation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    medical_conditions_disclosed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    risks_acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    medical_supervision_agreed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confidentiality_understood: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    liability_waiver_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    compliance_agreed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    consent_to_treatment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    onboarding: Mapped[PatientOnboarding] = relationship(back_populates="release_form")


class OnboardingOutingConsentForm(OnboardingFormMixin, Base):
    __tablename__ = "onboarding_outing_consent_forms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    onboarding_id: Mapped[int] = mapped_column(
        ForeignKey("patient_onboarding.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_of_outing: Mapped[date | None] = mapped_column(Date, nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    protocol_compliance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    proper_conduct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    no_harassment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    substance_prohibition: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    financial_penalties_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    additional_consequences_understood: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    declaration_read_understood: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    onboarding: Mapped[PatientOnboarding] = relationship(back_populates="outing_consent_form")


class OnboardingInternalRegulationsForm(OnboardingFormMixin, Base):
    __tablename__ = "onboarding_internal_regulations_forms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    onboarding_id: Mapped[int] = mapped_column(
        ForeignKey("patient_onboarding.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    regulations_read_understood: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rights_acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    obligations_acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    coexistence_rules_acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sanctions_acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    acceptance_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    onboarding: Mapped[PatientOnboarding] = relationship(back_populates="internal_regulations_form")


class OnboardingMedicalDocument(Base):
    """EKG / bloodwork results uploaded during onboarding. One current file per type."""

    __tablename__ = "onboarding_medical_documents"
    __table_args__ = (UniqueConstraint("onboarding_id", "document_type", name="uq_onboarding_document_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    onboarding_id: Mapped[int] = mapped_column(ForeignKey("patient_onboarding.id", ondelete="CASCADE"), nullable=False)
    document_type: Mapped[str] = mapped_column(String(32), nullable=False)  # ekg, bloodwork
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    uploaded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    onboarding: Mapped[PatientOnboarding] = relationship(back_populates="documents")


class TreatmentSchedule(Base):
    """Per-day treatment capacity."""

    __tablename__ = "treatment_schedule"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    treatment_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    capacity_max: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    capacity_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
