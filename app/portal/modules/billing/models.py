from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from app.portal.models import Base


class BillingPayment(Base):
    """A payment recorded by staff against a service agreement."""

    __tablename__ = "patient_billing_payments"
    __table_args__ = (
        Index("idx_billing_agreement", "service_agreement_id"),
        Index("idx_billing_next_reminder", "next_reminder_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    patient_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    service_agreement_id: Mapped[int] = mapped_column(
        ForeignKey("service_agreements.id", ondelete="CASCADE"), nullable=False
    )

    amount_received: Mapped[Decimal] = mapped_column(Numeric(precision=10, scale=2), nullable=False)
    is_full_payment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_received_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    next_reminder_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    balance_reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    recorded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
