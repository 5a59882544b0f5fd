"""Charge ledger model."""
from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, Enum as SqlEnum, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ChargeStatus(str, enum.Enum):
    """Lifecycle of a charge."""

    CREATED = "CREATED"
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


TERMINAL_CHARGE_STATUSES = frozenset({ChargeStatus.PAID, ChargeStatus.CANCELLED})


class Charge(Base):
    """A monetary request from a teacher to a student."""

    __tablename__ = "charges"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_charge_positive_amount"),
        Index("ix_charges_status", "status"),
        Index("ix_charges_status_due_date", "status", "due_date"),
        Index("ix_charges_subscription_due", "subscription_id", "due_date"),
    )

    teacher_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    plan_id: Mapped[int | None] = mapped_column(ForeignKey("plans.id"), nullable=True)
    subscription_id: Mapped[int | None] = mapped_column(ForeignKey("subscriptions.id"), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="BRL")
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[ChargeStatus] = mapped_column(
        SqlEnum(ChargeStatus, name="charge_status"), nullable=False, default=ChargeStatus.CREATED
    )
    payment_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    preference_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def external_reference(self) -> str:
        return f"charge_{self.id}"
