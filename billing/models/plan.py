"""Subscription plan catalog model."""
from __future__ import annotations

import enum
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Enum as SqlEnum, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class PlanInterval(str, enum.Enum):
    """Billing intervals offered by teachers."""

    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


class Plan(Base):
    """A teacher's subscription plan."""

    __tablename__ = "plans"
    __table_args__ = (CheckConstraint("price > 0", name="ck_plan_positive_price"),)

    teacher_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="BRL")
    interval: Mapped[PlanInterval] = mapped_column(
        SqlEnum(PlanInterval, name="plan_interval"), nullable=False, default=PlanInterval.MONTHLY
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
