"""Subscription model."""
from __future__ import annotations

import enum
from datetime import date

from sqlalchemy import Boolean, Date, Enum as SqlEnum, ForeignKey, Index, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class SubscriptionStatus(str, enum.Enum):
    """Stored subscription statuses."""

    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    PAUSED = "PAUSED"


class SubscriptionHealth(str, enum.Enum):
    """Statuses derived from ``end_date`` for display; never stored."""

    ACTIVE = "ACTIVE"
    DUE_SOON = "DUE_SOON"
    OVERDUE = "OVERDUE"


class Subscription(Base):
    """A student's time-bounded entitlement to a teacher's plan."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_status_end_date", "status", "end_date"),
        Index("ix_subscriptions_user_plan", "user_id", "plan_id"),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    teacher_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("plans.id"), nullable=False)
    status: Mapped[SubscriptionStatus] = mapped_column(
        SqlEnum(SubscriptionStatus, name="subscription_status"),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    metadata_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
