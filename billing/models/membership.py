"""Student membership flag model."""
from __future__ import annotations

from datetime import date

from sqlalchemy import Boolean, Date, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Membership(Base):
    """Whether a student currently has access to paid content."""

    __tablename__ = "memberships"
    __table_args__ = (UniqueConstraint("user_id", name="uq_memberships_user_id"),)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expires_on: Mapped[date | None] = mapped_column(Date, nullable=True)
