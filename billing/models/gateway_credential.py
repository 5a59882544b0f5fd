"""Payment gateway credential model."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class GatewayCredential(Base):
    """Platform-wide credentials for one payment gateway.

    The unique constraint on ``gateway_type`` keeps a single row per gateway,
    which is the only row the gateway client ever reads.
    """

    __tablename__ = "gateway_credentials"
    __table_args__ = (UniqueConstraint("gateway_type", name="uq_gateway_credentials_gateway_type"),)

    gateway_type: Mapped[str] = mapped_column(String(50), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    public_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_secret: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_sandbox: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    account_nickname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
