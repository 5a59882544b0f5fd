"""Student membership flags kept in sync with subscriptions."""
from __future__ import annotations

import logging
from datetime import date
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing.models.membership import Membership

logger = logging.getLogger(__name__)


class MembershipStore(Protocol):
    def set_active(self, user_id: str, active: bool, expires_on: date | None = None) -> None: ...


class DatabaseMembershipStore:
    """Upserts ``memberships`` rows in the caller's session; the caller commits."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def set_active(self, user_id: str, active: bool, expires_on: date | None = None) -> None:
        membership = self.db.execute(
            select(Membership).where(Membership.user_id == user_id)
        ).scalar_one_or_none()
        if membership is None:
            membership = Membership(user_id=user_id)
            self.db.add(membership)
        membership.active = active
        if active:
            membership.expires_on = expires_on
        logger.info(
            "Membership updated",
            extra={"user_id": user_id, "active": active, "expires_on": str(expires_on) if expires_on else None},
        )
