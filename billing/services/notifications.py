"""In-app notifications written for students and teachers."""
from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy.orm import Session

from billing.models.notification import Notification

logger = logging.getLogger(__name__)

PAYMENT_APPROVED = "payment_approved"
SALE_NOTIFICATION = "sale_notification"
SUBSCRIPTION_EXPIRED = "subscription_expired"
SUBSCRIPTION_EXPIRING = "subscription_expiring"
AUTO_RENEWAL = "auto_renewal"


class NotificationSender(Protocol):
    def send(
        self,
        user_id: str,
        title: str,
        message: str,
        type: str,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


class DatabaseNotificationSender:
    """Stores notifications in the caller's session; the caller commits."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def send(
        self,
        user_id: str,
        title: str,
        message: str,
        type: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.db.add(
            Notification(
                user_id=user_id,
                title=title,
                message=message,
                type=type,
                metadata_json=metadata or {},
            )
        )
        logger.info("Notification queued", extra={"user_id": user_id, "type": type})
