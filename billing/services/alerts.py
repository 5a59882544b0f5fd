"""Alert service helpers."""
import logging
from typing import Any

from sqlalchemy.orm import Session

from billing.models.alert import Alert

logger = logging.getLogger(__name__)

WEBHOOK_RETRY_EXHAUSTED = "WEBHOOK_RETRY_EXHAUSTED"
PAYMENT_ON_CANCELLED_CHARGE = "PAYMENT_ON_CANCELLED_CHARGE"
PAYMENT_ON_CANCELLED_SUBSCRIPTION = "PAYMENT_ON_CANCELLED_SUBSCRIPTION"


def create_alert(db: Session, *, alert_type: str, message: str, payload: dict[str, Any]) -> Alert:
    """Stage an alert in the caller's transaction."""

    alert = Alert(type=alert_type, message=message[:255], payload_json=payload)
    db.add(alert)
    db.flush()
    logger.warning("Alert created", extra={"type": alert_type, "payload": payload})
    return alert
