"""Renewal reminders ahead of subscription end dates."""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing.config import get_settings
from billing.db import job_session
from billing.models import Subscription, SubscriptionStatus
from billing.services.notifications import SUBSCRIPTION_EXPIRING, DatabaseNotificationSender
from billing.services.subscriptions import reminder_marker
from billing.utils.time import today_utc, utcnow

logger = logging.getLogger(__name__)


def _reminder_message(days: int, end_date: date) -> str:
    when = "amanhã" if days == 1 else f"em {days} dias"
    return f"Sua assinatura vence {when} ({end_date.strftime('%d/%m/%Y')}). Renove para não perder o acesso."


def send_expiry_reminders_once(
    db: Session | None = None,
    *,
    today: date | None = None,
    horizons: Sequence[int] | None = None,
) -> dict[str, int]:
    """Notify subscribers whose plan ends exactly ``h`` days from ``today``.

    Each horizon is stamped as ``reminder_<h>days`` in ``metadata_json`` in
    the same commit as its notification, so a rerun on the same day sends
    nothing new. Concurrent writers to ``metadata_json`` are last-write-wins.
    """

    today = today or today_utc()
    horizons = list(horizons if horizons is not None else get_settings().REMINDER_HORIZONS_DAYS)
    summary = {"sent": 0, "skipped": 0, "failed": 0}

    with job_session(db) as session:
        for days in horizons:
            target = today + timedelta(days=days)
            marker = reminder_marker(days)
            subscriptions = list(
                session.execute(
                    select(Subscription).where(
                        Subscription.status == SubscriptionStatus.ACTIVE,
                        Subscription.end_date == target,
                    )
                ).scalars()
            )
            for subscription in subscriptions:
                metadata = dict(subscription.metadata_json or {})
                if marker in metadata:
                    summary["skipped"] += 1
                    continue
                try:
                    DatabaseNotificationSender(session).send(
                        subscription.user_id,
                        "Sua assinatura está acabando",
                        _reminder_message(days, subscription.end_date),
                        SUBSCRIPTION_EXPIRING,
                        {
                            "subscription_id": subscription.id,
                            "days_left": days,
                            "end_date": subscription.end_date.isoformat(),
                        },
                    )
                    metadata[marker] = utcnow().isoformat()
                    subscription.metadata_json = metadata
                    session.commit()
                except Exception:  # noqa: BLE001 - one row never aborts the run
                    session.rollback()
                    summary["failed"] += 1
                    logger.exception(
                        "Expiry reminder failed",
                        extra={"subscription_id": subscription.id, "days_left": days},
                    )
                    continue
                summary["sent"] += 1

    logger.info("Expiry reminders finished", extra={**summary, "today": today.isoformat()})
    return summary


__all__ = ["send_expiry_reminders_once"]
