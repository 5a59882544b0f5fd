"""Expiry sweeps for subscriptions and unpaid charges."""
from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from billing.db import job_session
from billing.models import Charge, ChargeStatus, Subscription, SubscriptionStatus
from billing.services.memberships import DatabaseMembershipStore
from billing.services.notifications import SUBSCRIPTION_EXPIRED, DatabaseNotificationSender
from billing.services.subscriptions import has_other_active_subscription
from billing.utils.time import today_utc, utcnow

logger = logging.getLogger(__name__)


def _expire_one(db: Session, subscription_id: int, today: date) -> bool:
    subscription = db.execute(
        select(Subscription).where(Subscription.id == subscription_id).with_for_update()
    ).scalar_one_or_none()
    # Renewed or changed since selection.
    if subscription is None or subscription.status != SubscriptionStatus.ACTIVE or subscription.end_date >= today:
        db.rollback()
        return False

    subscription.status = SubscriptionStatus.EXPIRED
    if not has_other_active_subscription(db, subscription, today=today):
        DatabaseMembershipStore(db).set_active(subscription.user_id, False)
    DatabaseNotificationSender(db).send(
        subscription.user_id,
        "Assinatura expirada",
        "Sua assinatura expirou. Renove para continuar acessando o conteúdo.",
        SUBSCRIPTION_EXPIRED,
        {
            "subscription_id": subscription.id,
            "end_date": subscription.end_date.isoformat(),
            "expired_at": utcnow().isoformat(),
        },
    )
    db.commit()
    logger.info(
        "Subscription expired",
        extra={"subscription_id": subscription_id, "user_id": subscription.user_id},
    )
    return True


def expire_subscriptions_once(db: Session | None = None, *, today: date | None = None) -> dict[str, int]:
    """Expire ``ACTIVE`` subscriptions whose ``end_date`` is before ``today``."""

    today = today or today_utc()
    summary = {"selected": 0, "expired": 0, "failed": 0}
    with job_session(db) as session:
        ids = list(
            session.execute(
                select(Subscription.id)
                .where(Subscription.status == SubscriptionStatus.ACTIVE, Subscription.end_date < today)
                .order_by(Subscription.end_date, Subscription.id)
            ).scalars()
        )
        session.commit()
        summary["selected"] = len(ids)

        for subscription_id in ids:
            try:
                if _expire_one(session, subscription_id, today):
                    summary["expired"] += 1
            except Exception:  # noqa: BLE001 - one row never aborts the sweep
                session.rollback()
                summary["failed"] += 1
                logger.exception("Subscription expiry failed", extra={"subscription_id": subscription_id})

    logger.info("Subscription expiry sweep finished", extra={**summary, "today": today.isoformat()})
    return summary


def expire_stale_charges_once(db: Session | None = None, *, today: date | None = None) -> int:
    """Mark unpaid charges past their due date as ``EXPIRED``; returns the row count."""

    today = today or today_utc()
    with job_session(db) as session:
        result = session.execute(
            update(Charge)
            .where(
                Charge.status.in_((ChargeStatus.CREATED, ChargeStatus.PENDING)),
                Charge.due_date < today,
            )
            .values(status=ChargeStatus.EXPIRED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        session.commit()
    expired = result.rowcount or 0
    logger.info("Stale charges expired", extra={"expired": expired, "today": today.isoformat()})
    return expired


__all__ = ["expire_stale_charges_once", "expire_subscriptions_once"]
