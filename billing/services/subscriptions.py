"""Subscription queries and period arithmetic."""
from __future__ import annotations

import logging
from datetime import date

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from billing.models import Charge, Plan, PlanInterval, Subscription, SubscriptionHealth, SubscriptionStatus
from billing.services.alerts import PAYMENT_ON_CANCELLED_SUBSCRIPTION, create_alert
from billing.utils.errors import error_response
from billing.utils.time import add_months

logger = logging.getLogger(__name__)

DUE_SOON_DAYS = 7
REMINDER_MARKER_PREFIX = "reminder_"

_INTERVAL_MONTHS = {
    PlanInterval.MONTHLY: 1,
    PlanInterval.QUARTERLY: 3,
    PlanInterval.YEARLY: 12,
}


def add_interval(value: date, interval: PlanInterval) -> date:
    return add_months(value, _INTERVAL_MONTHS[interval])


def derive_subscription_health(end_date: date, today: date) -> tuple[SubscriptionHealth, int]:
    """Return the display status and the days left until ``end_date``."""

    days_left = (end_date - today).days
    if days_left > DUE_SOON_DAYS:
        return SubscriptionHealth.ACTIVE, days_left
    if days_left > 0:
        return SubscriptionHealth.DUE_SOON, days_left
    return SubscriptionHealth.OVERDUE, days_left


def reminder_marker(days: int) -> str:
    return f"{REMINDER_MARKER_PREFIX}{days}days"


def list_subscriptions(
    db: Session,
    *,
    user_id: str | None = None,
    teacher_id: str | None = None,
    status: SubscriptionStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Subscription]:
    stmt = select(Subscription)
    if user_id is not None:
        stmt = stmt.where(Subscription.user_id == user_id)
    if teacher_id is not None:
        stmt = stmt.where(Subscription.teacher_id == teacher_id)
    if status is not None:
        stmt = stmt.where(Subscription.status == status)
    stmt = stmt.order_by(Subscription.end_date.desc(), Subscription.id.desc()).offset(offset).limit(limit)
    return list(db.execute(stmt).scalars())


def get_subscription(db: Session, subscription_id: int) -> Subscription:
    subscription = db.get(Subscription, subscription_id)
    if subscription is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response(
                "SUBSCRIPTION_NOT_FOUND", "Subscription not found.", {"subscription_id": subscription_id}
            ),
        )
    return subscription


def _lock_subscription(db: Session, subscription_id: int) -> Subscription | None:
    return db.execute(
        select(Subscription).where(Subscription.id == subscription_id).with_for_update()
    ).scalar_one_or_none()


def _find_plan_subscription(db: Session, *, user_id: str, plan_id: int) -> Subscription | None:
    stmt = (
        select(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.plan_id == plan_id,
            Subscription.status != SubscriptionStatus.CANCELLED,
        )
        .order_by(Subscription.end_date.desc(), Subscription.id.desc())
        .limit(1)
        .with_for_update()
    )
    return db.execute(stmt).scalar_one_or_none()


def apply_paid_charge(db: Session, charge: Charge, *, reference: date) -> Subscription | None:
    """Create or extend the subscription a paid charge pays for.

    The new period starts at the later of ``reference`` (the approval date)
    and the current ``end_date``, so ``end_date`` never moves backwards.
    Returns ``None`` for one-off charges with neither plan nor subscription,
    and for charges tied to a cancelled subscription, which stays cancelled
    and gets an operator alert instead.
    """

    subscription: Subscription | None = None
    if charge.subscription_id is not None:
        subscription = _lock_subscription(db, charge.subscription_id)
        if subscription is not None and subscription.status == SubscriptionStatus.CANCELLED:
            create_alert(
                db,
                alert_type=PAYMENT_ON_CANCELLED_SUBSCRIPTION,
                message=f"Payment received for cancelled subscription {subscription.id}",
                payload={
                    "charge_id": charge.id,
                    "subscription_id": subscription.id,
                    "user_id": subscription.user_id,
                },
            )
            return None
    elif charge.plan_id is not None:
        subscription = _find_plan_subscription(db, user_id=charge.student_id, plan_id=charge.plan_id)
    else:
        return None

    plan_id = subscription.plan_id if subscription is not None else charge.plan_id
    plan = db.get(Plan, plan_id) if plan_id is not None else None
    if plan is None:
        logger.warning(
            "Paid charge references a missing plan",
            extra={"charge_id": charge.id, "plan_id": plan_id},
        )
        return None

    if subscription is None:
        subscription = Subscription(
            user_id=charge.student_id,
            teacher_id=charge.teacher_id,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE,
            start_date=reference,
            end_date=add_interval(reference, plan.interval),
            auto_renew=False,
            metadata_json={},
        )
        db.add(subscription)
        db.flush()
        logger.info(
            "Subscription created from payment",
            extra={"subscription_id": subscription.id, "charge_id": charge.id},
        )
    else:
        previous_end = subscription.end_date
        subscription.end_date = add_interval(max(reference, previous_end), plan.interval)
        if subscription.status != SubscriptionStatus.ACTIVE:
            subscription.start_date = max(reference, previous_end)
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.metadata_json = {
            key: value
            for key, value in (subscription.metadata_json or {}).items()
            if not key.startswith(REMINDER_MARKER_PREFIX)
        }
        logger.info(
            "Subscription extended",
            extra={
                "subscription_id": subscription.id,
                "charge_id": charge.id,
                "previous_end": previous_end.isoformat(),
                "new_end": subscription.end_date.isoformat(),
            },
        )

    charge.subscription_id = subscription.id
    return subscription


def has_other_active_subscription(db: Session, subscription: Subscription, *, today: date) -> bool:
    stmt = select(Subscription.id).where(
        Subscription.user_id == subscription.user_id,
        Subscription.id != subscription.id,
        Subscription.status == SubscriptionStatus.ACTIVE,
        Subscription.end_date >= today,
    )
    return db.execute(stmt.limit(1)).first() is not None


__all__ = [
    "DUE_SOON_DAYS",
    "add_interval",
    "apply_paid_charge",
    "derive_subscription_health",
    "get_subscription",
    "has_other_active_subscription",
    "list_subscriptions",
    "reminder_marker",
]
