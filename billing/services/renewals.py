"""Auto-renewal charges for subscriptions about to end."""
from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing.config import get_settings
from billing.db import job_session
from billing.models import Charge, ChargeStatus, Plan, Subscription, SubscriptionStatus
from billing.schemas.charge import ChargeCreate
from billing.services.charges import create_charge, generate_payment_link
from billing.services.gateway_mercadopago import GatewayFactory, default_gateway_factory
from billing.services.notifications import AUTO_RENEWAL, DatabaseNotificationSender
from billing.utils.time import today_utc

logger = logging.getLogger(__name__)

ACTOR = "renewal-job"


def _existing_renewal(db: Session, subscription: Subscription) -> Charge | None:
    return db.execute(
        select(Charge)
        .where(
            Charge.subscription_id == subscription.id,
            Charge.due_date == subscription.end_date,
            Charge.status != ChargeStatus.CANCELLED,
        )
        .order_by(Charge.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _open_renewal(db: Session, subscription: Subscription, gateway_factory: GatewayFactory) -> bool:
    charge = _existing_renewal(db, subscription)
    if charge is not None and charge.status != ChargeStatus.CREATED:
        return False

    if charge is None:
        plan = db.get(Plan, subscription.plan_id)
        if plan is None or not plan.is_active:
            logger.warning(
                "Renewal skipped for inactive plan",
                extra={"subscription_id": subscription.id, "plan_id": subscription.plan_id},
            )
            return False
        charge = create_charge(
            db,
            ChargeCreate(
                teacher_id=subscription.teacher_id,
                student_id=subscription.user_id,
                plan_id=plan.id,
                subscription_id=subscription.id,
                amount=plan.price,
                currency=plan.currency,
                description=f"Renovação - {plan.name}",
                due_date=subscription.end_date,
            ),
            actor=ACTOR,
        )

    charge = generate_payment_link(db, charge.id, gateway_factory=gateway_factory, actor=ACTOR)
    DatabaseNotificationSender(db).send(
        subscription.user_id,
        "Renovação da assinatura",
        "Sua assinatura será renovada. Conclua o pagamento pelo link.",
        AUTO_RENEWAL,
        {
            "subscription_id": subscription.id,
            "charge_id": charge.id,
            "checkout_url": charge.payment_link,
            "end_date": subscription.end_date.isoformat(),
        },
    )
    db.commit()
    logger.info(
        "Renewal charge opened",
        extra={"subscription_id": subscription.id, "charge_id": charge.id},
    )
    return True


def open_renewal_charges_once(
    db: Session | None = None,
    *,
    today: date | None = None,
    gateway_factory: GatewayFactory = default_gateway_factory,
    lead_days: int | None = None,
) -> dict[str, int]:
    """Open a renewal charge for auto-renewing subscriptions ending in ``lead_days``.

    A gateway failure leaves the renewal charge ``CREATED``; the next run
    retries the link instead of opening another charge.
    """

    today = today or today_utc()
    lead_days = lead_days if lead_days is not None else get_settings().AUTO_RENEW_LEAD_DAYS
    target = today + timedelta(days=lead_days)
    summary = {"selected": 0, "opened": 0, "skipped": 0, "failed": 0}

    with job_session(db) as session:
        ids = list(
            session.execute(
                select(Subscription.id).where(
                    Subscription.status == SubscriptionStatus.ACTIVE,
                    Subscription.auto_renew.is_(True),
                    Subscription.end_date == target,
                )
            ).scalars()
        )
        session.commit()
        summary["selected"] = len(ids)

        for subscription_id in ids:
            subscription = session.get(Subscription, subscription_id)
            if subscription is None:
                continue
            try:
                opened = _open_renewal(session, subscription, gateway_factory)
            except Exception:  # noqa: BLE001 - one row never aborts the run
                session.rollback()
                summary["failed"] += 1
                logger.exception("Renewal charge failed", extra={"subscription_id": subscription_id})
                continue
            summary["opened" if opened else "skipped"] += 1

    logger.info("Renewal run finished", extra={**summary, "today": today.isoformat()})
    return summary


__all__ = ["open_renewal_charges_once"]
