"""Turn gateway notifications into charge and subscription updates."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Literal, Mapping, Union

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from billing.models import Charge, ChargeStatus, WebhookEvent
from billing.services.alerts import PAYMENT_ON_CANCELLED_CHARGE, create_alert
from billing.services.gateway_mercadopago import GatewayClient, GatewayFactory, GatewayPayment
from billing.services.memberships import DatabaseMembershipStore, MembershipStore
from billing.services.notifications import (
    PAYMENT_APPROVED,
    SALE_NOTIFICATION,
    DatabaseNotificationSender,
    NotificationSender,
)
from billing.services.subscriptions import apply_paid_charge
from billing.utils.errors import ChargeNotPayable, UnresolvedReference, is_retryable
from billing.utils.time import ensure_aware, utcnow

logger = logging.getLogger(__name__)


# --- Notification payloads ------------------------------------------------


class PaymentNotification(BaseModel):
    topic: Literal["payment"] = "payment"
    resource_id: str
    action: str | None = None


class MerchantOrderNotification(BaseModel):
    topic: Literal["merchant_order"] = "merchant_order"
    resource_id: str
    action: str | None = None


class UnsupportedNotification(BaseModel):
    topic: str
    resource_id: str | None = None
    action: str | None = None


Notification = Union[PaymentNotification, MerchantOrderNotification, UnsupportedNotification]

_TOPIC_ALIASES = {"merchant_orders": "merchant_order", "topic_merchant_order_wh": "merchant_order"}


def notification_topic(payload: Mapping[str, Any]) -> str | None:
    topic = payload.get("type") or payload.get("topic")
    if not topic:
        action = payload.get("action")
        if isinstance(action, str) and "." in action:
            topic = action.split(".", 1)[0]
    if not topic:
        return None
    topic = str(topic).strip().lower()
    return _TOPIC_ALIASES.get(topic, topic)


def notification_resource_id(payload: Mapping[str, Any]) -> str | None:
    data = payload.get("data")
    if isinstance(data, Mapping) and data.get("id") not in (None, ""):
        return str(data["id"])
    resource = payload.get("resource")
    if isinstance(resource, str) and resource:
        return resource.rstrip("/").rsplit("/", 1)[-1]
    if resource not in (None, ""):
        return str(resource)
    return None


def parse_notification(payload: Mapping[str, Any]) -> Notification:
    topic = notification_topic(payload) or "unknown"
    resource_id = notification_resource_id(payload)
    action = payload.get("action") if isinstance(payload.get("action"), str) else None
    if resource_id is not None:
        if topic == "payment":
            return PaymentNotification(resource_id=resource_id, action=action)
        if topic == "merchant_order":
            return MerchantOrderNotification(resource_id=resource_id, action=action)
    return UnsupportedNotification(topic=topic, resource_id=resource_id, action=action)


# --- Outcome mapping and charge transitions -------------------------------


class PaymentOutcome(str, enum.Enum):
    APPROVED = "APPROVED"
    PENDING = "PENDING"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


_STATUS_OUTCOMES = {
    "approved": PaymentOutcome.APPROVED,
    "pending": PaymentOutcome.PENDING,
    "in_process": PaymentOutcome.PENDING,
    "authorized": PaymentOutcome.PENDING,
    "in_mediation": PaymentOutcome.PENDING,
    "rejected": PaymentOutcome.REJECTED,
    "cancelled": PaymentOutcome.CANCELLED,
    "refunded": PaymentOutcome.REFUNDED,
    "charged_back": PaymentOutcome.REFUNDED,
}


def map_payment_status(status: str | None) -> PaymentOutcome:
    """Map a gateway payment status; unknown statuses are treated as pending."""

    return _STATUS_OUTCOMES.get((status or "").lower(), PaymentOutcome.PENDING)


class ChargeAction(str, enum.Enum):
    MARK_PAID = "MARK_PAID"
    MARK_CANCELLED = "MARK_CANCELLED"
    NOOP = "NOOP"
    ALERT = "ALERT"


def decide_charge_transition(status: ChargeStatus, has_link: bool, outcome: PaymentOutcome) -> ChargeAction:
    """Decide what a payment outcome does to a charge in ``status``.

    Raises ``ChargeNotPayable`` when an approval arrives for a charge that
    never received a payment link.
    """

    if outcome == PaymentOutcome.APPROVED:
        if status == ChargeStatus.PAID:
            return ChargeAction.NOOP
        if status == ChargeStatus.CANCELLED:
            return ChargeAction.ALERT
        if status in (ChargeStatus.PENDING, ChargeStatus.EXPIRED) and has_link:
            return ChargeAction.MARK_PAID
        raise ChargeNotPayable(
            "Approved payment for a charge without a payment link.",
            details={"status": status.value},
        )

    if outcome in (PaymentOutcome.REJECTED, PaymentOutcome.CANCELLED):
        if status in (ChargeStatus.CREATED, ChargeStatus.PENDING, ChargeStatus.EXPIRED):
            return ChargeAction.MARK_CANCELLED
        return ChargeAction.NOOP

    return ChargeAction.NOOP


# --- Gateway lookups -----------------------------------------------------


@dataclass(frozen=True)
class ResolvedPayment:
    """What the gateway says about the payment behind a notification."""

    outcome: PaymentOutcome
    gateway_status: str | None
    payment_id: str | None
    external_reference: str | None
    metadata: Mapping[str, Any]
    approved_at: datetime | None


def _from_payment(payment: GatewayPayment) -> ResolvedPayment:
    return ResolvedPayment(
        outcome=map_payment_status(payment.status),
        gateway_status=payment.status,
        payment_id=payment.id,
        external_reference=payment.external_reference,
        metadata=payment.metadata,
        approved_at=payment.date_approved,
    )


def _from_merchant_order(gateway: GatewayClient, order_id: str) -> ResolvedPayment:
    order = gateway.get_merchant_order(order_id)
    outcomes = [(map_payment_status(p.status), p) for p in order.payments]

    approved = [p for outcome, p in outcomes if outcome == PaymentOutcome.APPROVED]
    if approved:
        outcome, payment = PaymentOutcome.APPROVED, approved[0]
    elif outcomes and all(o in (PaymentOutcome.REJECTED, PaymentOutcome.CANCELLED) for o, _ in outcomes):
        all_cancelled = all(o == PaymentOutcome.CANCELLED for o, _ in outcomes)
        outcome = PaymentOutcome.CANCELLED if all_cancelled else PaymentOutcome.REJECTED
        payment = outcomes[-1][1]
    else:
        outcome, payment = PaymentOutcome.PENDING, None

    return ResolvedPayment(
        outcome=outcome,
        gateway_status=payment.status if payment else order.status,
        payment_id=payment.id if payment else None,
        external_reference=order.external_reference,
        metadata={},
        approved_at=payment.date_approved if payment else None,
    )


def resolve_charge_id(external_reference: str | None, metadata: Mapping[str, Any] | None) -> int | None:
    """Read the charge id from ``charge_<id>``, falling back to ``metadata.charge_id``."""

    if external_reference:
        ref = external_reference.strip()
        if ref.startswith("charge_") and ref[len("charge_"):].isdigit():
            return int(ref[len("charge_"):])
    candidate = (metadata or {}).get("charge_id")
    if candidate is not None and str(candidate).strip().isdigit():
        return int(str(candidate).strip())
    return None


# --- Processing ------------------------------------------------------------


@dataclass(frozen=True)
class ReconciliationResult:
    status: Literal["applied", "noop", "unresolved", "unsupported"]
    charge_id: int | None = None
    action: ChargeAction | None = None


def _reference_date(resolved: ResolvedPayment, event: WebhookEvent) -> date:
    """Date the paid period starts from: gateway approval, else event receipt."""

    moment = resolved.approved_at or event.created_at or utcnow()
    return ensure_aware(moment).astimezone(timezone.utc).date()


def _mark_processed(db: Session, event: WebhookEvent) -> None:
    event.processed = True
    event.processed_at = utcnow()
    event.last_error = None
    db.commit()


def _apply_mark_paid(
    db: Session,
    charge: Charge,
    resolved: ResolvedPayment,
    event: WebhookEvent,
    *,
    notifier: NotificationSender,
    memberships: MembershipStore,
) -> None:
    charge.status = ChargeStatus.PAID
    charge.paid_at = ensure_aware(resolved.approved_at) if resolved.approved_at else utcnow()
    charge.gateway_payment_id = resolved.payment_id

    subscription = apply_paid_charge(db, charge, reference=_reference_date(resolved, event))
    if subscription is not None:
        memberships.set_active(charge.student_id, True, subscription.end_date)

    amount = f"{charge.currency} {charge.amount:.2f}"
    metadata = {
        "charge_id": charge.id,
        "amount": str(charge.amount),
        "subscription_id": subscription.id if subscription is not None else None,
        "end_date": subscription.end_date.isoformat() if subscription is not None else None,
    }
    notifier.send(
        charge.student_id,
        "Pagamento aprovado",
        f"Seu pagamento de {amount} foi confirmado.",
        PAYMENT_APPROVED,
        metadata,
    )
    notifier.send(
        charge.teacher_id,
        "Nova venda",
        f"Você recebeu um pagamento de {amount}.",
        SALE_NOTIFICATION,
        {**metadata, "student_id": charge.student_id},
    )


def reconcile_event(
    db: Session,
    event: WebhookEvent,
    *,
    gateway_factory: GatewayFactory,
    notifier: NotificationSender | None = None,
    memberships: MembershipStore | None = None,
) -> ReconciliationResult:
    """Apply one stored webhook event and mark it processed in the same commit.

    Unsupported topics and unknown charge references are logged and marked
    processed. Any other failure rolls back and propagates so the caller can
    record it on the event.
    """

    notifier = notifier or DatabaseNotificationSender(db)
    memberships = memberships or DatabaseMembershipStore(db)
    event_id = event.id
    notification = parse_notification(event.payload or {})

    try:
        if isinstance(notification, UnsupportedNotification):
            logger.info(
                "Webhook topic not handled",
                extra={"event_id": event_id, "topic": notification.topic},
            )
            _mark_processed(db, event)
            return ReconciliationResult(status="unsupported")

        gateway = gateway_factory(db)
        if isinstance(notification, PaymentNotification):
            resolved = _from_payment(gateway.get_payment(notification.resource_id))
        else:
            resolved = _from_merchant_order(gateway, notification.resource_id)

        charge_id = resolve_charge_id(resolved.external_reference, resolved.metadata)
        if charge_id is None:
            raise UnresolvedReference(
                "Gateway payment does not reference a charge.",
                details={"external_reference": resolved.external_reference},
            )
        charge = db.execute(
            select(Charge).where(Charge.id == charge_id).with_for_update()
        ).scalar_one_or_none()
        if charge is None:
            raise UnresolvedReference("Referenced charge does not exist.", details={"charge_id": charge_id})

        action = decide_charge_transition(charge.status, bool(charge.payment_link), resolved.outcome)

        if action == ChargeAction.MARK_PAID:
            _apply_mark_paid(db, charge, resolved, event, notifier=notifier, memberships=memberships)
        elif action == ChargeAction.MARK_CANCELLED:
            charge.status = ChargeStatus.CANCELLED
            charge.cancel_reason = f"gateway:{resolved.gateway_status or resolved.outcome.value.lower()}"
        elif action == ChargeAction.ALERT:
            create_alert(
                db,
                alert_type=PAYMENT_ON_CANCELLED_CHARGE,
                message=f"Approved payment received for cancelled charge {charge.id}",
                payload={
                    "charge_id": charge.id,
                    "payment_id": resolved.payment_id,
                    "webhook_id": event.webhook_id,
                },
            )

        _mark_processed(db, event)
    except UnresolvedReference as exc:
        db.rollback()
        logger.warning(
            "Webhook references no known charge",
            extra={"event_id": event_id, "reason": exc.message, **exc.details},
        )
        _mark_processed(db, event)
        return ReconciliationResult(status="unresolved")
    except Exception as exc:
        db.rollback()
        logger.warning(
            "Webhook reconciliation failed",
            extra={"event_id": event_id, "error": str(exc), "retryable": is_retryable(exc)},
        )
        raise

    logger.info(
        "Webhook reconciled",
        extra={
            "event_id": event_id,
            "charge_id": charge.id,
            "outcome": resolved.outcome.value,
            "action": action.value,
        },
    )
    return ReconciliationResult(
        status="noop" if action == ChargeAction.NOOP else "applied",
        charge_id=charge.id,
        action=action,
    )


def record_attempt_failure(db: Session, event_id: int, exc: BaseException, *, increment: bool) -> WebhookEvent:
    """Store the failure on the event row, bumping ``retry_count`` for scheduled retries."""

    db.rollback()
    event = db.get(WebhookEvent, event_id, populate_existing=True)
    if event is None:
        raise LookupError(f"webhook event {event_id} vanished")
    event.last_error = f"{type(exc).__name__}: {exc}"[:2000]
    if increment:
        event.retry_count = (event.retry_count or 0) + 1
    db.commit()
    return event


__all__ = [
    "ChargeAction",
    "MerchantOrderNotification",
    "Notification",
    "PaymentNotification",
    "PaymentOutcome",
    "ReconciliationResult",
    "UnsupportedNotification",
    "decide_charge_transition",
    "map_payment_status",
    "notification_resource_id",
    "notification_topic",
    "parse_notification",
    "reconcile_event",
    "record_attempt_failure",
    "resolve_charge_id",
]
