"""Charge ledger services."""
import logging
from decimal import Decimal

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from billing.models.charge import Charge, ChargeStatus
from billing.schemas.charge import ChargeCreate
from billing.services.gateway_mercadopago import GatewayFactory, PaymentLink
from billing.utils.audit import log_audit
from billing.utils.errors import ChargeStateError, error_response

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = frozenset({ChargeStatus.CREATED, ChargeStatus.PENDING, ChargeStatus.EXPIRED})


def _not_found(charge_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=error_response("CHARGE_NOT_FOUND", "Charge not found.", {"charge_id": charge_id}),
    )


def get_charge(db: Session, charge_id: int) -> Charge:
    charge = db.get(Charge, charge_id)
    if charge is None:
        raise _not_found(charge_id)
    return charge


def _lock_charge(db: Session, charge_id: int) -> Charge:
    charge = db.execute(
        select(Charge).where(Charge.id == charge_id).with_for_update()
    ).scalar_one_or_none()
    if charge is None:
        raise _not_found(charge_id)
    return charge


def list_charges(
    db: Session,
    *,
    teacher_id: str | None = None,
    student_id: str | None = None,
    status: ChargeStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Charge]:
    stmt = select(Charge)
    if teacher_id is not None:
        stmt = stmt.where(Charge.teacher_id == teacher_id)
    if student_id is not None:
        stmt = stmt.where(Charge.student_id == student_id)
    if status is not None:
        stmt = stmt.where(Charge.status == status)
    stmt = stmt.order_by(Charge.due_date.desc(), Charge.id.desc()).offset(offset).limit(limit)
    return list(db.execute(stmt).scalars())


def create_charge(db: Session, payload: ChargeCreate, *, actor: str = "service") -> Charge:
    """Record a new charge in ``CREATED`` state."""

    charge = Charge(
        teacher_id=payload.teacher_id,
        student_id=payload.student_id,
        plan_id=payload.plan_id,
        subscription_id=payload.subscription_id,
        amount=Decimal(str(payload.amount)).quantize(Decimal("0.01")),
        currency=payload.currency.upper(),
        description=payload.description,
        due_date=payload.due_date,
        payer_email=payload.payer_email,
        payer_name=payload.payer_name,
        status=ChargeStatus.CREATED,
    )
    db.add(charge)
    db.flush()
    log_audit(
        db,
        actor=actor,
        action="CHARGE_CREATED",
        entity="Charge",
        entity_id=charge.id,
        data={
            "teacher_id": charge.teacher_id,
            "student_id": charge.student_id,
            "amount": str(charge.amount),
            "currency": charge.currency,
            "due_date": charge.due_date.isoformat(),
            "payer_email": charge.payer_email,
        },
    )
    db.commit()
    db.refresh(charge)
    logger.info("Charge created", extra={"charge_id": charge.id, "teacher_id": charge.teacher_id})
    return charge


def generate_payment_link(
    db: Session,
    charge_id: int,
    *,
    gateway_factory: GatewayFactory,
    actor: str = "service",
) -> Charge:
    """Attach a gateway payment link to a ``CREATED`` charge.

    The gateway is contacted before anything is written; any failure
    (missing credential, rejection, timeout) propagates and leaves the
    charge exactly as it was.
    """

    charge = get_charge(db, charge_id)
    if charge.status == ChargeStatus.PENDING and charge.payment_link:
        return charge
    if charge.status != ChargeStatus.CREATED:
        raise ChargeStateError(
            "Payment links can only be generated for new charges.",
            details={"charge_id": charge.id, "status": charge.status.value},
        )

    gateway = gateway_factory(db)
    link: PaymentLink = gateway.create_payment_link(charge)

    charge = _lock_charge(db, charge_id)
    if charge.status != ChargeStatus.CREATED:
        # A concurrent request stored its link first.
        db.rollback()
        return get_charge(db, charge_id)

    charge.payment_link = link.payment_link
    charge.preference_id = link.preference_id
    charge.status = ChargeStatus.PENDING
    log_audit(
        db,
        actor=actor,
        action="CHARGE_LINK_GENERATED",
        entity="Charge",
        entity_id=charge.id,
        data={"preference_id": link.preference_id, "payment_link": link.payment_link},
    )
    db.commit()
    db.refresh(charge)
    logger.info(
        "Charge payment link stored",
        extra={"charge_id": charge.id, "preference_id": charge.preference_id},
    )
    return charge


def cancel_charge(db: Session, charge_id: int, reason: str, *, actor: str = "service") -> Charge:
    charge = _lock_charge(db, charge_id)
    if charge.status == ChargeStatus.CANCELLED:
        db.rollback()
        return charge
    if charge.status not in CANCELLABLE_STATUSES:
        db.rollback()
        raise ChargeStateError(
            "Paid charges cannot be cancelled.",
            details={"charge_id": charge.id, "status": charge.status.value},
        )

    previous = charge.status
    charge.status = ChargeStatus.CANCELLED
    charge.cancel_reason = reason
    log_audit(
        db,
        actor=actor,
        action="CHARGE_CANCELLED",
        entity="Charge",
        entity_id=charge.id,
        data={"reason": reason, "previous_status": previous.value},
    )
    db.commit()
    db.refresh(charge)
    logger.info("Charge cancelled", extra={"charge_id": charge.id, "previous_status": previous.value})
    return charge


def delete_charge(db: Session, charge_id: int, *, actor: str = "service") -> None:
    charge = _lock_charge(db, charge_id)
    if charge.status == ChargeStatus.PAID:
        db.rollback()
        raise ChargeStateError(
            "Paid charges cannot be deleted.",
            details={"charge_id": charge.id, "status": charge.status.value},
        )

    log_audit(
        db,
        actor=actor,
        action="CHARGE_DELETED",
        entity="Charge",
        entity_id=charge.id,
        data={"status": charge.status.value, "amount": str(charge.amount)},
    )
    db.delete(charge)
    db.commit()
    logger.info("Charge deleted", extra={"charge_id": charge_id})


__all__ = [
    "cancel_charge",
    "create_charge",
    "delete_charge",
    "generate_payment_link",
    "get_charge",
    "list_charges",
]
