"""Charge ledger endpoints."""
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from billing.db import get_db
from billing.models import Charge, ChargeStatus
from billing.routers.deps import get_gateway_factory
from billing.schemas.charge import ChargeCancel, ChargeCreate, ChargeRead, PaymentLinkRead
from billing.security import require_api_key
from billing.services import charges as charges_service
from billing.services.gateway_mercadopago import GatewayFactory

router = APIRouter(prefix="/charges", tags=["charges"])


@router.post("", response_model=ChargeRead, status_code=status.HTTP_201_CREATED)
def create_charge(
    payload: ChargeCreate,
    db: Session = Depends(get_db),
    actor: str = Depends(require_api_key),
) -> Charge:
    return charges_service.create_charge(db, payload, actor=actor)


@router.get("", response_model=list[ChargeRead])
def list_charges(
    teacher_id: str | None = Query(default=None),
    student_id: str | None = Query(default=None),
    charge_status: ChargeStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: str = Depends(require_api_key),
) -> list[Charge]:
    return charges_service.list_charges(
        db,
        teacher_id=teacher_id,
        student_id=student_id,
        status=charge_status,
        limit=limit,
        offset=offset,
    )


@router.get("/{charge_id}", response_model=ChargeRead)
def read_charge(charge_id: int, db: Session = Depends(get_db), actor: str = Depends(require_api_key)) -> Charge:
    return charges_service.get_charge(db, charge_id)


@router.post("/{charge_id}/payment-link", response_model=PaymentLinkRead)
def create_payment_link(
    charge_id: int,
    db: Session = Depends(get_db),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
    actor: str = Depends(require_api_key),
) -> PaymentLinkRead:
    charge = charges_service.generate_payment_link(db, charge_id, gateway_factory=gateway_factory, actor=actor)
    return PaymentLinkRead(
        charge_id=charge.id,
        status=charge.status,
        payment_link=charge.payment_link,
        preference_id=charge.preference_id,
    )


@router.post("/{charge_id}/cancel", response_model=ChargeRead)
def cancel_charge(
    charge_id: int,
    payload: ChargeCancel,
    db: Session = Depends(get_db),
    actor: str = Depends(require_api_key),
) -> Charge:
    return charges_service.cancel_charge(db, charge_id, payload.reason, actor=actor)


@router.delete("/{charge_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_charge(charge_id: int, db: Session = Depends(get_db), actor: str = Depends(require_api_key)) -> Response:
    charges_service.delete_charge(db, charge_id, actor=actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
