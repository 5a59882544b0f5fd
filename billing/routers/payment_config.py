"""Gateway credential configuration endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from billing.config import DEFAULT_GATEWAY
from billing.db import get_db
from billing.models import GatewayCredential
from billing.schemas.payment_config import PaymentConfigRead, PaymentConfigUpdate
from billing.security import require_admin_key, require_api_key
from billing.services import credentials as credentials_service
from billing.services.gateway_mercadopago import verify_access_token

router = APIRouter(prefix="/payment-config", tags=["payment-config"])


def _read(db: Session, gateway_type: str) -> PaymentConfigRead:
    row = db.execute(
        select(GatewayCredential).where(GatewayCredential.gateway_type == gateway_type)
    ).scalar_one_or_none()
    return PaymentConfigRead(
        gateway_type=gateway_type,
        status=credentials_service.get_payment_config_status(db, gateway_type),
        is_sandbox=row.is_sandbox if row else None,
        account_id=row.account_id if row else None,
        account_nickname=row.account_nickname if row else None,
        validated_at=row.validated_at if row else None,
    )


@router.get("/status", response_model=PaymentConfigRead, dependencies=[Depends(require_api_key)])
def payment_config_status(db: Session = Depends(get_db)) -> PaymentConfigRead:
    return _read(db, DEFAULT_GATEWAY)


def get_credential_verifier():
    return verify_access_token


@router.put("", response_model=PaymentConfigRead)
def update_payment_config(
    payload: PaymentConfigUpdate,
    db: Session = Depends(get_db),
    actor: str = Depends(require_admin_key),
    verifier=Depends(get_credential_verifier),
) -> PaymentConfigRead:
    credentials_service.configure_credential(db, payload, actor=actor, verifier=verifier)
    return _read(db, payload.gateway_type)
