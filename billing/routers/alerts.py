"""Alerts endpoints."""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from billing.db import get_db
from billing.models.alert import Alert
from billing.schemas.alert import AlertRead
from billing.security import require_admin_key

router = APIRouter(prefix="/alerts", tags=["alerts"], dependencies=[Depends(require_admin_key)])


@router.get("", response_model=list[AlertRead], status_code=status.HTTP_200_OK)
def list_alerts(
    alert_type: str | None = Query(default=None, alias="type"),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[Alert]:
    stmt = select(Alert)
    if alert_type:
        stmt = stmt.where(Alert.type == alert_type)
    stmt = stmt.order_by(Alert.created_at.desc(), Alert.id.desc()).limit(limit)
    return list(db.scalars(stmt).all())
