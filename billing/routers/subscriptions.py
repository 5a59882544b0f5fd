"""Read-only subscription endpoints with derived health."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from billing.db import get_db
from billing.models import Subscription, SubscriptionStatus
from billing.schemas.subscription import SubscriptionRead
from billing.security import require_api_key
from billing.services import subscriptions as subscriptions_service
from billing.utils.time import today_utc

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"], dependencies=[Depends(require_api_key)])


def _to_read(subscription: Subscription) -> SubscriptionRead:
    read = SubscriptionRead.model_validate(subscription)
    if subscription.status == SubscriptionStatus.ACTIVE:
        read.health, read.days_left = subscriptions_service.derive_subscription_health(
            subscription.end_date, today_utc()
        )
    return read


@router.get("", response_model=list[SubscriptionRead])
def list_subscriptions(
    user_id: str | None = Query(default=None),
    teacher_id: str | None = Query(default=None),
    subscription_status: SubscriptionStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> list[SubscriptionRead]:
    rows = subscriptions_service.list_subscriptions(
        db,
        user_id=user_id,
        teacher_id=teacher_id,
        status=subscription_status,
        limit=limit,
        offset=offset,
    )
    return [_to_read(row) for row in rows]


@router.get("/{subscription_id}", response_model=SubscriptionRead)
def read_subscription(subscription_id: int, db: Session = Depends(get_db)) -> SubscriptionRead:
    return _to_read(subscriptions_service.get_subscription(db, subscription_id))
