"""Subscription schemas."""
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict

from billing.models.subscription import SubscriptionHealth, SubscriptionStatus


class SubscriptionRead(BaseModel):
    id: int
    user_id: str
    teacher_id: str
    plan_id: int
    status: SubscriptionStatus
    health: SubscriptionHealth | None = None
    days_left: int | None = None
    start_date: date
    end_date: date
    auto_renew: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
