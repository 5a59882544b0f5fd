"""Charge schemas."""
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from billing.models.charge import ChargeStatus


class ChargeCreate(BaseModel):
    teacher_id: str = Field(..., min_length=1, max_length=64)
    student_id: str = Field(..., min_length=1, max_length=64)
    plan_id: int | None = None
    subscription_id: int | None = None
    amount: Decimal = Field(gt=Decimal("0"), decimal_places=2)
    currency: str = Field(default="BRL", min_length=3, max_length=3)
    description: str | None = Field(default=None, max_length=255)
    due_date: date
    payer_email: str | None = Field(default=None, max_length=255)
    payer_name: str | None = Field(default=None, max_length=255)


class ChargeCancel(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)


class ChargeRead(BaseModel):
    id: int
    teacher_id: str
    student_id: str
    plan_id: int | None
    subscription_id: int | None
    amount: Decimal
    currency: str
    description: str | None
    due_date: date
    status: ChargeStatus
    payment_link: str | None
    preference_id: str | None
    cancel_reason: str | None
    gateway_payment_id: str | None
    paid_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentLinkRead(BaseModel):
    charge_id: int
    status: ChargeStatus
    payment_link: str
    preference_id: str | None
