"""Payment gateway configuration schemas."""
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from billing.config import DEFAULT_GATEWAY
from billing.services.credentials import PaymentConfigStatus


class PaymentConfigUpdate(BaseModel):
    gateway_type: str = Field(default=DEFAULT_GATEWAY, pattern="^mercadopago$")
    access_token: str = Field(..., min_length=10)
    public_key: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    is_sandbox: bool = False
    is_active: bool = True

    @field_validator("access_token")
    @classmethod
    def _strip_token(cls, value: str) -> str:
        return value.strip()


class PaymentConfigRead(BaseModel):
    """Public view of the stored credential; secrets are never echoed."""

    gateway_type: str
    status: PaymentConfigStatus
    is_sandbox: bool | None = None
    account_id: str | None = None
    account_nickname: str | None = None
    validated_at: datetime | None = None
