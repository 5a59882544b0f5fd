"""Webhook event schemas for the operator surface."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class WebhookEventRead(BaseModel):
    id: int
    webhook_id: str
    gateway: str
    topic: str
    resource_id: str | None
    processed: bool
    retry_count: int
    last_error: str | None
    processed_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WebhookAck(BaseModel):
    status: str
    webhook_id: str | None = None
