"""Gateway webhook intake and the operator view of stored events."""
from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from billing.db import get_db
from billing.models import WebhookEvent
from billing.routers.deps import get_gateway_factory
from billing.schemas.webhook_event import WebhookAck, WebhookEventRead
from billing.security import require_admin_key
from billing.services import webhook_ingest, webhook_retry
from billing.services.gateway_mercadopago import GatewayFactory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.get("/payment", response_class=PlainTextResponse)
def webhook_liveness() -> str:
    return "Webhook is active"


@router.post("/payment", response_model=WebhookAck, status_code=status.HTTP_200_OK)
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> WebhookAck:
    raw_body = await request.body()
    payload = webhook_ingest.parse_body(raw_body)
    payload = webhook_ingest.fold_query_params(payload, request.query_params)
    webhook_ingest.verify_webhook_signature(request.headers, payload)

    result = await run_in_threadpool(
        webhook_ingest.ingest_notification, db, payload, gateway_factory=gateway_factory
    )
    logger.info(
        "Payment webhook handled",
        extra={"webhook_id": result.webhook_id, "status": result.status, "event_id": result.event_id},
    )
    return WebhookAck(status=result.status, webhook_id=result.webhook_id)


@router.get(
    "/events",
    response_model=list[WebhookEventRead],
    dependencies=[Depends(require_admin_key)],
)
def list_webhook_events(
    state: Literal["pending", "exhausted", "processed"] | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[WebhookEvent]:
    return webhook_retry.list_events(db, state=state, limit=limit)


@router.post(
    "/events/{event_id}/redrive",
    response_model=WebhookEventRead,
    dependencies=[Depends(require_admin_key)],
)
def redrive_webhook_event(
    event_id: int,
    db: Session = Depends(get_db),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> WebhookEvent:
    return webhook_retry.redrive_event(db, event_id, gateway_factory=gateway_factory)
