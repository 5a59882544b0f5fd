"""Scheduled re-driving of unprocessed webhook events."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Literal

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from billing.config import get_settings
from billing.db import job_session
from billing.models import WebhookEvent
from billing.services.alerts import WEBHOOK_RETRY_EXHAUSTED, create_alert
from billing.services.gateway_mercadopago import GatewayFactory, default_gateway_factory
from billing.services.reconciliation import reconcile_event, record_attempt_failure
from billing.utils.errors import RetryExhausted, error_response, is_retryable
from billing.utils.time import utcnow

logger = logging.getLogger(__name__)

EventState = Literal["pending", "exhausted", "processed"]


def _flag_exhausted(db: Session, event: WebhookEvent, max_retries: int) -> None:
    exc = RetryExhausted(
        "Webhook event exhausted its retries.",
        details={"event_id": event.id, "webhook_id": event.webhook_id, "retry_count": event.retry_count},
    )
    logger.error(
        "Webhook retries exhausted",
        extra={
            "event_id": event.id,
            "webhook_id": event.webhook_id,
            "retry_count": event.retry_count,
            "max_retries": max_retries,
            "last_error": event.last_error,
        },
    )
    create_alert(
        db,
        alert_type=WEBHOOK_RETRY_EXHAUSTED,
        message=f"{exc.message} ({event.webhook_id})",
        payload={**exc.details, "last_error": event.last_error},
    )
    db.commit()


def retry_failed_webhooks_once(
    db: Session | None = None,
    *,
    gateway_factory: GatewayFactory = default_gateway_factory,
    batch_size: int | None = None,
    max_retries: int | None = None,
    min_age_seconds: int | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Re-attempt a bounded batch of unprocessed events, oldest first."""

    settings = get_settings()
    batch_size = batch_size if batch_size is not None else settings.WEBHOOK_RETRY_BATCH_SIZE
    max_retries = max_retries if max_retries is not None else settings.WEBHOOK_MAX_RETRIES
    min_age_seconds = min_age_seconds if min_age_seconds is not None else settings.WEBHOOK_RETRY_MIN_AGE_SECONDS
    cutoff = (now or utcnow()) - timedelta(seconds=min_age_seconds)

    summary = {"selected": 0, "succeeded": 0, "failed": 0, "exhausted": 0}
    with job_session(db) as session:
        candidate_ids = list(
            session.execute(
                select(WebhookEvent.id)
                .where(
                    WebhookEvent.processed.is_(False),
                    WebhookEvent.retry_count < max_retries,
                    WebhookEvent.created_at <= cutoff,
                )
                .order_by(WebhookEvent.created_at, WebhookEvent.id)
                .limit(batch_size)
            ).scalars()
        )
        session.commit()
        summary["selected"] = len(candidate_ids)

        for event_id in candidate_ids:
            event = session.execute(
                select(WebhookEvent)
                .where(WebhookEvent.id == event_id, WebhookEvent.processed.is_(False))
                .with_for_update(skip_locked=True)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if event is None:
                session.rollback()
                continue

            attempt = event.retry_count + 1
            logger.info(
                "Retrying webhook",
                extra={"event_id": event_id, "webhook_id": event.webhook_id, "attempt": attempt},
            )
            try:
                reconcile_event(session, event, gateway_factory=gateway_factory)
            except Exception as exc:  # noqa: BLE001 - one row never aborts the batch
                event = record_attempt_failure(session, event_id, exc, increment=True)
                if not is_retryable(exc) and event.retry_count < max_retries:
                    # Permanent failures skip the remaining attempts.
                    event.retry_count = max_retries
                    session.commit()
                summary["failed"] += 1
                if event.retry_count >= max_retries:
                    summary["exhausted"] += 1
                    _flag_exhausted(session, event, max_retries)
                continue
            summary["succeeded"] += 1

    logger.info("Webhook retry run finished", extra=summary)
    return summary


def list_events(
    db: Session,
    *,
    state: EventState | None = None,
    max_retries: int | None = None,
    limit: int = 100,
) -> list[WebhookEvent]:
    max_retries = max_retries if max_retries is not None else get_settings().WEBHOOK_MAX_RETRIES
    stmt = select(WebhookEvent)
    if state == "processed":
        stmt = stmt.where(WebhookEvent.processed.is_(True))
    elif state == "pending":
        stmt = stmt.where(WebhookEvent.processed.is_(False), WebhookEvent.retry_count < max_retries)
    elif state == "exhausted":
        stmt = stmt.where(WebhookEvent.processed.is_(False), WebhookEvent.retry_count >= max_retries)
    stmt = stmt.order_by(WebhookEvent.created_at.desc(), WebhookEvent.id.desc()).limit(limit)
    return list(db.execute(stmt).scalars())


def redrive_event(db: Session, event_id: int, *, gateway_factory: GatewayFactory) -> WebhookEvent:
    """Run one manual attempt for an event; ``retry_count`` is left unchanged."""

    event = db.execute(
        select(WebhookEvent).where(WebhookEvent.id == event_id).with_for_update()
    ).scalar_one_or_none()
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("WEBHOOK_EVENT_NOT_FOUND", "Webhook event not found.", {"event_id": event_id}),
        )
    if event.processed:
        db.rollback()
        return event

    logger.info("Manual webhook redrive", extra={"event_id": event_id, "webhook_id": event.webhook_id})
    try:
        reconcile_event(db, event, gateway_factory=gateway_factory)
    except Exception as exc:  # noqa: BLE001 - recorded on the row for the operator
        return record_attempt_failure(db, event_id, exc, increment=False)
    db.refresh(event)
    return event


__all__ = ["list_events", "redrive_event", "retry_failed_webhooks_once"]
