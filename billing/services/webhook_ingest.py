"""Intake of gateway webhook notifications."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing.config import DEFAULT_GATEWAY, get_settings
from billing.models import WebhookEvent
from billing.services.gateway_mercadopago import GatewayFactory
from billing.services.reconciliation import (
    notification_resource_id,
    notification_topic,
    reconcile_event,
    record_attempt_failure,
)
from billing.utils.audit import fingerprint
from billing.utils.errors import error_response

logger = logging.getLogger(__name__)


def _current_settings():
    return get_settings()


@dataclass(frozen=True)
class IngestResult:
    status: str
    webhook_id: str
    event_id: int | None = None


def parse_body(raw_body: bytes) -> dict[str, Any]:
    """Decode the JSON body; malformed or non-object bodies are rejected with 400."""

    try:
        payload = json.loads(raw_body.decode("utf-8") or "null")
    except (UnicodeDecodeError, ValueError):
        logger.warning("Webhook body is not valid JSON", extra={"length": len(raw_body)})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("WEBHOOK_BODY_INVALID", "Webhook body must be valid JSON."),
        )
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("WEBHOOK_BODY_INVALID", "Webhook body must be a JSON object."),
        )
    return payload


def fold_query_params(payload: dict[str, Any], query: Mapping[str, str]) -> dict[str, Any]:
    """Merge IPN-style query parameters into ``payload`` where the body lacks them."""

    folded = dict(payload)
    topic = query.get("topic") or query.get("type")
    if topic and not (folded.get("type") or folded.get("topic")):
        folded["topic"] = topic

    resource_id = query.get("data.id") or query.get("id")
    if resource_id and notification_resource_id(folded) is None:
        data = dict(folded.get("data") or {}) if isinstance(folded.get("data"), Mapping) else {}
        data["id"] = resource_id
        folded["data"] = data
    return folded


def derive_webhook_id(payload: Mapping[str, Any], gateway: str = DEFAULT_GATEWAY) -> str | None:
    """Stable identity of a notification used for de-duplication.

    The gateway's notification id wins; otherwise topic, action and resource
    id are combined. Returns ``None`` when neither is available.
    """

    notification_id = payload.get("id")
    if notification_id not in (None, "") and not isinstance(notification_id, (dict, list)):
        return f"{gateway}:{notification_id}"

    topic = notification_topic(payload)
    resource_id = notification_resource_id(payload)
    if topic and resource_id:
        action = payload.get("action") or "notification"
        return f"{gateway}:{topic}:{action}:{resource_id}"
    return None


def _parse_signature_header(value: str) -> dict[str, str]:
    parts: dict[str, str] = {}
    for chunk in value.split(","):
        key, sep, val = chunk.strip().partition("=")
        if sep:
            parts[key.strip()] = val.strip()
    return parts


def _signature_manifest(resource_id: str | None, request_id: str | None, ts: str) -> str:
    manifest = ""
    if resource_id:
        manifest += f"id:{resource_id.lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    return manifest + f"ts:{ts};"


def compute_signature(secret: str, *, resource_id: str | None, request_id: str | None, ts: str) -> str:
    manifest = _signature_manifest(resource_id, request_id, ts)
    return hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()


def _unauthorized(code: str, message: str, details: dict[str, Any] | None = None) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=error_response(code, message, details))


def verify_webhook_signature(
    headers: Mapping[str, str],
    payload: Mapping[str, Any],
    *,
    now: float | None = None,
) -> None:
    """Check the ``x-signature`` header when a webhook secret is configured."""

    settings = _current_settings()
    secret = settings.GATEWAY_WEBHOOK_SECRET
    if not secret:
        return

    header = headers.get("x-signature")
    if not header:
        logger.warning("Webhook signature missing", extra={"secret": fingerprint(secret)})
        raise _unauthorized("WEBHOOK_SIGNATURE_MISSING", "x-signature header is required.")

    parts = _parse_signature_header(header)
    ts, provided = parts.get("ts"), parts.get("v1")
    if not ts or not provided:
        raise _unauthorized("WEBHOOK_SIGNATURE_INVALID", "Malformed x-signature header.")

    try:
        ts_value = int(ts)
    except ValueError:
        raise _unauthorized("WEBHOOK_TIMESTAMP_INVALID", "Invalid signature timestamp.")
    ts_seconds = ts_value // 1000 if ts_value > 10**11 else ts_value

    current = int(now if now is not None else time.time())
    age = abs(current - ts_seconds)
    max_drift = settings.GATEWAY_WEBHOOK_MAX_DRIFT_SECONDS
    if age > max_drift:
        logger.warning("Webhook timestamp outside allowed window", extra={"age": age})
        raise _unauthorized(
            "WEBHOOK_TIMESTAMP_DRIFT",
            "Webhook timestamp is outside allowed window.",
            {"age_seconds": age, "max_drift_seconds": max_drift},
        )

    expected = compute_signature(
        secret,
        resource_id=notification_resource_id(payload),
        request_id=headers.get("x-request-id"),
        ts=ts,
    )
    if not hmac.compare_digest(expected, provided):
        logger.warning("Webhook signature mismatch", extra={"secret": fingerprint(secret)})
        raise _unauthorized("WEBHOOK_SIGNATURE_INVALID", "Invalid webhook signature.")


def ingest_notification(
    db: Session,
    payload: dict[str, Any],
    *,
    gateway_factory: GatewayFactory,
    gateway: str = DEFAULT_GATEWAY,
) -> IngestResult:
    """Persist a notification, then attempt reconciliation once.

    The row is committed before any side effect. Reconciliation failures are
    recorded on the row and left for the retry job; they never fail the call.
    """

    webhook_id = derive_webhook_id(payload, gateway)
    if webhook_id is None:
        logger.warning("Webhook without identifiable event", extra={"keys": sorted(payload)})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("WEBHOOK_EVENT_ID_MISSING", "Could not identify the webhook event."),
        )

    existing = db.execute(select(WebhookEvent.id).where(WebhookEvent.webhook_id == webhook_id)).scalar_one_or_none()
    if existing is not None:
        logger.info("Duplicate webhook ignored", extra={"webhook_id": webhook_id, "event_id": existing})
        return IngestResult(status="duplicate", webhook_id=webhook_id, event_id=existing)

    event = WebhookEvent(
        webhook_id=webhook_id,
        gateway=gateway,
        topic=(notification_topic(payload) or "unknown")[:50],
        resource_id=notification_resource_id(payload),
        payload=payload,
        processed=False,
        retry_count=0,
    )
    try:
        db.add(event)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Duplicate webhook ignored", extra={"webhook_id": webhook_id, "race": True})
        return IngestResult(status="duplicate", webhook_id=webhook_id)

    event_id = event.id
    logger.info(
        "Webhook stored",
        extra={"webhook_id": webhook_id, "event_id": event_id, "topic": event.topic},
    )

    try:
        result = reconcile_event(db, event, gateway_factory=gateway_factory)
    except Exception as exc:  # noqa: BLE001 - left for the retry job
        record_attempt_failure(db, event_id, exc, increment=False)
        return IngestResult(status="failed", webhook_id=webhook_id, event_id=event_id)

    return IngestResult(status=result.status, webhook_id=webhook_id, event_id=event_id)


__all__ = [
    "IngestResult",
    "compute_signature",
    "derive_webhook_id",
    "fold_query_params",
    "ingest_notification",
    "parse_body",
    "verify_webhook_signature",
]
