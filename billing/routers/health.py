"""Health check endpoint."""
from __future__ import annotations

import logging

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter
from sqlalchemy import func, select, text

from billing.config import get_settings
from billing.core.runtime_state import is_scheduler_active, last_job_runs
from billing.db import get_engine, job_session
from billing.models import WebhookEvent
from billing.services.credentials import get_payment_config_status
from billing.services.scheduler_lock import describe_scheduler_lock
from billing.utils.audit import fingerprint

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error"


def _expected_migration_head() -> str | None:
    try:
        script = ScriptDirectory.from_config(Config("alembic.ini"))
        return script.get_current_head()
    except Exception:  # noqa: BLE001
        logger.exception("Failed to load Alembic head revision")
        return None


def _migrations_status() -> tuple[bool, str]:
    expected_head = _expected_migration_head()
    try:
        with get_engine().connect() as conn:
            current = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
        if expected_head is None:
            return False, "unknown"
        if current == expected_head:
            return True, "up_to_date"
        return False, "out_of_date"
    except Exception:  # noqa: BLE001
        logger.exception("Migration check failed")
        return False, "unknown"


def _billing_status(max_retries: int) -> dict[str, object]:
    try:
        with job_session() as session:
            pending = session.execute(
                select(func.count(WebhookEvent.id)).where(
                    WebhookEvent.processed.is_(False), WebhookEvent.retry_count < max_retries
                )
            ).scalar_one()
            exhausted = session.execute(
                select(func.count(WebhookEvent.id)).where(
                    WebhookEvent.processed.is_(False), WebhookEvent.retry_count >= max_retries
                )
            ).scalar_one()
            config_status = get_payment_config_status(session).value
            lock = describe_scheduler_lock(db_session=session)
    except Exception:  # noqa: BLE001
        logger.exception("Billing health check failed")
        return {"payment_config_status": "unknown", "webhooks_pending": None, "webhooks_exhausted": None}
    return {
        "payment_config_status": config_status,
        "webhooks_pending": pending,
        "webhooks_exhausted": exhausted,
        "scheduler_lock": lock,
    }


@router.get("", summary="Health check")
def healthcheck() -> dict[str, object]:
    settings = get_settings()
    db_status = _db_status()
    db_ok = db_status == "ok"
    if db_ok:
        migration_ok, migration_status = _migrations_status()
    else:
        migration_ok, migration_status = False, "unknown"
    degraded = not (db_ok and migration_ok)
    billing = _billing_status(settings.WEBHOOK_MAX_RETRIES) if db_ok else {}
    return {
        "status": "degraded" if degraded else "ok",
        "db_ok": db_ok,
        "db_status": db_status,
        "migrations_ok": migration_ok,
        "migrations_status": migration_status,
        "webhook_signature_configured": bool(settings.GATEWAY_WEBHOOK_SECRET),
        "webhook_secret_fingerprint": fingerprint(settings.GATEWAY_WEBHOOK_SECRET),
        "scheduler_config_enabled": bool(settings.SCHEDULER_ENABLED),
        "scheduler_running": is_scheduler_active(),
        "job_runs": last_job_runs(),
        **billing,
    }
