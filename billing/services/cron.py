"""Entry points for the scheduled billing jobs."""
from __future__ import annotations

import logging
from typing import Any, Callable

from billing.core.runtime_state import record_job_run
from billing.services.expiry import expire_stale_charges_once, expire_subscriptions_once
from billing.services.reminders import send_expiry_reminders_once
from billing.services.renewals import open_renewal_charges_once
from billing.services.webhook_retry import retry_failed_webhooks_once
from billing.utils.time import utcnow

logger = logging.getLogger(__name__)


def _run(job_name: str, job: Callable[[], dict[str, Any]]) -> dict[str, Any]:
    try:
        summary = job()
    except Exception:
        logger.exception("Scheduled job crashed", extra={"job": job_name})
        record_job_run(job_name, finished_at=utcnow(), summary={"error": True})
        raise
    record_job_run(job_name, finished_at=utcnow(), summary=summary)
    return summary


def retry_webhooks_job() -> dict[str, Any]:
    return _run("retry-webhooks", retry_failed_webhooks_once)


def expiry_job() -> dict[str, Any]:
    def _both() -> dict[str, Any]:
        summary: dict[str, Any] = dict(expire_subscriptions_once())
        summary["charges_expired"] = expire_stale_charges_once()
        return summary

    return _run("expire-subscriptions", _both)


def reminders_job() -> dict[str, Any]:
    return _run("send-reminders", send_expiry_reminders_once)


def renewals_job() -> dict[str, Any]:
    return _run("renew-subscriptions", open_renewal_charges_once)


__all__ = ["expiry_job", "reminders_job", "renewals_job", "retry_webhooks_job"]
