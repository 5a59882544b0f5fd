"""Admin triggers for the scheduled jobs."""
from __future__ import annotations

from typing import Any, Callable

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.orm import Session

from billing.core.runtime_state import record_job_run
from billing.db import get_db
from billing.routers.deps import get_gateway_factory
from billing.schemas.jobs import JobRunRead, JobRunRequest
from billing.security import require_admin_key
from billing.services.expiry import expire_stale_charges_once, expire_subscriptions_once
from billing.services.gateway_mercadopago import GatewayFactory
from billing.services.reminders import send_expiry_reminders_once
from billing.services.renewals import open_renewal_charges_once
from billing.services.webhook_retry import retry_failed_webhooks_once
from billing.utils.errors import error_response
from billing.utils.time import utcnow

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(require_admin_key)])


def _expire(db: Session, request: JobRunRequest, gateway_factory: GatewayFactory) -> dict[str, Any]:
    summary: dict[str, Any] = dict(expire_subscriptions_once(db, today=request.today))
    summary["charges_expired"] = expire_stale_charges_once(db, today=request.today)
    return summary


_JOBS: dict[str, Callable[[Session, JobRunRequest, GatewayFactory], dict[str, Any]]] = {
    "retry-webhooks": lambda db, request, factory: retry_failed_webhooks_once(db, gateway_factory=factory),
    "expire-subscriptions": _expire,
    "send-reminders": lambda db, request, factory: send_expiry_reminders_once(db, today=request.today),
    "renew-subscriptions": lambda db, request, factory: open_renewal_charges_once(
        db, today=request.today, gateway_factory=factory
    ),
}


@router.post("/{job_name}", response_model=JobRunRead)
def run_job(
    job_name: str,
    request: JobRunRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> JobRunRead:
    job = _JOBS.get(job_name)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("JOB_NOT_FOUND", "Unknown job.", {"job": job_name, "available": sorted(_JOBS)}),
        )
    summary = job(db, request or JobRunRequest(), gateway_factory)
    record_job_run(job_name, finished_at=utcnow(), summary=summary)
    return JobRunRead(job=job_name, summary=summary)
