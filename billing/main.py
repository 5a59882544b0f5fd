from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from billing import db
from billing.config import INSECURE_WEBHOOK_ENVS, AppInfo, get_settings
from billing.core.logging import get_logger, setup_logging
from billing.core.runtime_state import set_scheduler_active
import billing.models  # noqa: F401  registers the tables
from billing.routers import get_api_router
from billing.services.cron import expiry_job, reminders_job, renewals_job, retry_webhooks_job
from billing.services.scheduler_lock import (
    refresh_scheduler_lock,
    release_scheduler_lock,
    try_acquire_scheduler_lock,
)
from billing.utils.errors import (
    BillingError,
    ChargeStateError,
    CredentialMissing,
    GatewayRejected,
    GatewayUnavailable,
    InvalidCredentials,
    TransientFailure,
    error_response,
)

logger = get_logger(__name__)
scheduler: AsyncIOScheduler | None = None
ALLOWED_CREATE_ENV = {"dev", "local", "test"}

# Most specific first.
_ERROR_STATUS: tuple[tuple[type[BillingError], int], ...] = (
    (CredentialMissing, 503),
    (InvalidCredentials, 422),
    (GatewayUnavailable, 504),
    (GatewayRejected, 502),
    (TransientFailure, 503),
    (ChargeStateError, 409),
)


def _current_settings():
    return get_settings()


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    runtime_settings = _current_settings()
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-API-Key"],
    )

    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware, app_name="trainer_billing")
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _assert_webhook_secret(settings: Any) -> None:
    """Refuse to start without a webhook secret outside dev environments."""

    env_lower = settings.app_env.lower()
    if settings.GATEWAY_WEBHOOK_SECRET:
        return
    if env_lower not in INSECURE_WEBHOOK_ENVS:
        logger.error(
            "GATEWAY_WEBHOOK_SECRET is missing; configure it before startup.",
            extra={"env": settings.app_env},
        )
        raise RuntimeError("Missing gateway webhook secret in non-dev environment.")
    logger.warning(
        "Gateway webhook signatures are not verified; allowed in dev only.",
        extra={"env": settings.app_env},
    )


def _start_scheduler(settings: Any) -> AsyncIOScheduler:
    job_scheduler = AsyncIOScheduler(timezone="UTC")
    job_scheduler.add_job(
        retry_webhooks_job,
        "interval",
        minutes=settings.WEBHOOK_RETRY_INTERVAL_MINUTES,
        id="retry-webhooks",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    job_scheduler.add_job(
        expiry_job,
        "cron",
        hour=settings.EXPIRY_SWEEP_HOUR,
        minute=0,
        id="expire-subscriptions",
        replace_existing=True,
        coalesce=True,
    )
    job_scheduler.add_job(
        reminders_job,
        "cron",
        hour=settings.REMINDER_SWEEP_HOUR,
        minute=0,
        id="send-reminders",
        replace_existing=True,
        coalesce=True,
    )
    job_scheduler.add_job(
        renewals_job,
        "cron",
        hour=settings.REMINDER_SWEEP_HOUR,
        minute=30,
        id="renew-subscriptions",
        replace_existing=True,
        coalesce=True,
    )
    job_scheduler.add_job(
        refresh_scheduler_lock,
        "interval",
        seconds=60,
        id="scheduler-lock-heartbeat",
        replace_existing=True,
    )
    job_scheduler.start()
    return job_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = _current_settings()
    setup_logging(settings.LOG_LEVEL)
    logger.info("Application startup", extra={"env": settings.app_env})
    _assert_webhook_secret(settings)

    db.init_engine()
    env_lower = settings.app_env.lower()
    if settings.ALLOW_DB_CREATE_ALL and env_lower in ALLOWED_CREATE_ENV:
        logger.warning(
            "Running Base.metadata.create_all() because APP_ENV=%s and ALLOW_DB_CREATE_ALL=True",
            settings.app_env,
        )
        db.create_all()
    else:
        logger.info(
            "Skipping create_all(); use Alembic migrations. APP_ENV=%s, ALLOW_DB_CREATE_ALL=%s",
            settings.app_env,
            settings.ALLOW_DB_CREATE_ALL,
        )

    global scheduler
    set_scheduler_active(False)
    lock_acquired = False
    if settings.SCHEDULER_ENABLED:
        lock_acquired = try_acquire_scheduler_lock()
        if lock_acquired:
            scheduler = _start_scheduler(settings)
            set_scheduler_active(True)
        else:
            logger.warning(
                "Scheduler disabled because lock is already held by another instance.",
                extra={"env": settings.app_env},
            )
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)
            scheduler = None
        if lock_acquired:
            release_scheduler_lock()
        set_scheduler_active(False)
        db.close_engine()
        logger.info("Application shutdown", extra={"env": settings.app_env})


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
app.include_router(get_api_router())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    payload = error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.")
    return JSONResponse(status_code=500, content=payload)


@app.exception_handler(BillingError)
async def billing_exception_handler(request: Request, exc: BillingError) -> JSONResponse:
    status_code = next((code for kind, code in _ERROR_STATUS if isinstance(exc, kind)), 500)
    logger.warning(
        "Billing error",
        extra={"code": exc.code, "kind": exc.kind.value, "status_code": status_code, "path": request.url.path},
    )
    return JSONResponse(status_code=status_code, content=exc.to_response())


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content: dict[str, Any] = detail
    else:
        content = error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


__all__ = ["app"]
