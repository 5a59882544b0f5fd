"""API routers for the billing backend."""
from fastapi import APIRouter

from . import alerts, charges, health, jobs, payment_config, subscriptions, webhooks


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(webhooks.router)
    api_router.include_router(charges.router)
    api_router.include_router(subscriptions.router)
    api_router.include_router(payment_config.router)
    api_router.include_router(jobs.router)
    api_router.include_router(alerts.router)
    return api_router
