"""ORM models package."""
from .alert import Alert
from .audit import AuditLog
from .base import Base
from .charge import Charge, ChargeStatus, TERMINAL_CHARGE_STATUSES
from .gateway_credential import GatewayCredential
from .membership import Membership
from .notification import Notification
from .plan import Plan, PlanInterval
from .scheduler_lock import SchedulerLock
from .subscription import Subscription, SubscriptionHealth, SubscriptionStatus
from .webhook_event import WebhookEvent

__all__ = [
    "Alert",
    "AuditLog",
    "Base",
    "Charge",
    "ChargeStatus",
    "TERMINAL_CHARGE_STATUSES",
    "GatewayCredential",
    "Membership",
    "Notification",
    "Plan",
    "PlanInterval",
    "SchedulerLock",
    "Subscription",
    "SubscriptionHealth",
    "SubscriptionStatus",
    "WebhookEvent",
]
