"""Schema package exports."""
from .alert import AlertRead
from .charge import ChargeCancel, ChargeCreate, ChargeRead, PaymentLinkRead
from .jobs import JobRunRead, JobRunRequest
from .payment_config import PaymentConfigRead, PaymentConfigUpdate
from .subscription import SubscriptionRead
from .webhook_event import WebhookAck, WebhookEventRead

__all__ = [
    "AlertRead",
    "ChargeCancel",
    "ChargeCreate",
    "ChargeRead",
    "JobRunRead",
    "JobRunRequest",
    "PaymentConfigRead",
    "PaymentConfigUpdate",
    "PaymentLinkRead",
    "SubscriptionRead",
    "WebhookAck",
    "WebhookEventRead",
]
