"""Mercado Pago REST client used for payment links and payment lookups."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from billing.config import DEFAULT_GATEWAY, Settings, get_settings
from billing.db import job_session
from billing.services.credentials import CredentialSnapshot, get_active_credential, mark_credential_invalid
from billing.utils.errors import GatewayRejected, GatewayUnavailable

if TYPE_CHECKING:  # pragma: no cover - hints only
    from billing.models import Charge

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentLink:
    payment_link: str
    preference_id: str


def _flag_credential_invalid(gateway_type: str) -> None:
    # Committed in its own session; the caller's transaction is left untouched.
    with job_session() as session:
        mark_credential_invalid(session, gateway_type)


class GatewayPayment(BaseModel):
    """Subset of ``/v1/payments/{id}`` the reconciliation needs."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    status: str | None = None
    status_detail: str | None = None
    external_reference: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    date_approved: datetime | None = None
    date_created: datetime | None = None
    transaction_amount: Decimal | None = None
    currency_id: str | None = None


class MerchantOrderPayment(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    status: str | None = None
    date_approved: datetime | None = None


class GatewayMerchantOrder(BaseModel):
    """Subset of ``/merchant_orders/{id}``."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    status: str | None = None
    external_reference: str | None = None
    payments: list[MerchantOrderPayment] = Field(default_factory=list)


class AccountInfo(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    nickname: str | None = None
    email: str | None = None


class GatewayClient(Protocol):
    """Operations the billing services need from a payment gateway."""

    def create_payment_link(self, charge: "Charge") -> PaymentLink: ...

    def get_payment(self, payment_id: str) -> GatewayPayment: ...

    def get_merchant_order(self, order_id: str) -> GatewayMerchantOrder: ...


GatewayFactory = Callable[[Session], GatewayClient]


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]


def _end_of_day_utc(value) -> str:
    moment = datetime.combine(value, time(23, 59, 59), tzinfo=timezone.utc)
    return moment.isoformat(timespec="milliseconds")


class MercadoPagoClient:
    """Thin wrapper over the Mercado Pago REST API.

    The client performs exactly one HTTP call per operation; retries belong
    to the callers (webhook retry job, next renewal run, operator).
    """

    def __init__(
        self,
        credential: CredentialSnapshot,
        settings: Settings | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        on_unauthorized: Callable[[], None] | None = None,
    ) -> None:
        self.credential = credential
        self.settings = settings or get_settings()
        self._transport = transport
        self._on_unauthorized = on_unauthorized

    @classmethod
    def from_db(cls, db: Session, *, transport: httpx.BaseTransport | None = None) -> "MercadoPagoClient":
        """Build a client from the active credential; raises ``CredentialMissing``."""

        credential = get_active_credential(db, DEFAULT_GATEWAY)
        return cls(
            credential,
            transport=transport,
            on_unauthorized=lambda: _flag_credential_invalid(credential.gateway_type),
        )

    def _client(self, access_token: str) -> httpx.Client:
        return httpx.Client(
            base_url=self.settings.GATEWAY_API_BASE_URL,
            timeout=self.settings.GATEWAY_TIMEOUT_SECONDS,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        access_token: str | None = None,
        headers: dict[str, str] | None = None,
        report_unauthorized: bool = True,
    ) -> dict[str, Any]:
        token = access_token or self.credential.access_token
        try:
            with self._client(token) as client:
                response = client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("Gateway request timed out", extra={"path": path, "method": method})
            raise GatewayUnavailable("Payment gateway timed out.", details={"path": path}) from exc
        except httpx.TransportError as exc:
            logger.warning("Gateway transport error", extra={"path": path, "error": str(exc)})
            raise GatewayUnavailable("Payment gateway is unreachable.", details={"path": path}) from exc

        if response.is_success:
            return response.json()

        body = _response_body(response)
        logger.warning(
            "Gateway rejected request",
            extra={"path": path, "status_code": response.status_code, "gateway_body": body},
        )
        if response.status_code == 401 and report_unauthorized and self._on_unauthorized is not None:
            self._on_unauthorized()
        raise GatewayRejected(
            f"Payment gateway answered {response.status_code}.",
            status_code=response.status_code,
            body=body,
        )

    def build_preference(self, charge: "Charge") -> dict[str, Any]:
        """Return the checkout preference body for ``charge``."""

        settings = self.settings
        payer: dict[str, Any] = {"email": charge.payer_email or settings.DEFAULT_PAYER_EMAIL}
        if charge.payer_name:
            payer["name"] = charge.payer_name

        return {
            "items": [
                {
                    "id": str(charge.id),
                    "title": charge.description or f"Cobrança #{charge.id}",
                    "quantity": 1,
                    "unit_price": float(charge.amount),
                    "currency_id": charge.currency or settings.DEFAULT_CURRENCY,
                }
            ],
            "payer": payer,
            "external_reference": charge.external_reference,
            "notification_url": settings.NOTIFICATION_URL,
            "back_urls": {
                "success": f"{settings.APP_URL}/payments/success",
                "failure": f"{settings.APP_URL}/payments/failure",
                "pending": f"{settings.APP_URL}/payments/pending",
            },
            "auto_return": "approved",
            "expires": True,
            "expiration_date_to": _end_of_day_utc(charge.due_date),
            "metadata": {
                "charge_id": str(charge.id),
                "student_id": charge.student_id,
                "teacher_id": charge.teacher_id,
                "plan_id": str(charge.plan_id) if charge.plan_id is not None else None,
            },
        }

    def create_payment_link(self, charge: "Charge") -> PaymentLink:
        """Create a checkout preference and return its payment URL."""

        data = self._request(
            "POST",
            "/checkout/preferences",
            json=self.build_preference(charge),
            headers={"X-Idempotency-Key": f"{charge.external_reference}-preference"},
        )
        link_key = "sandbox_init_point" if self.credential.is_sandbox else "init_point"
        link = data.get(link_key) or data.get("init_point")
        preference_id = data.get("id")
        if not link or not preference_id:
            raise GatewayRejected(
                "Payment gateway response is missing the checkout link.",
                status_code=502,
                body=data,
            )
        logger.info(
            "Payment link created",
            extra={"charge_id": charge.id, "preference_id": preference_id, "sandbox": self.credential.is_sandbox},
        )
        return PaymentLink(payment_link=link, preference_id=str(preference_id))

    def get_payment(self, payment_id: str) -> GatewayPayment:
        return GatewayPayment.model_validate(self._request("GET", f"/v1/payments/{payment_id}"))

    def get_merchant_order(self, order_id: str) -> GatewayMerchantOrder:
        return GatewayMerchantOrder.model_validate(self._request("GET", f"/merchant_orders/{order_id}"))

    def verify_credential(self, access_token: str) -> AccountInfo:
        """Check ``access_token`` against ``/users/me``; never marks stored rows invalid."""

        data = self._request("GET", "/users/me", access_token=access_token, report_unauthorized=False)
        return AccountInfo.model_validate(data)


def default_gateway_factory(db: Session) -> GatewayClient:
    return MercadoPagoClient.from_db(db)


def verify_access_token(access_token: str, *, transport: httpx.BaseTransport | None = None) -> AccountInfo:
    """Validate a candidate token without a stored credential."""

    candidate = CredentialSnapshot(gateway_type=DEFAULT_GATEWAY, access_token=access_token)
    return MercadoPagoClient(candidate, transport=transport).verify_credential(access_token)


__all__ = [
    "AccountInfo",
    "GatewayClient",
    "GatewayFactory",
    "GatewayMerchantOrder",
    "GatewayPayment",
    "MercadoPagoClient",
    "MerchantOrderPayment",
    "PaymentLink",
    "default_gateway_factory",
    "verify_access_token",
]
