"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

# --- Default test environment
os.environ.setdefault("DATABASE_URL", "sqlite:///./billing_test.db")
os.environ.setdefault("API_KEY", "test-service-key")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("BILLING_ENV", "test")
os.environ.setdefault("PROMETHEUS_ENABLED", "false")
os.environ["GATEWAY_WEBHOOK_SECRET"] = ""

from billing import db  # noqa: E402
from billing.db import get_db  # noqa: E402
from billing.main import app  # noqa: E402
from billing.models import (  # noqa: E402
    Base,
    Charge,
    ChargeStatus,
    GatewayCredential,
    Plan,
    PlanInterval,
    Subscription,
    SubscriptionStatus,
)
from billing.routers.deps import get_gateway_factory  # noqa: E402
from billing.services.credentials import credential_cache  # noqa: E402
from billing.services.gateway_mercadopago import (  # noqa: E402
    GatewayMerchantOrder,
    GatewayPayment,
    PaymentLink,
)
from billing.utils.errors import GatewayRejected  # noqa: E402

DB_PATH = Path("./billing_test.db")


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh database file per session
if DB_PATH.exists():
    DB_PATH.unlink()

# --- (2) Schema comes from Alembic only
_run_migrations()
db.init_engine()


def _truncate_all() -> None:
    with db.get_engine().begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db_session() -> Iterator[Session]:
    session = db.get_sessionmaker()()
    try:
        yield session
    finally:
        session.close()
        _truncate_all()


@pytest.fixture(autouse=True)
def reset_credential_cache() -> Iterator[None]:
    credential_cache.invalidate()
    yield
    credential_cache.invalidate()


class FakeGateway:
    """In-memory stand-in for the Mercado Pago client."""

    def __init__(self) -> None:
        self.payments: dict[str, dict[str, Any]] = {}
        self.orders: dict[str, dict[str, Any]] = {}
        self.fail_with: Exception | None = None
        self.link_calls: list[int] = []
        self.payment_calls: list[str] = []

    def add_payment(
        self,
        payment_id: str,
        *,
        status: str,
        charge_id: int | None = None,
        date_approved: str | None = None,
        metadata: dict[str, Any] | None = None,
        external_reference: str | None = None,
    ) -> None:
        reference = external_reference
        if reference is None and charge_id is not None:
            reference = f"charge_{charge_id}"
        self.payments[payment_id] = {
            "id": payment_id,
            "status": status,
            "external_reference": reference,
            "metadata": metadata or {},
            "date_approved": date_approved,
        }

    def create_payment_link(self, charge: Charge) -> PaymentLink:
        self.link_calls.append(charge.id)
        if self.fail_with is not None:
            raise self.fail_with
        preference_id = f"pref-{charge.id}"
        return PaymentLink(
            payment_link=f"https://www.mercadopago.com.br/checkout/v1/redirect?pref_id={preference_id}",
            preference_id=preference_id,
        )

    def get_payment(self, payment_id: str) -> GatewayPayment:
        self.payment_calls.append(payment_id)
        if self.fail_with is not None:
            raise self.fail_with
        if payment_id not in self.payments:
            raise GatewayRejected("not found", status_code=404, body={"message": "Payment not found"})
        return GatewayPayment.model_validate(self.payments[payment_id])

    def get_merchant_order(self, order_id: str) -> GatewayMerchantOrder:
        if self.fail_with is not None:
            raise self.fail_with
        return GatewayMerchantOrder.model_validate(self.orders[order_id])


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def gateway_factory(fake_gateway: FakeGateway) -> Callable[[Session], FakeGateway]:
    return lambda _db: fake_gateway


@pytest.fixture(autouse=True)
def override_dependencies(db_session: Session, gateway_factory) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway_factory] = lambda: gateway_factory
    yield
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_gateway_factory, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {os.environ['API_KEY']}"}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {os.environ['ADMIN_API_KEY']}"}


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_credential(db_session: Session) -> Callable[..., GatewayCredential]:
    def _factory(
        *,
        access_token: str = "APP_USR-test-token-0001",
        is_active: bool = True,
        is_valid: bool = True,
        is_sandbox: bool = False,
    ) -> GatewayCredential:
        credential = GatewayCredential(
            gateway_type="mercadopago",
            access_token=access_token,
            is_active=is_active,
            is_valid=is_valid,
            is_sandbox=is_sandbox,
        )
        db_session.add(credential)
        db_session.commit()
        return credential

    return _factory


@pytest.fixture
def make_plan(db_session: Session) -> Callable[..., Plan]:
    def _factory(
        *,
        teacher_id: str = "teacher-1",
        price: str = "150.00",
        interval: PlanInterval = PlanInterval.MONTHLY,
        is_active: bool = True,
    ) -> Plan:
        plan = Plan(
            teacher_id=teacher_id,
            name=f"Plano {interval.value.lower()}",
            price=Decimal(price),
            currency="BRL",
            interval=interval,
            is_active=is_active,
        )
        db_session.add(plan)
        db_session.commit()
        return plan

    return _factory


@pytest.fixture
def make_subscription(db_session: Session) -> Callable[..., Subscription]:
    def _factory(
        plan: Plan,
        *,
        user_id: str = "student-1",
        end_date: date,
        start_date: date | None = None,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        auto_renew: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> Subscription:
        subscription = Subscription(
            user_id=user_id,
            teacher_id=plan.teacher_id,
            plan_id=plan.id,
            status=status,
            start_date=start_date or date(2024, 1, 1),
            end_date=end_date,
            auto_renew=auto_renew,
            metadata_json=metadata or {},
        )
        db_session.add(subscription)
        db_session.commit()
        return subscription

    return _factory


@pytest.fixture
def make_charge(db_session: Session) -> Callable[..., Charge]:
    def _factory(
        *,
        status: ChargeStatus = ChargeStatus.CREATED,
        with_link: bool | None = None,
        plan: Plan | None = None,
        subscription: Subscription | None = None,
        amount: str = "150.00",
        due_date: date = date(2024, 6, 10),
        student_id: str = "student-1",
        teacher_id: str = "teacher-1",
    ) -> Charge:
        if with_link is None:
            with_link = status not in (ChargeStatus.CREATED,)
        charge = Charge(
            teacher_id=teacher_id,
            student_id=student_id,
            plan_id=plan.id if plan is not None else None,
            subscription_id=subscription.id if subscription is not None else None,
            amount=Decimal(amount),
            currency="BRL",
            description="Mensalidade",
            due_date=due_date,
            status=status,
        )
        db_session.add(charge)
        db_session.flush()
        if with_link:
            charge.payment_link = f"https://www.mercadopago.com.br/checkout/v1/redirect?pref_id=pref-{charge.id}"
            charge.preference_id = f"pref-{charge.id}"
        db_session.commit()
        return charge

    return _factory


def _payment_webhook(
    payment_id: str, *, notification_id: int | str | None = None, action: str = "payment.updated"
) -> dict:
    body: dict[str, Any] = {
        "action": action,
        "api_version": "v1",
        "data": {"id": payment_id},
        "date_created": datetime(2024, 5, 31, 12, 0).isoformat() + "Z",
        "live_mode": False,
        "type": "payment",
        "user_id": "123456",
    }
    if notification_id is not None:
        body["id"] = notification_id
    return body


@pytest.fixture
def payment_webhook() -> Callable[..., dict]:
    """Builder for Mercado Pago payment webhook bodies."""

    return _payment_webhook
