"""Mercado Pago client behaviour against a mocked HTTP transport."""
import json
from datetime import date

import httpx
import pytest

from billing.models import ChargeStatus, GatewayCredential
from billing.services.credentials import CredentialSnapshot
from billing.services.gateway_mercadopago import MercadoPagoClient, verify_access_token
from billing.utils.errors import CredentialMissing, GatewayRejected, GatewayUnavailable


def _snapshot(*, sandbox: bool = False) -> CredentialSnapshot:
    return CredentialSnapshot(gateway_type="mercadopago", access_token="APP_USR-token", is_sandbox=sandbox)


def test_create_payment_link_sends_preference(make_charge, make_plan):
    plan = make_plan()
    charge = make_charge(plan=plan, due_date=date(2024, 6, 10))
    charge.payer_email = "aluno@example.com"
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            201,
            json={
                "id": "123-pref",
                "init_point": "https://www.mercadopago.com.br/checkout/v1/redirect?pref_id=123-pref",
                "sandbox_init_point": "https://sandbox.mercadopago.com.br/checkout/v1/redirect?pref_id=123-pref",
            },
        )

    client = MercadoPagoClient(_snapshot(), transport=httpx.MockTransport(handler))
    link = client.create_payment_link(charge)

    assert link.preference_id == "123-pref"
    assert link.payment_link.startswith("https://www.mercadopago.com.br/")
    assert seen["method"] == "POST"
    assert seen["path"] == "/checkout/preferences"
    assert seen["auth"] == "Bearer APP_USR-token"
    body = seen["body"]
    assert body["external_reference"] == f"charge_{charge.id}"
    assert body["items"][0]["unit_price"] == 150.0
    assert body["items"][0]["quantity"] == 1
    assert body["items"][0]["currency_id"] == "BRL"
    assert body["payer"]["email"] == "aluno@example.com"
    assert body["auto_return"] == "approved"
    assert body["expires"] is True
    assert body["expiration_date_to"].startswith("2024-06-10T23:59:59")
    assert body["back_urls"]["success"].endswith("/payments/success")
    assert body["metadata"]["charge_id"] == str(charge.id)
    assert body["metadata"]["plan_id"] == str(plan.id)


def test_sandbox_credential_uses_sandbox_link(make_charge):
    charge = make_charge()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            201,
            json={"id": "p-1", "init_point": "https://prod/link", "sandbox_init_point": "https://sandbox/link"},
        )

    client = MercadoPagoClient(_snapshot(sandbox=True), transport=httpx.MockTransport(handler))
    assert client.create_payment_link(charge).payment_link == "https://sandbox/link"


def test_payer_email_falls_back_to_default(make_charge):
    charge = make_charge()
    body = MercadoPagoClient(_snapshot()).build_preference(charge)
    assert body["payer"]["email"] == "aluno@atlon.app"


def test_non_2xx_raises_gateway_rejected_with_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"message": "invalid unit_price"})

    client = MercadoPagoClient(_snapshot(), transport=httpx.MockTransport(handler))
    with pytest.raises(GatewayRejected) as excinfo:
        client.get_payment("42")
    assert excinfo.value.status_code == 400
    assert excinfo.value.body == {"message": "invalid unit_price"}
    assert excinfo.value.retryable is False


def test_timeout_raises_gateway_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    client = MercadoPagoClient(_snapshot(), transport=httpx.MockTransport(handler))
    with pytest.raises(GatewayUnavailable) as excinfo:
        client.get_payment("42")
    assert excinfo.value.retryable is True


def test_unauthorized_marks_stored_credential_invalid(db_session, make_credential):
    make_credential()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "invalid access token"})

    client = MercadoPagoClient.from_db(db_session, transport=httpx.MockTransport(handler))
    with pytest.raises(GatewayRejected):
        client.get_payment("42")

    row = db_session.query(GatewayCredential).one()
    db_session.refresh(row)
    assert row.is_valid is False
    with pytest.raises(CredentialMissing):
        MercadoPagoClient.from_db(db_session)


def test_unauthorized_leaves_caller_transaction_open(db_session, make_credential, make_plan):
    make_credential()
    plan = make_plan()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "invalid access token"})

    client = MercadoPagoClient.from_db(db_session, transport=httpx.MockTransport(handler))
    plan.name = "Plano renomeado"
    with pytest.raises(GatewayRejected):
        client.get_payment("42")

    assert db_session.is_modified(plan)
    db_session.rollback()
    db_session.refresh(plan)
    assert plan.name == "Plano monthly"
    row = db_session.query(GatewayCredential).one()
    assert row.is_valid is False


def test_from_db_without_credential_raises(db_session):
    with pytest.raises(CredentialMissing):
        MercadoPagoClient.from_db(db_session)


def test_get_payment_parses_fields():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/payments/987"
        return httpx.Response(
            200,
            json={
                "id": 987,
                "status": "approved",
                "status_detail": "accredited",
                "external_reference": "charge_5",
                "metadata": {"charge_id": "5"},
                "date_approved": "2024-05-31T10:15:00.000-04:00",
                "transaction_amount": 150,
            },
        )

    payment = MercadoPagoClient(_snapshot(), transport=httpx.MockTransport(handler)).get_payment("987")
    assert payment.id == "987"
    assert payment.status == "approved"
    assert payment.external_reference == "charge_5"
    assert payment.date_approved is not None
    assert payment.date_approved.utcoffset() is not None


def test_get_merchant_order_parses_payments():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/merchant_orders/55"
        return httpx.Response(
            200,
            json={
                "id": 55,
                "status": "closed",
                "external_reference": "charge_9",
                "payments": [{"id": 1, "status": "rejected"}, {"id": 2, "status": "approved"}],
            },
        )

    order = MercadoPagoClient(_snapshot(), transport=httpx.MockTransport(handler)).get_merchant_order("55")
    assert order.external_reference == "charge_9"
    assert [p.status for p in order.payments] == ["rejected", "approved"]


def test_verify_access_token_reads_account():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/users/me"
        assert request.headers["Authorization"] == "Bearer APP_USR-candidate"
        return httpx.Response(200, json={"id": 123456, "nickname": "PERSONAL_FIT"})

    account = verify_access_token("APP_USR-candidate", transport=httpx.MockTransport(handler))
    assert account.id == "123456"
    assert account.nickname == "PERSONAL_FIT"


def test_charge_status_untouched_by_client(make_charge):
    charge = make_charge()
    MercadoPagoClient(_snapshot()).build_preference(charge)
    assert charge.status == ChargeStatus.CREATED
