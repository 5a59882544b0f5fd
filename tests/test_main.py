import pytest
from httpx import ASGITransport, AsyncClient

from billing.config import get_settings
from billing.main import _assert_webhook_secret, app


def _settings(env: str, secret: str | None):
    return get_settings().model_copy(update={"app_env": env, "GATEWAY_WEBHOOK_SECRET": secret})


def test_missing_secret_blocks_production_startup():
    with pytest.raises(RuntimeError):
        _assert_webhook_secret(_settings("prod", None))


@pytest.mark.parametrize("env", ["dev", "local", "test"])
def test_missing_secret_allowed_in_dev_environments(env):
    _assert_webhook_secret(_settings(env, None))


def test_configured_secret_passes_everywhere():
    _assert_webhook_secret(_settings("prod", "whsec_live"))


@pytest.mark.anyio
async def test_unhandled_errors_use_standard_payload(monkeypatch, auth_headers):
    from billing.services import charges as charges_service

    def _boom(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(charges_service, "list_charges", _boom)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/charges", headers=auth_headers)

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "INTERNAL_SERVER_ERROR"
