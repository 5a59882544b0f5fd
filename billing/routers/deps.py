"""Shared router dependencies."""
from billing.services.gateway_mercadopago import GatewayFactory, default_gateway_factory


def get_gateway_factory() -> GatewayFactory:
    """Return the gateway factory; tests override this dependency."""

    return default_gateway_factory
