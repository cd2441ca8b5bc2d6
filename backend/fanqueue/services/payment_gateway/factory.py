from typing import Optional

from fanqueue.core.config import settings
from fanqueue.services.payment_gateway.interface import PaymentGatewayInterface
from fanqueue.services.payment_gateway.mock_gateway import MockGateway
from fanqueue.services.payment_gateway.stripe_gateway import StripeGateway


class UnsupportedPaymentProviderError(Exception):
    """
    Custom exception for unsupported payment providers.
    """
    pass


_gateway: Optional[PaymentGatewayInterface] = None


def get_payment_gateway(provider: Optional[str] = None) -> PaymentGatewayInterface:
    """
    Returns the process-wide gateway for the configured provider.
    """
    global _gateway
    provider = (provider or settings.PAYMENT_PROVIDER).lower()

    if _gateway is not None and getattr(_gateway, "provider", None) == provider:
        return _gateway

    if provider == "mock":
        gateway = MockGateway(webhook_secret=settings.PAYMENT_WEBHOOK_SECRET or "whsec_test")
    elif provider == "stripe":
        gateway = StripeGateway(api_key=settings.STRIPE_SECRET_KEY, webhook_secret=settings.PAYMENT_WEBHOOK_SECRET)
    else:
        raise UnsupportedPaymentProviderError(f"Payment provider '{provider}' is not supported.")

    gateway.provider = provider
    _gateway = gateway
    return gateway