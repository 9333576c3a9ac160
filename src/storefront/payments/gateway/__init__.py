"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- RazorpayGateway when ``PAYMENT_GATEWAY=razorpay`` and keys are configured
- FakeGateway otherwise (development and testing)
"""

import os

from storefront.payments.gateway.fake_adapter import FakeGateway
from storefront.payments.gateway.port import PaymentGateway, PaymentIntent
from storefront.payments.gateway.razorpay_adapter import RazorpayGateway

__all__ = ["PaymentGateway", "PaymentIntent", "get_gateway", "reset_gateway", "set_gateway"]

_current_gateway: PaymentGateway | None = None


def _gateway_from_env() -> PaymentGateway:
    key_id = os.getenv("RAZORPAY_KEY_ID")
    key_secret = os.getenv("RAZORPAY_KEY_SECRET")
    if os.getenv("PAYMENT_GATEWAY", "").lower() == "razorpay" and key_id and key_secret:
        return RazorpayGateway(key_id=key_id, key_secret=key_secret)
    return FakeGateway()


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway, building it from the environment on first use."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = _gateway_from_env()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None
