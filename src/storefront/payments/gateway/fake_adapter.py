"""Configurable fake payment gateway for development and testing.

No external calls are made. Behaviour is switched at runtime to succeed,
fail or time out, and signatures are real HMAC-SHA256 digests over
``{intent_id}|{payment_id}`` so the verification path is exercised exactly
as it is against Razorpay.
"""

import hashlib
import hmac
from uuid import uuid4

from storefront.errors import ExternalServiceError
from storefront.payments.gateway.port import PaymentGateway, PaymentIntent, to_minor_units

TEST_SECRET = "fake-gateway-secret"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    public_key = "rzp_test_fake"

    def __init__(self, secret: str = TEST_SECRET) -> None:
        self.secret = secret
        self.should_succeed: bool = True
        self.failure_reason: str = "Gateway unavailable"
        self.timeout: bool = False
        self.calls: list[dict] = []

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Gateway unavailable",
        timeout: bool = False,
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.timeout = timeout

    def create_payment_intent(self, amount: float, currency: str, receipt: str) -> PaymentIntent:
        self.calls.append(
            {
                "method": "create_payment_intent",
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
            }
        )

        if self.timeout:
            raise ExternalServiceError("razorpay", "Payment gateway timed out")
        if not self.should_succeed:
            raise ExternalServiceError("razorpay", self.failure_reason)

        return PaymentIntent(
            intent_id=f"order_fake{uuid4().hex[:14]}",
            amount_minor=to_minor_units(amount),
            currency=currency,
            status="created",
            receipt=receipt,
        )

    def sign(self, intent_id: str, payment_id: str) -> str:
        """The signature the gateway would hand the browser for this payment."""
        message = f"{intent_id}|{payment_id}".encode()
        return hmac.new(self.secret.encode(), message, hashlib.sha256).hexdigest()

    def verify_signature(self, intent_id: str, payment_id: str, signature: str) -> bool:
        self.calls.append({"method": "verify_signature", "intent_id": intent_id, "payment_id": payment_id})
        return hmac.compare_digest(self.sign(intent_id, payment_id), signature or "")
