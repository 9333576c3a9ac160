"""Razorpay payment gateway adapter.

Creates Razorpay orders over the REST API and verifies checkout signatures
locally with the key secret.
"""

import hashlib
import hmac

import requests
import structlog

from storefront.errors import ExternalServiceError
from storefront.payments.gateway.port import PaymentGateway, PaymentIntent, to_minor_units

logger = structlog.get_logger(__name__)

API_BASE_URL = "https://api.razorpay.com/v1"
GATEWAY_TIMEOUT_SECONDS = 10


class RazorpayGateway(PaymentGateway):
    """Production Razorpay adapter."""

    def __init__(self, key_id: str, key_secret: str, base_url: str = API_BASE_URL) -> None:
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        self.session.auth = (key_id, key_secret)

    @property
    def public_key(self) -> str:
        return self.key_id

    def create_payment_intent(self, amount: float, currency: str, receipt: str) -> PaymentIntent:
        payload = {"amount": to_minor_units(amount), "currency": currency, "receipt": receipt}
        try:
            response = self.session.post(
                f"{self.base_url}/orders",
                json=payload,
                timeout=GATEWAY_TIMEOUT_SECONDS,
            )
        except requests.Timeout as exc:
            logger.error("Razorpay order creation timed out", receipt=receipt)
            raise ExternalServiceError("razorpay", "Payment gateway timed out") from exc
        except requests.RequestException as exc:
            logger.error("Razorpay order creation failed", receipt=receipt, error=str(exc))
            raise ExternalServiceError("razorpay", "Payment gateway is unreachable") from exc

        if not response.ok:
            logger.error(
                "Razorpay rejected order creation",
                receipt=receipt,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise ExternalServiceError(
                "razorpay",
                f"Payment gateway returned {response.status_code}",
                retryable=response.status_code >= 500,
            )

        body = response.json()
        return PaymentIntent(
            intent_id=body["id"],
            amount_minor=body["amount"],
            currency=body["currency"],
            status=body.get("status", "created"),
            receipt=body.get("receipt"),
        )

    def verify_signature(self, intent_id: str, payment_id: str, signature: str) -> bool:
        message = f"{intent_id}|{payment_id}".encode()
        expected = hmac.new(self.key_secret.encode(), message, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")
