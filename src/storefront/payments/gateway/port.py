"""Payment gateway port (abstract interface).

Checkout talks to the gateway through this contract only, so the Razorpay
adapter and the fake used in development and tests are interchangeable.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class PaymentIntent:
    """A gateway-side order the customer pays against."""

    intent_id: str
    amount_minor: int  # paise
    currency: str
    status: str
    receipt: str | None = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    #: Public key handed to the browser checkout widget
    public_key: str = ""

    @abstractmethod
    def create_payment_intent(self, amount: float, currency: str, receipt: str) -> PaymentIntent:
        """Open a payment for ``amount`` (major units) tagged with ``receipt``.

        Raises ExternalServiceError on timeouts and transport failures.
        """
        ...

    @abstractmethod
    def verify_signature(self, intent_id: str, payment_id: str, signature: str) -> bool:
        """Check that the client-reported payment really came from the gateway."""
        ...


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))
