"""Domain events for the Checkout aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="Checkout")
class CheckoutStarted:
    """A priced cart is waiting for the customer to pay at the gateway."""

    __version__ = 1

    checkout_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    amount_due = Float(required=True)
    gateway_order_id = String(required=True)
    started_at = DateTime(required=True)


@storefront.event(part_of="Checkout")
class PaymentIntentRenewed:
    __version__ = 1

    checkout_id = Identifier(required=True)
    gateway_order_id = String(required=True)
    attempt = Integer(required=True)
    renewed_at = DateTime(required=True)


@storefront.event(part_of="Checkout")
class PaymentFailedRecorded:
    """The gateway payment failed or could not be verified."""

    __version__ = 1

    checkout_id = Identifier(required=True)
    order_number = String(required=True)
    reason = String()
    attempt = Integer(required=True)
    failed_at = DateTime(required=True)


@storefront.event(part_of="Checkout")
class CheckoutCompleted:
    __version__ = 1

    checkout_id = Identifier(required=True)
    order_id = Identifier(required=True)
    order_number = String(required=True)
    payment_method = String(required=True)
    completed_at = DateTime(required=True)


@storefront.event(part_of="Checkout")
class CheckoutVoided:
    """The payment was captured but the order could not be placed from the checkout."""

    __version__ = 1

    checkout_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    gateway_payment_id = String()
    refund_amount = Float(required=True)
    reason = String()
    voided_at = DateTime(required=True)
