"""Gateway checkout sessions — commands and handler."""

import json

import structlog
from protean import handle
from protean.fields import Boolean, Identifier, String, Text
from protean.utils.globals import current_domain

from storefront.checkout.checkout import Checkout
from storefront.domain import storefront
from storefront.ordering.order import Order, PaymentMethod
from storefront.ordering.placement import reserve_and_place

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Checkout")
class StartCheckout:
    customer_id = Identifier(required=True)
    order_number = String(required=True, max_length=30)
    quote = Text(required=True)  # JSON: output of pricing.quote
    shipping_address = Text(required=True)  # JSON: address dict
    gateway_order_id = String(required=True, max_length=100)
    from_cart = Boolean(default=True)


@storefront.command(part_of="Checkout")
class RecordPaymentFailure:
    checkout_id = Identifier(required=True)
    reason = String(max_length=500)


@storefront.command(part_of="Checkout")
class RenewPaymentIntent:
    checkout_id = Identifier(required=True)
    gateway_order_id = String(required=True, max_length=100)


@storefront.command(part_of="Checkout")
class SwitchCheckoutToCod:
    checkout_id = Identifier(required=True)


@storefront.command(part_of="Checkout")
class CompleteCheckout:
    """Place the order from a checkout snapshot.

    Gateway fields are set for verified gateway payments and left empty when
    the checkout was switched to cash on delivery.
    """

    checkout_id = Identifier(required=True)
    gateway_order_id = String(max_length=100)
    gateway_payment_id = String(max_length=100)
    gateway_signature = String(max_length=255)


@storefront.command(part_of="Checkout")
class VoidPaidCheckout:
    checkout_id = Identifier(required=True)
    gateway_order_id = String(required=True, max_length=100)
    gateway_payment_id = String(max_length=100)
    reason = String(max_length=500)


@storefront.command(part_of="Checkout")
class RecordCheckoutRefund:
    checkout_id = Identifier(required=True)
    transaction_id = String(max_length=30)
    error = Text()


@storefront.command_handler(part_of=Checkout)
class CheckoutHandler:
    @handle(StartCheckout)
    def start_checkout(self, command):
        checkout = Checkout.start(
            customer_id=command.customer_id,
            order_number=command.order_number,
            quote=json.loads(command.quote),
            shipping_address=json.loads(command.shipping_address),
            gateway_order_id=command.gateway_order_id,
            from_cart=command.from_cart,
        )
        current_domain.repository_for(Checkout).add(checkout)
        return str(checkout.id)

    @handle(RecordPaymentFailure)
    def record_payment_failure(self, command):
        repo = current_domain.repository_for(Checkout)
        checkout = repo.get(command.checkout_id)
        checkout.record_failure(command.reason)
        repo.add(checkout)

    @handle(RenewPaymentIntent)
    def renew_payment_intent(self, command):
        repo = current_domain.repository_for(Checkout)
        checkout = repo.get(command.checkout_id)
        checkout.renew_intent(command.gateway_order_id)
        repo.add(checkout)
        return checkout.attempts

    @handle(SwitchCheckoutToCod)
    def switch_to_cod(self, command):
        repo = current_domain.repository_for(Checkout)
        checkout = repo.get(command.checkout_id)
        checkout.switch_to_cod()
        repo.add(checkout)

    @handle(VoidPaidCheckout)
    def void_paid_checkout(self, command):
        repo = current_domain.repository_for(Checkout)
        checkout = repo.get(command.checkout_id)
        checkout.void_after_payment(command.gateway_order_id, command.gateway_payment_id, command.reason)
        repo.add(checkout)
        logger.warning(
            "Paid checkout voided",
            checkout_id=str(checkout.id),
            order_number=checkout.order_number,
            refund_amount=checkout.refund_amount,
            reason=command.reason,
        )
        return checkout.refund_amount

    @handle(RecordCheckoutRefund)
    def record_checkout_refund(self, command):
        repo = current_domain.repository_for(Checkout)
        checkout = repo.get(command.checkout_id)
        checkout.record_refund(transaction_id=command.transaction_id, error=command.error)
        repo.add(checkout)

    @handle(CompleteCheckout)
    def complete_checkout(self, command):
        """Reserve stock, create the order and close the checkout in one unit of work."""
        repo = current_domain.repository_for(Checkout)
        checkout = repo.get(command.checkout_id)
        if checkout.is_completed:
            return str(checkout.order_id)

        gateway = None
        if checkout.payment_method != PaymentMethod.COD.value:
            checkout.assert_accepts_payment(command.gateway_order_id)
            gateway = {
                "gateway_order_id": command.gateway_order_id,
                "gateway_payment_id": command.gateway_payment_id,
                "gateway_signature": command.gateway_signature,
            }

        order = reserve_and_place(
            customer_id=checkout.customer_id,
            lines=checkout.line_dicts(),
            shipping_address=checkout.address(),
            payment_method=checkout.payment_method,
            pricing=checkout.pricing(),
            order_number=checkout.order_number,
            gateway=gateway,
        )
        checkout.complete(order.id)

        current_domain.repository_for(Order).add(order)
        repo.add(checkout)
        logger.info(
            "Checkout completed",
            checkout_id=str(checkout.id),
            order_id=str(order.id),
            order_number=order.order_number,
            payment_method=order.payment_method,
        )
        return str(order.id)
