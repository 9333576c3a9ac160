"""Checkout orchestrator — turns a cart into an order.

Validation, pricing and the payment decision happen before anything is
written. The order itself is created in one unit of work that also reserves
the stock. Everything after that is a forward-only follow-up: coupon usage,
the wallet debit and clearing the cart are each attempted once, logged, and
reported back as warnings. None of them can undo a placed order.

Gateway payments take a detour through a ``Checkout``: the priced snapshot
waits under a reserved order number until the payment signature verifies,
so no order exists for a payment that never happened. If the order still
cannot be placed once the payment verifies, the checkout is voided and the
captured amount is credited to the wallet.
"""

import json

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from storefront.cart.items import ClearCart, cart_for
from storefront.checkout.checkout import Checkout
from storefront.checkout.pricing import COD_LIMIT, CURRENCY, parse_payment_method, price_lines, quote
from storefront.checkout.sessions import (
    CompleteCheckout,
    RecordCheckoutRefund,
    RecordPaymentFailure,
    RenewPaymentIntent,
    StartCheckout,
    SwitchCheckoutToCod,
    VoidPaidCheckout,
)
from storefront.coupon.management import RedeemCoupon
from storefront.customer.customer import Customer
from storefront.errors import FOLLOW_UP_ERRORS, InvalidTransition, conflicts_as_retryable
from storefront.ordering.order import Order, PaymentMethod, ShippingAddress, generate_order_number
from storefront.ordering.placement import PlaceOrder
from storefront.ordering.refunds import credit_with_retry
from storefront.payments.gateway import get_gateway
from storefront.wallet import service as wallet

logger = structlog.get_logger(__name__)


def _process(command):
    with conflicts_as_retryable():
        return current_domain.process(command, asynchronous=False)


def _error_message(exc):
    return str(getattr(exc, "messages", None) or exc)


def _first_message(exc):
    messages = getattr(exc, "messages", None)
    if isinstance(messages, dict) and messages:
        first = next(iter(messages.values()))
        return first[0] if isinstance(first, list) and first else str(first)
    return str(exc)


def _validate_address(shipping_address):
    if not shipping_address:
        raise ValidationError({"shipping_address": ["Shipping address is required"]})
    # Raises ValidationError for missing or malformed fields
    ShippingAddress(**shipping_address)
    return dict(shipping_address)


def _lines_from_cart(customer_id):
    try:
        return cart_for(customer_id).lines()
    except ObjectNotFoundError:
        return []


# ---------------------------------------------------------------------------
# Follow-ups after the order is committed
# ---------------------------------------------------------------------------
def _after_placement(order_id, from_cart):
    """Run the post-commit steps for a placed order and collect their failures."""
    order = current_domain.repository_for(Order).get(order_id)
    warnings = []

    if order.coupon_code:
        try:
            _process(RedeemCoupon(code=order.coupon_code, order_ref=order.order_number))
        except FOLLOW_UP_ERRORS as exc:
            logger.error(
                "Coupon usage increment failed",
                order_id=str(order.id),
                coupon_code=order.coupon_code,
                error=_error_message(exc),
            )
            warnings.append(f"Coupon usage could not be recorded: {_error_message(exc)}")

    if order.wallet_amount_used and order.wallet_amount_used > 0:
        try:
            wallet.debit(
                order.customer_id,
                order.wallet_amount_used,
                f"Payment for order {order.order_number}",
                order_ref=order.order_number,
                idempotency_key=f"order-payment:{order.id}",
            )
        except FOLLOW_UP_ERRORS as exc:
            logger.error(
                "Wallet debit for order failed",
                order_id=str(order.id),
                amount=order.wallet_amount_used,
                error=_error_message(exc),
            )
            warnings.append(f"Wallet payment could not be recorded: {_error_message(exc)}")

    if from_cart:
        try:
            _process(ClearCart(customer_id=str(order.customer_id)))
        except FOLLOW_UP_ERRORS as exc:
            logger.warning("Cart could not be cleared", customer_id=str(order.customer_id), error=_error_message(exc))
            warnings.append("Your cart could not be cleared")

    return order, warnings


def _placed(order_id, from_cart, message="Order placed successfully"):
    order, warnings = _after_placement(order_id, from_cart)
    return {
        "success": True,
        "message": message,
        "requires_payment": False,
        "order_id": str(order.id),
        "order_number": order.order_number,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "total_amount": order.total_amount,
        "wallet_amount_used": order.wallet_amount_used,
        "warnings": warnings,
    }


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------
def preview_checkout(customer_id, payment_method, coupon_code=None, use_wallet=False, lines=None):
    """Price the checkout without placing anything."""
    return quote(customer_id, lines or _lines_from_cart(customer_id), payment_method, coupon_code, use_wallet)


def place_order_from_cart(
    customer_id,
    shipping_address,
    payment_method,
    coupon_code=None,
    use_wallet=False,
    lines=None,
):
    """Check out the customer's cart (or explicit ``lines``).

    Cash on delivery and wallet payments are placed immediately. A gateway
    payment with something left to pay returns the intent details instead,
    with ``requires_payment`` set.
    """
    customer = current_domain.repository_for(Customer).get(str(customer_id))
    if customer.is_blocked:
        raise ValidationError({"customer": ["Your account is blocked"]})

    from_cart = lines is None
    address = _validate_address(shipping_address)
    if from_cart:
        lines = _lines_from_cart(customer_id)

    priced = quote(customer_id, lines, payment_method, coupon_code=coupon_code, use_wallet=use_wallet)
    method = PaymentMethod(priced["payment_method"])

    if method == PaymentMethod.RAZORPAY and priced["amount_due"] > 0:
        return _start_gateway_checkout(customer_id, priced, address, from_cart)

    if method == PaymentMethod.RAZORPAY:
        # Fully covered by the wallet
        priced["payment_method"] = PaymentMethod.WALLET.value

    order_id = _process(
        PlaceOrder(
            customer_id=str(customer_id),
            lines=json.dumps(priced["lines"]),
            shipping_address=json.dumps(address),
            payment_method=priced["payment_method"],
            subtotal=priced["subtotal"],
            shipping_cost=priced["shipping_cost"],
            tax_amount=priced["tax_amount"],
            coupon_code=priced["coupon_code"],
            coupon_discount=priced["coupon_discount"],
            wallet_amount_used=priced["wallet_amount_used"],
            total_amount=priced["total_amount"],
        )
    )
    return _placed(order_id, from_cart)


def _start_gateway_checkout(customer_id, priced, address, from_cart):
    order_number = generate_order_number()
    gateway = get_gateway()
    # ExternalServiceError propagates; nothing has been written yet
    intent = gateway.create_payment_intent(priced["amount_due"], CURRENCY, order_number)

    checkout_id = _process(
        StartCheckout(
            customer_id=str(customer_id),
            order_number=order_number,
            quote=json.dumps(priced),
            shipping_address=json.dumps(address),
            gateway_order_id=intent.intent_id,
            from_cart=from_cart,
        )
    )
    logger.info(
        "Gateway checkout started",
        checkout_id=checkout_id,
        order_number=order_number,
        amount_due=priced["amount_due"],
    )
    return {
        "success": True,
        "message": "Complete the payment to place your order",
        "requires_payment": True,
        "checkout_id": checkout_id,
        "order_number": order_number,
        "gateway_order_id": intent.intent_id,
        "amount": intent.amount_minor,
        "currency": intent.currency,
        "key": gateway.public_key,
        "total_amount": priced["total_amount"],
        "wallet_amount_used": priced["wallet_amount_used"],
    }


def complete_gateway_payment(checkout_id, gateway_order_id, payment_id, signature):
    """Verify the gateway's signature and place the order from the checkout.

    Completing an already completed checkout returns its order again.
    """
    checkout = current_domain.repository_for(Checkout).get(str(checkout_id))
    if checkout.is_completed:
        return _existing(checkout)
    if checkout.is_voided:
        return _voided(checkout)

    checkout.assert_accepts_payment(gateway_order_id)
    if not get_gateway().verify_signature(gateway_order_id, payment_id, signature):
        logger.warning("Payment signature verification failed", checkout_id=str(checkout_id))
        _process(RecordPaymentFailure(checkout_id=str(checkout_id), reason="Payment verification failed"))
        raise ValidationError({"payment": ["Payment verification failed"]})

    try:
        order_id = _process(
            CompleteCheckout(
                checkout_id=str(checkout_id),
                gateway_order_id=gateway_order_id,
                gateway_payment_id=payment_id,
                gateway_signature=signature,
            )
        )
    except InvalidTransition:
        raise
    except ValidationError as exc:
        # The gateway has the money, so the checkout cannot be left open for another payment
        reason = _first_message(exc)
        logger.error(
            "Order could not be placed after payment",
            checkout_id=str(checkout_id),
            order_number=checkout.order_number,
            payment_id=payment_id,
            error=reason,
        )
        _process(
            VoidPaidCheckout(
                checkout_id=str(checkout_id),
                gateway_order_id=gateway_order_id,
                gateway_payment_id=payment_id,
                reason=reason,
            )
        )
        return _voided(current_domain.repository_for(Checkout).get(str(checkout_id)))
    return _placed(order_id, checkout.from_cart, message="Payment verified and order placed successfully")


def _existing(checkout):
    order = current_domain.repository_for(Order).get(str(checkout.order_id))
    return {
        "success": True,
        "message": "Order already placed for this payment",
        "requires_payment": False,
        "order_id": str(order.id),
        "order_number": order.order_number,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "total_amount": order.total_amount,
        "wallet_amount_used": order.wallet_amount_used,
        "warnings": [],
    }


def _refund_voided(checkout):
    """Credit a voided checkout's captured amount to the wallet. Returns the refund error, if any."""
    if checkout.refund_transaction_id or not checkout.refund_amount:
        return None

    try:
        receipt = credit_with_retry(
            checkout.customer_id,
            checkout.refund_amount,
            f"Refund for unplaced order {checkout.order_number}",
            checkout.order_number,
            checkout.refund_key,
        )
    except FOLLOW_UP_ERRORS as exc:
        error = _error_message(exc)
        logger.error("Checkout refund failed", checkout_id=str(checkout.id), amount=checkout.refund_amount, error=error)
        _process(RecordCheckoutRefund(checkout_id=str(checkout.id), error=error))
        return error

    logger.info("Checkout refund credited", checkout_id=str(checkout.id), amount=checkout.refund_amount)
    _process(RecordCheckoutRefund(checkout_id=str(checkout.id), transaction_id=receipt["transaction_id"]))
    return None


def _voided(checkout):
    """Report a voided checkout, crediting its refund first if that has not happened yet.

    Verifying the same payment again replays this, which also retries a failed credit.
    """
    error = _refund_voided(checkout)
    result = {
        "success": False,
        "message": f"Payment received but the order could not be placed: {checkout.void_reason}",
        "requires_payment": False,
        "checkout_id": str(checkout.id),
        "order_number": checkout.order_number,
        "payment_id": checkout.gateway_payment_id,
        "refund_amount": 0.0 if error else checkout.refund_amount,
    }
    if error:
        result["refund_error"] = error
    return result


def record_payment_failure(checkout_id, reason=None):
    _process(RecordPaymentFailure(checkout_id=str(checkout_id), reason=reason or "Payment failed"))
    return {"success": True, "message": "Payment failure recorded. You can retry the payment"}


def retry_payment(checkout_id, payment_method=None):
    """Try again for an unpaid checkout, with a fresh intent or by switching to COD.

    The order number never changes, so a retry can only ever produce the one
    order the checkout was opened for.
    """
    checkout = current_domain.repository_for(Checkout).get(str(checkout_id))
    checkout.assert_can_retry()
    # Stock may have moved since the checkout was priced
    price_lines([{"variant_id": line.variant_id, "quantity": line.quantity} for line in checkout.lines])

    method = parse_payment_method(payment_method) if payment_method else PaymentMethod.RAZORPAY
    if method == PaymentMethod.COD:
        if checkout.total_amount > COD_LIMIT:
            raise ValidationError(
                {"payment_method": [f"Cash on Delivery is not available for orders above {COD_LIMIT}"]}
            )
        _process(SwitchCheckoutToCod(checkout_id=str(checkout_id)))
        order_id = _process(CompleteCheckout(checkout_id=str(checkout_id)))
        return _placed(order_id, checkout.from_cart)

    if method != PaymentMethod.RAZORPAY:
        raise ValidationError({"payment_method": ["Payment can only be retried online or as Cash on Delivery"]})

    gateway = get_gateway()
    intent = gateway.create_payment_intent(checkout.amount_due, CURRENCY, checkout.order_number)
    attempts = _process(RenewPaymentIntent(checkout_id=str(checkout_id), gateway_order_id=intent.intent_id))
    logger.info("Payment intent renewed", checkout_id=str(checkout_id), attempt=attempts)
    return {
        "success": True,
        "message": "Complete the payment to place your order",
        "requires_payment": True,
        "checkout_id": str(checkout.id),
        "order_number": checkout.order_number,
        "gateway_order_id": intent.intent_id,
        "amount": intent.amount_minor,
        "currency": intent.currency,
        "key": gateway.public_key,
        "attempts": attempts,
    }
