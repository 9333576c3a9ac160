"""Checkout aggregate (CQRS) — a priced cart awaiting gateway payment.

Gateway orders are not created up front. The checkout holds the snapshot
(lines, address, prices, wallet split) under a reserved order number, and
the order is placed from it only once the payment signature verifies.

State Machine:
    AwaitingPayment → Completed
    AwaitingPayment → PaymentFailed → AwaitingPayment (retry) → ...
    PaymentFailed → Completed (late verification, or switched to COD)
    AwaitingPayment | PaymentFailed → Voided (paid, but the order could not be placed)
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, Integer, String, Text

from storefront.checkout.events import (
    CheckoutCompleted,
    CheckoutStarted,
    CheckoutVoided,
    PaymentFailedRecorded,
    PaymentIntentRenewed,
)
from storefront.domain import storefront
from storefront.errors import InvalidTransition
from storefront.ordering.order import PaymentMethod

MAX_PAYMENT_ATTEMPTS = 5


class CheckoutStatus(Enum):
    AWAITING_PAYMENT = "AwaitingPayment"
    PAYMENT_FAILED = "PaymentFailed"
    COMPLETED = "Completed"
    VOIDED = "Voided"


_OPEN_STATES = {CheckoutStatus.AWAITING_PAYMENT.value, CheckoutStatus.PAYMENT_FAILED.value}


@storefront.entity(part_of="Checkout")
class CheckoutLine:
    variant_id = Identifier(required=True)
    product_id = Identifier()
    product_name = String(required=True, max_length=255)
    variant_name = String(max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)

    def to_dict(self):
        return {
            "variant_id": str(self.variant_id),
            "product_id": str(self.product_id) if self.product_id else None,
            "product_name": self.product_name,
            "variant_name": self.variant_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
        }


@storefront.aggregate
class Checkout:
    order_number = String(required=True, max_length=30, unique=True)
    customer_id = Identifier(required=True)
    lines = HasMany(CheckoutLine)
    shipping_address = Text(required=True)  # JSON: address dict
    payment_method = String(choices=PaymentMethod, default=PaymentMethod.RAZORPAY.value)

    subtotal = Float(required=True, min_value=0.0)
    shipping_cost = Float(default=0.0)
    tax_amount = Float(default=0.0)
    coupon_code = String(max_length=20)
    coupon_discount = Float(default=0.0)
    wallet_amount_used = Float(default=0.0)
    total_amount = Float(required=True, min_value=0.0)
    amount_due = Float(required=True, min_value=0.0)

    status = String(choices=CheckoutStatus, default=CheckoutStatus.AWAITING_PAYMENT.value)
    gateway_order_id = String(max_length=100)
    attempts = Integer(default=0, min_value=0)
    failure_notes = Text()  # JSON: [{attempt, reason, at}]
    order_id = Identifier()
    from_cart = Boolean(default=True)

    # Set only when a captured payment is credited back to the wallet
    gateway_payment_id = String(max_length=100)
    void_reason = String(max_length=500)
    refund_amount = Float(default=0.0, min_value=0.0)
    refund_transaction_id = String(max_length=30)
    refund_error = Text()

    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def start(cls, customer_id, order_number, quote, shipping_address, gateway_order_id, from_cart=True):
        now = datetime.now(UTC)
        checkout = cls(
            order_number=order_number,
            customer_id=str(customer_id),
            lines=[CheckoutLine(**line) for line in quote["lines"]],
            shipping_address=json.dumps(shipping_address),
            payment_method=quote["payment_method"],
            subtotal=quote["subtotal"],
            shipping_cost=quote["shipping_cost"],
            tax_amount=quote["tax_amount"],
            coupon_code=quote["coupon_code"],
            coupon_discount=quote["coupon_discount"],
            wallet_amount_used=quote["wallet_amount_used"],
            total_amount=quote["total_amount"],
            amount_due=quote["amount_due"],
            status=CheckoutStatus.AWAITING_PAYMENT.value,
            gateway_order_id=gateway_order_id,
            attempts=1,
            from_cart=bool(from_cart),
            created_at=now,
            updated_at=now,
        )
        checkout.raise_(
            CheckoutStarted(
                checkout_id=str(checkout.id),
                order_number=order_number,
                customer_id=checkout.customer_id,
                amount_due=checkout.amount_due,
                gateway_order_id=gateway_order_id,
                started_at=now,
            )
        )
        return checkout

    # -------------------------------------------------------------------
    # Snapshot accessors
    # -------------------------------------------------------------------
    @property
    def is_open(self):
        return self.status in _OPEN_STATES

    @property
    def is_completed(self):
        return self.status == CheckoutStatus.COMPLETED.value

    @property
    def is_voided(self):
        return self.status == CheckoutStatus.VOIDED.value

    @property
    def refund_key(self):
        return f"checkout-refund:{self.id}"

    def line_dicts(self):
        return [line.to_dict() for line in self.lines]

    def address(self):
        return json.loads(self.shipping_address)

    def pricing(self):
        return {
            "subtotal": self.subtotal,
            "shipping_cost": self.shipping_cost,
            "tax_amount": self.tax_amount,
            "coupon_code": self.coupon_code,
            "coupon_discount": self.coupon_discount,
            "wallet_amount_used": self.wallet_amount_used,
            "total_amount": self.total_amount,
        }

    def failures(self):
        return json.loads(self.failure_notes) if self.failure_notes else []

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------
    def _assert_open(self, attempted):
        if not self.is_open:
            raise InvalidTransition(self.status, attempted, f"Checkout is already {self.status}", "checkout")

    def assert_accepts_payment(self, gateway_order_id):
        self._assert_open(CheckoutStatus.COMPLETED)
        if gateway_order_id != self.gateway_order_id:
            raise ValidationError({"gateway_order_id": ["Payment does not belong to this checkout"]})

    def record_failure(self, reason):
        self._assert_open(CheckoutStatus.PAYMENT_FAILED)
        now = datetime.now(UTC)
        notes = self.failures()
        notes.append({"attempt": self.attempts, "reason": reason, "at": now.isoformat()})
        self.failure_notes = json.dumps(notes)
        self.status = CheckoutStatus.PAYMENT_FAILED.value
        self.updated_at = now
        self.raise_(
            PaymentFailedRecorded(
                checkout_id=str(self.id),
                order_number=self.order_number,
                reason=reason,
                attempt=self.attempts,
                failed_at=now,
            )
        )

    def assert_can_retry(self):
        self._assert_open(CheckoutStatus.AWAITING_PAYMENT)
        if (self.attempts or 0) >= MAX_PAYMENT_ATTEMPTS:
            raise ValidationError({"checkout": [f"Maximum of {MAX_PAYMENT_ATTEMPTS} payment attempts reached"]})

    def renew_intent(self, gateway_order_id):
        """Bind a fresh gateway order to this checkout for another attempt."""
        self.assert_can_retry()
        now = datetime.now(UTC)
        self.gateway_order_id = gateway_order_id
        self.attempts = (self.attempts or 0) + 1
        self.status = CheckoutStatus.AWAITING_PAYMENT.value
        self.updated_at = now
        self.raise_(
            PaymentIntentRenewed(
                checkout_id=str(self.id),
                gateway_order_id=gateway_order_id,
                attempt=self.attempts,
                renewed_at=now,
            )
        )

    def switch_to_cod(self):
        """Cash on delivery collects the whole total at the door, so the wallet share is dropped."""
        self.assert_can_retry()
        self.payment_method = PaymentMethod.COD.value
        self.wallet_amount_used = 0.0
        self.amount_due = self.total_amount
        self.updated_at = datetime.now(UTC)

    def complete(self, order_id):
        self._assert_open(CheckoutStatus.COMPLETED)
        now = datetime.now(UTC)
        self.status = CheckoutStatus.COMPLETED.value
        self.order_id = str(order_id)
        self.updated_at = now
        self.raise_(
            CheckoutCompleted(
                checkout_id=str(self.id),
                order_id=str(order_id),
                order_number=self.order_number,
                payment_method=self.payment_method,
                completed_at=now,
            )
        )

    def void_after_payment(self, gateway_order_id, gateway_payment_id, reason):
        """Close a checkout whose verified payment cannot become an order.

        The captured amount is owed back to the customer as store credit.
        """
        self.assert_accepts_payment(gateway_order_id)
        now = datetime.now(UTC)
        self.status = CheckoutStatus.VOIDED.value
        self.gateway_order_id = gateway_order_id
        self.gateway_payment_id = gateway_payment_id
        self.void_reason = reason
        self.refund_amount = self.amount_due
        self.updated_at = now
        self.raise_(
            CheckoutVoided(
                checkout_id=str(self.id),
                order_number=self.order_number,
                customer_id=self.customer_id,
                gateway_payment_id=gateway_payment_id,
                refund_amount=self.refund_amount,
                reason=reason,
                voided_at=now,
            )
        )

    def record_refund(self, transaction_id=None, error=None):
        if not self.is_voided:
            raise InvalidTransition(
                self.status, CheckoutStatus.VOIDED, "Only voided checkouts are refunded", "checkout"
            )
        self.refund_transaction_id = transaction_id
        self.refund_error = None if transaction_id else error
        self.updated_at = datetime.now(UTC)
