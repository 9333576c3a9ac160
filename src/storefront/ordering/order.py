"""Order aggregate (CQRS) — the order lifecycle state machine.

An order and its lines move through explicit transition tables. Only the
canonical statuses below are persisted; "Partially Cancelled" and "Partially
Delivered" are display labels derived from the lines at read time.

Order:
    Pending → Confirmed → Processing → Shipped → Delivered → Returned
    Cancelled (from Pending, Confirmed, Processing)

Item:
    Pending → Confirmed → Processing → Shipped → Out for Delivery →
    Delivered → Returned
    Cancelled (from Pending, Confirmed, Processing)

Returned → Delivered exists only as the compensation applied when a return
request is rejected after its line was already marked Returned.
"""

import json
from datetime import UTC, datetime, timedelta
from enum import Enum
from uuid import uuid4

from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import (
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from storefront.domain import storefront
from storefront.errors import InvalidTransition
from storefront.ordering.events import (
    ItemStatusChanged,
    OrderCancelled,
    OrderItemsCancelled,
    OrderPlaced,
    OrderStatusAdvanced,
    RefundRecorded,
    ReturnApproved,
    ReturnRejected,
    ReturnRequested,
)

RETURN_WINDOW_DAYS = 7
EXPECTED_DELIVERY_DAYS = 7
_TOLERANCE = 0.005


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"


class ItemStatus(Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"


class DisplayStatus(Enum):
    """What customers and admins see. Never persisted."""

    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    PARTIALLY_CANCELLED = "Partially Cancelled"
    PARTIALLY_DELIVERED = "Partially Delivered"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"


class PaymentMethod(Enum):
    COD = "COD"
    RAZORPAY = "RAZORPAY"
    WALLET = "WALLET"


class PaymentStatus(Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class RefundStatus(Enum):
    PENDING = "Pending"
    PROCESSED = "Processed"
    FAILED = "Failed"


class ReturnStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Actor(Enum):
    CUSTOMER = "Customer"
    ADMIN = "Admin"
    SYSTEM = "System"


# State machine transition maps
_ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {
        OrderStatus.CONFIRMED,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.CONFIRMED: {
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.RETURNED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.RETURNED: set(),  # Terminal
}

_ITEM_TRANSITIONS = {
    ItemStatus.PENDING: {
        ItemStatus.CONFIRMED,
        ItemStatus.PROCESSING,
        ItemStatus.SHIPPED,
        ItemStatus.OUT_FOR_DELIVERY,
        ItemStatus.DELIVERED,
        ItemStatus.CANCELLED,
    },
    ItemStatus.CONFIRMED: {
        ItemStatus.PROCESSING,
        ItemStatus.SHIPPED,
        ItemStatus.OUT_FOR_DELIVERY,
        ItemStatus.DELIVERED,
        ItemStatus.CANCELLED,
    },
    ItemStatus.PROCESSING: {
        ItemStatus.SHIPPED,
        ItemStatus.OUT_FOR_DELIVERY,
        ItemStatus.DELIVERED,
        ItemStatus.CANCELLED,
    },
    ItemStatus.SHIPPED: {ItemStatus.OUT_FOR_DELIVERY, ItemStatus.DELIVERED},
    ItemStatus.OUT_FOR_DELIVERY: {ItemStatus.DELIVERED},
    ItemStatus.DELIVERED: {ItemStatus.RETURNED},
    ItemStatus.CANCELLED: set(),  # Terminal
    ItemStatus.RETURNED: set(),  # Terminal
}

# The only reverse edges, reserved for undoing a rejected return
_ORDER_COMPENSATIONS = {(OrderStatus.RETURNED, OrderStatus.DELIVERED)}
_ITEM_COMPENSATIONS = {(ItemStatus.RETURNED, ItemStatus.DELIVERED)}

# States from which cancellation is allowed
CANCELLABLE_STATES = {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING}

# Targets an admin may move a whole order to
_ADVANCE_TARGETS = {
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
}

_ITEM_RANK = {status: rank for rank, status in enumerate(ItemStatus)}


def generate_order_number() -> str:
    timestamp = int(datetime.now(UTC).timestamp() * 1000)
    return f"ORD{timestamp}{uuid4().hex[:10].upper()}"


def _aware(value):
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _coerce(enum_cls, value, field="status"):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError({field: [f"Unknown {field} `{value}`"]}) from None


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@storefront.value_object(part_of="Order")
class ShippingAddress:
    """Where the order ships. Captured at checkout and never edited."""

    full_name = String(required=True, max_length=100)
    phone_number = String(required=True, max_length=20)
    address_line1 = String(required=True, max_length=255)
    address_line2 = String(max_length=255)
    city = String(required=True, max_length=100)
    state = String(required=True, max_length=100)
    pincode = String(required=True, max_length=10)
    country = String(max_length=100, default="India")


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@storefront.entity(part_of="Order")
class OrderItem:
    """A purchased line with its price locked at checkout.

    Each line moves through its own state machine so that part of an order can
    be shipped, delivered, cancelled or returned independently of the rest.
    """

    variant_id = Identifier(required=True)
    product_id = Identifier()
    product_name = String(required=True, max_length=255)
    variant_name = String(max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    total_price = Float(required=True, min_value=0.0)
    cancelled_quantity = Integer(default=0, min_value=0)
    status = String(choices=ItemStatus, default=ItemStatus.PENDING.value)
    status_history = Text()  # JSON: [{status, timestamp, reason}]
    delivered_at = DateTime()
    cancelled_at = DateTime()
    returned_at = DateTime()
    cancellation_reason = String(max_length=500)
    return_reason = String(max_length=500)

    @property
    def active_quantity(self):
        return self.quantity - (self.cancelled_quantity or 0)

    @property
    def per_unit_value(self):
        return self.total_price / self.quantity

    def value_of(self, quantity):
        return round(self.per_unit_value * quantity, 2)

    def history(self):
        return json.loads(self.status_history) if self.status_history else []

    def record_history(self, status, reason=None, at=None):
        entries = self.history()
        entries.append(
            {
                "status": status.value if isinstance(status, Enum) else status,
                "timestamp": (at or datetime.now(UTC)).isoformat(),
                "reason": reason,
            }
        )
        self.status_history = json.dumps(entries)


@storefront.entity(part_of="Order")
class CancelledItem:
    """Audit record of units cancelled from a line."""

    item_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    batch_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    reason = String(max_length=500)
    cancelled_by = String(choices=Actor, default=Actor.CUSTOMER.value)
    cancelled_at = DateTime(required=True)


@storefront.entity(part_of="Order")
class ReturnRequest:
    item_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    reason = String(required=True, max_length=500)
    status = String(choices=ReturnStatus, default=ReturnStatus.PENDING.value)
    requested_at = DateTime(required=True)
    processed_at = DateTime()
    processed_by = String(max_length=100)
    refund_amount = Float(required=True, min_value=0.0)
    admin_notes = Text()
    images = Text()  # JSON: list of image references
    refund_status = String(choices=RefundStatus)
    refund_transaction_id = String(max_length=30)
    refund_error = Text()

    @property
    def is_open(self):
        return self.status in (ReturnStatus.PENDING.value, ReturnStatus.APPROVED.value)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@storefront.aggregate
class Order:
    order_number = String(required=True, max_length=30, unique=True)
    customer_id = Identifier(required=True)
    items = HasMany(OrderItem)
    shipping_address = ValueObject(ShippingAddress)
    payment_method = String(required=True, choices=PaymentMethod)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)

    subtotal = Float(required=True, min_value=0.0)
    shipping_cost = Float(default=0.0, min_value=0.0)
    tax_amount = Float(default=0.0, min_value=0.0)
    coupon_code = String(max_length=20)
    coupon_discount = Float(default=0.0, min_value=0.0)
    wallet_amount_used = Float(default=0.0, min_value=0.0)
    total_amount = Float(required=True, min_value=0.0)

    cancellation_reason = String(max_length=500)
    cancelled_by = String(choices=Actor)
    cancelled_at = DateTime()
    delivered_date = DateTime()
    expected_delivery_date = DateTime()
    cancelled_items = HasMany(CancelledItem)
    return_requests = HasMany(ReturnRequest)

    refund_status = String(choices=RefundStatus)
    refund_amount = Float(default=0.0, min_value=0.0)
    refund_processed_at = DateTime()
    refund_error = Text()
    refunds = Text()  # JSON: [{key, kind, amount, transaction_id, processed_at}]
    failed_refunds = Text()  # JSON: [{key, kind, amount, description, error}]

    gateway_order_id = String(max_length=100)
    gateway_payment_id = String(max_length=100)
    gateway_signature = String(max_length=255)

    notes = Text()
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        customer_id,
        lines,
        shipping_address,
        payment_method,
        pricing,
        order_number=None,
        gateway=None,
    ):
        """Create a confirmed order from priced checkout lines.

        Args:
            customer_id: The customer placing the order.
            lines: List of dicts with variant_id, product_id, product_name,
                   variant_name, quantity, unit_price.
            shipping_address: Dict matching ``ShippingAddress``.
            payment_method: A ``PaymentMethod`` or its value.
            pricing: Dict with subtotal, shipping_cost, tax_amount,
                     coupon_code, coupon_discount, wallet_amount_used,
                     total_amount.
            gateway: Optional dict with gateway_order_id, gateway_payment_id,
                     gateway_signature for orders paid through the gateway.
        """
        if not lines:
            raise ValidationError({"items": ["An order needs at least one item"]})

        method = _coerce(PaymentMethod, payment_method, "payment_method")
        subtotal = round(pricing["subtotal"], 2)
        shipping_cost = round(pricing.get("shipping_cost", 0.0), 2)
        tax_amount = round(pricing.get("tax_amount", 0.0), 2)
        coupon_discount = round(pricing.get("coupon_discount", 0.0), 2)
        total_amount = round(pricing["total_amount"], 2)
        if abs(subtotal + shipping_cost + tax_amount - coupon_discount - total_amount) > _TOLERANCE:
            raise ValidationError({"total_amount": ["Total does not match subtotal, shipping, tax and discount"]})

        now = datetime.now(UTC)
        items = []
        for line in lines:
            item = OrderItem(
                variant_id=str(line["variant_id"]),
                product_id=str(line["product_id"]) if line.get("product_id") else None,
                product_name=line["product_name"],
                variant_name=line.get("variant_name"),
                quantity=line["quantity"],
                unit_price=line["unit_price"],
                total_price=round(line["unit_price"] * line["quantity"], 2),
                status=ItemStatus.CONFIRMED.value,
            )
            item.record_history(ItemStatus.CONFIRMED, "Order placed", at=now)
            items.append(item)

        payment_status = PaymentStatus.PENDING if method == PaymentMethod.COD else PaymentStatus.PAID
        gateway = gateway or {}

        order = cls(
            order_number=order_number or generate_order_number(),
            customer_id=str(customer_id),
            items=items,
            shipping_address=ShippingAddress(**shipping_address),
            payment_method=method.value,
            payment_status=payment_status.value,
            status=OrderStatus.CONFIRMED.value,
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            tax_amount=tax_amount,
            coupon_code=pricing.get("coupon_code"),
            coupon_discount=coupon_discount,
            wallet_amount_used=round(pricing.get("wallet_amount_used", 0.0), 2),
            total_amount=total_amount,
            expected_delivery_date=now + timedelta(days=EXPECTED_DELIVERY_DAYS),
            gateway_order_id=gateway.get("gateway_order_id"),
            gateway_payment_id=gateway.get("gateway_payment_id"),
            gateway_signature=gateway.get("gateway_signature"),
            created_at=now,
            updated_at=now,
        )

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order.order_number,
                customer_id=order.customer_id,
                items=json.dumps(
                    [
                        {
                            "item_id": str(item.id),
                            "variant_id": str(item.variant_id),
                            "quantity": item.quantity,
                            "unit_price": item.unit_price,
                        }
                        for item in order.items
                    ]
                ),
                payment_method=order.payment_method,
                payment_status=order.payment_status,
                subtotal=order.subtotal,
                shipping_cost=order.shipping_cost,
                tax_amount=order.tax_amount,
                coupon_code=order.coupon_code,
                coupon_discount=order.coupon_discount,
                wallet_amount_used=order.wallet_amount_used,
                total_amount=order.total_amount,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Lookups and derived values
    # -------------------------------------------------------------------
    def get_item(self, item_id):
        item = next((i for i in self.items if str(i.id) == str(item_id)), None)
        if item is None:
            raise ObjectNotFoundError(f"Item `{item_id}` not found in order {self.order_number}")
        return item

    def get_return_request(self, request_id):
        request = next((r for r in self.return_requests if str(r.id) == str(request_id)), None)
        if request is None:
            raise ObjectNotFoundError(f"Return request `{request_id}` not found in order {self.order_number}")
        return request

    def open_return_for(self, item_id):
        return next((r for r in self.return_requests if str(r.item_id) == str(item_id) and r.is_open), None)

    def live_items(self):
        return [i for i in self.items if i.status != ItemStatus.CANCELLED.value]

    def active_total(self):
        """What the customer still owes or has paid for lines they keep."""
        if self.status == OrderStatus.CANCELLED.value:
            return 0.0

        cancelled = sum(item.value_of(item.cancelled_quantity or 0) for item in self.items)
        returned = sum(r.refund_amount for r in self.return_requests if r.status == ReturnStatus.APPROVED.value)
        return max(round(self.total_amount - cancelled - returned, 2), 0.0)

    def _unclaimed_total(self):
        """Active total not already promised to pending return requests."""
        claimed = sum(r.refund_amount for r in self.return_requests if r.status == ReturnStatus.PENDING.value)
        return max(round(self.active_total() - claimed, 2), 0.0)

    def display_status(self):
        status = OrderStatus(self.status)
        if status in (OrderStatus.CANCELLED, OrderStatus.RETURNED, OrderStatus.DELIVERED):
            return DisplayStatus(status.value)

        statuses = [ItemStatus(i.status) for i in self.items]
        if ItemStatus.DELIVERED in statuses or ItemStatus.RETURNED in statuses:
            return DisplayStatus.PARTIALLY_DELIVERED
        if any(i.cancelled_quantity for i in self.items):
            return DisplayStatus.PARTIALLY_CANCELLED
        return DisplayStatus(status.value)

    @property
    def is_cancellable(self):
        return OrderStatus(self.status) in CANCELLABLE_STATES

    # -------------------------------------------------------------------
    # State transition helpers
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target, compensating=False):
        current = OrderStatus(self.status)
        if compensating and (current, target) in _ORDER_COMPENSATIONS:
            return
        if target not in _ORDER_TRANSITIONS[current]:
            raise InvalidTransition(current, target)

    @staticmethod
    def _assert_item_can_transition(item, target, compensating=False):
        current = ItemStatus(item.status)
        if compensating and (current, target) in _ITEM_COMPENSATIONS:
            return
        if target not in _ITEM_TRANSITIONS[current]:
            raise InvalidTransition(current, target, f"Item cannot move from {current.value} to {target.value}", "item")

    def _move_item(self, item, target, reason=None, now=None, compensating=False):
        self._assert_item_can_transition(item, target, compensating)
        now = now or datetime.now(UTC)
        previous = item.status

        item.status = target.value
        if target == ItemStatus.DELIVERED and not item.delivered_at:
            item.delivered_at = now
        elif target == ItemStatus.CANCELLED:
            item.cancelled_at = now
            item.cancellation_reason = reason
        elif target == ItemStatus.RETURNED:
            item.returned_at = now
        item.record_history(target, reason, at=now)

        self.raise_(
            ItemStatusChanged(
                order_id=str(self.id),
                item_id=str(item.id),
                previous_status=previous,
                new_status=target.value,
                reason=reason,
                changed_at=now,
            )
        )

    def _move_order(self, target, now=None, compensating=False):
        self._assert_can_transition(target, compensating)
        now = now or datetime.now(UTC)
        previous = self.status

        self.status = target.value
        self.updated_at = now
        if target == OrderStatus.DELIVERED:
            if not self.delivered_date:
                self.delivered_date = now
            # Cash is collected on delivery
            if self.payment_method == PaymentMethod.COD.value:
                self.payment_status = PaymentStatus.PAID.value

        self.raise_(
            OrderStatusAdvanced(
                order_id=str(self.id),
                previous_status=previous,
                new_status=target.value,
                changed_at=now,
            )
        )

    def _sync_status_from_items(self, now=None):
        """Recompute the canonical order status from its lines."""
        live = self.live_items()
        statuses = {i.status for i in live}
        if not live:
            target = OrderStatus.CANCELLED
        elif statuses == {ItemStatus.RETURNED.value}:
            target = OrderStatus.RETURNED
        elif statuses <= {ItemStatus.DELIVERED.value, ItemStatus.RETURNED.value}:
            target = OrderStatus.DELIVERED
        else:
            return None

        if target.value == self.status:
            return None
        self._move_order(
            target,
            now=now,
            compensating=(OrderStatus(self.status), target) in _ORDER_COMPENSATIONS,
        )
        return target

    # -------------------------------------------------------------------
    # Fulfillment
    # -------------------------------------------------------------------
    def advance_status(self, target, reason=None):
        """Move the whole order, and every line still in play, forward."""
        target = _coerce(OrderStatus, target)
        if target == OrderStatus.CANCELLED:
            raise InvalidTransition(self.status, target, "Orders are cancelled through cancellation")
        if target == OrderStatus.RETURNED:
            raise InvalidTransition(self.status, target, "Orders are returned through an approved return request")
        if target not in _ADVANCE_TARGETS:
            raise InvalidTransition(self.status, target)

        self._assert_can_transition(target)
        now = datetime.now(UTC)
        item_target = ItemStatus(target.value)
        for item in self.items:
            current = ItemStatus(item.status)
            if current in (ItemStatus.CANCELLED, ItemStatus.RETURNED):
                continue
            if _ITEM_RANK[current] >= _ITEM_RANK[item_target]:
                continue
            self._move_item(item, item_target, reason or f"Order marked {target.value}", now=now)

        self._move_order(target, now=now)

    def update_item_status(self, item_id, target, reason=None):
        target = _coerce(ItemStatus, target)
        if target == ItemStatus.RETURNED:
            raise InvalidTransition(
                self.get_item(item_id).status, target, "Items are returned through an approved return request", "item"
            )
        if target == ItemStatus.CANCELLED:
            raise InvalidTransition(
                self.get_item(item_id).status, target, "Items are cancelled through cancellation", "item"
            )

        now = datetime.now(UTC)
        item = self.get_item(item_id)
        self._move_item(item, target, reason, now=now)
        self.updated_at = now
        self._sync_status_from_items(now=now)
        return item

    # -------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------
    def _assert_cancellable(self):
        if not self.is_cancellable:
            raise InvalidTransition(
                self.status,
                OrderStatus.CANCELLED,
                f"Order cannot be cancelled in {self.status} status",
            )

    def cancel(self, reason=None, actor=Actor.CUSTOMER):
        """Cancel every remaining line.

        Returns ``{restorations, refundable_value}`` where restorations lists
        the ``{item_id, variant_id, quantity}`` units to put back in stock.
        """
        self._assert_cancellable()
        actor = _coerce(Actor, actor, "actor")
        remaining = [i for i in self.items if i.status != ItemStatus.CANCELLED.value]
        for item in remaining:
            self._assert_item_can_transition(item, ItemStatus.CANCELLED)

        refundable_value = self.active_total()
        now = datetime.now(UTC)
        batch_id = str(uuid4())
        restorations = []
        for item in remaining:
            quantity = item.active_quantity
            if quantity > 0:
                self.add_cancelled_items(
                    CancelledItem(
                        item_id=str(item.id),
                        variant_id=str(item.variant_id),
                        batch_id=batch_id,
                        quantity=quantity,
                        reason=reason,
                        cancelled_by=actor.value,
                        cancelled_at=now,
                    )
                )
                restorations.append({"item_id": str(item.id), "variant_id": str(item.variant_id), "quantity": quantity})
            item.cancelled_quantity = item.quantity
            self._move_item(item, ItemStatus.CANCELLED, reason or "Order cancelled", now=now)

        self.cancellation_reason = reason
        self.cancelled_by = actor.value
        self.cancelled_at = now
        self._move_order(OrderStatus.CANCELLED, now=now)

        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                order_number=self.order_number,
                customer_id=self.customer_id,
                reason=reason,
                cancelled_by=actor.value,
                cancelled_at=now,
            )
        )
        return {"restorations": restorations, "refundable_value": refundable_value}

    def cancel_items(self, lines, reason=None, actor=Actor.CUSTOMER):
        """Cancel some lines, or some units of a line.

        ``lines`` is a list of ``{item_id, quantity?}``; a missing quantity
        cancels everything left on that line. Returns ``{batch_id,
        restorations, refundable_value, order_cancelled}``.
        """
        self._assert_cancellable()
        actor = _coerce(Actor, actor, "actor")
        if not lines:
            raise ValidationError({"items": ["Select at least one item to cancel"]})

        item_ids = [str(line["item_id"]) for line in lines]
        if len(set(item_ids)) != len(item_ids):
            raise ValidationError({"items": ["Each item can appear only once per cancellation"]})

        plan = []
        for line in lines:
            item = self.get_item(line["item_id"])
            self._assert_item_can_transition(item, ItemStatus.CANCELLED)
            remaining = item.active_quantity
            quantity = line.get("quantity") or remaining
            if quantity < 1 or quantity > remaining:
                message = f"Cannot cancel {quantity} units of {item.product_name}; {remaining} remaining"
                raise ValidationError({"quantity": [message]})
            plan.append((item, quantity))

        active_before = self.active_total()
        now = datetime.now(UTC)
        batch_id = str(uuid4())
        restorations = []
        for item, quantity in plan:
            item.cancelled_quantity = (item.cancelled_quantity or 0) + quantity
            self.add_cancelled_items(
                CancelledItem(
                    item_id=str(item.id),
                    variant_id=str(item.variant_id),
                    batch_id=batch_id,
                    quantity=quantity,
                    reason=reason,
                    cancelled_by=actor.value,
                    cancelled_at=now,
                )
            )
            restorations.append({"item_id": str(item.id), "variant_id": str(item.variant_id), "quantity": quantity})
            if item.active_quantity == 0:
                self._move_item(item, ItemStatus.CANCELLED, reason or "Item cancelled", now=now)
            else:
                item.record_history(item.status, f"{quantity} unit(s) cancelled", at=now)

        self.updated_at = now
        order_cancelled = self._sync_status_from_items(now=now) == OrderStatus.CANCELLED
        if order_cancelled:
            # Nothing is left to keep, so whatever was still collectible goes back
            refundable_value = active_before
            self.cancellation_reason = reason
            self.cancelled_by = actor.value
            self.cancelled_at = now
        else:
            # Coupon discounts are not spread over lines, so a line can be worth more than is left
            cancelled_value = round(sum(item.value_of(quantity) for item, quantity in plan), 2)
            refundable_value = min(cancelled_value, active_before)

        self.raise_(
            OrderItemsCancelled(
                order_id=str(self.id),
                batch_id=batch_id,
                items=json.dumps(restorations),
                reason=reason,
                cancelled_by=actor.value,
                refundable_value=refundable_value,
                cancelled_at=now,
            )
        )
        if order_cancelled:
            self.raise_(
                OrderCancelled(
                    order_id=str(self.id),
                    order_number=self.order_number,
                    customer_id=self.customer_id,
                    reason=reason,
                    cancelled_by=actor.value,
                    cancelled_at=now,
                )
            )

        return {
            "batch_id": batch_id,
            "restorations": restorations,
            "refundable_value": refundable_value,
            "order_cancelled": order_cancelled,
        }

    # -------------------------------------------------------------------
    # Returns
    # -------------------------------------------------------------------
    def _check_returnable(self, item, now):
        if item.status != ItemStatus.DELIVERED.value:
            raise InvalidTransition(item.status, ItemStatus.RETURNED, "Only delivered items can be returned", "item")

        delivered_at = _aware(item.delivered_at or self.delivered_date)
        if delivered_at is None:
            raise ValidationError({"item": ["Delivery date is not recorded for this item"]})
        if now - delivered_at > timedelta(days=RETURN_WINDOW_DAYS):
            raise ValidationError({"item": [f"Return window of {RETURN_WINDOW_DAYS} days has expired"]})

        if self.open_return_for(item.id) is not None:
            raise ValidationError({"item": ["A return request already exists for this item"]})

    def request_return(self, item_id, reason, quantity=None, images=None, now=None):
        """Open a return request for one delivered line, or every delivered line.

        Returns the list of created ``ReturnRequest`` entities.
        """
        if not reason or not reason.strip():
            raise ValidationError({"reason": ["Return reason is required"]})
        now = now or datetime.now(UTC)

        if item_id is None:
            candidates = [
                i for i in self.items if i.status == ItemStatus.DELIVERED.value and self.open_return_for(i.id) is None
            ]
            if not candidates:
                raise ValidationError({"items": ["No delivered items are eligible for return"]})
            quantities = [(item, item.active_quantity) for item in candidates]
        else:
            item = self.get_item(item_id)
            quantity = quantity or item.active_quantity
            if quantity < 1 or quantity > item.active_quantity:
                raise ValidationError({"quantity": [f"Can return at most {item.active_quantity} units"]})
            quantities = [(item, quantity)]

        for item, _ in quantities:
            self._check_returnable(item, now)

        budget = self._unclaimed_total()
        requests = []
        for item, returned_quantity in quantities:
            refund_amount = min(item.value_of(returned_quantity), budget)
            budget = round(budget - refund_amount, 2)
            request = ReturnRequest(
                item_id=str(item.id),
                quantity=returned_quantity,
                reason=reason.strip(),
                status=ReturnStatus.PENDING.value,
                requested_at=now,
                refund_amount=refund_amount,
                images=json.dumps(list(images)) if images else None,
            )
            self.add_return_requests(request)
            requests.append(request)
            self.raise_(
                ReturnRequested(
                    order_id=str(self.id),
                    request_id=str(request.id),
                    item_id=str(item.id),
                    quantity=returned_quantity,
                    refund_amount=request.refund_amount,
                    reason=request.reason,
                    requested_at=now,
                )
            )

        self.updated_at = now
        return requests

    def _assert_pending(self, request, attempted):
        if request.status != ReturnStatus.PENDING.value:
            raise InvalidTransition(request.status, attempted, "Return request already processed", "return_request")

    def approve_return(self, request_id, admin_ref, notes=None):
        """Mark the line Returned and the request approved.

        Returns ``{request, restoration}``; the caller restores stock and
        credits the refund.
        """
        request = self.get_return_request(request_id)
        self._assert_pending(request, ReturnStatus.APPROVED)
        item = self.get_item(request.item_id)

        now = datetime.now(UTC)
        # Cancellations since the request may have shrunk what is left to refund
        request.refund_amount = min(request.refund_amount, self.active_total())
        self._move_item(item, ItemStatus.RETURNED, "Return request approved by admin", now=now)
        item.return_reason = request.reason

        request.status = ReturnStatus.APPROVED.value
        request.processed_at = now
        request.processed_by = str(admin_ref)
        request.admin_notes = notes
        # A fully discounted line has nothing left to credit
        request.refund_status = (
            RefundStatus.PENDING.value if request.refund_amount > 0 else RefundStatus.PROCESSED.value
        )

        self.updated_at = now
        self._sync_status_from_items(now=now)

        self.raise_(
            ReturnApproved(
                order_id=str(self.id),
                request_id=str(request.id),
                item_id=str(item.id),
                refund_amount=request.refund_amount,
                processed_by=str(admin_ref),
                processed_at=now,
            )
        )
        return {
            "request": request,
            "restoration": {
                "item_id": str(item.id),
                "variant_id": str(item.variant_id),
                "quantity": request.quantity,
            },
        }

    def reject_return(self, request_id, admin_ref, reason, notes=None):
        if not reason or not reason.strip():
            raise ValidationError({"reason": ["Rejection reason is required"]})

        request = self.get_return_request(request_id)
        self._assert_pending(request, ReturnStatus.REJECTED)
        item = self.get_item(request.item_id)

        now = datetime.now(UTC)
        request.status = ReturnStatus.REJECTED.value
        request.processed_at = now
        request.processed_by = str(admin_ref)
        request.admin_notes = f"Rejected: {reason.strip()}. {notes or ''}".strip()

        if item.status == ItemStatus.RETURNED.value:
            self._move_item(item, ItemStatus.DELIVERED, "Return request rejected by admin", now=now, compensating=True)
            self._sync_status_from_items(now=now)

        self.updated_at = now
        self.raise_(
            ReturnRejected(
                order_id=str(self.id),
                request_id=str(request.id),
                item_id=str(item.id),
                reason=reason.strip(),
                processed_by=str(admin_ref),
                processed_at=now,
            )
        )
        return request

    # -------------------------------------------------------------------
    # Refund bookkeeping
    # -------------------------------------------------------------------
    def refund_log(self):
        return json.loads(self.refunds) if self.refunds else []

    def pending_refunds(self):
        return json.loads(self.failed_refunds) if self.failed_refunds else []

    def has_refund(self, key):
        return any(entry["key"] == key for entry in self.refund_log())

    def _record_refund_event(self, kind, amount, succeeded, transaction_id=None, error=None, now=None):
        self.raise_(
            RefundRecorded(
                order_id=str(self.id),
                kind=kind,
                amount=amount,
                succeeded="true" if succeeded else "false",
                transaction_id=transaction_id,
                error=error,
                recorded_at=now,
            )
        )

    def _log_refund(self, key, kind, amount, transaction_id, now):
        """Append to the refund log once per key. Returns False for a repeat."""
        if self.has_refund(key):
            return False
        entries = self.refund_log()
        entries.append(
            {
                "key": key,
                "kind": kind,
                "amount": amount,
                "transaction_id": transaction_id,
                "processed_at": now.isoformat(),
            }
        )
        self.refunds = json.dumps(entries)
        remaining = [e for e in self.pending_refunds() if e["key"] != key]
        self.failed_refunds = json.dumps(remaining) if remaining else None
        self.refund_amount = round(sum(e["amount"] for e in entries), 2)
        self.refund_processed_at = now
        return True

    def _park_refund(self, key, kind, amount, description, error):
        entries = [e for e in self.pending_refunds() if e["key"] != key]
        entries.append({"key": key, "kind": kind, "amount": amount, "description": description, "error": error})
        self.failed_refunds = json.dumps(entries)

    def record_order_refund(self, key, kind, amount, transaction_id):
        """A cancellation refund landed in the wallet."""
        now = datetime.now(UTC)
        if not self._log_refund(key, kind, amount, transaction_id, now):
            return
        if self.pending_refunds():
            self.refund_status = RefundStatus.FAILED.value
        else:
            self.refund_status = RefundStatus.PROCESSED.value
            self.refund_error = None
            if self.status == OrderStatus.CANCELLED.value:
                self.payment_status = PaymentStatus.REFUNDED.value
        self.updated_at = now
        self._record_refund_event(kind, amount, True, transaction_id=transaction_id, now=now)

    def record_order_refund_failure(self, key, kind, amount, description, error):
        """Park a cancellation refund for a manual retry."""
        now = datetime.now(UTC)
        if self.has_refund(key):
            return
        self._park_refund(key, kind, amount, description, error)
        self.refund_status = RefundStatus.FAILED.value
        self.refund_error = error
        self.updated_at = now
        self._record_refund_event(kind, amount, False, error=error, now=now)

    def record_return_refund(self, request_id, key, transaction_id):
        request = self.get_return_request(request_id)
        now = datetime.now(UTC)
        request.refund_status = RefundStatus.PROCESSED.value
        request.refund_transaction_id = transaction_id
        request.refund_error = None
        if not self._log_refund(key, "return", request.refund_amount, transaction_id, now):
            return
        self.updated_at = now
        self._record_refund_event("return", request.refund_amount, True, transaction_id=transaction_id, now=now)

    def record_return_refund_failure(self, request_id, error):
        request = self.get_return_request(request_id)
        if request.refund_status == RefundStatus.PROCESSED.value:
            return
        now = datetime.now(UTC)
        request.refund_status = RefundStatus.FAILED.value
        request.refund_error = error
        self.updated_at = now
        self._record_refund_event("return", request.refund_amount, False, error=error, now=now)
