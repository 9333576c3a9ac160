"""Domain events for the Order aggregate.

Events are immutable facts recorded alongside each state change. They feed
the audit trail and let notification or reporting consumers react without
touching the order itself.
"""

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from storefront.domain import storefront


@storefront.event(part_of="Order")
class OrderPlaced:
    """A checkout produced an order; stock for every line is already reserved."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    items = Text(required=True)  # JSON: list of {item_id, variant_id, quantity, unit_price}
    payment_method = String(required=True)
    payment_status = String(required=True)
    subtotal = Float(required=True)
    shipping_cost = Float()
    tax_amount = Float()
    coupon_code = String()
    coupon_discount = Float()
    wallet_amount_used = Float()
    total_amount = Float(required=True)
    placed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderStatusAdvanced:
    """The canonical order status moved."""

    __version__ = 1

    order_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    changed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class ItemStatusChanged:
    """A single line moved through the item state machine."""

    __version__ = 1

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    reason = String()
    changed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderCancelled:
    """Every remaining line of the order was cancelled."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    reason = String()
    cancelled_by = String(required=True)
    cancelled_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderItemsCancelled:
    """Some lines (or some units of a line) were cancelled before shipping."""

    __version__ = 1

    order_id = Identifier(required=True)
    batch_id = Identifier(required=True)
    items = Text(required=True)  # JSON: list of {item_id, variant_id, quantity}
    reason = String()
    cancelled_by = String(required=True)
    refundable_value = Float()
    cancelled_at = DateTime(required=True)


@storefront.event(part_of="Order")
class ReturnRequested:
    __version__ = 1

    order_id = Identifier(required=True)
    request_id = Identifier(required=True)
    item_id = Identifier(required=True)
    quantity = Integer(required=True)
    refund_amount = Float(required=True)
    reason = String(required=True)
    requested_at = DateTime(required=True)


@storefront.event(part_of="Order")
class ReturnApproved:
    __version__ = 1

    order_id = Identifier(required=True)
    request_id = Identifier(required=True)
    item_id = Identifier(required=True)
    refund_amount = Float(required=True)
    processed_by = String(required=True)
    processed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class ReturnRejected:
    __version__ = 1

    order_id = Identifier(required=True)
    request_id = Identifier(required=True)
    item_id = Identifier(required=True)
    reason = String(required=True)
    processed_by = String(required=True)
    processed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class RefundRecorded:
    """The outcome of a wallet refund attempt for this order."""

    __version__ = 1

    order_id = Identifier(required=True)
    kind = String(required=True)  # cancellation | items | return
    amount = Float(required=True)
    succeeded = String(required=True)  # "true" | "false"
    transaction_id = String()
    error = String()
    recorded_at = DateTime(required=True)
