"""Order placement — command and handler.

Stock for every line is reserved and the order is created in the same unit
of work: either every variant is decremented and the order exists, or
nothing changes.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from storefront.catalogue.stock import load_purchasable
from storefront.catalogue.variant import Variant
from storefront.customer.customer import Customer
from storefront.domain import storefront
from storefront.ordering.order import Order
from storefront.ordering.queries import find_by_number

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Order")
class PlaceOrder:
    customer_id = Identifier(required=True)
    order_number = String(max_length=30)
    lines = Text(required=True)  # JSON: list of priced line dicts
    shipping_address = Text(required=True)  # JSON: address dict
    payment_method = String(required=True, max_length=20)
    subtotal = Float(required=True)
    shipping_cost = Float(default=0.0)
    tax_amount = Float(default=0.0)
    coupon_code = String(max_length=20)
    coupon_discount = Float(default=0.0)
    wallet_amount_used = Float(default=0.0)
    total_amount = Float(required=True)
    gateway = Text()  # JSON: {gateway_order_id, gateway_payment_id, gateway_signature}


def _loads(value):
    return json.loads(value) if isinstance(value, str) else value


def reserve_and_place(
    customer_id,
    lines,
    shipping_address,
    payment_method,
    pricing,
    order_number=None,
    gateway=None,
):
    """Reserve stock for ``lines`` and build the order, inside the caller's unit of work.

    Variants are registered with the unit of work only after every line has
    been reserved, so a shortfall on any line saves nothing. Returns the
    unsaved order.
    """
    customer = current_domain.repository_for(Customer).get(customer_id)
    if customer.is_blocked:
        raise ValidationError({"customer": ["Your account is blocked"]})
    if not lines:
        raise ValidationError({"items": ["Your cart is empty"]})
    if order_number and find_by_number(order_number) is not None:
        raise ValidationError({"order_number": [f"Order {order_number} already exists"]})

    reservations = {}
    for line in lines:
        variant, product = load_purchasable(line["variant_id"])
        requested = reservations.get(variant.id, (variant, product, 0))[2] + line["quantity"]
        reservations[variant.id] = (variant, product, requested)

    order = Order.place(
        customer_id=customer_id,
        lines=lines,
        shipping_address=shipping_address,
        payment_method=payment_method,
        pricing=pricing,
        order_number=order_number,
        gateway=gateway,
    )

    repo = current_domain.repository_for(Variant)
    for variant, product, quantity in reservations.values():
        variant.reserve(quantity, order_ref=order.order_number, label=product.name)
    for variant, _, _ in reservations.values():
        repo.add(variant)

    return order


@storefront.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        order = reserve_and_place(
            customer_id=command.customer_id,
            lines=_loads(command.lines),
            shipping_address=_loads(command.shipping_address),
            payment_method=command.payment_method,
            pricing={
                "subtotal": command.subtotal,
                "shipping_cost": command.shipping_cost or 0.0,
                "tax_amount": command.tax_amount or 0.0,
                "coupon_code": command.coupon_code,
                "coupon_discount": command.coupon_discount or 0.0,
                "wallet_amount_used": command.wallet_amount_used or 0.0,
                "total_amount": command.total_amount,
            },
            order_number=command.order_number,
            gateway=_loads(command.gateway) if command.gateway else None,
        )
        current_domain.repository_for(Order).add(order)
        logger.info(
            "Order placed",
            order_id=str(order.id),
            order_number=order.order_number,
            customer_id=order.customer_id,
            total_amount=order.total_amount,
        )
        return str(order.id)
