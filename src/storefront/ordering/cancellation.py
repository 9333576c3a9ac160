"""Order cancellation — commands and handler.

Cancelling marks the lines Cancelled and puts their units back on the shelf
in one unit of work. The wallet refund is a separate step, taken by
``storefront.ordering.workflow`` once the cancellation is committed.
"""

import json

import structlog
from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from storefront.catalogue.variant import Variant
from storefront.domain import storefront
from storefront.ordering.order import Actor, Order
from storefront.ordering.queries import load_order

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    customer_id = Identifier()  # Set when the customer cancels; enforces ownership
    reason = String(max_length=500)
    actor = String(choices=Actor, default=Actor.CUSTOMER.value)


@storefront.command(part_of="Order")
class CancelOrderItems:
    order_id = Identifier(required=True)
    customer_id = Identifier()
    items = Text(required=True)  # JSON: list of {item_id, quantity?}
    reason = String(max_length=500)
    actor = String(choices=Actor, default=Actor.CUSTOMER.value)


def restore_units(restorations, order_ref, reason):
    """Put cancelled or returned units back into stock within the current unit of work."""
    repo = current_domain.repository_for(Variant)
    for entry in restorations:
        variant = repo.get(entry["variant_id"])
        variant.restore(entry["quantity"], order_ref=order_ref, reason=reason)
        repo.add(variant)


@storefront.command_handler(part_of=Order)
class CancellationHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        order = load_order(command.order_id, command.customer_id)
        result = order.cancel(reason=command.reason, actor=command.actor)

        restore_units(result["restorations"], order.order_number, "Order cancelled")
        current_domain.repository_for(Order).add(order)

        logger.info(
            "Order cancelled",
            order_id=str(order.id),
            order_number=order.order_number,
            cancelled_by=command.actor,
            restored_lines=len(result["restorations"]),
        )
        return result

    @handle(CancelOrderItems)
    def cancel_order_items(self, command):
        order = load_order(command.order_id, command.customer_id)
        lines = json.loads(command.items) if isinstance(command.items, str) else command.items
        result = order.cancel_items(lines, reason=command.reason, actor=command.actor)

        restore_units(result["restorations"], order.order_number, "Items cancelled")
        current_domain.repository_for(Order).add(order)

        logger.info(
            "Order items cancelled",
            order_id=str(order.id),
            batch_id=result["batch_id"],
            order_cancelled=result["order_cancelled"],
        )
        return result
