"""Order fulfillment — admin status commands and handler."""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.ordering.order import Order


@storefront.command(part_of="Order")
class AdvanceOrderStatus:
    """Move the whole order forward (Confirmed, Processing, Shipped, Delivered)."""

    order_id = Identifier(required=True)
    status = String(required=True, max_length=30)
    reason = String(max_length=500)


@storefront.command(part_of="Order")
class UpdateItemStatus:
    """Move one line forward, e.g. to Out for Delivery."""

    order_id = Identifier(required=True)
    item_id = Identifier(required=True)
    status = String(required=True, max_length=30)
    reason = String(max_length=500)


@storefront.command_handler(part_of=Order)
class FulfillmentHandler:
    @handle(AdvanceOrderStatus)
    def advance_order_status(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.advance_status(command.status, reason=command.reason)
        repo.add(order)
        return order.status

    @handle(UpdateItemStatus)
    def update_item_status(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.update_item_status(command.item_id, command.status, reason=command.reason)
        repo.add(order)
        return order.status
