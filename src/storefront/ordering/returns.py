"""Order returns — commands and handler.

A customer opens a request for a delivered line; an admin approves or
rejects it. Approval flips the line to Returned, closes the request and puts
the units back into stock, all under one save of the order. The wallet
refund follows as its own step (see ``storefront.ordering.workflow``).
"""

import json

import structlog
from protean import handle
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.ordering.cancellation import restore_units
from storefront.ordering.order import Order
from storefront.ordering.queries import load_order

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Order")
class RequestReturn:
    """Request a return of one delivered line, or of every delivered line when ``item_id`` is omitted."""

    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    item_id = Identifier()
    reason = String(required=True, max_length=500)
    quantity = Integer(min_value=1)
    images = Text()  # JSON: list of image references


@storefront.command(part_of="Order")
class ApproveReturn:
    order_id = Identifier(required=True)
    request_id = Identifier(required=True)
    admin_ref = String(required=True, max_length=100)
    notes = Text()


@storefront.command(part_of="Order")
class RejectReturn:
    order_id = Identifier(required=True)
    request_id = Identifier(required=True)
    admin_ref = String(required=True, max_length=100)
    reason = String(required=True, max_length=500)
    notes = Text()


@storefront.command_handler(part_of=Order)
class ReturnsHandler:
    @handle(RequestReturn)
    def request_return(self, command):
        order = load_order(command.order_id, command.customer_id)
        images = json.loads(command.images) if command.images else None
        requests = order.request_return(
            command.item_id,
            command.reason,
            quantity=command.quantity,
            images=images,
        )
        current_domain.repository_for(Order).add(order)
        return [str(r.id) for r in requests]

    @handle(ApproveReturn)
    def approve_return(self, command):
        order = load_order(command.order_id)
        result = order.approve_return(command.request_id, command.admin_ref, notes=command.notes)

        restore_units([result["restoration"]], order.order_number, "Return approved")
        current_domain.repository_for(Order).add(order)

        request = result["request"]
        logger.info(
            "Return request approved",
            order_id=str(order.id),
            request_id=str(request.id),
            admin_ref=command.admin_ref,
        )
        return {
            "order_number": order.order_number,
            "customer_id": str(order.customer_id),
            "request_id": str(request.id),
            "item_id": str(request.item_id),
            "refund_amount": request.refund_amount,
        }

    @handle(RejectReturn)
    def reject_return(self, command):
        order = load_order(command.order_id)
        order.reject_return(command.request_id, command.admin_ref, command.reason, notes=command.notes)
        current_domain.repository_for(Order).add(order)
        logger.info(
            "Return request rejected",
            order_id=str(order.id),
            request_id=str(command.request_id),
            admin_ref=command.admin_ref,
        )
