"""Order read side — lookups with ownership checks and response shapes."""

import json
import math

from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from storefront.ordering.order import Order, OrderStatus

DEFAULT_PAGE_SIZE = 10


def load_order(order_id, customer_id=None):
    """Fetch an order; when ``customer_id`` is given it must own the order.

    Someone else's order is reported as missing rather than forbidden.
    """
    order = current_domain.repository_for(Order).get(str(order_id))
    if customer_id is not None and str(order.customer_id) != str(customer_id):
        raise ObjectNotFoundError(f"Order `{order_id}` does not exist")
    return order


def find_by_number(order_number):
    matches = current_domain.repository_for(Order)._dao.query.filter(order_number=order_number).all().items
    return matches[0] if matches else None


def item_to_dict(item):
    return {
        "item_id": str(item.id),
        "variant_id": str(item.variant_id),
        "product_id": str(item.product_id) if item.product_id else None,
        "product_name": item.product_name,
        "variant_name": item.variant_name,
        "quantity": item.quantity,
        "cancelled_quantity": item.cancelled_quantity or 0,
        "unit_price": item.unit_price,
        "total_price": item.total_price,
        "status": item.status,
        "status_history": item.history(),
        "delivered_at": item.delivered_at,
        "cancelled_at": item.cancelled_at,
        "returned_at": item.returned_at,
        "cancellation_reason": item.cancellation_reason,
        "return_reason": item.return_reason,
    }


def return_request_to_dict(request):
    return {
        "request_id": str(request.id),
        "item_id": str(request.item_id),
        "quantity": request.quantity,
        "reason": request.reason,
        "status": request.status,
        "requested_at": request.requested_at,
        "processed_at": request.processed_at,
        "processed_by": request.processed_by,
        "refund_amount": request.refund_amount,
        "refund_status": request.refund_status,
        "refund_transaction_id": request.refund_transaction_id,
        "admin_notes": request.admin_notes,
        "images": json.loads(request.images) if request.images else [],
    }


def order_summary(order):
    return {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "customer_id": str(order.customer_id),
        "status": order.status,
        "display_status": order.display_status().value,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "total_amount": order.total_amount,
        "item_count": len(order.items),
        "created_at": order.created_at,
    }


def order_to_dict(order):
    address = order.shipping_address
    return {
        **order_summary(order),
        "items": [item_to_dict(i) for i in order.items],
        "shipping_address": address.to_dict() if address else None,
        "subtotal": order.subtotal,
        "shipping_cost": order.shipping_cost,
        "tax_amount": order.tax_amount,
        "coupon_code": order.coupon_code,
        "coupon_discount": order.coupon_discount,
        "wallet_amount_used": order.wallet_amount_used,
        "active_total": order.active_total(),
        "cancellation_reason": order.cancellation_reason,
        "cancelled_at": order.cancelled_at,
        "delivered_date": order.delivered_date,
        "expected_delivery_date": order.expected_delivery_date,
        "cancelled_items": [
            {
                "item_id": str(c.item_id),
                "variant_id": str(c.variant_id),
                "quantity": c.quantity,
                "reason": c.reason,
                "cancelled_by": c.cancelled_by,
                "cancelled_at": c.cancelled_at,
            }
            for c in order.cancelled_items
        ],
        "return_requests": [return_request_to_dict(r) for r in order.return_requests],
        "refund_status": order.refund_status,
        "refund_amount": order.refund_amount,
        "refund_processed_at": order.refund_processed_at,
        "refund_error": order.refund_error,
        "pending_refunds": order.pending_refunds(),
        "gateway_order_id": order.gateway_order_id,
        "gateway_payment_id": order.gateway_payment_id,
    }


def _newest_first(records):
    """Reload query results through the repository so their lines come with them."""
    repo = current_domain.repository_for(Order)
    return [repo.get(r.id) for r in sorted(records, key=lambda r: r.created_at, reverse=True)]


def orders_for_customer(customer_id, page=1, limit=DEFAULT_PAGE_SIZE):
    page = max(int(page or 1), 1)
    limit = max(int(limit or DEFAULT_PAGE_SIZE), 1)
    orders = current_domain.repository_for(Order)._dao.query.filter(customer_id=str(customer_id)).all().items
    orders = _newest_first(orders)

    start = (page - 1) * limit
    return {
        "orders": [order_summary(o) for o in orders[start : start + limit]],
        "pagination": {
            "current_page": page,
            "total_pages": math.ceil(len(orders) / limit) if orders else 0,
            "total_orders": len(orders),
            "limit": limit,
        },
    }


def order_detail(order_id, customer_id=None):
    return order_to_dict(load_order(order_id, customer_id))


def list_orders(status=None):
    """All orders for the admin view, optionally narrowed to one canonical status."""
    query = current_domain.repository_for(Order)._dao.query
    if status:
        if status not in {s.value for s in OrderStatus}:
            raise ValidationError({"status": [f"Unknown status `{status}`"]})
        query = query.filter(status=status)
    return [order_summary(o) for o in _newest_first(query.all().items)]
