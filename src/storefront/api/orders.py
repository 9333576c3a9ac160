"""Order routes for customers and for the admin back office.

There is no authentication layer: customer routes take the caller's
``customer_id`` and only ever show or change that customer's orders.
"""

from fastapi import APIRouter, Query

from storefront.api.schemas import (
    AdminCancelRequest,
    AdvanceStatusRequest,
    ApproveReturnRequest,
    CancelItemsRequest,
    CancelOrderRequest,
    ItemStatusRequest,
    RejectReturnRequest,
    RetryRefundRequest,
    ReturnRequestSchema,
)
from storefront.ordering import queries, workflow
from storefront.ordering.order import Actor

# ---------------------------------------------------------------------------
# Customer Router
# ---------------------------------------------------------------------------
router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("")
async def my_orders(
    customer_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(queries.DEFAULT_PAGE_SIZE, ge=1, le=50),
) -> dict:
    return {"success": True, **queries.orders_for_customer(customer_id, page=page, limit=limit)}


@router.get("/{order_id}")
async def order_detail(order_id: str, customer_id: str) -> dict:
    return {"success": True, "order": queries.order_detail(order_id, customer_id=customer_id)}


@router.post("/{order_id}/cancel")
async def cancel_order(order_id: str, body: CancelOrderRequest) -> dict:
    return workflow.cancel_order(order_id, reason=body.reason, customer_id=body.customer_id)


@router.post("/{order_id}/cancel-items")
async def cancel_items(order_id: str, body: CancelItemsRequest) -> dict:
    return workflow.cancel_order_items(
        order_id,
        [line.model_dump(exclude_none=True) for line in body.items],
        reason=body.reason,
        customer_id=body.customer_id,
    )


@router.post("/{order_id}/returns", status_code=201)
async def request_return(order_id: str, body: ReturnRequestSchema) -> dict:
    return workflow.request_return(
        order_id,
        body.customer_id,
        body.reason,
        item_id=body.item_id,
        quantity=body.quantity,
        images=body.images,
    )


# ---------------------------------------------------------------------------
# Admin Router
# ---------------------------------------------------------------------------
admin_router = APIRouter(prefix="/admin/orders", tags=["admin"])


@admin_router.get("")
async def all_orders(status: str | None = None) -> dict:
    orders = queries.list_orders(status=status)
    return {"success": True, "orders": orders, "total_orders": len(orders)}


@admin_router.get("/{order_id}")
async def admin_order_detail(order_id: str) -> dict:
    return {"success": True, "order": queries.order_detail(order_id)}


@admin_router.put("/{order_id}/status")
async def advance_status(order_id: str, body: AdvanceStatusRequest) -> dict:
    return workflow.advance_order_status(order_id, body.status, reason=body.reason)


@admin_router.put("/{order_id}/items/{item_id}/status")
async def update_item_status(order_id: str, item_id: str, body: ItemStatusRequest) -> dict:
    return workflow.update_item_status(order_id, item_id, body.status, reason=body.reason)


@admin_router.post("/{order_id}/cancel")
async def admin_cancel(order_id: str, body: AdminCancelRequest) -> dict:
    return workflow.cancel_order(order_id, reason=body.reason, actor=Actor.ADMIN)


@admin_router.post("/{order_id}/returns/{request_id}/approve")
async def approve_return(order_id: str, request_id: str, body: ApproveReturnRequest) -> dict:
    return workflow.approve_return(order_id, request_id, body.admin_ref, notes=body.notes)


@admin_router.post("/{order_id}/returns/{request_id}/reject")
async def reject_return(order_id: str, request_id: str, body: RejectReturnRequest) -> dict:
    return workflow.reject_return(order_id, request_id, body.admin_ref, body.reason, notes=body.notes)


@admin_router.post("/{order_id}/refunds/retry")
async def retry_refund(order_id: str, body: RetryRefundRequest) -> dict:
    return workflow.retry_refund(order_id, request_id=body.request_id, admin_ref=body.admin_ref)
