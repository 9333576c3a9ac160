"""Cancellation, return and refund workflows.

Each workflow commits the order change first and then issues the wallet
refund as a forward-only follow-up. A refund that fails is logged, parked on
the order and reported in the result; it never undoes the committed change.
``retry_refund`` replays parked refunds with their original idempotency keys.

Every function returns a plain dict: ``{success, message, ...}``.
"""

import json

from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from storefront.errors import conflicts_as_retryable
from storefront.ordering.cancellation import CancelOrder, CancelOrderItems
from storefront.ordering.fulfillment import AdvanceOrderStatus, UpdateItemStatus
from storefront.ordering.order import Actor, RefundStatus, ReturnStatus
from storefront.ordering.queries import load_order, return_request_to_dict
from storefront.ordering.refunds import (
    cancellation_key,
    cancellation_refund_amount,
    item_cancellation_key,
    refund_return,
    refund_to_wallet,
)
from storefront.ordering.returns import ApproveReturn, RejectReturn, RequestReturn

REFUND_FAILED_MESSAGE = "refund processing failed. Please process manually."


def _process(command):
    with conflicts_as_retryable():
        return current_domain.process(command, asynchronous=False)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------
def cancel_order(order_id, reason=None, customer_id=None, actor=Actor.CUSTOMER):
    """Cancel the whole order, restore its stock and refund what was collected."""
    actor = actor.value if isinstance(actor, Actor) else actor
    result = _process(
        CancelOrder(order_id=str(order_id), customer_id=customer_id, reason=reason, actor=actor)
    )

    order = load_order(order_id)
    amount = cancellation_refund_amount(order, result["refundable_value"])
    if amount <= 0:
        return {"success": True, "message": "Order cancelled successfully", "refund_amount": 0.0}

    _, error = refund_to_wallet(
        order,
        amount,
        cancellation_key(order.id),
        "cancellation",
        f"Refund for cancelled order {order.order_number}",
    )
    if error:
        return {
            "success": True,
            "message": f"Order cancelled, but {REFUND_FAILED_MESSAGE}",
            "refund_amount": 0.0,
            "refund_error": error,
        }
    return {
        "success": True,
        "message": f"Order cancelled successfully. {amount:.2f} refunded to your wallet",
        "refund_amount": amount,
    }


def cancel_order_items(order_id, items, reason=None, customer_id=None, actor=Actor.CUSTOMER):
    """Cancel some lines. ``items`` is a list of ``{item_id, quantity?}``."""
    actor = actor.value if isinstance(actor, Actor) else actor
    result = _process(
        CancelOrderItems(
            order_id=str(order_id),
            customer_id=customer_id,
            items=json.dumps(items),
            reason=reason,
            actor=actor,
        )
    )

    order = load_order(order_id)
    message = "Order cancelled successfully" if result["order_cancelled"] else "Items cancelled successfully"
    amount = cancellation_refund_amount(order, result["refundable_value"])
    if amount <= 0:
        return {"success": True, "message": message, "refund_amount": 0.0, "order_status": order.status}

    _, error = refund_to_wallet(
        order,
        amount,
        item_cancellation_key(order.id, result["batch_id"]),
        "cancellation" if result["order_cancelled"] else "items",
        f"Refund for cancelled items - Order {order.order_number}",
    )
    if error:
        return {
            "success": True,
            "message": f"{message}, but {REFUND_FAILED_MESSAGE}",
            "refund_amount": 0.0,
            "refund_error": error,
            "order_status": order.status,
        }
    return {
        "success": True,
        "message": f"{message}. {amount:.2f} refunded to your wallet",
        "refund_amount": amount,
        "order_status": order.status,
    }


# ---------------------------------------------------------------------------
# Fulfillment
# ---------------------------------------------------------------------------
def advance_order_status(order_id, status, reason=None):
    new_status = _process(AdvanceOrderStatus(order_id=str(order_id), status=status, reason=reason))
    return {"success": True, "message": f"Order status updated to {new_status}", "status": new_status}


def update_item_status(order_id, item_id, status, reason=None):
    order_status = _process(
        UpdateItemStatus(order_id=str(order_id), item_id=str(item_id), status=status, reason=reason)
    )
    return {"success": True, "message": f"Item status updated to {status}", "order_status": order_status}


# ---------------------------------------------------------------------------
# Returns
# ---------------------------------------------------------------------------
def request_return(order_id, customer_id, reason, item_id=None, quantity=None, images=None):
    request_ids = _process(
        RequestReturn(
            order_id=str(order_id),
            customer_id=str(customer_id),
            item_id=str(item_id) if item_id else None,
            reason=reason,
            quantity=quantity,
            images=json.dumps(list(images)) if images else None,
        )
    )
    order = load_order(order_id)
    requests = [return_request_to_dict(order.get_return_request(rid)) for rid in request_ids]
    return {"success": True, "message": "Return request submitted successfully", "return_requests": requests}


def approve_return(order_id, request_id, admin_ref, notes=None):
    """Approve a pending request, then credit its refund.

    A second approval of the same request raises InvalidTransition before
    anything is credited.
    """
    approved = _process(
        ApproveReturn(order_id=str(order_id), request_id=str(request_id), admin_ref=str(admin_ref), notes=notes)
    )
    if approved["refund_amount"] <= 0:
        return {"success": True, "message": "Return request approved; nothing left to refund", "refund_amount": 0.0}

    _, error = refund_return(
        order_id,
        approved["customer_id"],
        approved["order_number"],
        approved["request_id"],
        approved["refund_amount"],
        admin_ref=str(admin_ref),
    )
    if error:
        return {
            "success": True,
            "message": f"Return request approved, but {REFUND_FAILED_MESSAGE}",
            "refund_amount": 0.0,
            "refund_error": error,
        }
    return {
        "success": True,
        "message": "Return request approved and refund processed successfully",
        "refund_amount": approved["refund_amount"],
    }


def reject_return(order_id, request_id, admin_ref, reason, notes=None):
    _process(
        RejectReturn(
            order_id=str(order_id),
            request_id=str(request_id),
            admin_ref=str(admin_ref),
            reason=reason,
            notes=notes,
        )
    )
    return {"success": True, "message": "Return request rejected"}


# ---------------------------------------------------------------------------
# Manual reconciliation
# ---------------------------------------------------------------------------
def retry_refund(order_id, request_id=None, admin_ref=None):
    """Re-attempt failed refunds with their original idempotency keys.

    With ``request_id`` the failed refund of that return request is retried;
    without it, every parked cancellation refund on the order is.
    """
    order = load_order(order_id)

    if request_id is not None:
        request = order.get_return_request(request_id)
        if request.status != ReturnStatus.APPROVED.value:
            raise ValidationError({"return_request": ["Only approved return requests can be refunded"]})
        if request.refund_status == RefundStatus.PROCESSED.value:
            raise ValidationError({"return_request": ["Refund already processed"]})

        _, error = refund_return(
            order.id,
            order.customer_id,
            order.order_number,
            request.id,
            request.refund_amount,
            admin_ref=str(admin_ref) if admin_ref else None,
        )
        if error:
            return {"success": False, "message": f"Refund retry failed: {error}", "refund_error": error}
        return {"success": True, "message": "Refund processed successfully", "refund_amount": request.refund_amount}

    pending = order.pending_refunds()
    if not pending:
        raise ValidationError({"refund": ["No failed refunds to retry for this order"]})

    refunded, errors = 0.0, []
    for entry in pending:
        _, error = refund_to_wallet(order, entry["amount"], entry["key"], entry["kind"], entry["description"])
        if error:
            errors.append(error)
        else:
            refunded += entry["amount"]

    refunded = round(refunded, 2)
    if errors:
        return {
            "success": False,
            "message": "Some refunds could not be processed",
            "refund_amount": refunded,
            "refund_error": "; ".join(errors),
        }
    return {"success": True, "message": "Refund processed successfully", "refund_amount": refunded}
