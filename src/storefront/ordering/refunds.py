"""Refund policy and bookkeeping.

Every refund is store credit. Whatever a customer paid, by wallet, gateway
or a mix of both, comes back to their wallet in full, so the refundable
amount of a line is its price-at-purchase share of what was collected.
Cash on delivery orders are never refunded on cancellation: nothing has
been collected yet. Returned COD lines are refunded because the cash was
taken at the door.

Refund credits carry idempotency keys, so a retried refund can never pay
twice:

    cancel-refund:{order_id}
    cancel-items-refund:{order_id}:{batch_id}
    return-refund:{order_id}:{request_id}
"""

import structlog
from protean import handle
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import FOLLOW_UP_ERRORS, ConcurrencyConflict
from storefront.ordering.order import Order, PaymentMethod, PaymentStatus
from storefront.wallet import service as wallet

logger = structlog.get_logger(__name__)

MAX_CREDIT_ATTEMPTS = 3


def cancellation_key(order_id):
    return f"cancel-refund:{order_id}"


def item_cancellation_key(order_id, batch_id):
    return f"cancel-items-refund:{order_id}:{batch_id}"


def return_key(order_id, request_id):
    return f"return-refund:{order_id}:{request_id}"


def is_refundable(order):
    """Only money actually collected is refunded on cancellation."""
    return order.payment_status == PaymentStatus.PAID.value and order.payment_method != PaymentMethod.COD.value


def cancellation_refund_amount(order, refundable_value):
    if not is_refundable(order):
        return 0.0
    return round(max(refundable_value, 0.0), 2)


# ---------------------------------------------------------------------------
# Recording outcomes on the order
# ---------------------------------------------------------------------------
@storefront.command(part_of="Order")
class RecordOrderRefund:
    order_id = Identifier(required=True)
    key = String(required=True, max_length=255)
    kind = String(required=True, max_length=20)
    amount = Float(required=True)
    description = String(max_length=500)
    transaction_id = String(max_length=30)
    error = Text()


@storefront.command(part_of="Order")
class RecordReturnRefund:
    order_id = Identifier(required=True)
    request_id = Identifier(required=True)
    key = String(required=True, max_length=255)
    transaction_id = String(max_length=30)
    error = Text()


@storefront.command_handler(part_of=Order)
class RefundLedgerHandler:
    @handle(RecordOrderRefund)
    def record_order_refund(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        if command.transaction_id:
            order.record_order_refund(command.key, command.kind, command.amount, command.transaction_id)
        else:
            order.record_order_refund_failure(
                command.key, command.kind, command.amount, command.description, command.error
            )
        repo.add(order)

    @handle(RecordReturnRefund)
    def record_return_refund(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        if command.transaction_id:
            order.record_return_refund(command.request_id, command.key, command.transaction_id)
        else:
            order.record_return_refund_failure(command.request_id, command.error)
        repo.add(order)


# ---------------------------------------------------------------------------
# Issuing refunds
# ---------------------------------------------------------------------------
def credit_with_retry(customer_id, amount, description, order_ref, key, admin_ref=None):
    """Credit the wallet, retrying when another writer saved the wallet first.

    The idempotency key makes a retry after a lost race safe.
    """
    for attempt in range(1, MAX_CREDIT_ATTEMPTS + 1):
        try:
            return wallet.credit(
                customer_id,
                amount,
                description,
                order_ref=order_ref,
                admin_ref=admin_ref,
                idempotency_key=key,
            )
        except ConcurrencyConflict:
            if attempt == MAX_CREDIT_ATTEMPTS:
                raise
            logger.warning("Wallet changed during refund credit, retrying", key=key, attempt=attempt)


def _error_message(exc):
    return str(getattr(exc, "messages", None) or exc)


def _record(command):
    """Write the outcome onto the order. The wallet credit already happened either way."""
    try:
        current_domain.process(command, asynchronous=False)
    except FOLLOW_UP_ERRORS as exc:
        logger.error(
            "Refund outcome could not be recorded on the order",
            order_id=str(command.order_id),
            key=command.key,
            error=_error_message(exc),
        )


def refund_to_wallet(order, amount, key, kind, description):
    """Credit a cancellation refund and note the outcome on the order.

    Returns ``(transaction_id, error)``; exactly one of them is set.
    """
    try:
        receipt = credit_with_retry(order.customer_id, amount, description, order.order_number, key)
    except FOLLOW_UP_ERRORS as exc:
        error = _error_message(exc)
        logger.error(
            "Refund credit failed",
            order_id=str(order.id),
            order_number=order.order_number,
            amount=amount,
            key=key,
            error=error,
        )
        _record(
            RecordOrderRefund(
                order_id=str(order.id), key=key, kind=kind, amount=amount, description=description, error=error
            )
        )
        return None, error

    logger.info("Refund credited", order_id=str(order.id), amount=amount, key=key)
    _record(
        RecordOrderRefund(
            order_id=str(order.id),
            key=key,
            kind=kind,
            amount=amount,
            description=description,
            transaction_id=receipt["transaction_id"],
        )
    )
    return receipt["transaction_id"], None


def refund_return(order_id, customer_id, order_number, request_id, amount, admin_ref=None):
    """Credit an approved return and note the outcome on its request."""
    key = return_key(order_id, request_id)
    description = f"Refund for returned item - Order {order_number}"
    try:
        receipt = credit_with_retry(customer_id, amount, description, order_number, key, admin_ref=admin_ref)
    except FOLLOW_UP_ERRORS as exc:
        error = _error_message(exc)
        logger.error(
            "Return refund credit failed",
            order_id=str(order_id),
            request_id=str(request_id),
            amount=amount,
            error=error,
        )
        _record(RecordReturnRefund(order_id=str(order_id), request_id=str(request_id), key=key, error=error))
        return None, error

    logger.info("Return refund credited", order_id=str(order_id), request_id=str(request_id), amount=amount)
    _record(
        RecordReturnRefund(
            order_id=str(order_id),
            request_id=str(request_id),
            key=key,
            transaction_id=receipt["transaction_id"],
        )
    )
    return receipt["transaction_id"], None
