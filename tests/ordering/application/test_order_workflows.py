"""Cancellation, fulfillment and return workflows against the in-memory domain."""

from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError

from storefront.catalogue.variant import Variant
from storefront.coupon.management import CreateCoupon
from storefront.errors import InvalidTransition
from storefront.ordering.order import Actor, Order, PaymentStatus
from storefront.ordering.queries import load_order
from storefront.ordering.workflow import (
    advance_order_status,
    approve_return,
    cancel_order,
    cancel_order_items,
    reject_return,
    request_return,
    update_item_status,
)
from storefront.wallet import service as wallet


def stock_of(variant_id):
    return current_domain.repository_for(Variant).get(variant_id).stock


def item_for(order_id, variant_id):
    return next(i for i in load_order(order_id).items if str(i.variant_id) == str(variant_id))


class TestPlacementThroughCheckout:
    def test_cod_order_reserves_stock_and_waits_for_payment(self, customer_id, make_variant, place):
        a = make_variant(price=100.0, stock=5)
        b = make_variant(price=50.0, stock=3, product_name="Silk Dupatta", name="Red")

        result = place(customer_id, [(a, 2), (b, 1)])
        order = load_order(result["order_id"])

        assert order.subtotal == 250.0
        assert order.shipping_cost == 50.0
        assert order.tax_amount == 45.0
        assert order.total_amount == 345.0
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.status == "Confirmed"
        assert stock_of(a) == 3
        assert stock_of(b) == 2

    def test_admin_cancel_of_cod_order_restores_stock_without_refund(self, customer_id, make_variant, place):
        a = make_variant(price=100.0, stock=5)
        b = make_variant(price=50.0, stock=3)
        order_id = place(customer_id, [(a, 2), (b, 1)])["order_id"]

        result = cancel_order(order_id, reason="Address unserviceable", actor=Actor.ADMIN)

        order = load_order(order_id)
        assert result["refund_amount"] == 0.0
        assert order.status == "Cancelled"
        assert order.cancelled_by == "Admin"
        assert order.payment_status == PaymentStatus.PENDING.value
        assert stock_of(a) == 5
        assert stock_of(b) == 3
        assert wallet.get_balance(customer_id) == 0.0


class TestCancellation:
    def test_wallet_order_cancel_refunds_everything(self, customer_id, make_variant, place, fund):
        variant = make_variant(price=120.0, stock=4)
        fund(customer_id, 500.0)
        order_id = place(customer_id, [(variant, 1)], payment_method="WALLET")["order_id"]
        # 120 + 50 shipping + 22 tax
        assert wallet.get_balance(customer_id) == 308.0

        result = cancel_order(order_id, reason="Ordered by mistake", customer_id=customer_id)

        assert result["refund_amount"] == 192.0
        assert wallet.get_balance(customer_id) == 500.0
        order = load_order(order_id)
        assert order.payment_status == PaymentStatus.REFUNDED.value
        assert order.refund_log()[0]["key"] == f"cancel-refund:{order_id}"
        assert stock_of(variant) == 4

    def test_item_cancel_refunds_only_that_line(self, customer_id, make_variant, place, fund):
        kurta = make_variant(price=120.0, stock=4)
        stole = make_variant(price=92.0, stock=4, product_name="Stole", name="Green")
        fund(customer_id, 500.0)
        order_id = place(customer_id, [(kurta, 1), (stole, 1)], payment_method="WALLET")["order_id"]
        assert load_order(order_id).total_amount == 300.0
        assert wallet.get_balance(customer_id) == 200.0

        result = cancel_order_items(
            order_id,
            [{"item_id": str(item_for(order_id, kurta).id)}],
            reason="Changed mind",
            customer_id=customer_id,
        )

        order = load_order(order_id)
        assert result["refund_amount"] == 120.0
        assert result["order_status"] == "Confirmed"
        assert wallet.get_balance(customer_id) == 320.0
        assert order.total_amount == 300.0
        assert order.active_total() == 180.0
        assert order.display_status().value == "Partially Cancelled"
        assert stock_of(kurta) == 4
        assert stock_of(stole) == 3

    def test_cancelling_remaining_lines_refunds_what_is_left(self, customer_id, make_variant, place, fund):
        kurta = make_variant(price=120.0, stock=4)
        stole = make_variant(price=92.0, stock=4, product_name="Stole", name="Green")
        fund(customer_id, 500.0)
        order_id = place(customer_id, [(kurta, 1), (stole, 1)], payment_method="WALLET")["order_id"]

        cancel_order_items(order_id, [{"item_id": str(item_for(order_id, kurta).id)}], customer_id=customer_id)
        result = cancel_order_items(order_id, [{"item_id": str(item_for(order_id, stole).id)}], customer_id=customer_id)

        assert result["order_status"] == "Cancelled"
        assert result["refund_amount"] == 180.0
        assert wallet.get_balance(customer_id) == 500.0

    def test_discounted_order_never_refunds_more_than_was_paid(self, customer_id, make_variant, place, fund):
        saree = make_variant(price=500.0, stock=2, product_name="Silk Saree", name="Maroon")
        stole = make_variant(price=100.0, stock=2, product_name="Stole", name="Green")
        now = datetime.now(UTC)
        current_domain.process(
            CreateCoupon(
                code="FLAT400",
                name="Flat 400 off",
                discount_type="fixed",
                discount_value=400.0,
                start_date=now - timedelta(days=1),
                end_date=now + timedelta(days=30),
            ),
            asynchronous=False,
        )
        fund(customer_id, 1000.0)
        order_id = place(customer_id, [(saree, 1), (stole, 1)], payment_method="WALLET", coupon_code="FLAT400")[
            "order_id"
        ]
        # 600 + 0 shipping + 108 tax - 400
        assert load_order(order_id).total_amount == 308.0
        assert wallet.get_balance(customer_id) == 692.0

        first = cancel_order_items(order_id, [{"item_id": str(item_for(order_id, saree).id)}], customer_id=customer_id)
        second = cancel_order_items(order_id, [{"item_id": str(item_for(order_id, stole).id)}], customer_id=customer_id)

        assert first["refund_amount"] == 308.0
        assert second["refund_amount"] == 0.0
        assert second["order_status"] == "Cancelled"
        assert wallet.get_balance(customer_id) == 1000.0

    def test_cod_item_cancel_is_never_refunded(self, customer_id, make_variant, place):
        kurta = make_variant(price=120.0, stock=4)
        stole = make_variant(price=92.0, stock=4)
        order_id = place(customer_id, [(kurta, 1), (stole, 1)])["order_id"]

        result = cancel_order_items(order_id, [{"item_id": str(item_for(order_id, kurta).id)}])

        assert result["refund_amount"] == 0.0
        assert wallet.get_balance(customer_id) == 0.0

    def test_other_customers_cannot_cancel(self, register, make_variant, place):
        owner, stranger = register(), register(name="Ravi Kumar")
        variant = make_variant(stock=2)
        order_id = place(owner, [(variant, 1)])["order_id"]

        with pytest.raises(ObjectNotFoundError):
            cancel_order(order_id, customer_id=stranger)
        assert stock_of(variant) == 1

    def test_shipped_order_cannot_be_cancelled(self, customer_id, make_variant, place):
        variant = make_variant(stock=2)
        order_id = place(customer_id, [(variant, 1)])["order_id"]
        advance_order_status(order_id, "Shipped")

        with pytest.raises(InvalidTransition):
            cancel_order(order_id, customer_id=customer_id)
        assert stock_of(variant) == 1


class TestFulfillment:
    def test_advance_reports_new_status(self, customer_id, make_variant, place):
        order_id = place(customer_id, [(make_variant(), 1)])["order_id"]
        result = advance_order_status(order_id, "Processing")
        assert result["status"] == "Processing"
        assert result["message"] == "Order status updated to Processing"

    def test_backward_move_is_rejected(self, customer_id, make_variant, place):
        order_id = place(customer_id, [(make_variant(), 1)])["order_id"]
        advance_order_status(order_id, "Shipped")
        with pytest.raises(InvalidTransition):
            advance_order_status(order_id, "Confirmed")

    def test_item_delivery_rolls_up(self, customer_id, make_variant, place):
        a, b = make_variant(), make_variant()
        order_id = place(customer_id, [(a, 1), (b, 1)])["order_id"]

        first = update_item_status(order_id, item_for(order_id, a).id, "Delivered")
        assert first["order_status"] == "Confirmed"
        assert load_order(order_id).display_status().value == "Partially Delivered"

        update_item_status(order_id, item_for(order_id, b).id, "Delivered")
        order = load_order(order_id)
        assert order.status == "Delivered"
        assert order.payment_status == PaymentStatus.PAID.value


class TestReturns:
    @pytest.fixture
    def delivered(self, customer_id, make_variant, place, fund, deliver):
        variant = make_variant(price=80.0, stock=5)
        fund(customer_id, 200.0)
        order_id = place(customer_id, [(variant, 1)], payment_method="WALLET")["order_id"]
        deliver(order_id)

        # Delivered three days ago
        repo = current_domain.repository_for(Order)
        order = repo.get(order_id)
        for item in order.items:
            item.delivered_at = datetime.now(UTC) - timedelta(days=3)
        repo.add(order)
        return order_id, variant

    def test_approved_return_is_credited_once(self, customer_id, delivered):
        order_id, variant = delivered
        balance_before = wallet.get_balance(customer_id)

        submitted = request_return(order_id, customer_id, "Too small", item_id=item_for(order_id, variant).id)
        request_id = submitted["return_requests"][0]["request_id"]
        assert submitted["return_requests"][0]["refund_amount"] == 80.0

        result = approve_return(order_id, request_id, "admin-1", notes="Checked")
        assert result["refund_amount"] == 80.0
        assert wallet.get_balance(customer_id) == balance_before + 80.0
        assert stock_of(variant) == 5

        with pytest.raises(InvalidTransition):
            approve_return(order_id, request_id, "admin-1")
        assert wallet.get_balance(customer_id) == balance_before + 80.0

        order = load_order(order_id)
        assert order.status == "Returned"
        assert order.get_return_request(request_id).refund_status == "Processed"

    def test_rejected_return_credits_nothing(self, customer_id, delivered):
        order_id, variant = delivered
        balance_before = wallet.get_balance(customer_id)
        submitted = request_return(order_id, customer_id, "Too small")
        request_id = submitted["return_requests"][0]["request_id"]

        reject_return(order_id, request_id, "admin-1", "Tags removed")

        assert wallet.get_balance(customer_id) == balance_before
        assert item_for(order_id, variant).status == "Delivered"
        assert stock_of(variant) == 4

    def test_returned_cod_line_is_refunded(self, customer_id, make_variant, place, deliver):
        variant = make_variant(price=80.0, stock=5)
        order_id = place(customer_id, [(variant, 1)])["order_id"]
        deliver(order_id)

        request_id = request_return(order_id, customer_id, "Damaged")["return_requests"][0]["request_id"]
        approve_return(order_id, request_id, "admin-1")

        assert wallet.get_balance(customer_id) == 80.0

    def test_window_is_enforced(self, customer_id, delivered):
        order_id, _ = delivered
        repo = current_domain.repository_for(Order)
        order = repo.get(order_id)
        for item in order.items:
            item.delivered_at = datetime.now(UTC) - timedelta(days=10)
        repo.add(order)

        with pytest.raises(ValidationError) as exc:
            request_return(order_id, customer_id, "Too late")
        assert "expired" in str(exc.value.messages)

    def test_only_the_owner_can_request(self, register, delivered):
        order_id, _ = delivered
        with pytest.raises(ObjectNotFoundError):
            request_return(order_id, register(name="Someone Else"), "Not mine")
