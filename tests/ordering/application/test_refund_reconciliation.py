"""Refund retries: lost wallet races, parked refunds and manual replays."""

from unittest import mock

import pytest
from protean.exceptions import ValidationError

from storefront.errors import ConcurrencyConflict
from storefront.ordering import refunds
from storefront.ordering.queries import load_order
from storefront.ordering.workflow import approve_return, cancel_order, request_return, retry_refund
from storefront.wallet import service as wallet


@pytest.fixture
def wallet_order(customer_id, make_variant, place, fund):
    variant = make_variant(price=120.0, stock=4)
    fund(customer_id, 500.0)
    # 120 + 50 shipping + 22 tax
    return place(customer_id, [(variant, 1)], payment_method="WALLET")["order_id"]


def flaky_credit(failures):
    """A wallet credit that loses the race ``failures`` times before going through."""
    real_credit = wallet.credit
    calls = []

    def _credit(*args, **kwargs):
        calls.append(kwargs.get("idempotency_key"))
        if len(calls) <= failures:
            raise ConcurrencyConflict()
        return real_credit(*args, **kwargs)

    return _credit, calls


class TestConflictRetry:
    def test_refund_survives_a_lost_race(self, customer_id, wallet_order):
        credit, calls = flaky_credit(failures=1)
        with mock.patch.object(refunds.wallet, "credit", side_effect=credit):
            result = cancel_order(wallet_order, customer_id=customer_id)

        assert result["refund_amount"] == 192.0
        assert len(calls) == 2
        assert len(set(calls)) == 1
        assert wallet.get_balance(customer_id) == 500.0

    def test_refund_is_parked_after_repeated_conflicts(self, customer_id, wallet_order):
        credit, calls = flaky_credit(failures=refunds.MAX_CREDIT_ATTEMPTS)
        with mock.patch.object(refunds.wallet, "credit", side_effect=credit):
            result = cancel_order(wallet_order, customer_id=customer_id)

        assert len(calls) == refunds.MAX_CREDIT_ATTEMPTS
        assert result["success"] is True
        assert result["refund_amount"] == 0.0
        assert "refund processing failed" in result["message"]

        order = load_order(wallet_order)
        assert order.status == "Cancelled"
        assert order.refund_status == "Failed"
        assert order.pending_refunds()[0]["key"] == f"cancel-refund:{wallet_order}"
        assert wallet.get_balance(customer_id) == 308.0


class TestManualRetry:
    def test_parked_cancellation_refund_is_replayed(self, customer_id, wallet_order):
        credit, _ = flaky_credit(failures=refunds.MAX_CREDIT_ATTEMPTS)
        with mock.patch.object(refunds.wallet, "credit", side_effect=credit):
            cancel_order(wallet_order, customer_id=customer_id)

        result = retry_refund(wallet_order, admin_ref="admin-1")

        assert result["success"] is True
        assert result["refund_amount"] == 192.0
        assert wallet.get_balance(customer_id) == 500.0
        order = load_order(wallet_order)
        assert order.pending_refunds() == []
        assert order.refund_status == "Processed"
        assert order.payment_status == "Refunded"

    def test_replaying_twice_never_pays_twice(self, customer_id, wallet_order):
        cancel_order(wallet_order, customer_id=customer_id)
        receipt = wallet.credit(
            customer_id,
            192.0,
            "Duplicate attempt",
            idempotency_key=f"cancel-refund:{wallet_order}",
        )
        assert receipt["duplicate"] is True
        assert wallet.get_balance(customer_id) == 500.0

    def test_nothing_to_retry(self, customer_id, wallet_order):
        cancel_order(wallet_order, customer_id=customer_id)
        with pytest.raises(ValidationError) as exc:
            retry_refund(wallet_order)
        assert "refund" in exc.value.messages

    def test_failed_return_refund_is_replayed(self, customer_id, wallet_order, deliver):
        deliver(wallet_order)
        request_id = request_return(wallet_order, customer_id, "Too small")["return_requests"][0]["request_id"]

        credit, _ = flaky_credit(failures=refunds.MAX_CREDIT_ATTEMPTS)
        with mock.patch.object(refunds.wallet, "credit", side_effect=credit):
            approved = approve_return(wallet_order, request_id, "admin-1")
        assert approved["refund_amount"] == 0.0
        assert load_order(wallet_order).get_return_request(request_id).refund_status == "Failed"

        result = retry_refund(wallet_order, request_id=request_id, admin_ref="admin-1")
        assert result["success"] is True
        assert wallet.get_balance(customer_id) == 308.0 + 120.0

        with pytest.raises(ValidationError):
            retry_refund(wallet_order, request_id=request_id)
