"""Checkout aggregate: a priced snapshot waiting for a gateway payment."""

import pytest
from protean.exceptions import ValidationError

from storefront.checkout.checkout import MAX_PAYMENT_ATTEMPTS, Checkout, CheckoutStatus
from storefront.checkout.events import CheckoutCompleted, CheckoutStarted, CheckoutVoided, PaymentFailedRecorded
from storefront.errors import InvalidTransition

QUOTE = {
    "lines": [
        {
            "variant_id": "var-1",
            "product_id": "prod-1",
            "product_name": "Cotton Kurta",
            "variant_name": "Blue / M",
            "quantity": 2,
            "unit_price": 350.0,
        }
    ],
    "payment_method": "RAZORPAY",
    "subtotal": 700.0,
    "shipping_cost": 0.0,
    "tax_amount": 126.0,
    "coupon_code": None,
    "coupon_discount": 0.0,
    "wallet_amount_used": 100.0,
    "total_amount": 826.0,
    "amount_due": 726.0,
}

ADDRESS = {
    "full_name": "Asha Rao",
    "phone_number": "9876543210",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}


@pytest.fixture
def checkout():
    return Checkout.start("cust-001", "ORD1700000000000123", QUOTE, ADDRESS, "order_fake1")


class TestStart:
    def test_snapshot(self, checkout):
        assert checkout.status == CheckoutStatus.AWAITING_PAYMENT.value
        assert checkout.attempts == 1
        assert checkout.line_dicts()[0]["unit_price"] == 350.0
        assert checkout.address()["city"] == "Bengaluru"
        assert checkout.pricing()["total_amount"] == 826.0
        assert checkout.amount_due == 726.0
        assert isinstance(checkout._events[-1], CheckoutStarted)


class TestPayment:
    def test_payment_must_match_the_current_intent(self, checkout):
        with pytest.raises(ValidationError) as exc:
            checkout.assert_accepts_payment("order_other")
        assert "gateway_order_id" in exc.value.messages

    def test_failure_is_noted(self, checkout):
        checkout.record_failure("Card declined")
        assert checkout.status == CheckoutStatus.PAYMENT_FAILED.value
        assert checkout.failures() == [{"attempt": 1, "reason": "Card declined", "at": checkout.failures()[0]["at"]}]
        assert isinstance(checkout._events[-1], PaymentFailedRecorded)

    def test_renewal_binds_a_new_intent(self, checkout):
        checkout.record_failure("Timeout")
        checkout.renew_intent("order_fake2")
        assert checkout.status == CheckoutStatus.AWAITING_PAYMENT.value
        assert checkout.gateway_order_id == "order_fake2"
        assert checkout.attempts == 2
        assert checkout.order_number == "ORD1700000000000123"

    def test_attempts_are_capped(self, checkout):
        for n in range(2, MAX_PAYMENT_ATTEMPTS + 1):
            checkout.renew_intent(f"order_fake{n}")
        with pytest.raises(ValidationError) as exc:
            checkout.renew_intent("order_one_too_many")
        assert "checkout" in exc.value.messages

    def test_switch_to_cod_drops_the_wallet_share(self, checkout):
        checkout.switch_to_cod()
        assert checkout.payment_method == "COD"
        assert checkout.wallet_amount_used == 0.0
        assert checkout.amount_due == 826.0


class TestComplete:
    def test_completed_checkout_is_closed(self, checkout):
        checkout.complete("order-123")
        assert checkout.is_completed
        assert checkout.order_id == "order-123"
        assert isinstance(checkout._events[-1], CheckoutCompleted)

        with pytest.raises(InvalidTransition):
            checkout.record_failure("late failure")
        with pytest.raises(InvalidTransition):
            checkout.renew_intent("order_fake9")
        with pytest.raises(InvalidTransition):
            checkout.complete("order-456")

    def test_failed_checkout_can_still_complete(self, checkout):
        checkout.record_failure("Network blip")
        checkout.complete("order-123")
        assert checkout.is_completed


class TestVoidAfterPayment:
    def test_closes_the_checkout_and_owes_the_captured_amount(self, checkout):
        checkout.void_after_payment("order_fake1", "pay_001", "Only 0 units of Cotton Kurta are available")

        assert checkout.status == CheckoutStatus.VOIDED.value
        assert checkout.is_voided
        assert not checkout.is_open
        assert checkout.gateway_payment_id == "pay_001"
        # The wallet share was never debited, so only the gateway amount is owed
        assert checkout.refund_amount == 726.0
        assert checkout.refund_key == f"checkout-refund:{checkout.id}"
        assert isinstance(checkout._events[-1], CheckoutVoided)

    def test_payment_must_match_the_current_intent(self, checkout):
        with pytest.raises(ValidationError) as exc:
            checkout.void_after_payment("order_other", "pay_001", "Sold out")
        assert "gateway_order_id" in exc.value.messages
        assert checkout.is_open

    def test_voided_checkout_cannot_be_retried_or_completed(self, checkout):
        checkout.void_after_payment("order_fake1", "pay_001", "Sold out")

        with pytest.raises(InvalidTransition):
            checkout.assert_can_retry()
        with pytest.raises(InvalidTransition):
            checkout.complete("order-1")

    def test_refund_outcome_is_recorded(self, checkout):
        checkout.void_after_payment("order_fake1", "pay_001", "Sold out")

        checkout.record_refund(error="Wallet is inactive")
        assert checkout.refund_error == "Wallet is inactive"

        checkout.record_refund(transaction_id="TXN123")
        assert checkout.refund_transaction_id == "TXN123"
        assert checkout.refund_error is None

    def test_open_checkout_has_nothing_to_refund(self, checkout):
        with pytest.raises(InvalidTransition):
            checkout.record_refund(transaction_id="TXN123")
