"""Application tests for the wallet entry points."""

from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError

from storefront.errors import InsufficientFunds, WalletInactive
from storefront.wallet import service as wallet
from storefront.wallet.wallet import Wallet


class TestCreditAndDebit:
    def test_first_credit_opens_the_wallet(self, customer_id):
        receipt = wallet.credit(customer_id, 200.0, "Welcome credit")
        assert receipt["new_balance"] == 200.0
        assert receipt["duplicate"] is False

        stored = current_domain.repository_for(Wallet).get(customer_id)
        assert stored.balance == 200.0
        assert len(stored.transactions) == 1

    def test_debit_persists(self, customer_id):
        wallet.credit(customer_id, 200.0, "Top-up")
        receipt = wallet.debit(customer_id, 80.0, "Payment for order ORD1", order_ref="ORD1")
        assert receipt["new_balance"] == 120.0
        assert wallet.get_balance(customer_id) == 120.0

    def test_debit_beyond_balance_changes_nothing(self, customer_id):
        wallet.credit(customer_id, 50.0, "Top-up")
        with pytest.raises(InsufficientFunds):
            wallet.debit(customer_id, 80.0, "Payment")
        assert wallet.get_balance(customer_id) == 50.0

    def test_idempotent_credit_is_applied_once(self, customer_id):
        first = wallet.credit(customer_id, 90.0, "Refund", idempotency_key="cancel-refund:o1")
        second = wallet.credit(customer_id, 90.0, "Refund", idempotency_key="cancel-refund:o1")
        assert second["duplicate"] is True
        assert second["transaction_id"] == first["transaction_id"]
        assert wallet.get_balance(customer_id) == 90.0

    def test_unknown_customer(self):
        with pytest.raises(ObjectNotFoundError):
            wallet.credit("missing-customer", 10.0, "Top-up")

    def test_balance_of_unused_wallet_is_zero(self, customer_id):
        assert wallet.get_balance(customer_id) == 0.0


class TestAdjust:
    def test_positive_adjustment_credits(self, customer_id):
        receipt = wallet.adjust(customer_id, 40.0, "Goodwill", "admin-1")
        assert receipt["new_balance"] == 40.0
        latest = current_domain.repository_for(Wallet).get(customer_id).latest_transaction()
        assert latest.description == "Admin adjustment: Goodwill"
        assert latest.admin_ref == "admin-1"

    def test_negative_adjustment_debits(self, customer_id):
        wallet.credit(customer_id, 100.0, "Top-up")
        receipt = wallet.adjust(customer_id, -30.0, "Correction", "admin-1")
        assert receipt["new_balance"] == 70.0

    def test_zero_adjustment_is_rejected(self, customer_id):
        with pytest.raises(ValidationError):
            wallet.adjust(customer_id, 0.0, "Nothing", "admin-1")

    def test_negative_adjustment_cannot_overdraw(self, customer_id):
        with pytest.raises(InsufficientFunds):
            wallet.adjust(customer_id, -10.0, "Correction", "admin-1")


class TestValidatePayment:
    def test_sufficient(self, customer_id):
        wallet.credit(customer_id, 100.0, "Top-up")
        result = wallet.validate_payment(customer_id, 60.0)
        assert result["valid"] is True
        assert result["current_balance"] == 100.0

    def test_insufficient(self, customer_id):
        result = wallet.validate_payment(customer_id, 60.0)
        assert result["valid"] is False
        assert "Insufficient wallet balance" in result["message"]

    def test_deactivated(self, customer_id):
        wallet.credit(customer_id, 100.0, "Top-up")
        wallet.set_wallet_status(customer_id, False)
        result = wallet.validate_payment(customer_id, 10.0)
        assert result["valid"] is False
        assert result["message"] == "Wallet is deactivated"

        with pytest.raises(WalletInactive):
            wallet.debit(customer_id, 10.0, "Payment")


class TestHistory:
    def _seed(self, customer_id):
        wallet.credit(customer_id, 100.0, "Top-up")
        wallet.debit(customer_id, 30.0, "Payment")
        wallet.credit(customer_id, 15.0, "Refund")

    def test_newest_first(self, customer_id):
        self._seed(customer_id)
        result = wallet.history(customer_id)
        assert [t["description"] for t in result["transactions"]] == ["Refund", "Payment", "Top-up"]
        assert result["balance"] == 85.0
        assert result["pagination"]["total_transactions"] == 3

    def test_pagination(self, customer_id):
        self._seed(customer_id)
        result = wallet.history(customer_id, page=2, limit=2)
        assert [t["description"] for t in result["transactions"]] == ["Top-up"]
        assert result["pagination"] == {
            "current_page": 2,
            "total_pages": 2,
            "total_transactions": 3,
            "limit": 2,
        }

    def test_type_filter(self, customer_id):
        self._seed(customer_id)
        result = wallet.history(customer_id, transaction_type="debit")
        assert [t["type"] for t in result["transactions"]] == ["debit"]

    def test_unknown_type_is_rejected(self, customer_id):
        with pytest.raises(ValidationError):
            wallet.history(customer_id, transaction_type="bonus")

    def test_date_filter_includes_whole_end_day(self, customer_id):
        self._seed(customer_id)
        today = datetime.now(UTC).date()
        assert len(wallet.history(customer_id, start_date=today, end_date=today)["transactions"]) == 3
        tomorrow = today + timedelta(days=1)
        assert wallet.history(customer_id, start_date=tomorrow)["transactions"] == []

    def test_empty_history_for_new_customer(self, customer_id):
        result = wallet.history(customer_id)
        assert result["transactions"] == []
        assert result["pagination"]["total_pages"] == 0


class TestStats:
    def test_totals_across_wallets(self, register):
        first, second, _ = register(), register(), register()
        wallet.credit(first, 100.0, "Top-up")
        wallet.credit(second, 50.0, "Top-up")
        wallet.debit(second, 50.0, "Payment")

        stats = wallet.wallet_stats()
        assert stats["total_customers"] == 3
        assert stats["total_wallet_balance"] == 100.0
        assert stats["active_wallets"] == 2
        assert stats["wallets_with_balance"] == 1
