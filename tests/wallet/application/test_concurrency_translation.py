"""Optimistic version failures surface as retryable conflicts."""

from unittest import mock

import pytest
from protean import current_domain
from protean.exceptions import ExpectedVersionError

from storefront.errors import ConcurrencyConflict, conflicts_as_retryable
from storefront.wallet import service as wallet
from storefront.wallet.ledger import load_wallet
from storefront.wallet.wallet import Wallet


class TestConflictTranslation:
    def test_expected_version_error_becomes_concurrency_conflict(self):
        with pytest.raises(ConcurrencyConflict) as exc:
            with conflicts_as_retryable():
                raise ExpectedVersionError("Wrong expected version: 3 (Aggregate: Wallet)")
        assert isinstance(exc.value.__cause__, ExpectedVersionError)

    def test_other_errors_pass_through(self):
        with pytest.raises(KeyError):
            with conflicts_as_retryable():
                raise KeyError("boom")

    def test_wallet_credit_reports_conflict(self, customer_id):
        with mock.patch("storefront.wallet.service.current_domain", new_callable=mock.MagicMock) as domain:
            domain.process.side_effect = ExpectedVersionError("Wrong expected version")
            with pytest.raises(ConcurrencyConflict):
                wallet.credit(customer_id, 10.0, "Top-up")
        assert wallet.get_balance(customer_id) == 0.0


class TestStaleWalletWrites:
    def test_second_debit_from_a_stale_copy_is_refused(self, customer_id, fund):
        fund(customer_id, 50.0)
        repo = current_domain.repository_for(Wallet)
        first, second = load_wallet(customer_id), load_wallet(customer_id)

        first.debit(30.0, "Order ORD1")
        second.debit(30.0, "Order ORD2")
        repo.add(first)

        with pytest.raises(ConcurrencyConflict):
            with conflicts_as_retryable():
                repo.add(second)
        assert wallet.get_balance(customer_id) == 20.0
        assert len(wallet.history(customer_id)["transactions"]) == 2
