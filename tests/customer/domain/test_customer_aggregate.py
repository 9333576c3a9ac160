"""Tests for the Customer aggregate."""

import pytest
from protean.exceptions import ValidationError

from storefront.customer.customer import REFERRAL_CODE_LENGTH, Customer
from storefront.customer.events import CustomerBlocked, CustomerRegistered, ReferralRecorded


def _customer(name="Asha Rao", email="Asha@Example.com"):
    return Customer.register(name=name, email=email)


class TestRegister:
    def test_email_is_normalised(self):
        assert _customer().email == "asha@example.com"

    def test_referral_code_is_generated(self):
        customer = _customer()
        assert len(customer.referral_code) == REFERRAL_CODE_LENGTH
        assert isinstance(customer._events[-1], CustomerRegistered)


class TestBlocking:
    def test_block_and_unblock(self):
        customer = _customer()
        customer.block(reason="Chargebacks")
        assert customer.is_blocked is True
        assert isinstance(customer._events[-1], CustomerBlocked)
        customer.unblock()
        assert customer.is_blocked is False

    def test_double_block(self):
        customer = _customer()
        customer.block()
        with pytest.raises(ValidationError):
            customer.block()


class TestReferral:
    def test_accept_referral_books_reward(self):
        referrer, newcomer = _customer(), _customer(name="Ravi", email="ravi@example.com")
        newcomer.accept_referral_from(referrer, referrer_bonus=200.0, referee_bonus=100.0)
        assert newcomer.referred_by == referrer.id
        assert referrer.referral_count == 1
        assert referrer.referral_rewards == 200.0
        assert isinstance(referrer._events[-1], ReferralRecorded)

    def test_own_code(self):
        customer = _customer()
        with pytest.raises(ValidationError):
            customer.accept_referral_from(customer, referrer_bonus=200.0, referee_bonus=100.0)

    def test_only_one_referral(self):
        first, second, newcomer = _customer(), _customer(), _customer()
        newcomer.accept_referral_from(first, referrer_bonus=200.0, referee_bonus=100.0)
        with pytest.raises(ValidationError):
            newcomer.accept_referral_from(second, referrer_bonus=200.0, referee_bonus=100.0)

    def test_blocked_referrer(self):
        referrer, newcomer = _customer(), _customer()
        referrer.block()
        with pytest.raises(ValidationError):
            newcomer.accept_referral_from(referrer, referrer_bonus=200.0, referee_bonus=100.0)
