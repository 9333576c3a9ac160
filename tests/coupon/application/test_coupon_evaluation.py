"""Application tests for coupon administration and checkout evaluation."""

from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain
from protean.exceptions import ValidationError

from storefront.coupon.coupon import Coupon
from storefront.coupon.evaluation import evaluate_coupon
from storefront.coupon.management import CreateCoupon, RedeemCoupon, SetCouponStatus, find_coupon


def _create(code="FEST20", **overrides):
    now = datetime.now(UTC)
    fields = {
        "code": code,
        "name": "Festival",
        "discount_type": "percentage",
        "discount_value": 20.0,
        "start_date": now - timedelta(days=1),
        "end_date": now + timedelta(days=10),
    }
    fields.update(overrides)
    return current_domain.process(CreateCoupon(**fields), asynchronous=False)


class TestCouponAdministration:
    def test_create_persists(self):
        coupon_id = _create()
        coupon = current_domain.repository_for(Coupon).get(coupon_id)
        assert coupon.code == "FEST20"
        assert coupon.is_active is True

    def test_duplicate_code(self):
        _create()
        with pytest.raises(ValidationError) as exc:
            _create(code="fest20")
        assert exc.value.messages["code"] == ["Coupon code already exists"]

    def test_lookup_is_case_insensitive(self):
        _create()
        assert find_coupon("fest20") is not None

    def test_redeem_counts_usage(self):
        _create(usage_limit=5)
        used = current_domain.process(RedeemCoupon(code="FEST20", order_ref="ORD1"), asynchronous=False)
        assert used == 1


class TestEvaluation:
    def test_valid_coupon(self, customer_id):
        _create()
        result = evaluate_coupon("fest20", customer_id, 1000.0)
        assert result["code"] == "FEST20"
        assert result["discount"] == 200.0

    def test_unknown_code(self, customer_id):
        with pytest.raises(ValidationError) as exc:
            evaluate_coupon("NOPE", customer_id, 1000.0)
        assert exc.value.messages["coupon_code"] == ["Invalid coupon code"]

    def test_inactive_coupon(self, customer_id):
        coupon_id = _create()
        current_domain.process(SetCouponStatus(coupon_id=coupon_id, is_active=False), asynchronous=False)
        with pytest.raises(ValidationError) as exc:
            evaluate_coupon("FEST20", customer_id, 1000.0)
        assert exc.value.messages["coupon_code"] == ["Invalid coupon code"]

    def test_expired_coupon(self, customer_id):
        now = datetime.now(UTC)
        _create(start_date=now - timedelta(days=10), end_date=now - timedelta(days=1))
        with pytest.raises(ValidationError) as exc:
            evaluate_coupon("FEST20", customer_id, 1000.0)
        assert exc.value.messages["coupon_code"] == ["Coupon has expired or not yet active"]

    def test_usage_limit_reached(self, customer_id):
        _create(usage_limit=1)
        current_domain.process(RedeemCoupon(code="FEST20"), asynchronous=False)
        with pytest.raises(ValidationError) as exc:
            evaluate_coupon("FEST20", customer_id, 1000.0)
        assert exc.value.messages["coupon_code"] == ["Coupon usage limit exceeded"]

    def test_minimum_order_amount(self, customer_id):
        _create(minimum_order_amount=500.0)
        with pytest.raises(ValidationError) as exc:
            evaluate_coupon("FEST20", customer_id, 499.0)
        assert exc.value.messages["coupon_code"] == ["Minimum order amount of 500 required"]
