"""Tests for Coupon creation rules and discount calculation."""

from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ValidationError

from storefront.coupon.coupon import Coupon, DiscountType
from storefront.coupon.events import CouponRedeemed


def _coupon(**overrides):
    now = datetime.now(UTC)
    defaults = {
        "code": "save10",
        "name": "Save 10%",
        "discount_type": DiscountType.PERCENTAGE.value,
        "discount_value": 10.0,
        "start_date": now - timedelta(days=1),
        "end_date": now + timedelta(days=30),
    }
    defaults.update(overrides)
    return Coupon.create(**defaults)


class TestCreate:
    def test_code_is_normalised(self):
        assert _coupon(code="  save10 ").code == "SAVE10"

    def test_short_code(self):
        with pytest.raises(ValidationError) as exc:
            _coupon(code="AB")
        assert "code" in exc.value.messages

    def test_dates_must_be_ordered(self):
        now = datetime.now(UTC)
        with pytest.raises(ValidationError) as exc:
            _coupon(start_date=now, end_date=now - timedelta(days=1))
        assert "end_date" in exc.value.messages

    @pytest.mark.parametrize("value", [0.5, 101])
    def test_percentage_bounds(self, value):
        with pytest.raises(ValidationError):
            _coupon(discount_value=value)


class TestDiscount:
    def test_percentage(self):
        assert _coupon().calculate_discount(800.0) == 80.0

    def test_percentage_is_capped(self):
        assert _coupon(max_discount_amount=50.0).calculate_discount(800.0) == 50.0

    def test_fixed(self):
        coupon = _coupon(discount_type=DiscountType.FIXED.value, discount_value=150.0)
        assert coupon.calculate_discount(600.0) == 150.0

    def test_fixed_never_exceeds_order_amount(self):
        coupon = _coupon(discount_type=DiscountType.FIXED.value, discount_value=150.0)
        assert coupon.calculate_discount(100.0) == 100.0

    def test_below_minimum_gives_nothing(self):
        assert _coupon(minimum_order_amount=500.0).calculate_discount(499.0) == 0.0


class TestUsage:
    def test_record_usage(self):
        coupon = _coupon(usage_limit=2)
        coupon.record_usage(order_ref="ORD1")
        assert coupon.used_count == 1
        assert isinstance(coupon._events[-1], CouponRedeemed)

    def test_exhausted(self):
        coupon = _coupon(usage_limit=1)
        coupon.record_usage()
        assert coupon.is_exhausted()
        with pytest.raises(ValidationError):
            coupon.record_usage()

    def test_validity_window(self):
        coupon = _coupon()
        assert coupon.is_currently_valid()
        assert not coupon.is_currently_valid(datetime.now(UTC) + timedelta(days=60))
