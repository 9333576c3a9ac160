"""Coupon aggregate — percentage or fixed discounts with date, usage and minimum-order rules."""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Integer, String, Text

from storefront.coupon.events import CouponCreated, CouponRedeemed
from storefront.domain import storefront


class DiscountType(Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


def _as_utc(value):
    return value if value.tzinfo else value.replace(tzinfo=UTC)


@storefront.aggregate
class Coupon:
    code = String(required=True, max_length=20, unique=True)
    name = String(required=True, max_length=100)
    description = Text()
    discount_type = String(required=True, choices=DiscountType)
    discount_value = Float(required=True, min_value=0.0)
    max_discount_amount = Float(min_value=0.0)
    minimum_order_amount = Float(default=0.0, min_value=0.0)
    start_date = DateTime(required=True)
    end_date = DateTime(required=True)
    usage_limit = Integer(min_value=1)
    usage_per_user = Integer(default=1, min_value=1)
    used_count = Integer(default=0, min_value=0)
    is_active = Boolean(default=True)

    @classmethod
    def create(
        cls,
        code,
        name,
        discount_type,
        discount_value,
        start_date,
        end_date,
        description=None,
        max_discount_amount=None,
        minimum_order_amount=0.0,
        usage_limit=None,
        usage_per_user=1,
    ):
        errors = {}
        if len(code.strip()) < 3:
            errors["code"] = ["Coupon code must be at least 3 characters"]
        if _as_utc(start_date) >= _as_utc(end_date):
            errors["end_date"] = ["End date must be after start date"]
        if discount_type == DiscountType.PERCENTAGE.value and not (1 <= discount_value <= 100):
            errors["discount_value"] = ["Percentage discount must be between 1 and 100"]
        if discount_type == DiscountType.FIXED.value and discount_value <= 0:
            errors["discount_value"] = ["Fixed discount must be greater than 0"]
        if errors:
            raise ValidationError(errors)

        coupon = cls(
            code=code.strip().upper(),
            name=name.strip(),
            description=description,
            discount_type=discount_type,
            discount_value=discount_value,
            max_discount_amount=max_discount_amount,
            minimum_order_amount=minimum_order_amount or 0.0,
            start_date=start_date,
            end_date=end_date,
            usage_limit=usage_limit,
            usage_per_user=usage_per_user or 1,
        )
        coupon.raise_(
            CouponCreated(
                coupon_id=coupon.id,
                code=coupon.code,
                discount_type=discount_type,
                discount_value=discount_value,
                start_date=start_date,
                end_date=end_date,
            )
        )
        return coupon

    def is_within_dates(self, now=None):
        now = now or datetime.now(UTC)
        return _as_utc(self.start_date) <= now <= _as_utc(self.end_date)

    def is_exhausted(self):
        return self.usage_limit is not None and self.used_count >= self.usage_limit

    def is_currently_valid(self, now=None):
        return bool(self.is_active) and self.is_within_dates(now) and not self.is_exhausted()

    def calculate_discount(self, order_amount):
        """Discount for ``order_amount``; never more than the amount itself."""
        if order_amount < (self.minimum_order_amount or 0.0):
            return 0.0

        if self.discount_type == DiscountType.PERCENTAGE.value:
            discount = order_amount * self.discount_value / 100
            if self.max_discount_amount and discount > self.max_discount_amount:
                discount = self.max_discount_amount
        else:
            discount = self.discount_value
        return round(min(discount, order_amount), 2)

    def set_active(self, active):
        self.is_active = bool(active)

    def record_usage(self, order_ref=None):
        if self.is_exhausted():
            raise ValidationError({"coupon_code": ["Coupon usage limit exceeded"]})
        self.used_count = (self.used_count or 0) + 1
        self.raise_(
            CouponRedeemed(
                coupon_id=self.id,
                code=self.code,
                order_ref=order_ref,
                used_count=self.used_count,
            )
        )
