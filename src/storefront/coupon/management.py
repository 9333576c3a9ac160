"""Coupon administration and redemption — commands and handler."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.coupon.coupon import Coupon, DiscountType
from storefront.domain import storefront


@storefront.command(part_of="Coupon")
class CreateCoupon:
    code = String(required=True, max_length=20)
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


@storefront.command(part_of="Coupon")
class SetCouponStatus:
    coupon_id = Identifier(required=True)
    is_active = Boolean(required=True)


@storefront.command(part_of="Coupon")
class RedeemCoupon:
    """Count one use of a coupon against a placed order."""

    code = String(required=True, max_length=20)
    order_ref = String(max_length=100)


def find_coupon(code):
    """Active or not, the coupon registered under ``code`` (case-insensitive)."""
    matches = current_domain.repository_for(Coupon)._dao.query.filter(code=code.strip().upper()).all().items
    return matches[0] if matches else None


@storefront.command_handler(part_of=Coupon)
class CouponHandler:
    @handle(CreateCoupon)
    def create_coupon(self, command):
        if find_coupon(command.code) is not None:
            raise ValidationError({"code": ["Coupon code already exists"]})

        coupon = Coupon.create(
            code=command.code,
            name=command.name,
            description=command.description,
            discount_type=command.discount_type,
            discount_value=command.discount_value,
            max_discount_amount=command.max_discount_amount,
            minimum_order_amount=command.minimum_order_amount,
            start_date=command.start_date,
            end_date=command.end_date,
            usage_limit=command.usage_limit,
            usage_per_user=command.usage_per_user,
        )
        current_domain.repository_for(Coupon).add(coupon)
        return str(coupon.id)

    @handle(SetCouponStatus)
    def set_coupon_status(self, command):
        repo = current_domain.repository_for(Coupon)
        coupon = repo.get(command.coupon_id)
        coupon.set_active(command.is_active)
        repo.add(coupon)

    @handle(RedeemCoupon)
    def redeem_coupon(self, command):
        found = find_coupon(command.code)
        if found is None:
            raise ValidationError({"coupon_code": ["Invalid coupon code"]})
        repo = current_domain.repository_for(Coupon)
        coupon = repo.get(found.id)
        coupon.record_usage(order_ref=command.order_ref)
        repo.add(coupon)
        return coupon.used_count
