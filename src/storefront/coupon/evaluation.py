"""Coupon evaluation at checkout."""

from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from storefront.coupon.management import find_coupon
from storefront.ordering.order import Order, OrderStatus


def uses_by_customer(code, customer_id):
    """Non-cancelled orders of ``customer_id`` that carried ``code``.

    A completed gateway checkout always has its order, so counting orders
    covers both payment paths.
    """
    orders = (
        current_domain.repository_for(Order)
        ._dao.query.filter(customer_id=str(customer_id), coupon_code=code)
        .all()
        .items
    )
    return sum(1 for o in orders if o.status != OrderStatus.CANCELLED.value)


def evaluate_coupon(code, customer_id, subtotal, now=None):
    """Check ``code`` against the cart subtotal and return the discount it earns.

    Returns ``{coupon_id, code, name, discount_type, discount_value, discount}``.
    """
    coupon = find_coupon(code) if code and code.strip() else None
    if coupon is None or not coupon.is_active:
        raise ValidationError({"coupon_code": ["Invalid coupon code"]})
    if not coupon.is_within_dates(now):
        raise ValidationError({"coupon_code": ["Coupon has expired or not yet active"]})
    if coupon.is_exhausted():
        raise ValidationError({"coupon_code": ["Coupon usage limit exceeded"]})
    if subtotal < (coupon.minimum_order_amount or 0.0):
        raise ValidationError({"coupon_code": [f"Minimum order amount of {coupon.minimum_order_amount:g} required"]})
    if uses_by_customer(coupon.code, customer_id) >= (coupon.usage_per_user or 1):
        raise ValidationError({"coupon_code": ["You have already used this coupon"]})

    return {
        "coupon_id": str(coupon.id),
        "code": coupon.code,
        "name": coupon.name,
        "discount_type": coupon.discount_type,
        "discount_value": coupon.discount_value,
        "discount": coupon.calculate_discount(subtotal),
    }
