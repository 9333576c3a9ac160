"""Checkout pricing — line validation, shipping, tax, coupon and wallet split."""

from protean.exceptions import ValidationError

from storefront.catalogue.stock import load_purchasable
from storefront.coupon.evaluation import evaluate_coupon
from storefront.errors import InsufficientFunds, InsufficientStock, WalletInactive
from storefront.ordering.order import PaymentMethod
from storefront.wallet import service as wallet

FREE_SHIPPING_THRESHOLD = 500
FLAT_SHIPPING_FEE = 50
TAX_RATE = 0.18
COD_LIMIT = 1000
CURRENCY = "INR"


def shipping_for(subtotal):
    return 0.0 if subtotal > FREE_SHIPPING_THRESHOLD else float(FLAT_SHIPPING_FEE)


def tax_for(subtotal):
    return float(round(subtotal * TAX_RATE))


def parse_payment_method(value):
    try:
        return PaymentMethod(value)
    except ValueError:
        raise ValidationError({"payment_method": [f"Unsupported payment method `{value}`"]}) from None


def price_lines(lines):
    """Validate ``[{variant_id, quantity}]`` against the catalogue and lock prices.

    Every line is checked before anything is returned; the first problem
    aborts the whole checkout.
    """
    if not lines:
        raise ValidationError({"items": ["Your cart is empty"]})

    requested = {}
    for line in lines:
        quantity = int(line["quantity"])
        if quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})
        requested[str(line["variant_id"])] = requested.get(str(line["variant_id"]), 0) + quantity

    priced = []
    for variant_id, quantity in requested.items():
        variant, product = load_purchasable(variant_id)
        if variant.stock < quantity:
            raise InsufficientStock(variant.id, requested=quantity, available=variant.stock, name=product.name)

        unit_price = variant.sale_price if variant.sale_price is not None else variant.regular_price
        priced.append(
            {
                "variant_id": str(variant.id),
                "product_id": str(product.id),
                "product_name": product.name,
                "variant_name": variant.name,
                "quantity": quantity,
                "unit_price": unit_price,
            }
        )
    return priced


def quote(customer_id, lines, payment_method, coupon_code=None, use_wallet=False):
    """Price a checkout without changing anything.

    Returns the priced lines plus subtotal, shipping_cost, tax_amount,
    coupon_code, coupon_discount, total_amount, wallet_amount_used and
    amount_due.
    """
    method = parse_payment_method(payment_method)
    priced = price_lines(lines)
    subtotal = round(sum(line["unit_price"] * line["quantity"] for line in priced), 2)
    shipping_cost = shipping_for(subtotal)
    tax_amount = tax_for(subtotal)

    coupon_discount = 0.0
    if coupon_code:
        coupon = evaluate_coupon(coupon_code, customer_id, subtotal)
        coupon_code = coupon["code"]
        coupon_discount = coupon["discount"]
    else:
        coupon_code = None

    total_amount = round(subtotal + shipping_cost + tax_amount - coupon_discount, 2)

    if method == PaymentMethod.COD:
        if total_amount > COD_LIMIT:
            raise ValidationError(
                {"payment_method": [f"Cash on Delivery is not available for orders above {COD_LIMIT}"]}
            )
        wallet_amount_used = 0.0
    elif method == PaymentMethod.WALLET:
        check = wallet.validate_payment(customer_id, total_amount)
        if not check["valid"]:
            if check["current_balance"] < total_amount:
                raise InsufficientFunds(balance=check["current_balance"], required=total_amount)
            raise WalletInactive(customer_id)
        wallet_amount_used = total_amount
    elif use_wallet:
        check = wallet.validate_payment(customer_id, 0.0)
        if not check["valid"]:
            raise WalletInactive(customer_id)
        wallet_amount_used = round(min(check["current_balance"], total_amount), 2)
    else:
        wallet_amount_used = 0.0

    return {
        "lines": priced,
        "payment_method": method.value,
        "subtotal": subtotal,
        "shipping_cost": shipping_cost,
        "tax_amount": tax_amount,
        "coupon_code": coupon_code,
        "coupon_discount": coupon_discount,
        "total_amount": total_amount,
        "wallet_amount_used": wallet_amount_used,
        "amount_due": round(total_amount - wallet_amount_used, 2),
        "currency": CURRENCY,
    }
