"""Stock adjuster — reserve, restore and admin stock-level commands.

Order placement and cancellation call ``Variant.reserve``/``Variant.restore``
inside their own unit of work; these commands serve the admin inventory
screen and one-off adjustments.
"""

from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from storefront.catalogue.category import Category
from storefront.catalogue.product import Product
from storefront.catalogue.variant import LOW_STOCK_THRESHOLD, Variant
from storefront.domain import storefront
from storefront.errors import conflicts_as_retryable


@storefront.command(part_of="Variant")
class ReserveStock:
    variant_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    order_ref = String(max_length=100)


@storefront.command(part_of="Variant")
class RestoreStock:
    variant_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    order_ref = String(max_length=100)
    reason = String(max_length=255)


@storefront.command(part_of="Variant")
class UpdateStock:
    variant_id = Identifier(required=True)
    stock = Integer(required=True)


@storefront.command_handler(part_of=Variant)
class StockHandler:
    @handle(ReserveStock)
    def reserve_stock(self, command):
        repo = current_domain.repository_for(Variant)
        variant = repo.get(command.variant_id)
        variant.reserve(command.quantity, order_ref=command.order_ref)
        repo.add(variant)
        return variant.stock

    @handle(RestoreStock)
    def restore_stock(self, command):
        repo = current_domain.repository_for(Variant)
        variant = repo.get(command.variant_id)
        variant.restore(command.quantity, order_ref=command.order_ref, reason=command.reason)
        repo.add(variant)
        return variant.stock

    @handle(UpdateStock)
    def update_stock(self, command):
        repo = current_domain.repository_for(Variant)
        variant = repo.get(command.variant_id)
        variant.set_stock(command.stock)
        repo.add(variant)
        return variant.stock


def reserve(variant_id, quantity, order_ref=None) -> int:
    with conflicts_as_retryable():
        return current_domain.process(
            ReserveStock(variant_id=str(variant_id), quantity=quantity, order_ref=order_ref),
            asynchronous=False,
        )


def restore(variant_id, quantity, order_ref=None, reason=None) -> int:
    with conflicts_as_retryable():
        return current_domain.process(
            RestoreStock(variant_id=str(variant_id), quantity=quantity, order_ref=order_ref, reason=reason),
            asynchronous=False,
        )


def update_stock(variant_id, stock) -> int:
    with conflicts_as_retryable():
        return current_domain.process(UpdateStock(variant_id=str(variant_id), stock=stock), asynchronous=False)


def low_stock_variants(threshold=LOW_STOCK_THRESHOLD) -> list[dict]:
    variants = current_domain.repository_for(Variant)._dao.query.all().items
    low = [v for v in variants if v.stock <= threshold]
    return [
        {"variant_id": str(v.id), "product_id": str(v.product_id), "name": v.name, "stock": v.stock}
        for v in sorted(low, key=lambda v: v.stock)
    ]


def load_purchasable(variant_id):
    """Return ``(variant, product)`` if the variant can be bought right now.

    Missing variants and unlisted products or categories are reported as
    validation errors so checkout can tell the shopper which line to fix.
    """
    try:
        variant = current_domain.repository_for(Variant).get(str(variant_id))
        product = current_domain.repository_for(Product).get(str(variant.product_id))
        category = current_domain.repository_for(Category).get(str(product.category_id))
    except ObjectNotFoundError as exc:
        raise ValidationError({"items": ["An item in your cart is no longer available"]}) from exc

    if not product.is_listed or not category.is_listed:
        raise ValidationError({"items": [f"{product.name} is no longer available"]})
    return variant, product
