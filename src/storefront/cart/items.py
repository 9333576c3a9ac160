"""Cart item management — commands and handler."""

from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, Integer
from protean.utils.globals import current_domain

from storefront.cart.cart import MAX_QUANTITY_PER_LINE, Cart
from storefront.catalogue.stock import load_purchasable
from storefront.customer.customer import Customer
from storefront.domain import storefront
from storefront.errors import InsufficientStock


@storefront.command(part_of="Cart")
class AddToCart:
    customer_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    quantity = Integer(default=1, min_value=1, max_value=MAX_QUANTITY_PER_LINE)


@storefront.command(part_of="Cart")
class UpdateCartQuantity:
    customer_id = Identifier(required=True)
    variant_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1, max_value=MAX_QUANTITY_PER_LINE)


@storefront.command(part_of="Cart")
class RemoveFromCart:
    customer_id = Identifier(required=True)
    variant_id = Identifier(required=True)


@storefront.command(part_of="Cart")
class ClearCart:
    customer_id = Identifier(required=True)


def cart_for(customer_id, create=False):
    """The customer's cart, or a new unsaved one when ``create`` is set."""
    carts = current_domain.repository_for(Cart)._dao.query.filter(customer_id=str(customer_id)).all().items
    if carts:
        return current_domain.repository_for(Cart).get(carts[0].id)
    if not create:
        raise ObjectNotFoundError(f"Cart for customer `{customer_id}` does not exist")
    return Cart.open(customer_id=str(customer_id))


def _check_stock(variant_id, quantity):
    variant, product = load_purchasable(variant_id)
    if variant.stock < quantity:
        raise InsufficientStock(variant.id, requested=quantity, available=variant.stock, name=product.name)


@storefront.command_handler(part_of=Cart)
class CartItemsHandler:
    @handle(AddToCart)
    def add_to_cart(self, command):
        current_domain.repository_for(Customer).get(command.customer_id)
        cart = cart_for(command.customer_id, create=True)
        cart.add_item(command.variant_id, command.quantity)
        in_cart = next(i.quantity for i in cart.items if str(i.variant_id) == str(command.variant_id))
        _check_stock(command.variant_id, in_cart)
        current_domain.repository_for(Cart).add(cart)
        return str(cart.id)

    @handle(UpdateCartQuantity)
    def update_cart_quantity(self, command):
        cart = cart_for(command.customer_id)
        _check_stock(command.variant_id, command.quantity)
        cart.update_quantity(command.variant_id, command.quantity)
        current_domain.repository_for(Cart).add(cart)

    @handle(RemoveFromCart)
    def remove_from_cart(self, command):
        cart = cart_for(command.customer_id)
        cart.remove_item(command.variant_id)
        current_domain.repository_for(Cart).add(cart)

    @handle(ClearCart)
    def clear_cart(self, command):
        try:
            cart = cart_for(command.customer_id)
        except ObjectNotFoundError:
            return
        cart.clear()
        current_domain.repository_for(Cart).add(cart)


def view_cart(customer_id) -> dict:
    """Cart lines with current prices; lines that can no longer be bought are flagged, not dropped."""
    try:
        cart = cart_for(customer_id)
    except ObjectNotFoundError:
        return {"items": [], "subtotal": 0.0, "item_count": 0}

    lines, subtotal = [], 0.0
    for item in cart.items:
        try:
            variant, product = load_purchasable(item.variant_id)
        except ValidationError as exc:
            lines.append(
                {
                    "variant_id": str(item.variant_id),
                    "quantity": item.quantity,
                    "available": False,
                    "message": next(iter(exc.messages.values()))[0],
                }
            )
            continue
        line_total = round(variant.sale_price * item.quantity, 2)
        subtotal += line_total
        lines.append(
            {
                "variant_id": str(variant.id),
                "product_id": str(product.id),
                "product_name": product.name,
                "variant_name": variant.name,
                "quantity": item.quantity,
                "unit_price": variant.sale_price,
                "line_total": line_total,
                "available": variant.stock >= item.quantity,
                "stock": variant.stock,
            }
        )
    return {"items": lines, "subtotal": round(subtotal, 2), "item_count": sum(i.quantity for i in cart.items)}
