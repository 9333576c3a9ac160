"""Shopping cart aggregate (CQRS) — one per customer, emptied once an order is placed."""

from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer

from storefront.domain import storefront

MAX_QUANTITY_PER_LINE = 10


@storefront.entity(part_of="Cart")
class CartItem:
    variant_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1, max_value=MAX_QUANTITY_PER_LINE)
    added_at = DateTime()


@storefront.aggregate
class Cart:
    customer_id = Identifier(required=True)
    items = HasMany(CartItem)
    updated_at = DateTime()

    @classmethod
    def open(cls, customer_id):
        return cls(customer_id=customer_id, updated_at=datetime.now(UTC))

    def _find(self, variant_id):
        return next((i for i in self.items if str(i.variant_id) == str(variant_id)), None)

    def add_item(self, variant_id, quantity):
        """Add a variant, or increase its quantity if it is already in the cart."""
        existing = self._find(variant_id)
        now = datetime.now(UTC)
        if existing:
            if existing.quantity + quantity > MAX_QUANTITY_PER_LINE:
                raise ValidationError(
                    {"quantity": [f"You can add at most {MAX_QUANTITY_PER_LINE} units of an item"]}
                )
            existing.quantity += quantity
        else:
            self.add_items(CartItem(variant_id=variant_id, quantity=quantity, added_at=now))
        self.updated_at = now

    def update_quantity(self, variant_id, quantity):
        item = self._find(variant_id)
        if item is None:
            raise ValidationError({"variant_id": ["Item not found in cart"]})
        item.quantity = quantity
        self.updated_at = datetime.now(UTC)

    def remove_item(self, variant_id):
        item = self._find(variant_id)
        if item is None:
            raise ValidationError({"variant_id": ["Item not found in cart"]})
        self.remove_items(item)
        self.updated_at = datetime.now(UTC)

    def clear(self):
        for item in list(self.items):
            self.remove_items(item)
        self.updated_at = datetime.now(UTC)

    def lines(self):
        return [{"variant_id": str(i.variant_id), "quantity": i.quantity} for i in self.items]
