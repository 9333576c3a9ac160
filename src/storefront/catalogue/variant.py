"""Variant aggregate (CQRS) — a purchasable configuration with its own price and stock.

``stock`` is the only counter with real concurrent-writer pressure: many
orders decrement the same variant. Reserve checks and decrements inside one
aggregate mutation, and the aggregate version turns the save into a
conditional update, so two racing reservations cannot both spend the last
unit. The field itself refuses negative values.
"""

from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, Integer, String

from storefront.catalogue.events import LowStockDetected, StockReserved, StockRestored, StockUpdated
from storefront.domain import storefront
from storefront.errors import InsufficientStock

LOW_STOCK_THRESHOLD = 10


@storefront.aggregate
class Variant:
    product_id = Identifier(required=True)
    name = String(required=True, max_length=100)  # e.g. colour or finish
    sku = String(max_length=50)
    regular_price = Float(required=True, min_value=0.0)
    sale_price = Float(required=True, min_value=0.0)
    stock = Integer(default=0, min_value=0)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(cls, product_id, name, regular_price, sale_price=None, stock=0, sku=None):
        if sale_price is not None and sale_price > regular_price:
            raise ValidationError({"sale_price": ["Sale price cannot exceed the regular price"]})
        now = datetime.now(UTC)
        return cls(
            product_id=product_id,
            name=name,
            sku=sku,
            regular_price=regular_price,
            sale_price=regular_price if sale_price is None else sale_price,
            stock=stock,
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def _validate_quantity(quantity):
        if quantity is None or quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})

    def _check_low_stock(self):
        if self.stock <= LOW_STOCK_THRESHOLD:
            self.raise_(LowStockDetected(variant_id=self.id, stock=self.stock, threshold=LOW_STOCK_THRESHOLD))

    def reserve(self, quantity, order_ref=None, label=None):
        """Take ``quantity`` units out of stock, or fail with what is available."""
        self._validate_quantity(quantity)
        if self.stock < quantity:
            raise InsufficientStock(self.id, requested=quantity, available=self.stock, name=label or self.name)

        now = datetime.now(UTC)
        self.stock -= quantity
        self.updated_at = now
        self.raise_(
            StockReserved(
                variant_id=self.id,
                quantity=quantity,
                stock_after=self.stock,
                order_ref=order_ref,
                reserved_at=now,
            )
        )
        self._check_low_stock()

    def restore(self, quantity, order_ref=None, reason=None):
        """Put units back. There is no upper bound."""
        self._validate_quantity(quantity)
        now = datetime.now(UTC)
        self.stock += quantity
        self.updated_at = now
        self.raise_(
            StockRestored(
                variant_id=self.id,
                quantity=quantity,
                stock_after=self.stock,
                order_ref=order_ref,
                reason=reason,
                restored_at=now,
            )
        )

    def set_stock(self, new_stock):
        if new_stock is None or new_stock < 0:
            raise ValidationError({"stock": ["Stock cannot be negative"]})

        now = datetime.now(UTC)
        previous = self.stock
        self.stock = new_stock
        self.updated_at = now
        self.raise_(
            StockUpdated(
                variant_id=self.id,
                previous_stock=previous,
                new_stock=new_stock,
                updated_at=now,
            )
        )
        self._check_low_stock()
