"""Domain events for catalogue listings and variant stock."""

from protean.fields import Boolean, DateTime, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="Product")
class ProductListingChanged:
    """A product was listed for sale or hidden from the storefront."""

    __version__ = 1

    product_id = Identifier(required=True)
    is_listed = Boolean()
    changed_at = DateTime(required=True)


@storefront.event(part_of="Variant")
class StockReserved:
    """Units were taken out of stock for an order."""

    __version__ = 1

    variant_id = Identifier(required=True)
    quantity = Integer(required=True)
    stock_after = Integer(required=True)
    order_ref = String()
    reserved_at = DateTime(required=True)


@storefront.event(part_of="Variant")
class StockRestored:
    """Units came back into stock after a cancellation or return."""

    __version__ = 1

    variant_id = Identifier(required=True)
    quantity = Integer(required=True)
    stock_after = Integer(required=True)
    order_ref = String()
    reason = String()
    restored_at = DateTime(required=True)


@storefront.event(part_of="Variant")
class StockUpdated:
    """An admin set the stock level of a variant directly."""

    __version__ = 1

    variant_id = Identifier(required=True)
    previous_stock = Integer(required=True)
    new_stock = Integer(required=True)
    updated_at = DateTime(required=True)


@storefront.event(part_of="Variant")
class LowStockDetected:
    """A variant's stock fell to or below the low-stock threshold."""

    __version__ = 1

    variant_id = Identifier(required=True)
    stock = Integer(required=True)
    threshold = Integer(required=True)
