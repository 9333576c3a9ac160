"""Product aggregate — what a customer browses; variants carry price and stock."""

from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import Boolean, Identifier, String, Text

from storefront.catalogue.events import ProductListingChanged
from storefront.domain import storefront


@storefront.aggregate
class Product:
    name = String(required=True, max_length=255)
    category_id = Identifier(required=True)
    description = Text()
    is_listed = Boolean(default=True)

    def set_listed(self, listed):
        if bool(self.is_listed) == bool(listed):
            raise ValidationError({"is_listed": [f"Product is already {'listed' if listed else 'unlisted'}"]})
        self.is_listed = bool(listed)
        self.raise_(
            ProductListingChanged(
                product_id=self.id,
                is_listed=self.is_listed,
                changed_at=datetime.now(UTC),
            )
        )
