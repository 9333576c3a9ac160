"""Category aggregate — groups products; unlisting a category hides all of them."""

from protean.exceptions import ValidationError
from protean.fields import Boolean, String

from storefront.domain import storefront


@storefront.aggregate
class Category:
    name = String(required=True, max_length=100, unique=True)
    description = String(max_length=500)
    is_listed = Boolean(default=True)

    def set_listed(self, listed):
        if bool(self.is_listed) == bool(listed):
            raise ValidationError({"is_listed": [f"Category is already {'listed' if listed else 'unlisted'}"]})
        self.is_listed = bool(listed)
