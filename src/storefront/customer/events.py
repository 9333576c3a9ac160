"""Domain events for the Customer aggregate."""

from protean.fields import DateTime, Float, Identifier, String

from storefront.domain import storefront


@storefront.event(part_of="Customer")
class CustomerRegistered:
    """A new customer account was created."""

    __version__ = 1

    customer_id: Identifier(required=True)
    name: String(required=True)
    email: String(required=True)
    referral_code: String(required=True)
    registered_at: DateTime(required=True)


@storefront.event(part_of="Customer")
class CustomerBlocked:
    """An admin blocked the customer from shopping and referring."""

    __version__ = 1

    customer_id: Identifier(required=True)
    reason: String()


@storefront.event(part_of="Customer")
class CustomerUnblocked:
    """An admin lifted a block on the customer."""

    __version__ = 1

    customer_id: Identifier(required=True)


@storefront.event(part_of="Customer")
class ReferralRecorded:
    """A new customer joined using another customer's referral code."""

    __version__ = 1

    referrer_id: Identifier(required=True)
    referred_id: Identifier(required=True)
    referrer_bonus: Float(required=True)
    referee_bonus: Float(required=True)
    referred_at: DateTime(required=True)
