"""Domain events for the Wallet aggregate."""

from protean.fields import DateTime, Float, Identifier, String

from storefront.domain import storefront


@storefront.event(part_of="Wallet")
class WalletCredited:
    """Money was added to a customer's wallet."""

    __version__ = 1

    wallet_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    transaction_id = String(required=True)
    amount = Float(required=True)
    balance_after = Float(required=True)
    description = String()
    order_ref = String()
    admin_ref = String()
    credited_at = DateTime(required=True)


@storefront.event(part_of="Wallet")
class WalletDebited:
    """Money was taken from a customer's wallet."""

    __version__ = 1

    wallet_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    transaction_id = String(required=True)
    amount = Float(required=True)
    balance_after = Float(required=True)
    description = String()
    order_ref = String()
    admin_ref = String()
    debited_at = DateTime(required=True)


@storefront.event(part_of="Wallet")
class WalletStatusChanged:
    """An admin activated or deactivated a wallet."""

    __version__ = 1

    wallet_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    status = String(required=True)
    changed_at = DateTime(required=True)
