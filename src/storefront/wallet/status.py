"""Wallet activation — command and handler."""

from protean import handle
from protean.fields import Boolean, Identifier
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.wallet.ledger import load_wallet
from storefront.wallet.wallet import Wallet


@storefront.command(part_of="Wallet")
class SetWalletStatus:
    """Activate or deactivate a customer's wallet."""

    customer_id = Identifier(required=True)
    is_active = Boolean(required=True)


@storefront.command_handler(part_of=Wallet)
class WalletStatusHandler:
    @handle(SetWalletStatus)
    def set_wallet_status(self, command):
        wallet = load_wallet(command.customer_id, create=True)
        wallet.set_active(command.is_active)
        current_domain.repository_for(Wallet).add(wallet)
