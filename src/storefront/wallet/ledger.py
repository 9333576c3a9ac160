"""Wallet ledger — credit, debit and admin adjustment commands and handler.

Each command loads (or lazily opens) exactly one wallet, applies one ledger
operation and saves it, so a balance change and its transaction are always
written together.
"""

import json

from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from storefront.customer.customer import Customer
from storefront.domain import storefront
from storefront.wallet.wallet import Wallet


@storefront.command(part_of="Wallet")
class CreditWallet:
    customer_id = Identifier(required=True)
    amount = Float(required=True)
    description = String(required=True, max_length=500)
    order_ref = String(max_length=100)
    admin_ref = String(max_length=100)
    idempotency_key = String(max_length=255)
    metadata = Text()


@storefront.command(part_of="Wallet")
class DebitWallet:
    customer_id = Identifier(required=True)
    amount = Float(required=True)
    description = String(required=True, max_length=500)
    order_ref = String(max_length=100)
    idempotency_key = String(max_length=255)


@storefront.command(part_of="Wallet")
class AdjustWallet:
    """Admin correction. Positive amounts credit, negative amounts debit."""

    customer_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String(required=True, max_length=255)
    admin_ref = String(required=True, max_length=100)


def load_wallet(customer_id, create=False):
    """Fetch the customer's wallet, opening an empty one when ``create`` is set.

    Raises ObjectNotFoundError when the customer does not exist.
    """
    current_domain.repository_for(Customer).get(customer_id)
    try:
        return current_domain.repository_for(Wallet).get(str(customer_id))
    except ObjectNotFoundError:
        if not create:
            raise
        return Wallet.open(customer_id)


def _receipt(wallet, transaction, duplicate):
    return {
        "transaction_id": transaction.transaction_id,
        "new_balance": wallet.balance,
        "duplicate": duplicate,
    }


@storefront.command_handler(part_of=Wallet)
class WalletLedgerHandler:
    @handle(CreditWallet)
    def credit_wallet(self, command):
        wallet = load_wallet(command.customer_id, create=True)
        metadata = json.loads(command.metadata) if command.metadata else None
        transaction, duplicate = wallet.credit(
            amount=command.amount,
            description=command.description,
            order_ref=command.order_ref,
            admin_ref=command.admin_ref,
            idempotency_key=command.idempotency_key,
            metadata=metadata,
        )
        if not duplicate:
            current_domain.repository_for(Wallet).add(wallet)
        return _receipt(wallet, transaction, duplicate)

    @handle(DebitWallet)
    def debit_wallet(self, command):
        wallet = load_wallet(command.customer_id, create=True)
        transaction, duplicate = wallet.debit(
            amount=command.amount,
            description=command.description,
            order_ref=command.order_ref,
            idempotency_key=command.idempotency_key,
        )
        if not duplicate:
            current_domain.repository_for(Wallet).add(wallet)
        return _receipt(wallet, transaction, duplicate)

    @handle(AdjustWallet)
    def adjust_wallet(self, command):
        if not command.amount:
            raise ValidationError({"amount": ["Adjustment amount cannot be zero"]})
        if not command.reason.strip():
            raise ValidationError({"reason": ["Adjustment reason is required"]})

        wallet = load_wallet(command.customer_id, create=True)
        description = f"Admin adjustment: {command.reason.strip()}"
        if command.amount > 0:
            transaction, _ = wallet.credit(
                amount=command.amount,
                description=description,
                admin_ref=command.admin_ref,
            )
        else:
            transaction, _ = wallet.debit(
                amount=abs(command.amount),
                description=description,
                admin_ref=command.admin_ref,
            )
        current_domain.repository_for(Wallet).add(wallet)
        return _receipt(wallet, transaction, False)
