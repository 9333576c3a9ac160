"""Wallet aggregate (CQRS) — a per-customer store-credit ledger.

The balance is a cached running total over an append-only list of
transactions. Balance and transactions live in one aggregate so a single save
writes both; the aggregate version makes that save a compare-and-swap.

Invariants:
    balance >= 0
    balance == sum(credits) - sum(debits)
    balance == balance_after of the newest transaction
"""

import json
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from protean import atomic_change
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, Integer, String, Text

from storefront.domain import storefront
from storefront.errors import InsufficientFunds, WalletInactive
from storefront.wallet.events import WalletCredited, WalletDebited, WalletStatusChanged

_TOLERANCE = 0.005


class TransactionType(Enum):
    CREDIT = "credit"
    DEBIT = "debit"


def generate_transaction_id() -> str:
    timestamp = int(datetime.now(UTC).timestamp() * 1000)
    return f"TXN{timestamp}{uuid4().hex[:12].upper()}"


def _validate_amount(amount):
    if isinstance(amount, bool) or not isinstance(amount, int | float):
        raise ValidationError({"amount": ["Amount must be a number"]})
    if amount <= 0:
        raise ValidationError({"amount": ["Amount must be greater than 0"]})
    return round(float(amount), 2)


@storefront.entity(part_of="Wallet")
class WalletTransaction:
    """One immutable ledger line. The sign of ``amount`` is implied by the type."""

    transaction_id = String(required=True, max_length=30)
    sequence = Integer(required=True, min_value=1)
    transaction_type = String(required=True, choices=TransactionType)
    amount = Float(required=True, min_value=0.01)
    description = String(required=True, max_length=500)
    order_ref = String(max_length=100)
    admin_ref = String(max_length=100)
    idempotency_key = String(max_length=255)
    balance_after = Float(required=True, min_value=0.0)
    metadata = Text()  # JSON object
    created_at = DateTime(required=True)

    @property
    def signed_amount(self):
        return self.amount if self.transaction_type == TransactionType.CREDIT.value else -self.amount

    def to_dict(self):
        return {
            "transaction_id": self.transaction_id,
            "type": self.transaction_type,
            "amount": self.amount,
            "description": self.description,
            "order_ref": self.order_ref,
            "admin_ref": self.admin_ref,
            "balance_after": self.balance_after,
            "metadata": json.loads(self.metadata) if self.metadata else {},
            "created_at": self.created_at,
        }


@storefront.aggregate
class Wallet:
    """Store credit for one customer; the wallet id is the customer id."""

    customer_id = Identifier(required=True)
    balance = Float(default=0.0, min_value=0.0)
    is_active = Boolean(default=True)
    transactions = HasMany(WalletTransaction)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def open(cls, customer_id):
        now = datetime.now(UTC)
        return cls(
            id=str(customer_id),
            customer_id=str(customer_id),
            balance=0.0,
            is_active=True,
            created_at=now,
            updated_at=now,
        )

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def ordered_transactions(self, newest_first=False):
        return sorted(self.transactions, key=lambda t: t.sequence, reverse=newest_first)

    def latest_transaction(self):
        if not self.transactions:
            return None
        return max(self.transactions, key=lambda t: t.sequence)

    def verify_ledger(self):
        """Replay the log and compare it with the cached balance."""
        replayed = round(sum(t.signed_amount for t in self.transactions), 2)
        if abs(replayed - (self.balance or 0.0)) > _TOLERANCE:
            raise ValidationError({"balance": ["Wallet balance does not match its transaction log"]})

        latest = self.latest_transaction()
        if latest is not None and abs(latest.balance_after - (self.balance or 0.0)) > _TOLERANCE:
            raise ValidationError({"balance": ["Wallet balance does not match the latest transaction"]})

    def find_by_idempotency_key(self, key):
        if not key:
            return None
        return next((t for t in self.transactions if t.idempotency_key == key), None)

    # -------------------------------------------------------------------
    # Ledger operations
    # -------------------------------------------------------------------
    def _append(self, transaction_type, amount, description, order_ref, admin_ref, idempotency_key, metadata):
        now = datetime.now(UTC)
        latest = self.latest_transaction()
        delta = amount if transaction_type == TransactionType.CREDIT else -amount
        new_balance = round((self.balance or 0.0) + delta, 2)

        transaction = WalletTransaction(
            transaction_id=generate_transaction_id(),
            sequence=(latest.sequence + 1) if latest else 1,
            transaction_type=transaction_type.value,
            amount=amount,
            description=description,
            order_ref=order_ref,
            admin_ref=admin_ref,
            idempotency_key=idempotency_key,
            balance_after=new_balance,
            metadata=json.dumps(metadata) if metadata else None,
            created_at=now,
        )
        with atomic_change(self):
            self.add_transactions(transaction)
            self.balance = new_balance
            self.updated_at = now
        self.verify_ledger()
        return transaction

    def credit(self, amount, description, order_ref=None, admin_ref=None, idempotency_key=None, metadata=None):
        """Add money. A repeated ``idempotency_key`` returns the original transaction."""
        amount = _validate_amount(amount)
        if not self.is_active:
            raise WalletInactive(self.customer_id)

        existing = self.find_by_idempotency_key(idempotency_key)
        if existing is not None:
            return existing, True

        transaction = self._append(
            TransactionType.CREDIT, amount, description, order_ref, admin_ref, idempotency_key, metadata
        )
        self.raise_(
            WalletCredited(
                wallet_id=self.id,
                customer_id=self.customer_id,
                transaction_id=transaction.transaction_id,
                amount=amount,
                balance_after=transaction.balance_after,
                description=description,
                order_ref=order_ref,
                admin_ref=admin_ref,
                credited_at=transaction.created_at,
            )
        )
        return transaction, False

    def debit(self, amount, description, order_ref=None, admin_ref=None, idempotency_key=None, metadata=None):
        """Take money out. Never lets the balance drop below zero."""
        amount = _validate_amount(amount)
        if not self.is_active:
            raise WalletInactive(self.customer_id)

        existing = self.find_by_idempotency_key(idempotency_key)
        if existing is not None:
            return existing, True

        if (self.balance or 0.0) < amount:
            raise InsufficientFunds(balance=self.balance or 0.0, required=amount)

        transaction = self._append(
            TransactionType.DEBIT, amount, description, order_ref, admin_ref, idempotency_key, metadata
        )
        self.raise_(
            WalletDebited(
                wallet_id=self.id,
                customer_id=self.customer_id,
                transaction_id=transaction.transaction_id,
                amount=amount,
                balance_after=transaction.balance_after,
                description=description,
                order_ref=order_ref,
                admin_ref=admin_ref,
                debited_at=transaction.created_at,
            )
        )
        return transaction, False

    def set_active(self, active):
        if bool(self.is_active) == bool(active):
            state = "active" if active else "deactivated"
            raise ValidationError({"wallet": [f"Wallet is already {state}"]})

        now = datetime.now(UTC)
        self.is_active = bool(active)
        self.updated_at = now
        self.raise_(
            WalletStatusChanged(
                wallet_id=self.id,
                customer_id=self.customer_id,
                status="active" if active else "inactive",
                changed_at=now,
            )
        )
