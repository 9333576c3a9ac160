"""Wallet ledger entry points used by checkout, refunds, referrals and the API.

Mutations dispatch commands so each runs in its own unit of work; reads go
straight to the repository.
"""

import json
import math
from datetime import UTC, date, datetime, time

from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from storefront.customer.customer import Customer
from storefront.errors import conflicts_as_retryable
from storefront.wallet.ledger import AdjustWallet, CreditWallet, DebitWallet
from storefront.wallet.status import SetWalletStatus
from storefront.wallet.wallet import TransactionType, Wallet

DEFAULT_HISTORY_LIMIT = 20


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def credit(customer_id, amount, description, order_ref=None, admin_ref=None, idempotency_key=None, metadata=None):
    """Credit the wallet; returns ``{transaction_id, new_balance, duplicate}``."""
    with conflicts_as_retryable():
        return current_domain.process(
            CreditWallet(
                customer_id=str(customer_id),
                amount=amount,
                description=description,
                order_ref=order_ref,
                admin_ref=admin_ref,
                idempotency_key=idempotency_key,
                metadata=json.dumps(metadata) if metadata else None,
            ),
            asynchronous=False,
        )


def debit(customer_id, amount, description, order_ref=None, idempotency_key=None):
    """Debit the wallet; raises InsufficientFunds when the balance is short."""
    with conflicts_as_retryable():
        return current_domain.process(
            DebitWallet(
                customer_id=str(customer_id),
                amount=amount,
                description=description,
                order_ref=order_ref,
                idempotency_key=idempotency_key,
            ),
            asynchronous=False,
        )


def adjust(customer_id, amount, reason, admin_ref):
    with conflicts_as_retryable():
        return current_domain.process(
            AdjustWallet(customer_id=str(customer_id), amount=amount, reason=reason, admin_ref=admin_ref),
            asynchronous=False,
        )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _existing_wallet(customer_id):
    """The customer's wallet, or None if they never used it. Unknown customers raise."""
    current_domain.repository_for(Customer).get(customer_id)
    try:
        return current_domain.repository_for(Wallet).get(str(customer_id))
    except ObjectNotFoundError:
        return None


def get_balance(customer_id) -> float:
    wallet = _existing_wallet(customer_id)
    return wallet.balance if wallet else 0.0


def validate_payment(customer_id, amount) -> dict:
    """Read-only check used to build a friendly message before debiting."""
    wallet = _existing_wallet(customer_id)
    balance = wallet.balance if wallet else 0.0

    if wallet is not None and not wallet.is_active:
        return {
            "valid": False,
            "message": "Wallet is deactivated",
            "current_balance": balance,
            "required_amount": amount,
        }
    if balance < amount:
        return {
            "valid": False,
            "message": f"Insufficient wallet balance. Available: {balance:.2f}, Required: {amount:.2f}",
            "current_balance": balance,
            "required_amount": amount,
        }
    return {
        "valid": True,
        "message": "Sufficient balance",
        "current_balance": balance,
        "required_amount": amount,
    }


def _as_utc(value):
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    return datetime.combine(value, time.min, tzinfo=UTC)


def history(customer_id, page=1, limit=DEFAULT_HISTORY_LIMIT, transaction_type=None, start_date=None, end_date=None):
    """Paginated transactions, newest first, optionally filtered by type and date range.

    ``end_date`` given as a plain date includes the whole day.
    """
    page = max(int(page or 1), 1)
    limit = max(int(limit or DEFAULT_HISTORY_LIMIT), 1)

    wallet = _existing_wallet(customer_id)
    transactions = wallet.ordered_transactions(newest_first=True) if wallet else []

    if transaction_type:
        if transaction_type not in {t.value for t in TransactionType}:
            raise ValidationError({"type": [f"Unknown transaction type `{transaction_type}`"]})
        wanted = transaction_type
        transactions = [t for t in transactions if t.transaction_type == wanted]
    if start_date:
        start = _as_utc(start_date)
        transactions = [t for t in transactions if _as_utc(t.created_at) >= start]
    if end_date:
        end = _as_utc(end_date)
        if isinstance(end_date, date) and not isinstance(end_date, datetime):
            end = datetime.combine(end_date, time.max, tzinfo=UTC)
        transactions = [t for t in transactions if _as_utc(t.created_at) <= end]

    total = len(transactions)
    offset = (page - 1) * limit
    return {
        "balance": wallet.balance if wallet else 0.0,
        "is_active": wallet.is_active if wallet else True,
        "transactions": [t.to_dict() for t in transactions[offset : offset + limit]],
        "pagination": {
            "current_page": page,
            "total_pages": math.ceil(total / limit) if total else 0,
            "total_transactions": total,
            "limit": limit,
        },
    }


def wallet_stats() -> dict:
    """Admin dashboard totals across all wallets."""
    customers = current_domain.repository_for(Customer)._dao.query.all().items
    wallets = current_domain.repository_for(Wallet)._dao.query.all().items
    return {
        "total_customers": len(customers),
        "total_wallet_balance": round(sum(w.balance or 0.0 for w in wallets), 2),
        "active_wallets": sum(1 for w in wallets if w.is_active),
        "wallets_with_balance": sum(1 for w in wallets if (w.balance or 0.0) > 0),
    }


def set_wallet_status(customer_id, active):
    with conflicts_as_retryable():
        current_domain.process(
            SetWalletStatus(customer_id=str(customer_id), is_active=active),
            asynchronous=False,
        )
