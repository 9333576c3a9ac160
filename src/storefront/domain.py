"""Storefront bounded context — orders, wallet ledger, stock and checkout.

Customers pay for orders through cash on delivery, the Razorpay gateway or
their store wallet. Order and item statuses follow explicit transition
tables; cancellations and returns restore stock and credit the wallet.
"""

import structlog
from protean.domain import Domain

storefront = Domain(name="storefront")

logger = structlog.get_logger(__name__)
