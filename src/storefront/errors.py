"""Business-rule failures raised across the storefront domain.

Input errors reuse protean's ``ValidationError`` and missing records surface as
protean's ``ObjectNotFoundError``. The classes here add the context callers
need to adjust and retry: the stock still available, the wallet balance, or
the state an entity is currently in.
"""

from contextlib import contextmanager

from protean.exceptions import ExpectedVersionError, ObjectNotFoundError, ValidationError


class InsufficientStock(ValidationError):
    def __init__(self, variant_id, requested, available, name=None):
        self.variant_id = str(variant_id)
        self.requested = requested
        self.available = available
        label = name or "this item"
        super().__init__({"quantity": [f"Only {available} units of {label} are available"]})


class InsufficientFunds(ValidationError):
    def __init__(self, balance, required):
        self.balance = balance
        self.required = required
        self.shortfall = round(required - balance, 2)
        super().__init__(
            {"wallet": [f"Insufficient wallet balance. Available: {balance:.2f}, required: {required:.2f}"]}
        )


class WalletInactive(ValidationError):
    def __init__(self, customer_id):
        self.customer_id = str(customer_id)
        super().__init__({"wallet": ["Wallet is deactivated"]})


class InvalidTransition(ValidationError):
    """A state change the transition table does not allow.

    ``current`` and ``attempted`` are the raw status values so they can be
    rendered as-is in API responses.
    """

    def __init__(self, current, attempted, message=None, field="status"):
        self.current = getattr(current, "value", current)
        self.attempted = getattr(attempted, "value", attempted)
        super().__init__({field: [message or f"Cannot transition from {self.current} to {self.attempted}"]})


class ExternalServiceError(Exception):
    """An outbound call failed or timed out. Safe to retry."""

    def __init__(self, service, message, retryable=True):
        self.service = service
        self.message = message
        self.retryable = retryable
        super().__init__(f"{service}: {message}")


class ConcurrencyConflict(Exception):
    """Another writer saved the same aggregate first. Reload and retry."""

    def __init__(self, message="The record was modified concurrently, please retry"):
        self.message = message
        super().__init__(message)


@contextmanager
def conflicts_as_retryable():
    """Translate protean's optimistic version failures into ConcurrencyConflict."""
    try:
        yield
    except ExpectedVersionError as exc:
        raise ConcurrencyConflict(str(exc) or ConcurrencyConflict().message) from exc


# Failures a forward-only follow-up step (refund, bonus, coupon counter, cart
# clearing) logs and reports instead of raising.
FOLLOW_UP_ERRORS = (ValidationError, ObjectNotFoundError, ConcurrencyConflict, ExternalServiceError)
