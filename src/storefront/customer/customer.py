"""Customer aggregate — the account that owns a cart, orders and a wallet."""

import secrets
import string
from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String

from storefront.customer.events import (
    CustomerBlocked,
    CustomerRegistered,
    CustomerUnblocked,
    ReferralRecorded,
)
from storefront.domain import storefront

REFERRAL_CODE_LENGTH = 8
_REFERRAL_ALPHABET = string.ascii_uppercase + string.digits


def generate_referral_code() -> str:
    return "".join(secrets.choice(_REFERRAL_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


@storefront.aggregate
class Customer:
    """A registered shopper.

    Referral bookkeeping lives here: the code the customer shares, who referred
    them, and how many referrals and how much bonus they have earned.
    """

    name: String(required=True, max_length=100)
    email: String(required=True, max_length=254, unique=True)
    referral_code: String(max_length=REFERRAL_CODE_LENGTH, unique=True)
    referred_by: Identifier()
    referred_at: DateTime()
    referral_count: Integer(default=0)
    referral_rewards: Float(default=0.0)
    is_blocked: Boolean(default=False)
    registered_at: DateTime()

    @classmethod
    def register(cls, name, email, referral_code=None):
        now = datetime.now(UTC)
        customer = cls(
            name=name.strip(),
            email=email.strip().lower(),
            referral_code=referral_code or generate_referral_code(),
            registered_at=now,
        )
        customer.raise_(
            CustomerRegistered(
                customer_id=customer.id,
                name=customer.name,
                email=customer.email,
                referral_code=customer.referral_code,
                registered_at=now,
            )
        )
        return customer

    def block(self, reason=None):
        if self.is_blocked:
            raise ValidationError({"customer": ["Customer is already blocked"]})
        self.is_blocked = True
        self.raise_(CustomerBlocked(customer_id=self.id, reason=reason))

    def unblock(self):
        if not self.is_blocked:
            raise ValidationError({"customer": ["Customer is not blocked"]})
        self.is_blocked = False
        self.raise_(CustomerUnblocked(customer_id=self.id))

    def accept_referral_from(self, referrer, referrer_bonus, referee_bonus):
        """Link this (new) customer to ``referrer`` and book the referrer's reward."""
        if referrer.is_blocked:
            raise ValidationError({"referral_code": ["Invalid referral code"]})
        if str(referrer.id) == str(self.id):
            raise ValidationError({"referral_code": ["You cannot use your own referral code"]})
        if self.referred_by:
            raise ValidationError({"referral_code": ["A referral code has already been applied"]})

        now = datetime.now(UTC)
        self.referred_by = referrer.id
        self.referred_at = now
        referrer.referral_count = (referrer.referral_count or 0) + 1
        referrer.referral_rewards = (referrer.referral_rewards or 0.0) + referrer_bonus

        referrer.raise_(
            ReferralRecorded(
                referrer_id=referrer.id,
                referred_id=self.id,
                referrer_bonus=referrer_bonus,
                referee_bonus=referee_bonus,
                referred_at=now,
            )
        )
