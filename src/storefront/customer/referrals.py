"""Referral program — linking a new customer to a referrer and paying both bonuses.

The link (referred_by on the new customer, counters on the referrer) is
committed first. Wallet bonuses follow as independent credits with
idempotency keys, so a failed bonus can be retried without paying twice.
"""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.customer.customer import Customer
from storefront.customer.registration import RegisterCustomer
from storefront.domain import storefront
from storefront.errors import FOLLOW_UP_ERRORS, conflicts_as_retryable
from storefront.wallet import service as wallet

logger = structlog.get_logger(__name__)

REFERRER_BONUS = 200.0
REFEREE_BONUS = 100.0
MAX_REFERRALS_PER_DAY = 10


@storefront.command(part_of="Customer")
class ApplyReferral:
    customer_id: Identifier(required=True)
    referral_code: String(required=True, max_length=20)


def _referrals_today(repo, referrer_id):
    today = datetime.now(UTC).date()
    referred = repo._dao.query.filter(referred_by=str(referrer_id)).all().items
    return sum(1 for c in referred if c.referred_at and c.referred_at.date() == today)


@storefront.command_handler(part_of=Customer)
class ReferralHandler:
    @handle(ApplyReferral)
    def apply_referral(self, command):
        repo = current_domain.repository_for(Customer)
        customer = repo.get(command.customer_id)

        code = command.referral_code.strip().upper()
        matches = repo._dao.query.filter(referral_code=code).all().items
        if not matches:
            raise ValidationError({"referral_code": ["Invalid referral code"]})
        referrer = repo.get(matches[0].id)

        if _referrals_today(repo, referrer.id) >= MAX_REFERRALS_PER_DAY:
            raise ValidationError({"referral_code": ["This referral code has reached its daily limit"]})

        customer.accept_referral_from(referrer, referrer_bonus=REFERRER_BONUS, referee_bonus=REFEREE_BONUS)
        repo.add(referrer)
        repo.add(customer)
        return {"referrer_id": str(referrer.id), "referrer_name": referrer.name, "referred_name": customer.name}


def apply_referral(customer_id, referral_code) -> dict:
    """Link the customer to the code's owner, then pay both wallet bonuses."""
    with conflicts_as_retryable():
        link = current_domain.process(
            ApplyReferral(customer_id=str(customer_id), referral_code=referral_code),
            asynchronous=False,
        )

    result = {"success": True, "referrer_id": link["referrer_id"], "bonus_errors": []}
    bonuses = (
        (
            link["referrer_id"],
            REFERRER_BONUS,
            f"Referral bonus for inviting {link['referred_name']}",
            f"referral-bonus:{customer_id}",
        ),
        (
            str(customer_id),
            REFEREE_BONUS,
            "Welcome bonus for joining via referral",
            f"referral-welcome:{customer_id}",
        ),
    )
    for recipient, amount, description, key in bonuses:
        try:
            wallet.credit(recipient, amount, description, idempotency_key=key)
        except FOLLOW_UP_ERRORS as exc:
            logger.error(
                "Referral bonus credit failed",
                recipient_id=recipient,
                referred_id=str(customer_id),
                amount=amount,
                error=str(exc),
            )
            result["bonus_errors"].append(f"Bonus of {amount:.2f} for {recipient} could not be credited")

    logger.info("Referral applied", referrer_id=link["referrer_id"], referred_id=str(customer_id))
    return result


def register_customer(name, email, referral_code=None) -> dict:
    """Create the account; a bad referral code never blocks registration."""
    customer_id = current_domain.process(RegisterCustomer(name=name, email=email), asynchronous=False)
    result = {"success": True, "customer_id": customer_id}

    if referral_code:
        try:
            result["referral"] = apply_referral(customer_id, referral_code)
        except ValidationError as exc:
            logger.warning("Referral rejected at registration", customer_id=customer_id, errors=exc.messages)
            result["referral_error"] = next(iter(exc.messages.values()))[0]
    return result


def referral_stats(customer_id) -> dict:
    customer = current_domain.repository_for(Customer).get(customer_id)
    return {
        "referral_code": customer.referral_code,
        "total_referrals": customer.referral_count or 0,
        "total_rewards": customer.referral_rewards or 0.0,
    }
