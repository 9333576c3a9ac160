"""Customer registration — command and handler."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import String
from protean.utils.globals import current_domain

from storefront.customer.customer import Customer, generate_referral_code
from storefront.domain import storefront

_MAX_CODE_ATTEMPTS = 10


@storefront.command(part_of="Customer")
class RegisterCustomer:
    """Create a new customer account."""

    name: String(required=True, max_length=100)
    email: String(required=True, max_length=254)


def _unused_referral_code(repo):
    for _ in range(_MAX_CODE_ATTEMPTS):
        code = generate_referral_code()
        if not repo._dao.query.filter(referral_code=code).all().items:
            return code
    raise ValidationError({"referral_code": ["Could not allocate a unique referral code"]})


@storefront.command_handler(part_of=Customer)
class RegisterCustomerHandler:
    @handle(RegisterCustomer)
    def register_customer(self, command):
        repo = current_domain.repository_for(Customer)
        email = command.email.strip().lower()
        if repo._dao.query.filter(email=email).all().items:
            raise ValidationError({"email": ["A customer with this email already exists"]})

        customer = Customer.register(
            name=command.name,
            email=email,
            referral_code=_unused_referral_code(repo),
        )
        repo.add(customer)
        return str(customer.id)
