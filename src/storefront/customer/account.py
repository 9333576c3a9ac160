"""Customer blocking — commands and handler."""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.customer.customer import Customer
from storefront.domain import storefront


@storefront.command(part_of="Customer")
class BlockCustomer:
    customer_id: Identifier(required=True)
    reason: String(max_length=500)


@storefront.command(part_of="Customer")
class UnblockCustomer:
    customer_id: Identifier(required=True)


@storefront.command_handler(part_of=Customer)
class CustomerAccountHandler:
    @handle(BlockCustomer)
    def block_customer(self, command):
        repo = current_domain.repository_for(Customer)
        customer = repo.get(command.customer_id)
        customer.block(reason=command.reason)
        repo.add(customer)

    @handle(UnblockCustomer)
    def unblock_customer(self, command):
        repo = current_domain.repository_for(Customer)
        customer = repo.get(command.customer_id)
        customer.unblock()
        repo.add(customer)
