"""Customer routes: registration, blocking and referral stats."""

from fastapi import APIRouter
from protean.utils.globals import current_domain

from storefront.api.schemas import BlockCustomerRequest, RegisterCustomerRequest, StatusResponse
from storefront.customer.account import BlockCustomer, UnblockCustomer
from storefront.customer.referrals import referral_stats, register_customer
from storefront.errors import conflicts_as_retryable

router = APIRouter(prefix="/customers", tags=["customers"])


@router.post("", status_code=201)
async def register(body: RegisterCustomerRequest) -> dict:
    return register_customer(body.name, body.email, referral_code=body.referral_code)


@router.put("/{customer_id}/block", response_model=StatusResponse)
async def block_customer(customer_id: str, body: BlockCustomerRequest) -> StatusResponse:
    with conflicts_as_retryable():
        current_domain.process(BlockCustomer(customer_id=customer_id, reason=body.reason), asynchronous=False)
    return StatusResponse(message="Customer blocked")


@router.put("/{customer_id}/unblock", response_model=StatusResponse)
async def unblock_customer(customer_id: str) -> StatusResponse:
    with conflicts_as_retryable():
        current_domain.process(UnblockCustomer(customer_id=customer_id), asynchronous=False)
    return StatusResponse(message="Customer unblocked")


@router.get("/{customer_id}/referrals")
async def get_referral_stats(customer_id: str) -> dict:
    return {"success": True, **referral_stats(customer_id)}
