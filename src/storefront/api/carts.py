"""Cart routes, one cart per customer."""

from fastapi import APIRouter
from protean.utils.globals import current_domain

from storefront.api.schemas import AddToCartRequest, StatusResponse, UpdateCartQuantityRequest
from storefront.cart.items import AddToCart, RemoveFromCart, UpdateCartQuantity, view_cart
from storefront.errors import conflicts_as_retryable

router = APIRouter(prefix="/carts", tags=["carts"])


def _process(command):
    with conflicts_as_retryable():
        return current_domain.process(command, asynchronous=False)


@router.get("/{customer_id}")
async def get_cart(customer_id: str) -> dict:
    return {"success": True, **view_cart(customer_id)}


@router.post("/{customer_id}/items", response_model=StatusResponse)
async def add_item(customer_id: str, body: AddToCartRequest) -> StatusResponse:
    _process(AddToCart(customer_id=customer_id, variant_id=body.variant_id, quantity=body.quantity))
    return StatusResponse(message="Item added to cart")


@router.put("/{customer_id}/items/{variant_id}", response_model=StatusResponse)
async def update_item(customer_id: str, variant_id: str, body: UpdateCartQuantityRequest) -> StatusResponse:
    _process(UpdateCartQuantity(customer_id=customer_id, variant_id=variant_id, quantity=body.quantity))
    return StatusResponse(message="Cart updated")


@router.delete("/{customer_id}/items/{variant_id}", response_model=StatusResponse)
async def remove_item(customer_id: str, variant_id: str) -> StatusResponse:
    _process(RemoveFromCart(customer_id=customer_id, variant_id=variant_id))
    return StatusResponse(message="Item removed from cart")
