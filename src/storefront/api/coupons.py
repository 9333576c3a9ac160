"""Coupon routes: admin creation and toggling, shopper validation."""

from fastapi import APIRouter
from protean.utils.globals import current_domain

from storefront.api.schemas import (
    CouponStatusRequest,
    CreateCouponRequest,
    IdResponse,
    StatusResponse,
    ValidateCouponRequest,
)
from storefront.coupon.evaluation import evaluate_coupon
from storefront.coupon.management import CreateCoupon, SetCouponStatus
from storefront.errors import conflicts_as_retryable

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("", status_code=201, response_model=IdResponse)
async def create_coupon(body: CreateCouponRequest) -> IdResponse:
    coupon_id = current_domain.process(CreateCoupon(**body.model_dump()), asynchronous=False)
    return IdResponse(id=coupon_id)


@router.put("/{coupon_id}/status", response_model=StatusResponse)
async def set_coupon_status(coupon_id: str, body: CouponStatusRequest) -> StatusResponse:
    with conflicts_as_retryable():
        current_domain.process(SetCouponStatus(coupon_id=coupon_id, is_active=body.is_active), asynchronous=False)
    return StatusResponse(message="Coupon activated" if body.is_active else "Coupon deactivated")


@router.post("/validate")
async def validate_coupon(body: ValidateCouponRequest) -> dict:
    result = evaluate_coupon(body.code, body.customer_id, body.subtotal)
    return {"success": True, "message": "Coupon applied", **result}
