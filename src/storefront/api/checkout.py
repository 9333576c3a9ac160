"""Checkout routes: preview, place, and the gateway payment round trip."""

import os

from fastapi import APIRouter, HTTPException, Response

from storefront.api.schemas import (
    GatewayConfigRequest,
    PaymentFailureRequest,
    PlaceOrderRequest,
    PreviewCheckoutRequest,
    RetryPaymentRequest,
    VerifyPaymentRequest,
)
from storefront.checkout import orchestrator
from storefront.payments.gateway import get_gateway
from storefront.payments.gateway.fake_adapter import FakeGateway

router = APIRouter(prefix="/checkout", tags=["checkout"])


def _lines(body):
    return [line.model_dump() for line in body.lines] if body.lines is not None else None


@router.post("/preview")
async def preview(body: PreviewCheckoutRequest) -> dict:
    quote = orchestrator.preview_checkout(
        body.customer_id,
        body.payment_method,
        coupon_code=body.coupon_code,
        use_wallet=body.use_wallet,
        lines=_lines(body),
    )
    return {"success": True, **quote}


@router.post("", status_code=201)
async def place_order(body: PlaceOrderRequest) -> dict:
    return orchestrator.place_order_from_cart(
        body.customer_id,
        body.shipping_address.model_dump(),
        body.payment_method,
        coupon_code=body.coupon_code,
        use_wallet=body.use_wallet,
        lines=_lines(body),
    )


@router.post("/{checkout_id}/verify")
async def verify_payment(checkout_id: str, body: VerifyPaymentRequest, response: Response) -> dict:
    result = orchestrator.complete_gateway_payment(
        checkout_id,
        body.gateway_order_id,
        body.payment_id,
        body.signature,
    )
    if not result["success"]:
        # Paid, but voided: the body carries the wallet refund
        response.status_code = 409
    return result


@router.post("/{checkout_id}/failure")
async def payment_failed(checkout_id: str, body: PaymentFailureRequest) -> dict:
    return orchestrator.record_payment_failure(checkout_id, body.reason)


@router.post("/{checkout_id}/retry")
async def retry_payment(checkout_id: str, body: RetryPaymentRequest) -> dict:
    return orchestrator.retry_payment(checkout_id, payment_method=body.payment_method)


@router.post("/gateway/configure")
async def configure_gateway(body: GatewayConfigRequest) -> dict:
    """Switch the fake gateway between success, failure and timeout (non-production only)."""
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(
        should_succeed=body.should_succeed,
        failure_reason=body.failure_reason or "Gateway unavailable",
        timeout=body.timeout,
    )
    return {
        "success": True,
        "gateway": type(gateway).__name__,
        "should_succeed": gateway.should_succeed,
        "failure_reason": gateway.failure_reason,
        "timeout": gateway.timeout,
    }
