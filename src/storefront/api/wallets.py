"""Wallet routes: balance and history for customers, credits and adjustments for admins."""

from datetime import date

from fastapi import APIRouter, Query

from storefront.api.schemas import (
    AdjustWalletRequest,
    CreditWalletRequest,
    StatusResponse,
    ValidateWalletRequest,
    WalletStatusRequest,
)
from storefront.wallet import service as wallet

router = APIRouter(prefix="/wallets", tags=["wallets"])


# Declared before the ``/{customer_id}`` routes so "stats" is not taken for an id
@router.get("/stats")
async def stats() -> dict:
    return {"success": True, **wallet.wallet_stats()}


@router.get("/{customer_id}")
async def get_balance(customer_id: str) -> dict:
    return {"success": True, "balance": wallet.get_balance(customer_id)}


@router.get("/{customer_id}/history")
async def get_history(
    customer_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(wallet.DEFAULT_HISTORY_LIMIT, ge=1, le=100),
    type: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict:
    result = wallet.history(
        customer_id,
        page=page,
        limit=limit,
        transaction_type=type,
        start_date=start_date,
        end_date=end_date,
    )
    return {"success": True, **result}


@router.post("/{customer_id}/validate")
async def validate_payment(customer_id: str, body: ValidateWalletRequest) -> dict:
    return {"success": True, **wallet.validate_payment(customer_id, body.amount)}


@router.post("/{customer_id}/credit")
async def credit(customer_id: str, body: CreditWalletRequest) -> dict:
    receipt = wallet.credit(
        customer_id,
        body.amount,
        body.description,
        admin_ref=body.admin_ref,
        idempotency_key=body.idempotency_key,
    )
    return {"success": True, "message": "Wallet credited", **receipt}


@router.post("/{customer_id}/adjust")
async def adjust(customer_id: str, body: AdjustWalletRequest) -> dict:
    receipt = wallet.adjust(customer_id, body.amount, body.reason, body.admin_ref)
    return {"success": True, "message": "Wallet adjusted", **receipt}


@router.put("/{customer_id}/status", response_model=StatusResponse)
async def set_status(customer_id: str, body: WalletStatusRequest) -> StatusResponse:
    wallet.set_wallet_status(customer_id, body.is_active)
    return StatusResponse(message="Wallet activated" if body.is_active else "Wallet deactivated")
