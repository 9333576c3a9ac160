"""Pydantic request/response schemas for the storefront API.

These are external contracts (anti-corruption layer), separate from
internal Protean commands.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(BaseModel):
    full_name: str
    phone_number: str
    address_line1: str
    address_line2: str | None = None
    city: str
    state: str
    pincode: str
    country: str = "India"


class LineSchema(BaseModel):
    variant_id: str
    quantity: int = Field(ge=1)


class StatusResponse(BaseModel):
    success: bool = True
    message: str = "ok"


class IdResponse(BaseModel):
    success: bool = True
    id: str


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------
class RegisterCustomerRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=254)
    referral_code: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [{"name": "Asha Rao", "email": "asha@example.com", "referral_code": "REF9K2QX"}]
        }
    }


class BlockCustomerRequest(BaseModel):
    reason: str | None = None


# ---------------------------------------------------------------------------
# Wallets
# ---------------------------------------------------------------------------
class ValidateWalletRequest(BaseModel):
    amount: float = Field(gt=0)


class CreditWalletRequest(BaseModel):
    amount: float = Field(gt=0)
    description: str
    admin_ref: str
    idempotency_key: str | None = None


class AdjustWalletRequest(BaseModel):
    amount: float
    reason: str
    admin_ref: str


class WalletStatusRequest(BaseModel):
    is_active: bool


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------
class AddCategoryRequest(BaseModel):
    name: str
    description: str | None = None


class AddProductRequest(BaseModel):
    name: str
    category_id: str
    description: str | None = None


class ListingRequest(BaseModel):
    is_listed: bool


class AddVariantRequest(BaseModel):
    product_id: str
    name: str
    sku: str | None = None
    regular_price: float = Field(ge=0)
    sale_price: float | None = Field(default=None, ge=0)
    stock: int = Field(default=0, ge=0)


class UpdateStockRequest(BaseModel):
    stock: int


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------
class CreateCouponRequest(BaseModel):
    code: str
    name: str
    description: str | None = None
    discount_type: str = Field(description="percentage or fixed")
    discount_value: float = Field(ge=0)
    max_discount_amount: float | None = Field(default=None, ge=0)
    minimum_order_amount: float = Field(default=0.0, ge=0)
    start_date: datetime
    end_date: datetime
    usage_limit: int | None = Field(default=None, ge=1)
    usage_per_user: int = Field(default=1, ge=1)


class CouponStatusRequest(BaseModel):
    is_active: bool


class ValidateCouponRequest(BaseModel):
    code: str
    customer_id: str
    subtotal: float = Field(ge=0)


# ---------------------------------------------------------------------------
# Carts
# ---------------------------------------------------------------------------
class AddToCartRequest(BaseModel):
    variant_id: str
    quantity: int = Field(default=1, ge=1)


class UpdateCartQuantityRequest(BaseModel):
    quantity: int = Field(ge=1)


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
class PreviewCheckoutRequest(BaseModel):
    customer_id: str
    payment_method: str = "COD"
    coupon_code: str | None = None
    use_wallet: bool = False
    lines: list[LineSchema] | None = None


class PlaceOrderRequest(BaseModel):
    customer_id: str
    shipping_address: AddressSchema
    payment_method: str = "COD"
    coupon_code: str | None = None
    use_wallet: bool = False
    lines: list[LineSchema] | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "customer_id": "cust-001",
                    "payment_method": "RAZORPAY",
                    "use_wallet": True,
                    "coupon_code": "SAVE10",
                    "shipping_address": {
                        "full_name": "Asha Rao",
                        "phone_number": "9876543210",
                        "address_line1": "12 MG Road",
                        "city": "Bengaluru",
                        "state": "Karnataka",
                        "pincode": "560001",
                    },
                }
            ]
        }
    }


class VerifyPaymentRequest(BaseModel):
    gateway_order_id: str
    payment_id: str
    signature: str


class PaymentFailureRequest(BaseModel):
    reason: str | None = None


class RetryPaymentRequest(BaseModel):
    payment_method: str | None = None


class GatewayConfigRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str | None = None
    timeout: bool = False


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class CancelOrderRequest(BaseModel):
    customer_id: str
    reason: str | None = None


class CancelLineSchema(BaseModel):
    item_id: str
    quantity: int | None = Field(default=None, ge=1)


class CancelItemsRequest(BaseModel):
    customer_id: str
    items: list[CancelLineSchema] = Field(min_length=1)
    reason: str | None = None


class ReturnRequestSchema(BaseModel):
    customer_id: str
    reason: str = Field(min_length=1)
    item_id: str | None = None
    quantity: int | None = Field(default=None, ge=1)
    images: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Admin orders
# ---------------------------------------------------------------------------
class AdminCancelRequest(BaseModel):
    reason: str | None = None


class AdvanceStatusRequest(BaseModel):
    status: str
    reason: str | None = None


class ItemStatusRequest(BaseModel):
    status: str
    reason: str | None = None


class ApproveReturnRequest(BaseModel):
    admin_ref: str
    notes: str | None = None


class RejectReturnRequest(BaseModel):
    admin_ref: str
    reason: str = Field(min_length=1)
    notes: str | None = None


class RetryRefundRequest(BaseModel):
    admin_ref: str | None = None
    request_id: str | None = None

