"""Storefront HTTP API package."""

from storefront.api.carts import router as cart_router
from storefront.api.catalogue import router as catalogue_router
from storefront.api.checkout import router as checkout_router
from storefront.api.coupons import router as coupon_router
from storefront.api.customers import router as customer_router
from storefront.api.errors import register_error_handlers
from storefront.api.orders import admin_router as admin_order_router
from storefront.api.orders import router as order_router
from storefront.api.wallets import router as wallet_router

__all__ = [
    "admin_order_router",
    "cart_router",
    "catalogue_router",
    "checkout_router",
    "coupon_router",
    "customer_router",
    "order_router",
    "register_error_handlers",
    "wallet_router",
]
