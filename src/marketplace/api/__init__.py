"""Marketplace API package."""

from marketplace.api.errors import register_exception_handlers
from marketplace.api.routes import (
    cart_router,
    order_router,
    payment_router,
    product_router,
    promotion_router,
    vendor_router,
    wallet_router,
)

__all__ = [
    "cart_router",
    "order_router",
    "payment_router",
    "product_router",
    "promotion_router",
    "register_exception_handlers",
    "vendor_router",
    "wallet_router",
]
