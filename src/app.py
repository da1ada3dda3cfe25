"""Marketplace FastAPI application.

Web server that processes commands synchronously via HTTP. Every request
under a marketplace route prefix runs inside the marketplace domain context.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects the config overlay.
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace.domain import marketplace

marketplace.init()

_DOMAIN_PREFIXES = (
    "/vendors",
    "/products",
    "/promotions",
    "/carts",
    "/orders",
    "/payments",
    "/wallets",
)


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Marketplace API",
    description="Multi-vendor marketplace: carts, vendor orders, payments and wallets",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the marketplace domain context for marketplace routes."""
    if request.url.path.startswith(_DOMAIN_PREFIXES):
        with marketplace.domain_context():
            response = await call_next(request)
        return response
    # Health check, docs and the like
    return await call_next(request)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from marketplace.api import (  # noqa: E402
    cart_router,
    order_router,
    payment_router,
    product_router,
    promotion_router,
    register_exception_handlers,
    vendor_router,
    wallet_router,
)

app.include_router(vendor_router)
app.include_router(product_router)
app.include_router(promotion_router)
app.include_router(cart_router)
app.include_router(order_router)
app.include_router(payment_router)
app.include_router(wallet_router)
register_exception_handlers(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": {"name": marketplace.name}})
