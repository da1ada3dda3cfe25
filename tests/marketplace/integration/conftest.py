"""Fixtures for the HTTP API tests."""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from marketplace.api import (
    cart_router,
    order_router,
    payment_router,
    product_router,
    promotion_router,
    register_exception_handlers,
    vendor_router,
    wallet_router,
)

CUSTOMER = {"X-User-Id": "cust-001", "X-User-Role": "Customer"}

ADDRESS = {"street": "123 Main St", "city": "Springfield", "postal_code": "62701", "country": "US"}


@pytest.fixture()
def client():
    app = FastAPI()
    for router in (
        vendor_router,
        product_router,
        promotion_router,
        cart_router,
        order_router,
        payment_router,
        wallet_router,
    ):
        app.include_router(router)
    register_exception_handlers(app)
    return TestClient(app)


@pytest.fixture()
def storefront(client):
    """A vendor with one $10 product, and an empty cart for cust-001."""
    vendor = client.post(
        "/vendors",
        json={"name": "Green Grocer", "code": "GREEN", "owner_id": "vendor-owner", "delivery_fee": 2.5},
    )
    assert vendor.status_code == 201
    vendor_id = vendor.json()["id"]

    product = client.post(
        "/products",
        json={"vendor_id": vendor_id, "name": "Basil", "price": 10.0, "initial_stock": 5},
    )
    assert product.status_code == 201

    cart = client.post("/carts", json={"customer_id": "cust-001"})
    assert cart.status_code == 201
    return {"vendor_id": vendor_id, "product_id": product.json()["id"], "cart_id": cart.json()["id"]}


@pytest.fixture()
def promotion_window():
    now = datetime.now(UTC)
    return {
        "starts_at": (now - timedelta(days=1)).isoformat(),
        "ends_at": (now + timedelta(days=1)).isoformat(),
    }


@pytest.fixture()
def placed_order(client, storefront):
    """Check out two units of the product by card and return the placed order."""
    client.post(f"/carts/{storefront['cart_id']}/items", json={"product_id": storefront["product_id"], "quantity": 2})
    response = client.post(
        f"/carts/{storefront['cart_id']}/checkout",
        json={"payment_method": "Card", "shipping_address": ADDRESS},
        headers=CUSTOMER,
    )
    assert response.status_code == 201
    return {**storefront, **response.json()["orders"][0]}
