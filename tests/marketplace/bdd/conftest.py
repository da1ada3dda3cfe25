"""Shared BDD fixtures and step definitions for the marketplace."""

import pytest
from marketplace.order.order import Order, OrderLine, ShippingAddress
from marketplace.shared.errors import MarketplaceError
from protean.exceptions import ValidationError
from pytest_bdd import given, parsers, then


@pytest.fixture()
def error():
    """Container for the error raised by a When step."""
    return {"exc": None}


def place_order(payment_method="Cash", fulfillment_type="Delivery"):
    order = Order.place(
        order_number="ORD-260615-FRESH-0001",
        checkout_id="chk-001",
        customer_id="cust-001",
        vendor_id="vendor-001",
        payment_method=payment_method,
        fulfillment_type=fulfillment_type,
        lines=[OrderLine(product_id="prod-001", name="Basil", quantity=2, unit_price=10.0, line_total=20.0)],
        amounts={
            "subtotal": 20.0,
            "tax": 0.0,
            "delivery_fee": 0.0,
            "packaging_fee": 0.0,
            "service_fee": 0.0,
            "discount": 0.0,
            "total": 20.0,
        },
        earnings={
            "commission_amount": 2.0,
            "vendor_earnings": 18.0,
            "platform_earnings": 2.0,
            "delivery_earnings": 0.0,
        },
        commission_rate=10.0,
        shipping_address=(
            ShippingAddress(street="1 Elm St", city="Springfield", postal_code="62701", country="US")
            if fulfillment_type == "Delivery"
            else None
        ),
    )
    order._events.clear()
    return order


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('a {payment_method} order for {fulfillment_type}'), target_fixture="order")
def placed_order(payment_method, fulfillment_type):
    return place_order(payment_method=payment_method, fulfillment_type=fulfillment_type)


@given("the vendor has confirmed the order", target_fixture="order")
def confirmed_order(order):
    order.confirm("vendor-owner", "Vendor")
    order._events.clear()
    return order


@given("the vendor is preparing the order", target_fixture="order")
def processing_order(order):
    order.start_processing("vendor-owner", "Vendor")
    order._events.clear()
    return order


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order status is "{status}"'))
def order_status_is(order, status):
    assert order.status == status


@then(parsers.cfparse('the order payment status is "{status}"'))
def order_payment_status_is(order, status):
    assert order.payment_status == status


@then(parsers.cfparse('the action fails with "{code}"'))
def action_fails_with(error, code):
    assert error["exc"] is not None, f"Expected {code} but nothing was raised"
    assert isinstance(error["exc"], MarketplaceError)
    assert error["exc"].code == code


@then("the action fails with a validation error")
def action_fails_with_validation_error(error):
    assert error["exc"] is not None, "Expected a validation error but none was raised"
    assert isinstance(error["exc"], ValidationError)


@then(parsers.cfparse("a {event_type} order event is raised"))
@then(parsers.cfparse("an {event_type} order event is raised"))
def event_raised(order, event_type):
    names = [type(e).__name__ for e in order._events]
    assert event_type in names, f"No {event_type} event found. Events: {names}"
