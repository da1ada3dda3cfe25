import itertools
import json
from datetime import UTC, datetime, timedelta

import pytest
from marketplace.cart.items import AddToCart
from marketplace.cart.management import CreateCart
from marketplace.catalogue.management import ListProduct
from marketplace.checkout.checkout import Checkout, dispatch_checkout
from marketplace.gateway import get_gateway, reset_gateway
from marketplace.geo import get_matcher, reset_matcher
from marketplace.inventory import get_stock, reset_stock
from marketplace.notify import get_notifier, reset_notifier
from marketplace.payment.processing import ProcessPayment
from marketplace.promotion.management import CreatePromotion
from marketplace.settings import reset_settings
from marketplace.shared.locks import _locks
from marketplace.vendor.management import RegisterVendor
from marketplace.wallet.transactions import OpenWallet, RecordWalletTransaction
from protean import current_domain
from protean.integrations.pytest import DomainFixture

ADDRESS = {
    "recipient": "Jane Doe",
    "street": "123 Main St",
    "city": "Springfield",
    "state": "IL",
    "postal_code": "62701",
    "country": "US",
}


@pytest.fixture(scope="session")
def marketplace_bed():
    from marketplace.domain import marketplace

    bed = DomainFixture(marketplace)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(marketplace_bed):
    with marketplace_bed.domain_context():
        yield

    # In-process adapters and locks live outside the domain's stores
    reset_stock()
    reset_gateway()
    reset_notifier()
    reset_matcher()
    reset_settings()
    _locks.clear()


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------
@pytest.fixture()
def stock():
    return get_stock()


@pytest.fixture()
def gateway():
    return get_gateway()


@pytest.fixture()
def notifier():
    return get_notifier()


@pytest.fixture()
def matcher():
    return get_matcher()


# ---------------------------------------------------------------------------
# Command helpers
# ---------------------------------------------------------------------------
@pytest.fixture()
def register_vendor():
    counter = itertools.count(1)

    def _register(**overrides):
        n = next(counter)
        defaults = {"name": f"Vendor {n}", "code": f"VEND{n}", "owner_id": f"owner-{n}"}
        defaults.update(overrides)
        if isinstance(defaults.get("payment_methods"), list):
            defaults["payment_methods"] = json.dumps(defaults["payment_methods"])
        return current_domain.process(RegisterVendor(**defaults), asynchronous=False)

    return _register


@pytest.fixture()
def list_product():
    def _list(vendor_id, price=10.0, stock=100, name="Widget"):
        command = ListProduct(vendor_id=vendor_id, name=name, price=price, initial_stock=stock)
        return current_domain.process(command, asynchronous=False)

    return _list


@pytest.fixture()
def create_cart():
    def _create(customer_id="cust-001", session_id=None):
        command = CreateCart(customer_id=None if session_id else customer_id, session_id=session_id)
        return current_domain.process(command, asynchronous=False)

    return _create


@pytest.fixture()
def add_to_cart():
    def _add(cart_id, product_id, quantity=1):
        command = AddToCart(cart_id=cart_id, product_id=product_id, quantity=quantity)
        return current_domain.process(command, asynchronous=False)

    return _add


@pytest.fixture()
def create_promotion():
    def _create(**overrides):
        now = datetime.now(UTC)
        defaults = {
            "name": "Promotion",
            "promotion_type": "Percentage",
            "value": 10.0,
            "starts_at": now - timedelta(days=1),
            "ends_at": now + timedelta(days=1),
        }
        defaults.update(overrides)
        for key in ("applicable_products", "excluded_products"):
            if isinstance(defaults.get(key), list):
                defaults[key] = json.dumps(defaults[key])
        return current_domain.process(CreatePromotion(**defaults), asynchronous=False)

    return _create


@pytest.fixture()
def checkout():
    def _checkout(cart_id, payment_method="Card", fulfillment_type=None, address=ADDRESS, **actor):
        command = Checkout(
            cart_id=cart_id,
            payment_method=payment_method,
            fulfillment_type=fulfillment_type,
            shipping_address=json.dumps(address) if address else None,
            **actor,
        )
        return dispatch_checkout(command)

    return _checkout


@pytest.fixture()
def funded_wallet():
    def _fund(user_id="cust-001", amount=100.0):
        wallet_id = current_domain.process(OpenWallet(user_id=user_id), asynchronous=False)
        if amount:
            current_domain.process(
                RecordWalletTransaction(
                    wallet_id=wallet_id,
                    transaction_type="Credit",
                    amount=amount,
                    description="Top up",
                    actor_role="Admin",
                    actor_id="admin-001",
                ),
                asynchronous=False,
            )
        return wallet_id

    return _fund


@pytest.fixture()
def place_order(register_vendor, list_product, create_cart, add_to_cart, checkout):
    """Check out a single-vendor cart and return the ids of what was placed."""

    def _place(
        payment_method="Cash",
        fulfillment_type="Delivery",
        price=10.0,
        quantity=2,
        customer_id="cust-001",
        owner_id="vendor-owner",
        **vendor_overrides,
    ):
        vendor_id = register_vendor(owner_id=owner_id, **vendor_overrides)
        product_id = list_product(vendor_id, price=price)
        cart_id = create_cart(customer_id)
        add_to_cart(cart_id, product_id, quantity)
        result = checkout(
            cart_id,
            payment_method=payment_method,
            fulfillment_type=fulfillment_type,
            actor_id=customer_id,
            actor_role="Customer",
        )
        placed = result["orders"][0]
        return {
            "order_id": placed["order_id"],
            "payment_id": placed["payment_id"],
            "vendor_id": vendor_id,
            "product_id": product_id,
            "owner_id": owner_id,
            "customer_id": customer_id,
        }

    return _place


@pytest.fixture()
def pay():
    def _pay(payment_id, customer_id="cust-001"):
        command = ProcessPayment(payment_id=payment_id, actor_id=customer_id, actor_role="Customer")
        return current_domain.process(command, asynchronous=False)

    return _pay
