"""Application tests for saving a cart and loading it back."""

import pytest
from marketplace.cart.cart import Cart
from marketplace.cart.management import ClearCart
from marketplace.cart.saved import LoadSavedCart, SaveCart, SavedCart, saved_carts_for
from marketplace.catalogue.management import ChangeProductPrice, DeactivateProduct, SetStockLevel
from marketplace.shared.errors import EmptyCart, NotAuthorized
from protean import current_domain
from protean.exceptions import ValidationError


def _cart(cart_id):
    return current_domain.repository_for(Cart).get(cart_id)


def _save(cart_id, name="Weekly shop"):
    return current_domain.process(SaveCart(cart_id=cart_id, name=name), asynchronous=False)


def _load(cart_id, saved_cart_id, replace=False):
    command = LoadSavedCart(cart_id=cart_id, saved_cart_id=saved_cart_id, replace=replace)
    return current_domain.process(command, asynchronous=False)


@pytest.fixture()
def stocked_cart(register_vendor, list_product, create_cart, add_to_cart):
    """cust-001's cart holding 2 of one product and 1 of another."""
    vendor_id = register_vendor()
    bread = list_product(vendor_id, price=3.0, name="Bread")
    milk = list_product(vendor_id, price=2.0, name="Milk")
    cart_id = create_cart("cust-001")
    add_to_cart(cart_id, bread, 2)
    add_to_cart(cart_id, milk, 1)
    return {"cart_id": cart_id, "bread": bread, "milk": milk}


class TestSaveCartCommand:
    def test_save_keeps_products_and_quantities(self, stocked_cart):
        saved_id = _save(stocked_cart["cart_id"])

        saved = current_domain.repository_for(SavedCart).get(saved_id)
        assert saved.customer_id == "cust-001"
        assert saved.name == "Weekly shop"
        assert {str(i.product_id): i.quantity for i in saved.items} == {
            stocked_cart["bread"]: 2,
            stocked_cart["milk"]: 1,
        }

    def test_saving_leaves_the_cart_alone(self, stocked_cart):
        _save(stocked_cart["cart_id"])
        assert len(_cart(stocked_cart["cart_id"]).items) == 2

    def test_names_are_unique_per_customer(self, stocked_cart):
        _save(stocked_cart["cart_id"])
        with pytest.raises(ValidationError) as exc:
            _save(stocked_cart["cart_id"])
        assert "name" in exc.value.messages

    def test_empty_cart_cannot_be_saved(self, create_cart):
        with pytest.raises(EmptyCart):
            _save(create_cart("cust-001"))

    def test_guest_cart_cannot_be_saved(self, register_vendor, list_product, create_cart, add_to_cart):
        guest_id = create_cart(session_id="sess-001")
        add_to_cart(guest_id, list_product(register_vendor()), 1)
        with pytest.raises(ValidationError):
            _save(guest_id)

    def test_listing_is_per_customer(self, stocked_cart):
        _save(stocked_cart["cart_id"], "First")
        _save(stocked_cart["cart_id"], "Second")

        assert [s.name for s in saved_carts_for("cust-001")] == ["First", "Second"]
        assert saved_carts_for("cust-002") == []


class TestLoadSavedCartCommand:
    def test_load_into_an_emptied_cart(self, stocked_cart):
        cart_id = stocked_cart["cart_id"]
        saved_id = _save(cart_id)
        current_domain.process(ClearCart(cart_id=cart_id), asynchronous=False)

        assert _load(cart_id, saved_id) == 2

        cart = _cart(cart_id)
        assert {str(i.product_id): i.quantity for i in cart.items} == {
            stocked_cart["bread"]: 2,
            stocked_cart["milk"]: 1,
        }
        assert cart.subtotal == 8.0

    def test_load_tops_up_existing_lines(self, stocked_cart):
        saved_id = _save(stocked_cart["cart_id"])
        _load(stocked_cart["cart_id"], saved_id)

        quantities = {str(i.product_id): i.quantity for i in _cart(stocked_cart["cart_id"]).items}
        assert quantities[stocked_cart["bread"]] == 4

    def test_replace_drops_current_items_first(self, stocked_cart, list_product, add_to_cart):
        cart_id = stocked_cart["cart_id"]
        saved_id = _save(cart_id)
        extra = list_product(_cart(cart_id).items[0].vendor_id, name="Cheese")
        add_to_cart(cart_id, extra, 1)

        _load(cart_id, saved_id, replace=True)

        product_ids = {str(i.product_id) for i in _cart(cart_id).items}
        assert product_ids == {stocked_cart["bread"], stocked_cart["milk"]}

    def test_current_prices_are_used(self, stocked_cart):
        cart_id = stocked_cart["cart_id"]
        saved_id = _save(cart_id)
        current_domain.process(ClearCart(cart_id=cart_id), asynchronous=False)
        current_domain.process(ChangeProductPrice(product_id=stocked_cart["bread"], new_price=4.0), asynchronous=False)

        _load(cart_id, saved_id)

        bread = _cart(cart_id).item_for_product(stocked_cart["bread"])
        assert bread.unit_price == 4.0

    def test_quantities_are_capped_at_stock(self, stocked_cart):
        cart_id = stocked_cart["cart_id"]
        saved_id = _save(cart_id)
        current_domain.process(ClearCart(cart_id=cart_id), asynchronous=False)
        current_domain.process(SetStockLevel(product_id=stocked_cart["bread"], quantity=1), asynchronous=False)

        _load(cart_id, saved_id)

        assert _cart(cart_id).item_for_product(stocked_cart["bread"]).quantity == 1

    def test_products_no_longer_sold_are_left_out(self, stocked_cart):
        cart_id = stocked_cart["cart_id"]
        saved_id = _save(cart_id)
        current_domain.process(ClearCart(cart_id=cart_id), asynchronous=False)
        current_domain.process(DeactivateProduct(product_id=stocked_cart["milk"]), asynchronous=False)

        assert _load(cart_id, saved_id) == 1
        assert _cart(cart_id).item_for_product(stocked_cart["milk"]) is None

    def test_only_the_owner_can_load(self, stocked_cart, create_cart):
        saved_id = _save(stocked_cart["cart_id"])
        with pytest.raises(NotAuthorized):
            _load(create_cart("cust-002"), saved_id)
