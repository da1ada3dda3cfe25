"""Saved carts: named snapshots of a customer's cart that can be loaded back later.

A saved cart keeps only products and quantities. Prices, vendors and stock
are read again when it is loaded, and products that are no longer sold are
left out.
"""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Boolean, DateTime, HasMany, Identifier, Integer, String
from protean.utils.globals import current_domain

from marketplace.cart.cart import Cart
from marketplace.cart.repricing import reprice
from marketplace.catalogue.product import Product
from marketplace.domain import marketplace
from marketplace.inventory import get_stock
from marketplace.shared.errors import EmptyCart, NotAuthorized
from marketplace.shared.locks import cart_key, saved_carts_key
from marketplace.vendor.vendor import Vendor

logger = structlog.get_logger(__name__)


@marketplace.entity(part_of="SavedCart")
class SavedCartItem:
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)


@marketplace.aggregate
class SavedCart:
    customer_id = Identifier(required=True)
    name = String(required=True, max_length=100)
    items = HasMany(SavedCartItem)
    created_at = DateTime()

    @classmethod
    def snapshot(cls, cart, name):
        if not cart.customer_id:
            raise ValidationError({"cart_id": ["Only a customer's cart can be saved"]})
        if not cart.items:
            raise EmptyCart("Cannot save an empty cart")
        saved = cls(customer_id=str(cart.customer_id), name=name, created_at=datetime.now(UTC))
        for line in cart.line_snapshots():
            saved.add_items(SavedCartItem(product_id=line.product_id, quantity=line.quantity))
        return saved


@marketplace.command(part_of="SavedCart")
class SaveCart:
    cart_id = Identifier(required=True)
    name = String(required=True, max_length=100)


@marketplace.command(part_of="Cart")
class LoadSavedCart:
    """Copy a saved cart's products into an active cart, optionally replacing its items."""

    cart_id = Identifier(required=True)
    saved_cart_id = Identifier(required=True)
    replace = Boolean(default=False)


def saved_carts_for(customer_id) -> list[SavedCart]:
    """A customer's saved carts, oldest first."""
    repo = current_domain.repository_for(SavedCart)
    saved = repo._dao.query.filter(customer_id=str(customer_id)).all().items
    return sorted(saved, key=lambda s: s.created_at)


@marketplace.command_handler(part_of=SavedCart)
class SaveCartHandler:
    @handle(SaveCart)
    def save_cart(self, command):
        cart = current_domain.repository_for(Cart).get(command.cart_id)
        name = command.name.strip()
        if not name:
            raise ValidationError({"name": ["A saved cart needs a name"]})
        if cart.customer_id and any(s.name == name for s in saved_carts_for(cart.customer_id)):
            raise ValidationError({"name": ["A saved cart with this name already exists"]})

        saved = SavedCart.snapshot(cart, name)
        current_domain.repository_for(SavedCart).add(saved)
        logger.info("Cart saved", cart_id=str(cart.id), saved_cart_id=str(saved.id), items=len(saved.items))
        return str(saved.id)


def _sellable(product_id) -> Product | None:
    try:
        product = current_domain.repository_for(Product).get(product_id)
        vendor = current_domain.repository_for(Vendor).get(product.vendor_id)
    except ObjectNotFoundError:
        return None
    return product if product.is_active and vendor.is_active else None


@marketplace.command_handler(part_of=Cart)
class LoadSavedCartHandler:
    @handle(LoadSavedCart)
    def load_saved_cart(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        saved = current_domain.repository_for(SavedCart).get(command.saved_cart_id)
        if str(saved.customer_id) != str(cart.customer_id):
            raise NotAuthorized("Saved carts can only be loaded into their owner's cart")

        cart._assert_active("load a saved cart")
        if command.replace:
            for item in list(cart.items or []):
                cart.remove_item(item.id)

        loaded = 0
        stock = get_stock()
        for saved_item in saved.items or []:
            product = _sellable(saved_item.product_id)
            if product is None:
                continue
            existing = cart.item_for_product(product.id)
            room = stock.available(str(product.id)) - (existing.quantity if existing else 0)
            quantity = min(saved_item.quantity, room)
            if quantity <= 0:
                continue
            cart.add_item(
                product_id=str(product.id),
                vendor_id=str(product.vendor_id),
                unit_price=product.price,
                quantity=quantity,
                name=product.name,
            )
            loaded += 1

        reprice(cart)
        repo.add(cart)
        logger.info("Saved cart loaded", cart_id=str(cart.id), saved_cart_id=str(saved.id), items_loaded=loaded)
        return loaded


def save_lock_keys(cart_id) -> list[str]:
    cart = current_domain.repository_for(Cart).get(cart_id)
    return [cart_key(cart.id), saved_carts_key(cart.customer_id or cart.session_id)]
