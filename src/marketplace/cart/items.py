"""Cart item management: commands and handler.

Quantities above current stock are clamped to what is available; only a
product with nothing left is refused outright.
"""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Integer
from protean.utils.globals import current_domain

from marketplace.cart.cart import Cart
from marketplace.cart.repricing import reprice
from marketplace.catalogue.product import Product
from marketplace.domain import marketplace
from marketplace.inventory import get_stock
from marketplace.shared.errors import OutOfStock
from marketplace.vendor.vendor import Vendor

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Cart")
class AddToCart:
    cart_id = Identifier(required=True)
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)


@marketplace.command(part_of="Cart")
class UpdateCartQuantity:
    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    new_quantity = Integer(required=True, min_value=1)


@marketplace.command(part_of="Cart")
class RemoveFromCart:
    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)


def _available_or_raise(product_id) -> int:
    available = get_stock().available(str(product_id))
    if available <= 0:
        raise OutOfStock("Product is out of stock", product_id=str(product_id))
    return available


@marketplace.command_handler(part_of=Cart)
class ManageCartItemsHandler:
    @handle(AddToCart)
    def add_to_cart(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)

        product = current_domain.repository_for(Product).get(command.product_id)
        vendor = current_domain.repository_for(Vendor).get(product.vendor_id)
        if not product.is_active or not vendor.is_active:
            raise ValidationError({"product_id": ["Product is not available"]})

        available = _available_or_raise(product.id)
        existing = cart.item_for_product(product.id)
        in_cart = 0
        if existing:
            if existing.quantity > available:
                # Stock fell below what the cart already holds
                cart.update_item_quantity(item_id=existing.id, new_quantity=available)
            in_cart = min(existing.quantity, available)
        to_add = min(command.quantity, available - in_cart)

        if to_add > 0:
            cart.add_item(
                product_id=str(product.id),
                vendor_id=str(product.vendor_id),
                unit_price=product.price,
                quantity=to_add,
                name=product.name,
            )
        if to_add < command.quantity:
            logger.info(
                "Clamped cart quantity to available stock",
                cart_id=str(cart.id),
                product_id=str(product.id),
                requested=command.quantity,
                added=to_add,
                available=available,
            )

        reprice(cart)
        repo.add(cart)
        return str(cart.id)

    @handle(UpdateCartQuantity)
    def update_cart_quantity(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        item = cart.find_item(command.item_id)

        available = _available_or_raise(item.product_id)
        cart.update_item_quantity(item_id=command.item_id, new_quantity=min(command.new_quantity, available))

        reprice(cart)
        repo.add(cart)

    @handle(RemoveFromCart)
    def remove_from_cart(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        cart.remove_item(item_id=command.item_id)
        reprice(cart)
        repo.add(cart)
