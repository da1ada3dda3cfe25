"""Cart management: commands and handler.

Handles get-or-create, clearing, guest cart merging, fulfillment changes and
abandonment.
"""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.cart.cart import Cart, CartStatus
from marketplace.cart.repricing import reprice
from marketplace.domain import marketplace
from marketplace.inventory import get_stock
from marketplace.settings import get_settings
from marketplace.shared.choices import FulfillmentType

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Cart")
class CreateCart:
    """Return the owner's active cart, creating one if there is none."""

    customer_id = Identifier()  # Optional for guest carts
    session_id = String(max_length=255)


@marketplace.command(part_of="Cart")
class ClearCart:
    cart_id = Identifier(required=True)


@marketplace.command(part_of="Cart")
class MergeGuestCart:
    """Merge a guest session's cart into a registered customer's cart."""

    cart_id = Identifier(required=True)
    guest_cart_id = Identifier(required=True)


@marketplace.command(part_of="Cart")
class RefreshCart:
    """Reprice a cart, optionally switching between delivery and pickup."""

    cart_id = Identifier(required=True)
    fulfillment_type = String(choices=FulfillmentType)


@marketplace.command(part_of="Cart")
class AbandonCart:
    """Mark a cart as abandoned due to inactivity."""

    cart_id = Identifier(required=True)


def find_active_cart(customer_id=None, session_id=None) -> Cart | None:
    repo = current_domain.repository_for(Cart)
    if customer_id:
        matches = repo._dao.query.filter(customer_id=customer_id, status=CartStatus.ACTIVE.value).all().items
    else:
        matches = repo._dao.query.filter(session_id=session_id, status=CartStatus.ACTIVE.value).all().items
    return matches[0] if matches else None


@marketplace.command_handler(part_of=Cart)
class ManageCartHandler:
    @handle(CreateCart)
    def create_cart(self, command):
        if bool(command.customer_id) == bool(command.session_id):
            raise ValidationError({"owner": ["Provide either a customer id or a session id"]})

        existing = find_active_cart(customer_id=command.customer_id, session_id=command.session_id)
        if existing:
            return str(existing.id)

        cart = Cart.create(
            customer_id=command.customer_id,
            session_id=command.session_id,
            currency=get_settings().currency,
        )
        current_domain.repository_for(Cart).add(cart)
        return str(cart.id)

    @handle(ClearCart)
    def clear_cart(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        cart.clear()
        reprice(cart)
        repo.add(cart)

    @handle(MergeGuestCart)
    def merge_guest_cart(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        guest_cart = repo.get(command.guest_cart_id)

        stock = get_stock()
        available = {str(item.product_id): stock.available(str(item.product_id)) for item in guest_cart.items or []}
        merged = cart.merge_from(guest_cart, available=available)
        reprice(cart)
        reprice(guest_cart)
        repo.add(cart)
        repo.add(guest_cart)

        logger.info(
            "Guest cart merged",
            cart_id=str(cart.id),
            guest_cart_id=str(guest_cart.id),
            items_merged=merged,
        )
        return merged

    @handle(RefreshCart)
    def refresh_cart(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        if command.fulfillment_type:
            cart.set_fulfillment_type(command.fulfillment_type)
        reprice(cart)
        repo.add(cart)

    @handle(AbandonCart)
    def abandon_cart(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        cart.abandon()
        repo.add(cart)
