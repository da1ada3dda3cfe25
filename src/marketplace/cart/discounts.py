"""Cart discounts: apply and remove coupons or promotions."""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.cart.cart import Cart
from marketplace.cart.repricing import load_vendors, reprice, vendor_terms
from marketplace.domain import marketplace
from marketplace.promotion.lookup import find_promotion
from marketplace.promotion.resolver import resolve
from marketplace.shared.choices import FulfillmentType
from marketplace.shared.errors import CouponAlreadyApplied
from marketplace.shared.money import as_float

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Cart")
class ApplyDiscount:
    """Apply a coupon code (or a code-less promotion by id) to a cart.

    ``vendor_id`` narrows a global promotion to one vendor's items.
    """

    cart_id = Identifier(required=True)
    code = String(max_length=50)
    promotion_id = Identifier()
    vendor_id = Identifier()


@marketplace.command(part_of="Cart")
class RemoveDiscount:
    cart_id = Identifier(required=True)
    code = String(max_length=50)
    promotion_id = Identifier()


def resolve_for_cart(cart, code=None, promotion_id=None, vendor_scope=None):
    """Look up the requested promotion and price it against ``cart``'s live contents."""
    if not code and not promotion_id:
        raise ValidationError({"code": ["Provide a coupon code or a promotion id"]})
    cart._assert_active("apply discounts")

    promotion = find_promotion(code=code, promotion_id=promotion_id)
    if cart.has_discount(promotion_id=promotion.id, code=promotion.code):
        raise CouponAlreadyApplied("Coupon already applied")

    # Price against the cleaned-up cart so the resolver sees live contents
    reprice(cart)
    vendors = load_vendors(item.vendor_id for item in (cart.items or []))
    return resolve(
        promotion.rule(customer_id=cart.customer_id),
        cart.line_snapshots(),
        {vendor_id: vendor_terms(vendor) for vendor_id, vendor in vendors.items()},
        now=datetime.now(UTC),
        customer_id=str(cart.customer_id) if cart.customer_id else None,
        vendor_scope=str(vendor_scope) if vendor_scope else None,
        fulfillment=FulfillmentType(cart.fulfillment_type),
    )


def validate_coupon(cart_id, code=None, promotion_id=None, vendor_id=None) -> dict:
    """Price a coupon against a cart without applying it. Nothing is stored."""
    cart = current_domain.repository_for(Cart).get(cart_id)
    resolved = resolve_for_cart(cart, code, promotion_id, vendor_id)
    return {
        "promotion_id": resolved.promotion_id,
        "code": resolved.code,
        "scope": resolved.scope.value,
        "vendor_id": resolved.vendor_id,
        "amount": as_float(resolved.amount),
    }


@marketplace.command_handler(part_of=Cart)
class CartDiscountsHandler:
    @handle(ApplyDiscount)
    def apply_discount(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        resolved = resolve_for_cart(cart, command.code, command.promotion_id, command.vendor_id)
        cart.apply_discount(resolved)
        reprice(cart)
        repo.add(cart)

        logger.info(
            "Discount applied",
            cart_id=str(cart.id),
            promotion_id=resolved.promotion_id,
            scope=resolved.scope.value,
            amount=str(resolved.amount),
        )
        return as_float(resolved.amount)

    @handle(RemoveDiscount)
    def remove_discount(self, command):
        if not command.code and not command.promotion_id:
            raise ValidationError({"code": ["Provide a coupon code or a promotion id"]})

        repo = current_domain.repository_for(Cart)
        cart = repo.get(command.cart_id)
        cart.remove_discount(code=command.code, promotion_id=command.promotion_id)
        reprice(cart)
        repo.add(cart)
