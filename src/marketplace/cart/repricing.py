"""Repricing: the side-effecting shell around the pure pricing engine.

Every cart mutation ends with ``reprice(cart)``. It drops lines whose product
or vendor is gone, drops discounts that no longer resolve, then overwrites the
cart's cached totals from a fresh ``CartQuote``.
"""

from datetime import UTC, datetime
from decimal import Decimal

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from marketplace.cart.pricing import CartQuote, price_cart
from marketplace.cart.snapshots import VendorTerms
from marketplace.catalogue.product import Product
from marketplace.promotion.lookup import find_promotion
from marketplace.promotion.resolver import resolve
from marketplace.promotion.rules import PromotionScope
from marketplace.settings import get_settings
from marketplace.shared.choices import DeliveryMode, FulfillmentType
from marketplace.shared.errors import (
    CouponInvalid,
    CouponScopeMismatch,
    MinimumPurchaseNotMet,
    UsageLimitExceeded,
)
from marketplace.vendor.vendor import Vendor

logger = structlog.get_logger(__name__)

# Resolver failures that make an already-applied discount silently fall off
DISCOUNT_DROP_ERRORS = (CouponInvalid, CouponScopeMismatch, MinimumPurchaseNotMet, UsageLimitExceeded)


def vendor_terms(vendor: Vendor) -> VendorTerms:
    return VendorTerms(
        vendor_id=str(vendor.id),
        commission_rate=Decimal(str(vendor.commission_rate)),
        tax_rate=Decimal(str(vendor.tax_rate or 0)),
        delivery_fee=Decimal(str(vendor.delivery_fee or 0)),
        packaging_fee=Decimal(str(vendor.packaging_fee or 0)),
        delivery_mode=DeliveryMode(vendor.delivery_mode or DeliveryMode.PLATFORM.value),
        code=vendor.code,
    )


def load_vendors(vendor_ids) -> dict[str, Vendor]:
    """Fetch vendors by id, leaving out any that no longer exist."""
    repo = current_domain.repository_for(Vendor)
    vendors = {}
    for vendor_id in dict.fromkeys(str(v) for v in vendor_ids):
        try:
            vendors[vendor_id] = repo.get(vendor_id)
        except ObjectNotFoundError:
            continue
    return vendors


def _drop_unavailable_items(cart, refresh_prices: bool) -> dict[str, Vendor]:
    products = current_domain.repository_for(Product)
    vendors = load_vendors(item.vendor_id for item in (cart.items or []))

    stale = []
    for item in list(cart.items or []):
        vendor = vendors.get(str(item.vendor_id))
        try:
            product = products.get(item.product_id)
        except ObjectNotFoundError:
            product = None
        if product is None or not product.is_active or vendor is None or not vendor.is_active:
            stale.append(str(item.id))
            continue
        if refresh_prices:
            cart.refresh_unit_price(item.id, product.price)

    if stale:
        cart.drop_items(stale, reason="Product or vendor no longer available")
        logger.info("Dropped unavailable cart items", cart_id=str(cart.id), item_ids=stale)
    return vendors


def _resolve_applied_discounts(cart, lines, terms, fulfillment, now):
    resolved = []
    for applied in list(cart.discounts or []):
        vendor_scope = str(applied.vendor_id) if applied.scope == PromotionScope.VENDOR.value else None
        try:
            promotion = find_promotion(promotion_id=str(applied.promotion_id))
            resolved.append(
                resolve(
                    promotion.rule(customer_id=cart.customer_id),
                    lines,
                    terms,
                    now=now,
                    customer_id=str(cart.customer_id) if cart.customer_id else None,
                    vendor_scope=vendor_scope,
                    fulfillment=fulfillment,
                )
            )
        except DISCOUNT_DROP_ERRORS as exc:
            cart.drop_discount(applied.promotion_id, reason=exc.code)
            logger.info(
                "Dropped discount that no longer applies",
                cart_id=str(cart.id),
                promotion_id=str(applied.promotion_id),
                reason=exc.code,
            )
    return resolved


def reprice(cart, *, refresh_prices: bool = False, now: datetime | None = None) -> CartQuote:
    """Clean up ``cart``, price it and write the quote back onto it.

    ``refresh_prices`` re-reads every unit price from the catalogue; checkout
    uses it so orders always snapshot current prices.
    """
    now = now or datetime.now(UTC)
    vendors = _drop_unavailable_items(cart, refresh_prices)

    lines = cart.line_snapshots()
    terms = {vendor_id: vendor_terms(vendor) for vendor_id, vendor in vendors.items() if vendor.is_active}
    fulfillment = FulfillmentType(cart.fulfillment_type)

    resolved = _resolve_applied_discounts(cart, lines, terms, fulfillment, now)
    quote = price_cart(
        lines,
        terms,
        resolved,
        service_fee=get_settings().service_fee,
        fulfillment=fulfillment,
    )
    cart.apply_quote(quote)
    return quote
