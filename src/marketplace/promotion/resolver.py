"""Discount resolver: validate a promotion against cart contents and price it.

Pure functions over frozen snapshots. The resolver decides *whether* a
promotion applies and *how much* it is worth, and splits that amount down to
cents across the lines (or, for free delivery, the vendors) it covers so the
order factory can carry each vendor's exact share.

Checks run in a fixed order so callers get the most useful error first:
validity window, vendor scope, minimum purchase, usage limits, product
coverage.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from marketplace.cart.snapshots import LineSnapshot, VendorTerms
from marketplace.promotion.rules import PromotionRule, PromotionScope, PromotionType
from marketplace.shared.choices import FulfillmentType
from marketplace.shared.clock import as_utc
from marketplace.shared.errors import (
    CouponInvalid,
    CouponScopeMismatch,
    MinimumPurchaseNotMet,
    UsageLimitExceeded,
)
from marketplace.shared.money import ZERO, allocate, percent_of, quantize


@dataclass(frozen=True)
class ResolvedDiscount:
    """A promotion priced against a specific cart.

    ``scope``/``vendor_id`` describe where the discount lands: a vendor-scoped
    discount reduces that vendor's total, a global one is spread across all
    vendors' orders.
    """

    promotion_id: str
    code: str | None
    promotion_type: PromotionType
    scope: PromotionScope
    vendor_id: str | None
    amount: Decimal
    line_allocations: Mapping[str, Decimal] = field(default_factory=dict)
    fee_allocations: Mapping[str, Decimal] = field(default_factory=dict)

    def share_for_vendor(self, vendor_id: str, lines: Sequence[LineSnapshot]) -> Decimal:
        line_share = sum(
            (self.line_allocations.get(line.line_id, ZERO) for line in lines if line.vendor_id == vendor_id),
            ZERO,
        )
        return quantize(line_share + self.fee_allocations.get(vendor_id, ZERO))

    def line_share_for_vendor(self, vendor_id: str, lines: Sequence[LineSnapshot]) -> Decimal:
        return quantize(
            sum(
                (self.line_allocations.get(line.line_id, ZERO) for line in lines if line.vendor_id == vendor_id),
                ZERO,
            )
        )


def effective_scope(rule: PromotionRule, vendor_scope: str | None) -> tuple[PromotionScope, str | None]:
    """Where the discount applies once a caller-requested vendor scope is taken into account.

    A vendor promotion always applies to its own vendor. A global promotion
    applies cart-wide unless the caller narrows it to one vendor.
    """
    if rule.scope == PromotionScope.VENDOR:
        if vendor_scope and str(vendor_scope) != str(rule.vendor_id):
            raise CouponScopeMismatch("This coupon belongs to a different vendor")
        return PromotionScope.VENDOR, str(rule.vendor_id)
    if vendor_scope:
        return PromotionScope.VENDOR, str(vendor_scope)
    return PromotionScope.GLOBAL, None


def check_validity(rule: PromotionRule, now: datetime) -> None:
    now = as_utc(now)
    if not rule.is_active or now < as_utc(rule.starts_at) or now > as_utc(rule.ends_at):
        raise CouponInvalid("Invalid or expired coupon code")


def check_usage(rule: PromotionRule, customer_id: str | None) -> None:
    if rule.total_limit > 0 and rule.current_usage >= rule.total_limit:
        raise UsageLimitExceeded("Coupon usage limit reached", limit=rule.total_limit)
    if customer_id and rule.per_customer_limit > 0 and rule.customer_usage >= rule.per_customer_limit:
        raise UsageLimitExceeded(
            "You have already used this coupon the maximum number of times",
            limit=rule.per_customer_limit,
        )


def _delivery_fees(
    vendor_ids: Sequence[str], vendors: Mapping[str, VendorTerms], fulfillment: FulfillmentType
) -> dict[str, Decimal]:
    if fulfillment == FulfillmentType.PICKUP:
        return {vendor_id: ZERO for vendor_id in vendor_ids}
    return {vendor_id: vendors[vendor_id].delivery_fee for vendor_id in vendor_ids}


def _free_units(rule: PromotionRule, line: LineSnapshot) -> int:
    bundle = rule.buy_quantity + rule.get_quantity
    if bundle <= 0:
        return 0
    return (line.quantity // bundle) * rule.get_quantity


def resolve(
    rule: PromotionRule,
    lines: Sequence[LineSnapshot],
    vendors: Mapping[str, VendorTerms],
    *,
    now: datetime,
    customer_id: str | None = None,
    vendor_scope: str | None = None,
    fulfillment: FulfillmentType = FulfillmentType.DELIVERY,
) -> ResolvedDiscount:
    """Validate ``rule`` against ``lines`` and return the priced discount.

    Raises:
        CouponInvalid: inactive or outside its validity window.
        CouponScopeMismatch: wrong vendor, or nothing in the cart it covers.
        MinimumPurchaseNotMet: the scoped subtotal is below the minimum.
        UsageLimitExceeded: the total or per-customer limit is used up.
    """
    check_validity(rule, now)
    scope, scoped_vendor = effective_scope(rule, vendor_scope)

    scoped_lines = [line for line in lines if scoped_vendor is None or line.vendor_id == scoped_vendor]
    if not scoped_lines:
        if scoped_vendor is not None:
            raise CouponScopeMismatch("No items from this vendor in your cart")
        raise CouponScopeMismatch("Your cart has no items this coupon applies to")

    scoped_subtotal = sum((line.line_total for line in scoped_lines), ZERO)
    if scoped_subtotal < rule.minimum_purchase:
        raise MinimumPurchaseNotMet(
            f"Minimum purchase of {quantize(rule.minimum_purchase)} required",
            minimum=str(quantize(rule.minimum_purchase)),
            subtotal=str(scoped_subtotal),
        )

    check_usage(rule, customer_id)

    covered = [line for line in scoped_lines if rule.covers(line.product_id)]
    if rule.restricts_products and not covered:
        raise CouponScopeMismatch("Coupon is not applicable to any products in your cart")
    applicable_amount = sum((line.line_total for line in covered), ZERO)

    line_weights: dict[str, Decimal] = {}
    fee_weights: dict[str, Decimal] = {}

    if rule.promotion_type == PromotionType.PERCENTAGE:
        raw = percent_of(applicable_amount, rule.value)
        line_weights = {line.line_id: line.line_total for line in covered}
    elif rule.promotion_type == PromotionType.FIXED_AMOUNT:
        raw = min(quantize(rule.value), applicable_amount)
        line_weights = {line.line_id: line.line_total for line in covered}
    elif rule.promotion_type == PromotionType.BUY_X_GET_Y:
        line_weights = {line.line_id: quantize(line.unit_price * _free_units(rule, line)) for line in covered}
        raw = sum(line_weights.values(), ZERO)
    else:
        scoped_vendor_ids = sorted({line.vendor_id for line in scoped_lines})
        fee_weights = _delivery_fees(scoped_vendor_ids, vendors, fulfillment)
        raw = sum(fee_weights.values(), ZERO)

    amount = quantize(raw)
    if rule.maximum_discount > 0:
        amount = min(amount, quantize(rule.maximum_discount))

    return ResolvedDiscount(
        promotion_id=rule.promotion_id,
        code=rule.code,
        promotion_type=rule.promotion_type,
        scope=scope,
        vendor_id=scoped_vendor,
        amount=amount,
        line_allocations=allocate(amount, line_weights) if line_weights else {},
        fee_allocations=allocate(amount, fee_weights) if fee_weights else {},
    )
