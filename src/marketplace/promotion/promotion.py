"""Promotion aggregate (CQRS): a discount rule and its usage ledger.

The rule itself (type, value, scope, window, limits) is fixed at creation.
Only the active flag and the redemption ledger change afterwards. Pricing
never reads the aggregate directly; it works from ``rule()`` snapshots.
"""

import json
from datetime import UTC, datetime
from decimal import Decimal

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, Integer, String, Text

from marketplace.domain import marketplace
from marketplace.promotion.events import PromotionCreated, PromotionDeactivated, PromotionRedeemed
from marketplace.promotion.rules import PromotionRule, PromotionScope, PromotionType
from marketplace.shared.clock import as_utc
from marketplace.shared.errors import UsageLimitExceeded


@marketplace.entity(part_of="Promotion")
class Redemption:
    customer_id = Identifier()
    checkout_id = Identifier(required=True)
    redeemed_at = DateTime(required=True)


@marketplace.aggregate
class Promotion:
    name = String(required=True, max_length=200)
    description = Text()
    code = String(max_length=50)
    promotion_type = String(required=True, choices=PromotionType)
    value = Float(default=0.0, min_value=0.0)
    scope = String(choices=PromotionScope, default=PromotionScope.GLOBAL.value)
    vendor_id = Identifier()
    starts_at = DateTime(required=True)
    ends_at = DateTime(required=True)
    is_active = Boolean(default=True)
    minimum_purchase = Float(default=0.0, min_value=0.0)
    maximum_discount = Float(default=0.0, min_value=0.0)
    per_customer_limit = Integer(default=0, min_value=0)
    total_limit = Integer(default=0, min_value=0)
    current_usage = Integer(default=0, min_value=0)
    applicable_products = Text()  # JSON array of product ids
    excluded_products = Text()  # JSON array of product ids
    buy_quantity = Integer(default=0, min_value=0)
    get_quantity = Integer(default=0, min_value=0)
    redemptions = HasMany(Redemption)
    created_at = DateTime()

    @invariant.post
    def usage_must_not_exceed_total_limit(self):
        if self.total_limit and self.current_usage > self.total_limit:
            raise ValidationError({"current_usage": ["Usage cannot exceed the total limit"]})

    @invariant.post
    def scope_must_match_vendor(self):
        if self.scope == PromotionScope.VENDOR.value and not self.vendor_id:
            raise ValidationError({"vendor_id": ["Vendor-scoped promotions need a vendor"]})
        if self.scope == PromotionScope.GLOBAL.value and self.vendor_id:
            raise ValidationError({"vendor_id": ["Global promotions cannot name a vendor"]})

    @invariant.post
    def window_must_be_ordered(self):
        if self.starts_at and self.ends_at and as_utc(self.ends_at) <= as_utc(self.starts_at):
            raise ValidationError({"ends_at": ["End date must be after start date"]})

    @invariant.post
    def value_must_fit_type(self):
        if self.promotion_type == PromotionType.PERCENTAGE.value and (self.value or 0) > 100:
            raise ValidationError({"value": ["Percentage discounts cannot exceed 100"]})
        if self.promotion_type == PromotionType.BUY_X_GET_Y.value and not (self.buy_quantity and self.get_quantity):
            raise ValidationError({"buy_quantity": ["Buy-X-get-Y promotions need both quantities"]})

    @classmethod
    def create(
        cls,
        name,
        promotion_type,
        starts_at,
        ends_at,
        value=0.0,
        code=None,
        vendor_id=None,
        description=None,
        minimum_purchase=0.0,
        maximum_discount=0.0,
        per_customer_limit=0,
        total_limit=0,
        applicable_products=None,
        excluded_products=None,
        buy_quantity=0,
        get_quantity=0,
    ):
        scope = PromotionScope.VENDOR if vendor_id else PromotionScope.GLOBAL
        promotion = cls(
            name=name,
            description=description,
            code=code.strip().upper() if code else None,
            promotion_type=promotion_type,
            value=value,
            scope=scope.value,
            vendor_id=vendor_id,
            starts_at=starts_at,
            ends_at=ends_at,
            is_active=True,
            minimum_purchase=minimum_purchase,
            maximum_discount=maximum_discount,
            per_customer_limit=per_customer_limit,
            total_limit=total_limit,
            current_usage=0,
            applicable_products=json.dumps(list(applicable_products or [])),
            excluded_products=json.dumps(list(excluded_products or [])),
            buy_quantity=buy_quantity,
            get_quantity=get_quantity,
            created_at=datetime.now(UTC),
        )
        promotion.raise_(
            PromotionCreated(
                promotion_id=str(promotion.id),
                code=promotion.code,
                promotion_type=promotion.promotion_type,
                value=promotion.value,
                scope=promotion.scope,
                vendor_id=str(vendor_id) if vendor_id else None,
                starts_at=starts_at,
                ends_at=ends_at,
            )
        )
        return promotion

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def applicable_product_ids(self) -> frozenset:
        return frozenset(json.loads(self.applicable_products)) if self.applicable_products else frozenset()

    def excluded_product_ids(self) -> frozenset:
        return frozenset(json.loads(self.excluded_products)) if self.excluded_products else frozenset()

    def redemptions_by(self, customer_id) -> int:
        if not customer_id:
            return 0
        return sum(1 for r in (self.redemptions or []) if str(r.customer_id) == str(customer_id))

    def rule(self, customer_id=None) -> PromotionRule:
        """Freeze the promotion, as seen by ``customer_id``, for the resolver."""
        return PromotionRule(
            promotion_id=str(self.id),
            code=self.code,
            promotion_type=PromotionType(self.promotion_type),
            value=Decimal(str(self.value or 0)),
            scope=PromotionScope(self.scope),
            vendor_id=str(self.vendor_id) if self.vendor_id else None,
            starts_at=self.starts_at,
            ends_at=self.ends_at,
            is_active=bool(self.is_active),
            minimum_purchase=Decimal(str(self.minimum_purchase or 0)),
            maximum_discount=Decimal(str(self.maximum_discount or 0)),
            total_limit=self.total_limit or 0,
            per_customer_limit=self.per_customer_limit or 0,
            current_usage=self.current_usage or 0,
            customer_usage=self.redemptions_by(customer_id),
            applicable_products=self.applicable_product_ids(),
            excluded_products=self.excluded_product_ids(),
            buy_quantity=self.buy_quantity or 0,
            get_quantity=self.get_quantity or 0,
        )

    # -------------------------------------------------------------------
    # Usage
    # -------------------------------------------------------------------
    def redeem(self, customer_id, checkout_id):
        """Record one use of the promotion by a checkout."""
        if self.total_limit and self.current_usage >= self.total_limit:
            raise UsageLimitExceeded("Coupon usage limit reached", limit=self.total_limit)
        if customer_id and self.per_customer_limit and self.redemptions_by(customer_id) >= self.per_customer_limit:
            raise UsageLimitExceeded(
                "You have already used this coupon the maximum number of times",
                limit=self.per_customer_limit,
            )

        self.add_redemptions(
            Redemption(customer_id=customer_id, checkout_id=checkout_id, redeemed_at=datetime.now(UTC))
        )
        self.current_usage = (self.current_usage or 0) + 1
        self.raise_(
            PromotionRedeemed(
                promotion_id=str(self.id),
                customer_id=str(customer_id) if customer_id else None,
                checkout_id=str(checkout_id),
                current_usage=self.current_usage,
            )
        )

    def deactivate(self):
        if not self.is_active:
            raise ValidationError({"is_active": ["Promotion is already inactive"]})
        self.is_active = False
        self.raise_(PromotionDeactivated(promotion_id=str(self.id)))
