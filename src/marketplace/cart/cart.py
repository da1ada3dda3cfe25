"""Cart aggregate (CQRS): a customer's or guest's selection across vendors.

The cart owns its line items and applied discounts. Every money field on it
(line totals aside) is a cache written by ``apply_quote`` from the pricing
engine's output; nothing else sets them.
"""

import json
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String

from marketplace.cart.events import (
    CartAbandoned,
    CartCheckedOut,
    CartCleared,
    CartDiscountApplied,
    CartDiscountRemoved,
    CartItemAdded,
    CartItemRemoved,
    CartItemsDropped,
    CartQuantityUpdated,
    CartsMerged,
)
from marketplace.cart.snapshots import LineSnapshot
from marketplace.domain import marketplace
from marketplace.promotion.rules import PromotionScope
from marketplace.shared.choices import FulfillmentType
from marketplace.shared.clock import as_utc
from marketplace.shared.errors import CartNotActive, CouponAlreadyApplied
from marketplace.shared.money import approx_equal, as_float


class CartStatus(Enum):
    ACTIVE = "Active"
    ABANDONED = "Abandoned"
    MERGED = "Merged"


@marketplace.entity(part_of="Cart")
class CartItem:
    product_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    name = String(max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    line_total = Float(required=True, min_value=0.0)
    added_at = DateTime()


@marketplace.entity(part_of="Cart")
class AppliedDiscount:
    promotion_id = Identifier(required=True)
    code = String(max_length=50)
    scope = String(choices=PromotionScope, required=True)
    vendor_id = Identifier()
    amount = Float(default=0.0, min_value=0.0)
    applied_at = DateTime()


@marketplace.entity(part_of="Cart")
class VendorSubtotal:
    """Per-vendor pricing breakdown, rewritten on every reprice."""

    vendor_id = Identifier(required=True)
    subtotal = Float(default=0.0)
    discount = Float(default=0.0)
    tax = Float(default=0.0)
    delivery_fee = Float(default=0.0)
    packaging_fee = Float(default=0.0)
    total = Float(default=0.0)
    global_discount_share = Float(default=0.0)
    service_fee_share = Float(default=0.0)


@marketplace.aggregate
class Cart:
    customer_id = Identifier()
    session_id = String(max_length=255)
    status = String(choices=CartStatus, default=CartStatus.ACTIVE.value)
    fulfillment_type = String(choices=FulfillmentType, default=FulfillmentType.DELIVERY.value)
    items = HasMany(CartItem)
    discounts = HasMany(AppliedDiscount)
    vendor_totals = HasMany(VendorSubtotal)
    subtotal = Float(default=0.0)
    tax = Float(default=0.0)
    delivery_fee = Float(default=0.0)
    packaging_fee = Float(default=0.0)
    service_fee = Float(default=0.0)
    discount = Float(default=0.0)
    total = Float(default=0.0)
    currency = String(max_length=3, default="USD")
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def cart_must_have_exactly_one_owner(self):
        if bool(self.customer_id) == bool(self.session_id):
            raise ValidationError({"owner": ["A cart belongs to either a customer or a guest session"]})

    @invariant.post
    def cached_total_must_add_up(self):
        expected = (
            (self.subtotal or 0)
            + (self.tax or 0)
            + (self.delivery_fee or 0)
            + (self.packaging_fee or 0)
            + (self.service_fee or 0)
            - (self.discount or 0)
        )
        if not approx_equal(self.total or 0, expected):
            raise ValidationError({"total": [f"Cart total {self.total} does not match its components {expected:.2f}"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, customer_id=None, session_id=None, currency="USD"):
        if bool(customer_id) == bool(session_id):
            raise ValidationError({"owner": ["Provide either a customer id or a session id"]})
        now = datetime.now(UTC)
        return cls(
            customer_id=customer_id,
            session_id=session_id,
            status=CartStatus.ACTIVE.value,
            currency=currency,
            created_at=now,
            updated_at=now,
        )

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _assert_active(self, action: str) -> None:
        if CartStatus(self.status) != CartStatus.ACTIVE:
            raise CartNotActive(f"Cannot {action}: cart is {self.status}")

    def _touch(self) -> None:
        self.updated_at = datetime.now(UTC)

    def find_item(self, item_id):
        item = next((i for i in (self.items or []) if str(i.id) == str(item_id)), None)
        if item is None:
            raise ValidationError({"item_id": ["Item not found in cart"]})
        return item

    def item_for_product(self, product_id):
        return next((i for i in (self.items or []) if str(i.product_id) == str(product_id)), None)

    @property
    def owner_id(self) -> str:
        return str(self.customer_id or self.session_id)

    def line_snapshots(self) -> list[LineSnapshot]:
        """Freeze the line items, oldest first, for pricing."""
        ordered = sorted(
            self.items or [],
            key=lambda i: (as_utc(i.added_at) or datetime.min.replace(tzinfo=UTC), str(i.id)),
        )
        return [
            LineSnapshot(
                line_id=str(i.id),
                product_id=str(i.product_id),
                vendor_id=str(i.vendor_id),
                quantity=i.quantity,
                unit_price=Decimal(str(i.unit_price)),
                name=i.name or "",
            )
            for i in ordered
        ]

    # -------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------
    def add_item(self, product_id, vendor_id, unit_price, quantity, name=None):
        """Add a product, or top up the quantity of a product already in the cart."""
        self._assert_active("add items")
        now = datetime.now(UTC)

        existing = self.item_for_product(product_id)
        if existing:
            with atomic_change(self):
                existing.quantity += quantity
                existing.line_total = as_float(Decimal(str(existing.unit_price)) * existing.quantity)
            item = existing
        else:
            item = CartItem(
                product_id=product_id,
                vendor_id=vendor_id,
                name=name,
                quantity=quantity,
                unit_price=unit_price,
                line_total=as_float(Decimal(str(unit_price)) * quantity),
                added_at=now,
            )
            self.add_items(item)
        self.updated_at = now

        self.raise_(
            CartItemAdded(
                cart_id=str(self.id),
                item_id=str(item.id),
                product_id=str(product_id),
                vendor_id=str(vendor_id),
                quantity=quantity,
                unit_price=item.unit_price,
            )
        )
        return item

    def update_item_quantity(self, item_id, new_quantity):
        self._assert_active("update quantities")
        if new_quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})

        item = self.find_item(item_id)
        previous_quantity = item.quantity
        with atomic_change(self):
            item.quantity = new_quantity
            item.line_total = as_float(Decimal(str(item.unit_price)) * new_quantity)
        self._touch()

        self.raise_(
            CartQuantityUpdated(
                cart_id=str(self.id),
                item_id=str(item_id),
                previous_quantity=previous_quantity,
                new_quantity=new_quantity,
            )
        )

    def remove_item(self, item_id):
        self._assert_active("remove items")
        item = self.find_item(item_id)
        self.remove_items(item)
        self._touch()
        self.raise_(CartItemRemoved(cart_id=str(self.id), item_id=str(item_id)))

    def refresh_unit_price(self, item_id, unit_price):
        """Bring a line up to the product's current price."""
        item = self.find_item(item_id)
        if approx_equal(item.unit_price, unit_price, tolerance=0.0):
            return
        with atomic_change(self):
            item.unit_price = unit_price
            item.line_total = as_float(Decimal(str(unit_price)) * item.quantity)

    def drop_items(self, item_ids, reason):
        """Silently remove lines whose product or vendor is gone."""
        dropped = []
        for item_id in item_ids:
            item = next((i for i in (self.items or []) if str(i.id) == str(item_id)), None)
            if item is not None:
                self.remove_items(item)
                dropped.append(str(item_id))
        if dropped:
            self.raise_(CartItemsDropped(cart_id=str(self.id), item_ids=json.dumps(dropped), reason=reason))
        return dropped

    # -------------------------------------------------------------------
    # Discounts
    # -------------------------------------------------------------------
    def has_discount(self, promotion_id=None, code=None) -> bool:
        for d in self.discounts or []:
            if promotion_id and str(d.promotion_id) == str(promotion_id):
                return True
            if code and d.code and d.code == code.strip().upper():
                return True
        return False

    def apply_discount(self, resolved):
        """Attach a discount the resolver has already validated and priced."""
        self._assert_active("apply discounts")
        if self.has_discount(promotion_id=resolved.promotion_id, code=resolved.code):
            raise CouponAlreadyApplied("Coupon already applied")

        now = datetime.now(UTC)
        self.add_discounts(
            AppliedDiscount(
                promotion_id=resolved.promotion_id,
                code=resolved.code,
                scope=resolved.scope.value,
                vendor_id=resolved.vendor_id,
                amount=as_float(resolved.amount),
                applied_at=now,
            )
        )
        self.updated_at = now
        self.raise_(
            CartDiscountApplied(
                cart_id=str(self.id),
                promotion_id=resolved.promotion_id,
                code=resolved.code,
                scope=resolved.scope.value,
                vendor_id=resolved.vendor_id,
                amount=as_float(resolved.amount),
            )
        )

    def remove_discount(self, code=None, promotion_id=None, reason="Removed by customer"):
        self._assert_active("remove discounts")
        self._remove_discount(code=code, promotion_id=promotion_id, reason=reason)
        self._touch()

    def _remove_discount(self, code=None, promotion_id=None, reason=None):
        normalized = code.strip().upper() if code else None
        applied = next(
            (
                d
                for d in (self.discounts or [])
                if (promotion_id and str(d.promotion_id) == str(promotion_id)) or (normalized and d.code == normalized)
            ),
            None,
        )
        if applied is None:
            raise ValidationError({"code": ["Coupon is not applied to this cart"]})
        self.remove_discounts(applied)
        self.raise_(
            CartDiscountRemoved(
                cart_id=str(self.id),
                promotion_id=str(applied.promotion_id),
                code=applied.code,
                reason=reason,
            )
        )

    def drop_discount(self, promotion_id, reason):
        """Remove a discount that no longer resolves, without failing the caller."""
        if self.has_discount(promotion_id=promotion_id):
            self._remove_discount(promotion_id=promotion_id, reason=reason)

    # -------------------------------------------------------------------
    # Pricing
    # -------------------------------------------------------------------
    def set_fulfillment_type(self, fulfillment_type):
        self._assert_active("change fulfillment")
        self.fulfillment_type = FulfillmentType(fulfillment_type).value
        self._touch()

    def apply_quote(self, quote):
        """Overwrite every cached money field from a pricing engine quote."""
        rows = {str(row.vendor_id): row for row in (self.vendor_totals or [])}
        for vendor_id, row in list(rows.items()):
            if quote.vendor(vendor_id) is None:
                self.remove_vendor_totals(row)

        for vq in quote.vendors:
            values = {
                "subtotal": as_float(vq.subtotal),
                "discount": as_float(vq.vendor_discount),
                "tax": as_float(vq.tax),
                "delivery_fee": as_float(vq.delivery_fee),
                "packaging_fee": as_float(vq.packaging_fee),
                "total": as_float(vq.total),
                "global_discount_share": as_float(vq.global_discount_share),
                "service_fee_share": as_float(vq.service_fee_share),
            }
            row = rows.get(vq.vendor_id)
            if row is None:
                self.add_vendor_totals(VendorSubtotal(vendor_id=vq.vendor_id, **values))
            else:
                for field_name, value in values.items():
                    setattr(row, field_name, value)

        amounts = {d.promotion_id: d.amount for d in quote.discounts}
        for applied in self.discounts or []:
            if str(applied.promotion_id) in amounts:
                applied.amount = as_float(amounts[str(applied.promotion_id)])

        with atomic_change(self):
            self.subtotal = as_float(quote.subtotal)
            self.tax = as_float(quote.tax)
            self.delivery_fee = as_float(quote.delivery_fee)
            self.packaging_fee = as_float(quote.packaging_fee)
            self.service_fee = as_float(quote.service_fee)
            self.discount = as_float(quote.discount)
            self.total = as_float(quote.total)

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def clear(self):
        """Empty the cart of every item and discount."""
        self._assert_active("clear the cart")
        for item in list(self.items or []):
            self.remove_items(item)
        for applied in list(self.discounts or []):
            self.remove_discounts(applied)
        self._touch()
        self.raise_(CartCleared(cart_id=str(self.id)))

    def merge_from(self, guest_cart, available=None):
        """Move a guest cart's items into this customer cart.

        Matching products have their quantities added together, capped at
        ``available`` (product id to stock on hand) when it is given. The
        guest cart is marked merged and left empty.
        """
        self._assert_active("merge carts")
        guest_cart._assert_active("merge carts")
        if guest_cart.customer_id or not self.customer_id:
            raise ValidationError({"cart": ["Only a guest cart can be merged into a customer cart"]})

        merged = 0
        for guest_item in guest_cart.line_snapshots():
            quantity = guest_item.quantity
            if available is not None:
                existing = self.item_for_product(guest_item.product_id)
                room = available.get(str(guest_item.product_id), 0) - (existing.quantity if existing else 0)
                quantity = min(quantity, room)
            if quantity <= 0:
                continue
            self.add_item(
                product_id=guest_item.product_id,
                vendor_id=guest_item.vendor_id,
                unit_price=float(guest_item.unit_price),
                quantity=quantity,
                name=guest_item.name,
            )
            merged += 1

        for item in list(guest_cart.items or []):
            guest_cart.remove_items(item)
        for applied in list(guest_cart.discounts or []):
            guest_cart.remove_discounts(applied)
        guest_cart.status = CartStatus.MERGED.value
        guest_cart._touch()

        self.raise_(
            CartsMerged(
                cart_id=str(self.id),
                source_cart_id=str(guest_cart.id),
                items_merged_count=merged,
            )
        )
        return merged

    def check_out_items(self, checkout_id, item_ids, promotion_ids, order_ids):
        """Remove the lines and discounts that became orders."""
        for item_id in item_ids:
            self.remove_items(self.find_item(item_id))
        for promotion_id in promotion_ids:
            if self.has_discount(promotion_id=promotion_id):
                self._remove_discount(promotion_id=promotion_id, reason="Redeemed at checkout")
        self._touch()
        self.raise_(
            CartCheckedOut(
                cart_id=str(self.id),
                checkout_id=str(checkout_id),
                order_ids=json.dumps([str(o) for o in order_ids]),
                remaining_items=len(self.items or []),
            )
        )

    def abandon(self):
        if CartStatus(self.status) != CartStatus.ACTIVE:
            raise CartNotActive("Only active carts can be abandoned")
        now = datetime.now(UTC)
        self.status = CartStatus.ABANDONED.value
        self.updated_at = now
        self.raise_(CartAbandoned(cart_id=str(self.id), abandoned_at=now))
