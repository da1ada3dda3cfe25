"""Cart pricing engine.

``price_cart`` is a pure function: the same lines, vendor terms, discounts
and service fee always produce the same ``CartQuote``. Per vendor::

    total = subtotal - vendor discount + tax + delivery fee + packaging fee

and for the cart::

    total = sum(vendor totals) - global discount + service fee

Global discounts and the service fee are also split across vendors to the
cent, so each vendor's order total (``VendorQuote.order_total``) adds up to
the cart total exactly.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal

from marketplace.cart.snapshots import LineSnapshot, VendorTerms
from marketplace.promotion.resolver import ResolvedDiscount
from marketplace.promotion.rules import PromotionScope
from marketplace.shared.choices import FulfillmentType
from marketplace.shared.money import ZERO, allocate, percent_of, quantize


@dataclass(frozen=True)
class PricedLine:
    line_id: str
    product_id: str
    vendor_id: str
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    discount: Decimal
    tax: Decimal


@dataclass(frozen=True)
class VendorQuote:
    vendor_id: str
    lines: tuple[PricedLine, ...]
    subtotal: Decimal
    vendor_discount: Decimal
    tax: Decimal
    delivery_fee: Decimal
    packaging_fee: Decimal
    total: Decimal
    global_discount_share: Decimal
    service_fee_share: Decimal

    @property
    def order_discount(self) -> Decimal:
        return quantize(self.vendor_discount + self.global_discount_share)

    @property
    def order_total(self) -> Decimal:
        return quantize(self.total - self.global_discount_share + self.service_fee_share)


@dataclass(frozen=True)
class CartQuote:
    vendors: tuple[VendorQuote, ...]
    discounts: tuple[ResolvedDiscount, ...]
    fulfillment: FulfillmentType
    subtotal: Decimal
    tax: Decimal
    delivery_fee: Decimal
    packaging_fee: Decimal
    service_fee: Decimal
    discount: Decimal
    total: Decimal

    def vendor(self, vendor_id: str) -> VendorQuote | None:
        return next((v for v in self.vendors if v.vendor_id == vendor_id), None)

    @property
    def vendor_ids(self) -> list[str]:
        return [v.vendor_id for v in self.vendors]

    def discount_amount(self, promotion_id: str) -> Decimal:
        found = next((d for d in self.discounts if d.promotion_id == promotion_id), None)
        return found.amount if found else ZERO


def group_by_vendor(lines: Sequence[LineSnapshot]) -> dict[str, list[LineSnapshot]]:
    """Partition lines by vendor, vendors in order of first appearance."""
    grouped: dict[str, list[LineSnapshot]] = {}
    for line in lines:
        grouped.setdefault(line.vendor_id, []).append(line)
    return grouped


def _line_discounts(lines: Sequence[LineSnapshot], discounts: Sequence[ResolvedDiscount]) -> dict[str, Decimal]:
    totals = {line.line_id: ZERO for line in lines}
    for discount in discounts:
        for line_id, share in discount.line_allocations.items():
            if line_id in totals:
                totals[line_id] += share
    return {line_id: quantize(min(amount, _line(lines, line_id).line_total)) for line_id, amount in totals.items()}


def _line(lines: Sequence[LineSnapshot], line_id: str) -> LineSnapshot:
    return next(line for line in lines if line.line_id == line_id)


def price_cart(
    lines: Sequence[LineSnapshot],
    vendors: Mapping[str, VendorTerms],
    discounts: Sequence[ResolvedDiscount] = (),
    *,
    service_fee: Decimal = ZERO,
    fulfillment: FulfillmentType = FulfillmentType.DELIVERY,
) -> CartQuote:
    """Price ``lines`` against vendor terms and already-resolved discounts."""
    grouped = group_by_vendor(lines)
    vendor_discounts = [d for d in discounts if d.scope == PromotionScope.VENDOR]
    global_discounts = [d for d in discounts if d.scope == PromotionScope.GLOBAL]
    line_discounts = _line_discounts(lines, discounts)

    # First pass: vendor totals before global discounts and service fee
    drafts = {}
    for vendor_id, vendor_lines in grouped.items():
        terms = vendors[vendor_id]
        subtotal = quantize(sum((line.line_total for line in vendor_lines), ZERO))
        delivery_fee = ZERO if fulfillment == FulfillmentType.PICKUP else quantize(terms.delivery_fee)
        packaging_fee = quantize(terms.packaging_fee)

        goods_discount = sum(
            (d.line_share_for_vendor(vendor_id, vendor_lines) for d in vendor_discounts if d.vendor_id == vendor_id),
            ZERO,
        )
        fee_discount = sum(
            (d.fee_allocations.get(vendor_id, ZERO) for d in vendor_discounts if d.vendor_id == vendor_id),
            ZERO,
        )
        goods_discount = min(quantize(goods_discount), subtotal)
        fee_discount = min(quantize(fee_discount), delivery_fee + packaging_fee)
        vendor_discount = quantize(goods_discount + fee_discount)

        tax = percent_of(subtotal - goods_discount, terms.tax_rate)
        total = quantize(subtotal - vendor_discount + tax + delivery_fee + packaging_fee)
        drafts[vendor_id] = {
            "subtotal": subtotal,
            "vendor_discount": vendor_discount,
            "tax": tax,
            "delivery_fee": delivery_fee,
            "packaging_fee": packaging_fee,
            "total": total,
        }

    # Global discounts land on each vendor in the proportions the resolver allocated
    global_shares = {}
    for vendor_id, vendor_lines in grouped.items():
        share = sum((d.share_for_vendor(vendor_id, vendor_lines) for d in global_discounts), ZERO)
        global_shares[vendor_id] = min(quantize(share), drafts[vendor_id]["total"])

    service_fee = quantize(service_fee) if grouped else ZERO
    weights = {vendor_id: drafts[vendor_id]["total"] - global_shares[vendor_id] for vendor_id in grouped}
    if sum(weights.values(), ZERO) <= 0:
        weights = {vendor_id: Decimal("1") for vendor_id in grouped}
    service_shares = allocate(service_fee, weights) if grouped else {}

    vendor_quotes = []
    for vendor_id, vendor_lines in grouped.items():
        terms = vendors[vendor_id]
        draft = drafts[vendor_id]
        priced_lines = tuple(
            PricedLine(
                line_id=line.line_id,
                product_id=line.product_id,
                vendor_id=vendor_id,
                name=line.name,
                quantity=line.quantity,
                unit_price=quantize(line.unit_price),
                line_total=line.line_total,
                discount=line_discounts[line.line_id],
                tax=percent_of(line.line_total - line_discounts[line.line_id], terms.tax_rate),
            )
            for line in vendor_lines
        )
        vendor_quotes.append(
            VendorQuote(
                vendor_id=vendor_id,
                lines=priced_lines,
                subtotal=draft["subtotal"],
                vendor_discount=draft["vendor_discount"],
                tax=draft["tax"],
                delivery_fee=draft["delivery_fee"],
                packaging_fee=draft["packaging_fee"],
                total=draft["total"],
                global_discount_share=global_shares[vendor_id],
                service_fee_share=service_shares.get(vendor_id, ZERO),
            )
        )

    vendor_total = sum((v.total for v in vendor_quotes), ZERO)
    global_total = sum((v.global_discount_share for v in vendor_quotes), ZERO)
    return CartQuote(
        vendors=tuple(vendor_quotes),
        discounts=tuple(discounts),
        fulfillment=fulfillment,
        subtotal=quantize(sum((v.subtotal for v in vendor_quotes), ZERO)),
        tax=quantize(sum((v.tax for v in vendor_quotes), ZERO)),
        delivery_fee=quantize(sum((v.delivery_fee for v in vendor_quotes), ZERO)),
        packaging_fee=quantize(sum((v.packaging_fee for v in vendor_quotes), ZERO)),
        service_fee=service_fee,
        discount=quantize(sum((v.vendor_discount for v in vendor_quotes), ZERO) + global_total),
        total=quantize(vendor_total - global_total + service_fee),
    )
