"""Commission split for a single vendor order.

Computed once, when the order is created, from the commission rate frozen
onto it. Nothing recomputes these figures afterwards.
"""

from dataclasses import dataclass
from decimal import Decimal

from marketplace.cart.snapshots import VendorTerms
from marketplace.shared.choices import DeliveryMode, FulfillmentType
from marketplace.shared.money import ZERO, percent_of, quantize


@dataclass(frozen=True)
class EarningsSplit:
    commission_amount: Decimal
    vendor_earnings: Decimal
    platform_earnings: Decimal
    delivery_earnings: Decimal

    @property
    def total(self) -> Decimal:
        return quantize(self.commission_amount + self.vendor_earnings + self.delivery_earnings)


def delivery_earnings_for(terms: VendorTerms, fulfillment: FulfillmentType, delivery_fee: Decimal) -> Decimal:
    """The delivery fee goes to the platform's courier only when the platform delivers."""
    if fulfillment != FulfillmentType.DELIVERY or terms.delivery_mode != DeliveryMode.PLATFORM:
        return ZERO
    return quantize(delivery_fee)


def split_earnings(total: Decimal, commission_rate, delivery_earnings: Decimal = ZERO) -> EarningsSplit:
    """Split an order total into commission, courier and vendor shares.

    ``commission_amount + vendor_earnings + delivery_earnings == total``
    always holds. The courier share is capped at what is left after
    commission, so discounts can never push vendor earnings below zero.
    """
    total = quantize(total)
    commission = percent_of(total, commission_rate)
    delivery = max(ZERO, min(quantize(delivery_earnings), total - commission))
    vendor = quantize(total - commission - delivery)
    return EarningsSplit(
        commission_amount=commission,
        vendor_earnings=vendor,
        platform_earnings=commission,
        delivery_earnings=delivery,
    )
