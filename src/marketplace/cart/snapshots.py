"""Frozen inputs for pricing and discount resolution.

Handlers copy what they need out of the Cart, Product and Vendor aggregates
into these snapshots; the pricing and resolver functions never see an
aggregate and never touch a repository.
"""

from dataclasses import dataclass
from decimal import Decimal

from marketplace.shared.choices import DeliveryMode
from marketplace.shared.money import ZERO, quantize


@dataclass(frozen=True)
class LineSnapshot:
    line_id: str
    product_id: str
    vendor_id: str
    quantity: int
    unit_price: Decimal
    name: str = ""

    @property
    def line_total(self) -> Decimal:
        return quantize(self.unit_price * self.quantity)


@dataclass(frozen=True)
class VendorTerms:
    vendor_id: str
    commission_rate: Decimal
    tax_rate: Decimal = ZERO
    delivery_fee: Decimal = ZERO
    packaging_fee: Decimal = ZERO
    delivery_mode: DeliveryMode = DeliveryMode.PLATFORM
    code: str = ""
