"""Promotion vocabulary and the immutable rule snapshot used by the resolver."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class PromotionType(Enum):
    PERCENTAGE = "Percentage"
    FIXED_AMOUNT = "Fixed_Amount"
    FREE_DELIVERY = "Free_Delivery"
    BUY_X_GET_Y = "Buy_X_Get_Y"


class PromotionScope(Enum):
    GLOBAL = "Global"
    VENDOR = "Vendor"


@dataclass(frozen=True)
class PromotionRule:
    promotion_id: str
    code: str | None
    promotion_type: PromotionType
    value: Decimal
    scope: PromotionScope
    vendor_id: str | None
    starts_at: datetime
    ends_at: datetime
    is_active: bool = True
    minimum_purchase: Decimal = Decimal("0")
    maximum_discount: Decimal = Decimal("0")  # 0 means uncapped
    total_limit: int = 0  # 0 means unlimited
    per_customer_limit: int = 0
    current_usage: int = 0
    customer_usage: int = 0  # redemptions by the customer being priced
    applicable_products: frozenset = field(default_factory=frozenset)
    excluded_products: frozenset = field(default_factory=frozenset)
    buy_quantity: int = 0
    get_quantity: int = 0

    @property
    def restricts_products(self) -> bool:
        return bool(self.applicable_products or self.excluded_products)

    def covers(self, product_id: str) -> bool:
        if product_id in self.excluded_products:
            return False
        if self.applicable_products:
            return product_id in self.applicable_products
        return True
