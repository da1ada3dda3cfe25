"""Tests for the commission and earnings split of a vendor order."""

from decimal import Decimal

from marketplace.cart.snapshots import VendorTerms
from marketplace.settlement.earnings import delivery_earnings_for, split_earnings
from marketplace.shared.choices import DeliveryMode, FulfillmentType


def _terms(mode=DeliveryMode.PLATFORM):
    return VendorTerms(vendor_id="va", commission_rate=Decimal("10"), delivery_fee=Decimal("3.00"), delivery_mode=mode)


class TestDeliveryEarnings:
    def test_platform_delivery_earns_the_fee(self):
        assert delivery_earnings_for(_terms(), FulfillmentType.DELIVERY, Decimal("3.00")) == Decimal("3.00")

    def test_own_delivery_earns_nothing(self):
        terms = _terms(DeliveryMode.OWN)
        assert delivery_earnings_for(terms, FulfillmentType.DELIVERY, Decimal("3.00")) == Decimal("0.00")

    def test_pickup_earns_nothing(self):
        assert delivery_earnings_for(_terms(), FulfillmentType.PICKUP, Decimal("0.00")) == Decimal("0.00")


class TestSplitEarnings:
    def test_default_commission(self):
        split = split_earnings(Decimal("18.00"), Decimal("10"))
        assert split.commission_amount == Decimal("1.80")
        assert split.platform_earnings == Decimal("1.80")
        assert split.vendor_earnings == Decimal("16.20")
        assert split.delivery_earnings == Decimal("0.00")

    def test_parts_add_up_to_total(self):
        split = split_earnings(Decimal("33.33"), Decimal("12.5"), Decimal("4.00"))
        assert split.total == Decimal("33.33")
        assert split.commission_amount + split.vendor_earnings + split.delivery_earnings == Decimal("33.33")

    def test_courier_share_is_capped_by_what_is_left(self):
        split = split_earnings(Decimal("2.00"), Decimal("10"), Decimal("3.00"))
        assert split.commission_amount == Decimal("0.20")
        assert split.delivery_earnings == Decimal("1.80")
        assert split.vendor_earnings == Decimal("0.00")

    def test_zero_total(self):
        split = split_earnings(Decimal("0.00"), Decimal("10"), Decimal("3.00"))
        assert split.total == Decimal("0.00")
        assert split.vendor_earnings == Decimal("0.00")
