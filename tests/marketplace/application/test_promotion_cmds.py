"""Application tests for creating and retiring promotions."""

from datetime import UTC, datetime, timedelta

import pytest
from marketplace.promotion.lookup import find_promotion
from marketplace.promotion.management import DeactivatePromotion
from marketplace.promotion.promotion import Promotion
from marketplace.promotion.rules import PromotionScope
from marketplace.shared.errors import CouponInvalid
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError


class TestCreatePromotionCommand:
    def test_global_promotion(self, create_promotion):
        promotion_id = create_promotion(code="save10")
        promotion = current_domain.repository_for(Promotion).get(promotion_id)
        assert promotion.code == "SAVE10"
        assert promotion.scope == PromotionScope.GLOBAL.value
        assert promotion.current_usage == 0

    def test_vendor_promotion(self, create_promotion, register_vendor):
        vendor_id = register_vendor()
        promotion_id = create_promotion(code="VENDOR5", vendor_id=vendor_id)
        promotion = current_domain.repository_for(Promotion).get(promotion_id)
        assert promotion.scope == PromotionScope.VENDOR.value
        assert promotion.vendor_id == vendor_id

    def test_unknown_vendor(self, create_promotion):
        with pytest.raises(ObjectNotFoundError):
            create_promotion(code="NOPE", vendor_id="missing")

    def test_duplicate_code(self, create_promotion):
        create_promotion(code="SAVE10")
        with pytest.raises(ValidationError):
            create_promotion(code="save10")

    def test_percentage_above_100(self, create_promotion):
        with pytest.raises(ValidationError):
            create_promotion(code="TOOMUCH", value=150.0)

    def test_buy_x_get_y_needs_quantities(self, create_promotion):
        with pytest.raises(ValidationError):
            create_promotion(code="BOGO", promotion_type="Buy_X_Get_Y", buy_quantity=2)

    def test_window_must_be_ordered(self, create_promotion):
        now = datetime.now(UTC)
        with pytest.raises(ValidationError):
            create_promotion(code="BACKWARDS", starts_at=now, ends_at=now - timedelta(days=1))

    def test_product_lists(self, create_promotion):
        promotion_id = create_promotion(code="ONLY", applicable_products=["p1", "p2"])
        promotion = current_domain.repository_for(Promotion).get(promotion_id)
        assert promotion.applicable_product_ids() == frozenset({"p1", "p2"})


class TestFindPromotion:
    def test_by_code_is_case_insensitive(self, create_promotion):
        promotion_id = create_promotion(code="SAVE10")
        assert str(find_promotion(code=" save10 ").id) == promotion_id

    def test_unknown_code(self):
        with pytest.raises(CouponInvalid):
            find_promotion(code="MISSING")

    def test_unknown_id(self):
        with pytest.raises(CouponInvalid):
            find_promotion(promotion_id="missing")


class TestDeactivatePromotionCommand:
    def test_deactivate(self, create_promotion):
        promotion_id = create_promotion(code="SAVE10")
        current_domain.process(DeactivatePromotion(promotion_id=promotion_id), asynchronous=False)
        assert current_domain.repository_for(Promotion).get(promotion_id).is_active is False

    def test_deactivate_twice(self, create_promotion):
        promotion_id = create_promotion(code="SAVE10")
        current_domain.process(DeactivatePromotion(promotion_id=promotion_id), asynchronous=False)
        with pytest.raises(ValidationError):
            current_domain.process(DeactivatePromotion(promotion_id=promotion_id), asynchronous=False)
