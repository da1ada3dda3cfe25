"""Promotion creation and retirement: commands and handler."""

import json

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.promotion.promotion import Promotion
from marketplace.vendor.vendor import Vendor

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Promotion")
class CreatePromotion:
    name = String(required=True, max_length=200)
    description = Text()
    code = String(max_length=50)
    promotion_type = String(required=True, max_length=20)
    value = Float(default=0.0)
    vendor_id = Identifier()  # empty means the promotion is global
    starts_at = DateTime(required=True)
    ends_at = DateTime(required=True)
    minimum_purchase = Float(default=0.0)
    maximum_discount = Float(default=0.0)
    per_customer_limit = Integer(default=0)
    total_limit = Integer(default=0)
    applicable_products = Text()  # JSON array of product ids
    excluded_products = Text()  # JSON array of product ids
    buy_quantity = Integer(default=0)
    get_quantity = Integer(default=0)


@marketplace.command(part_of="Promotion")
class DeactivatePromotion:
    promotion_id = Identifier(required=True)


@marketplace.command_handler(part_of=Promotion)
class PromotionManagementHandler:
    @handle(CreatePromotion)
    def create_promotion(self, command):
        repo = current_domain.repository_for(Promotion)
        if command.code:
            existing = repo._dao.query.filter(code=command.code.strip().upper()).all().items
            if existing:
                raise ValidationError({"code": ["A promotion with this code already exists"]})
        if command.vendor_id:
            # Raises ObjectNotFoundError for unknown vendors
            current_domain.repository_for(Vendor).get(command.vendor_id)

        promotion = Promotion.create(
            name=command.name,
            description=command.description,
            code=command.code,
            promotion_type=command.promotion_type,
            value=command.value,
            vendor_id=command.vendor_id,
            starts_at=command.starts_at,
            ends_at=command.ends_at,
            minimum_purchase=command.minimum_purchase,
            maximum_discount=command.maximum_discount,
            per_customer_limit=command.per_customer_limit,
            total_limit=command.total_limit,
            applicable_products=json.loads(command.applicable_products) if command.applicable_products else None,
            excluded_products=json.loads(command.excluded_products) if command.excluded_products else None,
            buy_quantity=command.buy_quantity,
            get_quantity=command.get_quantity,
        )
        repo.add(promotion)
        logger.info(
            "Promotion created",
            promotion_id=str(promotion.id),
            code=promotion.code,
            scope=promotion.scope,
        )
        return str(promotion.id)

    @handle(DeactivatePromotion)
    def deactivate_promotion(self, command):
        repo = current_domain.repository_for(Promotion)
        promotion = repo.get(command.promotion_id)
        promotion.deactivate()
        repo.add(promotion)
