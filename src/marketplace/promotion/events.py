"""Domain events for the Promotion aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from marketplace.domain import marketplace


@marketplace.event(part_of="Promotion")
class PromotionCreated:
    __version__ = 1

    promotion_id = Identifier(required=True)
    code = String()
    promotion_type = String(required=True)
    value = Float(required=True)
    scope = String(required=True)
    vendor_id = Identifier()
    starts_at = DateTime(required=True)
    ends_at = DateTime(required=True)


@marketplace.event(part_of="Promotion")
class PromotionRedeemed:
    """A checkout used the promotion."""

    __version__ = 1

    promotion_id = Identifier(required=True)
    customer_id = Identifier()
    checkout_id = Identifier(required=True)
    current_usage = Integer(required=True)


@marketplace.event(part_of="Promotion")
class PromotionDeactivated:
    __version__ = 1

    promotion_id = Identifier(required=True)
