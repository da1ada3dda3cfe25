"""Finding promotions by code or id."""

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from marketplace.promotion.promotion import Promotion
from marketplace.shared.errors import CouponInvalid


def find_promotion(code: str | None = None, promotion_id: str | None = None) -> Promotion:
    """Return the promotion for ``code`` or ``promotion_id``.

    Raises:
        CouponInvalid: nothing matches.
    """
    repo = current_domain.repository_for(Promotion)
    if promotion_id:
        try:
            return repo.get(promotion_id)
        except ObjectNotFoundError:
            raise CouponInvalid("Invalid or expired coupon code") from None
    if code:
        matches = repo._dao.query.filter(code=code.strip().upper()).all().items
        if matches:
            return matches[0]
    raise CouponInvalid("Invalid or expired coupon code")
