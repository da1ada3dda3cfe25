"""Cart abandonment detection: command and handler for flagging idle carts.

Triggered periodically by an external scheduler (cron, K8s CronJob) through
the carts API. Active carts with items that have been idle beyond the
threshold are marked abandoned, never deleted.
"""

from datetime import UTC, datetime, timedelta

import structlog
from protean import handle
from protean.fields import DateTime, Integer
from protean.utils.globals import current_domain

from marketplace.cart.cart import Cart, CartStatus
from marketplace.domain import marketplace
from marketplace.settings import get_settings
from marketplace.shared.clock import as_utc
from marketplace.shared.errors import CartNotActive

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Cart")
class DetectAbandonedCarts:
    """Flag active carts idle beyond the specified threshold."""

    idle_threshold_hours = Integer(min_value=1)  # Defaults to the configured idle window
    as_of = DateTime()  # Optional: defaults to now


@marketplace.command_handler(part_of=Cart)
class DetectAbandonedCartsHandler:
    @handle(DetectAbandonedCarts)
    def detect_abandoned_carts(self, command):
        as_of = as_utc(command.as_of) or datetime.now(UTC)
        threshold_hours = command.idle_threshold_hours or get_settings().cart_idle_hours
        cutoff = as_of - timedelta(hours=threshold_hours)

        logger.info("Checking for abandoned carts", cutoff=cutoff.isoformat(), threshold_hours=threshold_hours)

        repo = current_domain.repository_for(Cart)
        active_carts = repo._dao.query.filter(status=CartStatus.ACTIVE.value).all().items
        idle = [c for c in active_carts if c.items and c.updated_at and as_utc(c.updated_at) <= cutoff]

        if not idle:
            logger.info("No abandoned carts found")
            return 0

        abandoned_count = 0
        for candidate in idle:
            cart = repo.get(candidate.id)
            try:
                cart.abandon()
            except CartNotActive as exc:
                logger.warning("Failed to abandon cart", cart_id=str(cart.id), error=str(exc))
                continue
            repo.add(cart)
            abandoned_count += 1
            logger.info(
                "Marked cart as abandoned",
                cart_id=str(cart.id),
                customer_id=str(cart.customer_id) if cart.customer_id else None,
                item_count=len(cart.items or []),
            )

        logger.info("Cart abandonment detection complete", abandoned_count=abandoned_count)
        return abandoned_count
