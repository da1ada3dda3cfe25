"""Order summary: the listing view behind customer order history and vendor order queues."""

from protean.core.projector import on
from protean.fields import DateTime, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.order.events import OrderPaymentStatusChanged, OrderPlaced, OrderStatusChanged
from marketplace.order.order import Order


@marketplace.projection
class OrderSummary:
    order_id = Identifier(identifier=True, required=True)
    order_number = String(required=True)
    checkout_id = Identifier()
    customer_id = Identifier()
    vendor_id = Identifier(required=True)
    status = String(required=True)
    payment_status = String(required=True)
    payment_method = String()
    fulfillment_type = String()
    item_count = Integer(default=0)
    total = Float()
    placed_at = DateTime()
    updated_at = DateTime()


@marketplace.projector(projector_for=OrderSummary, aggregates=[Order])
class OrderSummaryProjector:
    @on(OrderPlaced)
    def on_order_placed(self, event):
        current_domain.repository_for(OrderSummary).add(
            OrderSummary(
                order_id=event.order_id,
                order_number=event.order_number,
                checkout_id=event.checkout_id,
                customer_id=event.customer_id,
                vendor_id=event.vendor_id,
                status="Pending",
                payment_status="Pending",
                payment_method=event.payment_method,
                fulfillment_type=event.fulfillment_type,
                item_count=event.item_count,
                total=event.total,
                placed_at=event.placed_at,
                updated_at=event.placed_at,
            )
        )

    @on(OrderStatusChanged)
    def on_order_status_changed(self, event):
        repo = current_domain.repository_for(OrderSummary)
        summary = repo.get(event.order_id)
        summary.status = event.new_status
        summary.updated_at = event.changed_at
        repo.add(summary)

    @on(OrderPaymentStatusChanged)
    def on_payment_status_changed(self, event):
        repo = current_domain.repository_for(OrderSummary)
        summary = repo.get(event.order_id)
        summary.payment_status = event.new_status
        repo.add(summary)


def _newest_first(summaries) -> list[OrderSummary]:
    return sorted(summaries, key=lambda s: s.placed_at, reverse=True)


def orders_for_customer(customer_id, status: str | None = None) -> list[OrderSummary]:
    """A customer's orders across every vendor, newest first."""
    filters = {"customer_id": str(customer_id)}
    if status:
        filters["status"] = status
    repo = current_domain.repository_for(OrderSummary)
    return _newest_first(repo._dao.query.filter(**filters).all().items)


def orders_for_vendor(vendor_id, status: str | None = None) -> list[OrderSummary]:
    """A vendor's order queue, newest first, optionally narrowed to one status."""
    filters = {"vendor_id": str(vendor_id)}
    if status:
        filters["status"] = status
    repo = current_domain.repository_for(OrderSummary)
    return _newest_first(repo._dao.query.filter(**filters).all().items)
