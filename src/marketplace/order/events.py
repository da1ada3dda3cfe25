"""Domain events for the Order aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from marketplace.domain import marketplace


@marketplace.event(part_of="Order")
class OrderPlaced:
    """A vendor order was created from a checkout."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    checkout_id = Identifier(required=True)
    customer_id = Identifier()
    vendor_id = Identifier(required=True)
    payment_method = String(required=True)
    fulfillment_type = String(required=True)
    item_count = Integer(required=True)
    total = Float(required=True)
    commission_amount = Float(required=True)
    vendor_earnings = Float(required=True)
    placed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderStatusChanged:
    """Every status transition, whoever requested it."""

    __version__ = 1

    order_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    actor_id = String()
    actor_role = String()
    note = String()
    changed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderCancelled:
    __version__ = 1

    order_id = Identifier(required=True)
    reason = String(required=True)
    cancelled_by = String()
    refund_due = Float(required=True)
    cancelled_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderDelivered:
    __version__ = 1

    order_id = Identifier(required=True)
    delivery_agent_id = Identifier()
    delivered_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderReturned:
    __version__ = 1

    order_id = Identifier(required=True)
    reason = String()
    returned_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderRefunded:
    __version__ = 1

    order_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    refunded_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderPaymentStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)


@marketplace.event(part_of="Order")
class EarningsFinalized:
    """Vendor earnings became eligible for payout."""

    __version__ = 1

    order_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    vendor_earnings = Float(required=True)
    commission_amount = Float(required=True)
    delivery_earnings = Float(required=True)
    settled_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class DeliveryAgentAssigned:
    __version__ = 1

    order_id = Identifier(required=True)
    delivery_agent_id = Identifier(required=True)
    previous_agent_id = Identifier()
    assigned_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class DeliveryStatusUpdated:
    __version__ = 1

    order_id = Identifier(required=True)
    delivery_agent_id = Identifier()
    previous_status = String(required=True)
    new_status = String(required=True)
    location = String()
    updated_at = DateTime(required=True)
