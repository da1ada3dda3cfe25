"""Order aggregate (CQRS): one vendor's share of a checkout.

The order is the settlement unit. Its line items and money fields are frozen
when checkout creates it; afterwards only the status dimensions move.

Status:
    PENDING → CONFIRMED → PROCESSING → READY_FOR_PICKUP | OUT_FOR_DELIVERY →
    DELIVERED → COMPLETED
    CANCELLED (from PENDING, CONFIRMED, PROCESSING)
    FAILED, RETURNED, REFUNDED as alternate endings

Payment status:
    PENDING → AUTHORIZED | PAID → PARTIALLY_REFUNDED → REFUNDED, or FAILED / VOIDED

Delivery sub-status, with its own log:
    UNASSIGNED → ASSIGNED → PICKED_UP → IN_TRANSIT → DELIVERED | FAILED
"""

from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    ValueObject,
)

from marketplace.domain import marketplace
from marketplace.order.events import (
    DeliveryAgentAssigned,
    DeliveryStatusUpdated,
    EarningsFinalized,
    OrderCancelled,
    OrderDelivered,
    OrderPaymentStatusChanged,
    OrderPlaced,
    OrderRefunded,
    OrderReturned,
    OrderStatusChanged,
)
from marketplace.shared.auth import Role
from marketplace.shared.choices import FulfillmentType, PaymentMethod
from marketplace.shared.errors import InvalidTransition
from marketplace.shared.money import approx_equal


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PROCESSING = "Processing"
    READY_FOR_PICKUP = "Ready_For_Pickup"
    OUT_FOR_DELIVERY = "Out_For_Delivery"
    DELIVERED = "Delivered"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"
    RETURNED = "Returned"
    FAILED = "Failed"


class OrderPaymentStatus(Enum):
    PENDING = "Pending"
    AUTHORIZED = "Authorized"
    PAID = "Paid"
    PARTIALLY_REFUNDED = "Partially_Refunded"
    REFUNDED = "Refunded"
    FAILED = "Failed"
    VOIDED = "Voided"


class DeliveryStatus(Enum):
    UNASSIGNED = "Unassigned"
    ASSIGNED = "Assigned"
    PICKED_UP = "Picked_Up"
    IN_TRANSIT = "In_Transit"
    DELIVERED = "Delivered"
    FAILED = "Failed"


class SettlementStatus(Enum):
    PENDING = "Pending"
    FINALIZED = "Finalized"


class CancellationRefundStatus(Enum):
    NOT_DUE = "Not_Due"
    PENDING = "Pending"
    PROCESSED = "Processed"


# State machine transition map
_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {
        OrderStatus.CONFIRMED,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.CONFIRMED: {
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.PROCESSING: {
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.READY_FOR_PICKUP: {
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,  # Pickup orders only
        OrderStatus.FAILED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.OUT_FOR_DELIVERY: {
        OrderStatus.DELIVERED,
        OrderStatus.PROCESSING,  # Delivery failed, back to the vendor
        OrderStatus.RETURNED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.DELIVERED: {OrderStatus.COMPLETED, OrderStatus.REFUNDED},
    OrderStatus.COMPLETED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: {OrderStatus.REFUNDED},
    OrderStatus.RETURNED: {OrderStatus.REFUNDED},
    OrderStatus.FAILED: {OrderStatus.REFUNDED},
    OrderStatus.REFUNDED: set(),  # Terminal
}

# Statuses an actor-requested update can never leave; only the platform moves orders on from here
ACTOR_TERMINAL_STATES = frozenset(
    {
        OrderStatus.DELIVERED,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
        OrderStatus.RETURNED,
        OrderStatus.FAILED,
    }
)

_CANCELLABLE_STATES = {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING}

_DELIVERY_TRANSITIONS = {
    DeliveryStatus.UNASSIGNED: {DeliveryStatus.ASSIGNED},
    DeliveryStatus.ASSIGNED: {DeliveryStatus.PICKED_UP, DeliveryStatus.FAILED},
    DeliveryStatus.PICKED_UP: {DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED, DeliveryStatus.FAILED},
    DeliveryStatus.IN_TRANSIT: {DeliveryStatus.DELIVERED, DeliveryStatus.FAILED},
    DeliveryStatus.DELIVERED: set(),
    DeliveryStatus.FAILED: {DeliveryStatus.ASSIGNED},
}

# Payment statuses under which the customer has actually paid
_PAID_STATES = {OrderPaymentStatus.PAID, OrderPaymentStatus.PARTIALLY_REFUNDED}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@marketplace.value_object(part_of="Order")
class ShippingAddress:
    """Where a delivery order goes. Captured at checkout and never updated."""

    recipient = String(max_length=200)
    street = String(required=True, max_length=255)
    city = String(required=True, max_length=100)
    state = String(max_length=100)
    postal_code = String(required=True, max_length=20)
    country = String(required=True, max_length=100)
    phone = String(max_length=30)


@marketplace.value_object(part_of="Order")
class Cancellation:
    reason = String(required=True, max_length=500)
    initiated_by = String(max_length=255)
    initiated_role = String(max_length=50)
    cancelled_at = DateTime(required=True)
    refund_due = Float(default=0.0)
    refund_status = String(choices=CancellationRefundStatus, default=CancellationRefundStatus.NOT_DUE.value)


@marketplace.value_object(part_of="Order")
class ReturnRecord:
    reason = String(max_length=500)
    status = String(max_length=50, default="Received")
    returned_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@marketplace.entity(part_of="Order")
class OrderLine:
    """A frozen copy of a cart line at the moment of checkout."""

    product_id = Identifier(required=True)
    name = String(max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    discount = Float(default=0.0)
    tax = Float(default=0.0)
    line_total = Float(required=True, min_value=0.0)


@marketplace.entity(part_of="Order")
class StatusChange:
    status = String(required=True, max_length=50)
    changed_at = DateTime(required=True)
    actor_id = String(max_length=255)
    actor_role = String(max_length=50)
    note = String(max_length=1000)
    attachment = String(max_length=500)


@marketplace.entity(part_of="Order")
class DeliveryLogEntry:
    delivery_status = String(required=True, max_length=50)
    delivery_agent_id = Identifier()
    recorded_at = DateTime(required=True)
    actor_id = String(max_length=255)
    location = String(max_length=255)
    note = String(max_length=1000)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@marketplace.aggregate
class Order:
    order_number = String(required=True, max_length=40, unique=True)
    checkout_id = Identifier(required=True)
    customer_id = Identifier()
    vendor_id = Identifier(required=True)
    payment_id = Identifier()
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment_method = String(choices=PaymentMethod, required=True)
    payment_status = String(choices=OrderPaymentStatus, default=OrderPaymentStatus.PENDING.value)
    fulfillment_type = String(choices=FulfillmentType, default=FulfillmentType.DELIVERY.value)
    shipping_address = ValueObject(ShippingAddress)
    lines = HasMany(OrderLine)
    status_history = HasMany(StatusChange)
    delivery_log = HasMany(DeliveryLogEntry)

    subtotal = Float(default=0.0)
    tax = Float(default=0.0)
    delivery_fee = Float(default=0.0)
    packaging_fee = Float(default=0.0)
    service_fee = Float(default=0.0)
    discount = Float(default=0.0)
    total = Float(default=0.0)
    currency = String(max_length=3, default="USD")

    commission_rate = Float(required=True)
    commission_amount = Float(default=0.0)
    vendor_earnings = Float(default=0.0)
    platform_earnings = Float(default=0.0)
    delivery_earnings = Float(default=0.0)
    settlement_status = String(choices=SettlementStatus, default=SettlementStatus.PENDING.value)
    settled_at = DateTime()

    delivery_agent_id = Identifier()
    delivery_status = String(choices=DeliveryStatus, default=DeliveryStatus.UNASSIGNED.value)
    actual_delivery_time = DateTime()
    cancellation = ValueObject(Cancellation)
    return_record = ValueObject(ReturnRecord)
    notification_degraded = Boolean(default=False)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def total_must_match_components(self):
        expected = (
            (self.subtotal or 0)
            + (self.tax or 0)
            + (self.delivery_fee or 0)
            + (self.packaging_fee or 0)
            + (self.service_fee or 0)
            - (self.discount or 0)
        )
        if not approx_equal(self.total or 0, expected):
            raise ValidationError({"total": [f"Order total {self.total} does not match its components {expected:.2f}"]})

    @invariant.post
    def earnings_must_add_up_to_total(self):
        earned = (self.commission_amount or 0) + (self.vendor_earnings or 0) + (self.delivery_earnings or 0)
        if not approx_equal(self.total or 0, earned):
            raise ValidationError({"vendor_earnings": [f"Earnings {earned:.2f} do not add up to total {self.total}"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        order_number,
        checkout_id,
        customer_id,
        vendor_id,
        payment_method,
        fulfillment_type,
        lines,
        amounts,
        earnings,
        commission_rate,
        shipping_address=None,
        currency="USD",
    ):
        """Create an order from a priced vendor share of a cart.

        Args:
            lines: ``OrderLine`` entities, already priced.
            amounts: Dict with subtotal, tax, delivery_fee, packaging_fee,
                service_fee, discount and total, as floats.
            earnings: Dict with commission_amount, vendor_earnings,
                platform_earnings and delivery_earnings, as floats.
        """
        now = datetime.now(UTC)
        order = cls(
            order_number=order_number,
            checkout_id=checkout_id,
            customer_id=customer_id,
            vendor_id=vendor_id,
            payment_method=payment_method,
            payment_status=OrderPaymentStatus.PENDING.value,
            fulfillment_type=fulfillment_type,
            shipping_address=shipping_address,
            status=OrderStatus.PENDING.value,
            currency=currency,
            commission_rate=commission_rate,
            settlement_status=SettlementStatus.PENDING.value,
            delivery_status=DeliveryStatus.UNASSIGNED.value,
            created_at=now,
            updated_at=now,
            **amounts,
            **earnings,
        )
        order.add_lines(lines)
        order.add_status_history(
            StatusChange(
                status=OrderStatus.PENDING.value,
                changed_at=now,
                actor_id=str(customer_id) if customer_id else None,
                actor_role=Role.CUSTOMER.value,
                note="Order placed",
            )
        )
        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order_number,
                checkout_id=str(checkout_id),
                customer_id=str(customer_id) if customer_id else None,
                vendor_id=str(vendor_id),
                payment_method=payment_method,
                fulfillment_type=fulfillment_type,
                item_count=len(lines),
                total=order.total,
                commission_amount=order.commission_amount,
                vendor_earnings=order.vendor_earnings,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # State transition helpers
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status):
        """Validate that the current state allows transition to target."""
        current = OrderStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransition(f"Cannot transition from {current.value} to {target_status.value}")

    def _change_status(self, target_status, actor_id=None, actor_role=None, note=None, attachment=None):
        self._assert_can_transition(target_status)
        previous = self.status
        now = datetime.now(UTC)
        self.status = target_status.value
        self.updated_at = now
        self.add_status_history(
            StatusChange(
                status=target_status.value,
                changed_at=now,
                actor_id=actor_id,
                actor_role=actor_role,
                note=note,
                attachment=attachment,
            )
        )
        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                previous_status=previous,
                new_status=target_status.value,
                actor_id=actor_id,
                actor_role=actor_role,
                note=note,
                changed_at=now,
            )
        )
        return now

    def _set_payment_status(self, new_status):
        previous = self.payment_status
        if previous == new_status.value:
            return
        self.payment_status = new_status.value
        self.updated_at = datetime.now(UTC)
        self.raise_(
            OrderPaymentStatusChanged(
                order_id=str(self.id),
                previous_status=previous,
                new_status=new_status.value,
            )
        )

    @property
    def is_paid(self) -> bool:
        return OrderPaymentStatus(self.payment_status) in _PAID_STATES

    @property
    def is_pickup(self) -> bool:
        return FulfillmentType(self.fulfillment_type) == FulfillmentType.PICKUP

    # -------------------------------------------------------------------
    # Lifecycle transitions
    # -------------------------------------------------------------------
    def confirm(self, actor_id=None, actor_role=None, note=None):
        """Confirm the order. Prepaid orders must be paid first."""
        awaiting_payment = OrderPaymentStatus(self.payment_status) not in (
            OrderPaymentStatus.PAID,
            OrderPaymentStatus.AUTHORIZED,
        )
        if PaymentMethod(self.payment_method) != PaymentMethod.CASH and awaiting_payment:
            raise InvalidTransition("Order cannot be confirmed before payment is received")
        self._change_status(OrderStatus.CONFIRMED, actor_id, actor_role, note)

    def start_processing(self, actor_id=None, actor_role=None, note=None, attachment=None):
        self._change_status(OrderStatus.PROCESSING, actor_id, actor_role, note, attachment)

    def mark_ready_for_pickup(self, actor_id=None, actor_role=None, note=None, attachment=None):
        self._change_status(OrderStatus.READY_FOR_PICKUP, actor_id, actor_role, note, attachment)

    def mark_out_for_delivery(self, actor_id=None, actor_role=None, note=None):
        if self.is_pickup:
            raise InvalidTransition("Pickup orders are not delivered")
        self._change_status(OrderStatus.OUT_FOR_DELIVERY, actor_id, actor_role, note)

    def mark_delivered(self, actor_id=None, actor_role=None, note=None, attachment=None):
        """Record delivery (or collection, for pickup orders) and finalize earnings."""
        current = OrderStatus(self.status)
        if self.is_pickup and current != OrderStatus.READY_FOR_PICKUP:
            raise InvalidTransition("Pickup orders are delivered once collected from the vendor")
        if not self.is_pickup and current != OrderStatus.OUT_FOR_DELIVERY:
            raise InvalidTransition("Delivery orders must be out for delivery first")

        now = self._change_status(OrderStatus.DELIVERED, actor_id, actor_role, note, attachment)
        self.actual_delivery_time = now
        if PaymentMethod(self.payment_method) == PaymentMethod.CASH:
            self._set_payment_status(OrderPaymentStatus.PAID)
        self.raise_(
            OrderDelivered(
                order_id=str(self.id),
                delivery_agent_id=str(self.delivery_agent_id) if self.delivery_agent_id else None,
                delivered_at=now,
            )
        )
        self.finalize_settlement()

    def complete(self, note=None):
        self._change_status(OrderStatus.COMPLETED, "system", Role.SYSTEM.value, note)
        self.finalize_settlement()

    def cancel(self, reason, actor_id=None, actor_role=None):
        """Cancel the order, recording any refund owed to the customer."""
        current = OrderStatus(self.status)
        if current not in _CANCELLABLE_STATES:
            raise InvalidTransition(f"Cannot cancel order in {current.value} state")

        now = self._change_status(OrderStatus.CANCELLED, actor_id, actor_role, reason)
        refund_due = self.total if self.is_paid else 0.0
        self.cancellation = Cancellation(
            reason=reason,
            initiated_by=actor_id,
            initiated_role=actor_role,
            cancelled_at=now,
            refund_due=refund_due,
            refund_status=(
                CancellationRefundStatus.PENDING.value if refund_due else CancellationRefundStatus.NOT_DUE.value
            ),
        )
        if not self.is_paid:
            self._set_payment_status(OrderPaymentStatus.VOIDED)

        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                reason=reason,
                cancelled_by=actor_id,
                refund_due=refund_due,
                cancelled_at=now,
            )
        )

    def mark_failed(self, reason=None, actor_id=None, actor_role=None):
        self._change_status(OrderStatus.FAILED, actor_id, actor_role, reason)
        if not self.is_paid:
            self._set_payment_status(OrderPaymentStatus.VOIDED)

    def mark_returned(self, reason=None, actor_id=None, actor_role=None):
        now = self._change_status(OrderStatus.RETURNED, actor_id, actor_role, reason)
        self.return_record = ReturnRecord(reason=reason, status="Received", returned_at=now)
        self.raise_(OrderReturned(order_id=str(self.id), reason=reason, returned_at=now))

    def return_to_processing(self, note=None):
        """Delivery failed in transit: the vendor has the goods again."""
        if OrderStatus(self.status) != OrderStatus.OUT_FOR_DELIVERY:
            raise InvalidTransition("Only orders out for delivery can return to processing")
        self._change_status(OrderStatus.PROCESSING, "system", Role.SYSTEM.value, note or "Delivery failed")

    # -------------------------------------------------------------------
    # Payment and settlement
    # -------------------------------------------------------------------
    def record_payment_received(self):
        """The payment completed; a pending prepaid order confirms itself."""
        self._set_payment_status(OrderPaymentStatus.PAID)
        if OrderStatus(self.status) == OrderStatus.PENDING:
            self._change_status(OrderStatus.CONFIRMED, "system", Role.SYSTEM.value, "Payment received")

    def record_payment_failed(self):
        self._set_payment_status(OrderPaymentStatus.FAILED)

    def record_payment_voided(self):
        self._set_payment_status(OrderPaymentStatus.VOIDED)

    def record_partial_refund(self):
        self._set_payment_status(OrderPaymentStatus.PARTIALLY_REFUNDED)

    def mark_refunded(self, payment_id):
        """Full refund: the only way an order reaches REFUNDED."""
        now = self._change_status(OrderStatus.REFUNDED, "system", Role.SYSTEM.value, "Payment fully refunded")
        self._set_payment_status(OrderPaymentStatus.REFUNDED)
        self.raise_(OrderRefunded(order_id=str(self.id), payment_id=str(payment_id), refunded_at=now))

    def record_cancellation_refund_processed(self):
        if self.cancellation is None or self.cancellation.refund_status != CancellationRefundStatus.PENDING.value:
            return
        self.cancellation = Cancellation(
            reason=self.cancellation.reason,
            initiated_by=self.cancellation.initiated_by,
            initiated_role=self.cancellation.initiated_role,
            cancelled_at=self.cancellation.cancelled_at,
            refund_due=self.cancellation.refund_due,
            refund_status=CancellationRefundStatus.PROCESSED.value,
        )

    def finalize_settlement(self):
        """Mark vendor earnings eligible for payout. Idempotent."""
        if SettlementStatus(self.settlement_status) == SettlementStatus.FINALIZED:
            return
        now = datetime.now(UTC)
        self.settlement_status = SettlementStatus.FINALIZED.value
        self.settled_at = now
        self.raise_(
            EarningsFinalized(
                order_id=str(self.id),
                vendor_id=str(self.vendor_id),
                vendor_earnings=self.vendor_earnings,
                commission_amount=self.commission_amount,
                delivery_earnings=self.delivery_earnings,
                settled_at=now,
            )
        )

    def flag_notification_degraded(self):
        self.notification_degraded = True

    # -------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------
    def _log_delivery(self, new_status, actor_id=None, location=None, note=None, previous_agent_id=None):
        previous = self.delivery_status
        now = datetime.now(UTC)
        self.delivery_status = new_status.value
        self.updated_at = now
        self.add_delivery_log(
            DeliveryLogEntry(
                delivery_status=new_status.value,
                delivery_agent_id=self.delivery_agent_id,
                recorded_at=now,
                actor_id=actor_id,
                location=location,
                note=note,
            )
        )
        self.raise_(
            DeliveryStatusUpdated(
                order_id=str(self.id),
                delivery_agent_id=str(self.delivery_agent_id) if self.delivery_agent_id else None,
                previous_status=previous,
                new_status=new_status.value,
                location=location,
                updated_at=now,
            )
        )
        return now

    def assign_delivery_agent(self, agent_id, actor_id=None):
        if self.is_pickup:
            raise InvalidTransition("Pickup orders do not need a delivery agent")
        if OrderStatus(self.status) not in (
            OrderStatus.CONFIRMED,
            OrderStatus.PROCESSING,
            OrderStatus.READY_FOR_PICKUP,
        ):
            raise InvalidTransition(f"Cannot assign a delivery agent to an order in {self.status} state")
        current = DeliveryStatus(self.delivery_status)
        if DeliveryStatus.ASSIGNED not in _DELIVERY_TRANSITIONS[current]:
            raise InvalidTransition(f"Cannot assign a delivery agent while delivery is {current.value}")

        self.delivery_agent_id = agent_id
        now = self._log_delivery(DeliveryStatus.ASSIGNED, actor_id=actor_id, note="Delivery agent assigned")
        self.raise_(
            DeliveryAgentAssigned(order_id=str(self.id), delivery_agent_id=str(agent_id), assigned_at=now)
        )

    def reassign_delivery_agent(self, agent_id, actor_id=None):
        """Swap the courier. Only possible before the parcel is picked up."""
        if DeliveryStatus(self.delivery_status) != DeliveryStatus.ASSIGNED:
            raise InvalidTransition("Delivery agents can only be reassigned before pickup")
        if str(agent_id) == str(self.delivery_agent_id):
            raise ValidationError({"delivery_agent_id": ["Order is already assigned to this agent"]})

        previous_agent = self.delivery_agent_id
        self.delivery_agent_id = agent_id
        now = self._log_delivery(DeliveryStatus.ASSIGNED, actor_id=actor_id, note="Delivery agent reassigned")
        self.raise_(
            DeliveryAgentAssigned(
                order_id=str(self.id),
                delivery_agent_id=str(agent_id),
                previous_agent_id=str(previous_agent) if previous_agent else None,
                assigned_at=now,
            )
        )

    def advance_delivery(self, new_status, actor_id=None, location=None, note=None):
        """Move the delivery sub-status on. Order status effects are the caller's job."""
        current = DeliveryStatus(self.delivery_status)
        if new_status not in _DELIVERY_TRANSITIONS[current]:
            raise InvalidTransition(f"Cannot move delivery from {current.value} to {new_status.value}")
        if new_status == DeliveryStatus.ASSIGNED:
            raise InvalidTransition("Use delivery agent assignment to assign a courier")
        self._log_delivery(new_status, actor_id=actor_id, location=location, note=note)
