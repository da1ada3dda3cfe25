"""Order lifecycle: actor-requested status changes, cancellation and completion.

Checks run in a fixed order and all of them happen before anything changes:
the caller's ``expected_status``, then the terminal-status rule, then
authorization, then the state machine itself. Side effects (stock release,
voiding, cash settlement, notifications) follow a successful transition.
"""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.delivery.agent import DeliveryAgent, find_agent
from marketplace.domain import marketplace
from marketplace.inventory import get_stock
from marketplace.notify import send_notification
from marketplace.order.order import ACTOR_TERMINAL_STATES, Order, OrderStatus
from marketplace.order.permissions import authorize_status_change
from marketplace.payment.payment import Payment, PaymentStatus
from marketplace.shared.auth import AuthContext, Role
from marketplace.shared.choices import PaymentMethod
from marketplace.shared.dispatch import dispatch_resolved
from marketplace.shared.errors import ConcurrencyConflict, InvalidTransition
from marketplace.shared.locks import agent_key, order_key, payment_key
from marketplace.vendor.vendor import Vendor

logger = structlog.get_logger(__name__)

# Endings that put the reserved stock back on the shelf
_RELEASING_STATES = {OrderStatus.CANCELLED, OrderStatus.FAILED, OrderStatus.RETURNED}


@marketplace.command(part_of="Order")
class UpdateOrderStatus:
    order_id = Identifier(required=True)
    status = String(choices=OrderStatus, required=True)
    note = String(max_length=1000)
    attachment = String(max_length=500)
    expected_status = String(choices=OrderStatus)
    actor_id = String(max_length=255)
    actor_role = String(choices=Role)


@marketplace.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    expected_status = String(choices=OrderStatus)
    actor_id = String(max_length=255)
    actor_role = String(choices=Role)


@marketplace.command(part_of="Order")
class CompleteOrder:
    """Platform-only: close a delivered order once its return window has passed."""

    order_id = Identifier(required=True)
    note = String(max_length=1000)


# ---------------------------------------------------------------------------
# Shared helpers (also used by delivery and refunds)
# ---------------------------------------------------------------------------
def load_vendor(vendor_id) -> Vendor | None:
    try:
        return current_domain.repository_for(Vendor).get(vendor_id)
    except ObjectNotFoundError:
        return None


def load_payment(order) -> Payment | None:
    if not order.payment_id:
        return None
    return current_domain.repository_for(Payment).get(order.payment_id)


def check_expected_status(order, expected_status) -> None:
    if expected_status and expected_status != order.status:
        raise ConcurrencyConflict(
            f"Order status changed to {order.status} since it was read",
            expected=expected_status,
            actual=order.status,
        )


def assert_actor_can_move(order) -> None:
    current = OrderStatus(order.status)
    if current in ACTOR_TERMINAL_STATES:
        raise InvalidTransition(f"Order is {current.value}; no further status changes can be requested")


def release_stock(order) -> None:
    stock = get_stock()
    for line in order.lines or []:
        stock.release(str(line.product_id), line.quantity)
    logger.info("Released reserved stock", order_id=str(order.id), lines=len(order.lines or []))


def unwind(order, payment) -> None:
    """Release stock and void a payment that never completed."""
    release_stock(order)
    if payment is not None and PaymentStatus(payment.status) in (PaymentStatus.PENDING, PaymentStatus.FAILED):
        payment.void()
        order.record_payment_voided()


def settle_delivery(order, payment) -> None:
    """Delivery side effects: courier tally and cash collection."""
    if order.delivery_agent_id:
        agent = find_agent(order.delivery_agent_id)
        if agent is not None:
            agent.record_completed_delivery()
            current_domain.repository_for(DeliveryAgent).add(agent)
    if (
        payment is not None
        and PaymentMethod(payment.payment_method) == PaymentMethod.CASH
        and PaymentStatus(payment.status) == PaymentStatus.PENDING
    ):
        payment.complete(provider="cash")


def notify_parties(order, vendor, kind: str, **context) -> None:
    recipients = [order.customer_id, vendor.owner_id if vendor else None]
    delivered = send_notification(
        kind,
        recipients,
        order_id=str(order.id),
        order_number=order.order_number,
        status=order.status,
        **context,
    )
    if not delivered:
        order.flag_notification_degraded()
        current_domain.repository_for(Order).add(order)


def apply_transition(order, payment, target: OrderStatus, actor: AuthContext, note=None, attachment=None) -> None:
    """Move ``order`` to ``target`` and run the transition's side effects."""
    actor_id, actor_role = actor.user_id, actor.role.value
    if target == OrderStatus.CONFIRMED:
        order.confirm(actor_id, actor_role, note)
    elif target == OrderStatus.PROCESSING:
        order.start_processing(actor_id, actor_role, note, attachment)
    elif target == OrderStatus.READY_FOR_PICKUP:
        order.mark_ready_for_pickup(actor_id, actor_role, note, attachment)
    elif target == OrderStatus.OUT_FOR_DELIVERY:
        order.mark_out_for_delivery(actor_id, actor_role, note)
    elif target == OrderStatus.DELIVERED:
        order.mark_delivered(actor_id, actor_role, note, attachment)
        settle_delivery(order, payment)
    elif target == OrderStatus.CANCELLED:
        order.cancel(note or "Cancelled", actor_id, actor_role)
    elif target == OrderStatus.FAILED:
        order.mark_failed(note, actor_id, actor_role)
    elif target == OrderStatus.RETURNED:
        order.mark_returned(note, actor_id, actor_role)
    else:
        raise InvalidTransition(f"{target.value} cannot be requested directly")

    if target in _RELEASING_STATES:
        unwind(order, payment)


def _save(order, payment) -> None:
    current_domain.repository_for(Order).add(order)
    if payment is not None:
        current_domain.repository_for(Payment).add(payment)


def order_lock_keys(order_id) -> list[str]:
    """Locks covering everything an order command may write."""
    order = current_domain.repository_for(Order).get(order_id)
    keys = [order_key(order.id)]
    if order.payment_id:
        keys.append(payment_key(order.payment_id))
    if order.delivery_agent_id:
        keys.append(agent_key(order.delivery_agent_id))
    return keys


def dispatch_order(command):
    return dispatch_resolved(command, lambda: order_lock_keys(command.order_id))


@marketplace.command_handler(part_of=Order)
class OrderLifecycleHandler:
    @handle(UpdateOrderStatus)
    def update_order_status(self, command):
        order = current_domain.repository_for(Order).get(command.order_id)
        actor = AuthContext.of(command.actor_id, command.actor_role)
        target = OrderStatus(command.status)

        check_expected_status(order, command.expected_status)
        assert_actor_can_move(order)
        vendor = load_vendor(order.vendor_id)
        authorize_status_change(order, vendor, actor, target)

        payment = load_payment(order)
        previous = order.status
        apply_transition(order, payment, target, actor, command.note, command.attachment)
        _save(order, payment)
        notify_parties(order, vendor, "order_status_changed", previous_status=previous)

        logger.info(
            "Order status updated",
            order_id=str(order.id),
            previous_status=previous,
            new_status=order.status,
            actor_role=actor.role.value,
        )
        return str(order.id)

    @handle(CancelOrder)
    def cancel_order(self, command):
        order = current_domain.repository_for(Order).get(command.order_id)
        actor = AuthContext.of(command.actor_id, command.actor_role)

        check_expected_status(order, command.expected_status)
        assert_actor_can_move(order)
        vendor = load_vendor(order.vendor_id)
        authorize_status_change(order, vendor, actor, OrderStatus.CANCELLED)

        payment = load_payment(order)
        apply_transition(order, payment, OrderStatus.CANCELLED, actor, command.reason)
        _save(order, payment)
        notify_parties(order, vendor, "order_cancelled", reason=command.reason)

        logger.info("Order cancelled", order_id=str(order.id), actor_role=actor.role.value)
        return str(order.id)

    @handle(CompleteOrder)
    def complete_order(self, command):
        order = current_domain.repository_for(Order).get(command.order_id)
        order.complete(command.note)
        current_domain.repository_for(Order).add(order)
        notify_parties(order, load_vendor(order.vendor_id), "order_completed")
        return str(order.id)
