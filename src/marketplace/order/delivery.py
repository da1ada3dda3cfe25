"""Delivery: courier assignment and the delivery sub-status.

The delivery sub-status has its own log on the order and moves the order
status only at three points: pickup (out for delivery), drop-off
(delivered) and failure (back to processing, or returned to the vendor).
"""

import structlog
from protean import handle
from protean.fields import Boolean, Identifier, String
from protean.utils.globals import current_domain

from marketplace.delivery.agent import find_agent
from marketplace.domain import marketplace
from marketplace.geo import get_matcher
from marketplace.order.lifecycle import (
    check_expected_status,
    load_payment,
    load_vendor,
    notify_parties,
    settle_delivery,
    unwind,
)
from marketplace.order.order import DeliveryStatus, Order, OrderStatus
from marketplace.order.permissions import authorize_delivery_assignment, authorize_delivery_update
from marketplace.payment.payment import Payment
from marketplace.shared.auth import AuthContext, Role
from marketplace.shared.errors import InvalidTransition, NoDeliveryAgentAvailable

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Order")
class AssignDeliveryAgent:
    """Assign a courier; without ``delivery_agent_id`` the geo matcher picks one."""

    order_id = Identifier(required=True)
    delivery_agent_id = Identifier()
    location = String(max_length=255)
    expected_status = String(choices=OrderStatus)
    actor_id = String(max_length=255)
    actor_role = String(choices=Role)


@marketplace.command(part_of="Order")
class ReassignDeliveryAgent:
    order_id = Identifier(required=True)
    delivery_agent_id = Identifier()
    location = String(max_length=255)
    actor_id = String(max_length=255)
    actor_role = String(choices=Role)


@marketplace.command(part_of="Order")
class UpdateDeliveryStatus:
    order_id = Identifier(required=True)
    delivery_status = String(choices=DeliveryStatus, required=True)
    location = String(max_length=255)
    note = String(max_length=1000)
    return_to_vendor = Boolean(default=False)  # On failure: goods go back for good
    actor_id = String(max_length=255)
    actor_role = String(choices=Role)


def choose_agent(order, requested_agent_id=None, location=None) -> str:
    """Resolve the courier to use, asking the geo matcher when none is named."""
    agent_id = requested_agent_id or get_matcher().match(str(order.vendor_id), location)
    if not agent_id:
        raise NoDeliveryAgentAvailable("No delivery agent is available for this order")

    agent = find_agent(agent_id)
    if agent is None or not agent.is_available:
        raise NoDeliveryAgentAvailable("Delivery agent is not available", delivery_agent_id=str(agent_id))
    return str(agent.user_id)


@marketplace.command_handler(part_of=Order)
class OrderDeliveryHandler:
    @handle(AssignDeliveryAgent)
    def assign_delivery_agent(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        actor = AuthContext.of(command.actor_id, command.actor_role)

        check_expected_status(order, command.expected_status)
        vendor = load_vendor(order.vendor_id)
        authorize_delivery_assignment(order, vendor, actor)

        agent_id = choose_agent(order, command.delivery_agent_id, command.location)
        order.assign_delivery_agent(agent_id, actor_id=actor.user_id)
        repo.add(order)
        notify_parties(order, vendor, "delivery_agent_assigned", delivery_agent_id=agent_id)

        logger.info("Delivery agent assigned", order_id=str(order.id), delivery_agent_id=agent_id)
        return agent_id

    @handle(ReassignDeliveryAgent)
    def reassign_delivery_agent(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        actor = AuthContext.of(command.actor_id, command.actor_role)

        vendor = load_vendor(order.vendor_id)
        authorize_delivery_assignment(order, vendor, actor)
        if DeliveryStatus(order.delivery_status) != DeliveryStatus.ASSIGNED:
            raise InvalidTransition("Delivery agents can only be reassigned before pickup")

        agent_id = choose_agent(order, command.delivery_agent_id, command.location)
        order.reassign_delivery_agent(agent_id, actor_id=actor.user_id)
        repo.add(order)
        notify_parties(order, vendor, "delivery_agent_assigned", delivery_agent_id=agent_id)

        logger.info("Delivery agent reassigned", order_id=str(order.id), delivery_agent_id=agent_id)
        return agent_id

    @handle(UpdateDeliveryStatus)
    def update_delivery_status(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        actor = AuthContext.of(command.actor_id, command.actor_role)
        new_status = DeliveryStatus(command.delivery_status)

        authorize_delivery_update(order, actor)
        payment = load_payment(order)

        order.advance_delivery(new_status, actor_id=actor.user_id, location=command.location, note=command.note)
        current = OrderStatus(order.status)
        if new_status == DeliveryStatus.PICKED_UP:
            order.mark_out_for_delivery(actor.user_id, actor.role.value, command.note)
        elif new_status == DeliveryStatus.DELIVERED:
            order.mark_delivered(actor.user_id, actor.role.value, command.note)
            settle_delivery(order, payment)
        elif new_status == DeliveryStatus.FAILED and current == OrderStatus.OUT_FOR_DELIVERY:
            if command.return_to_vendor:
                order.mark_returned(command.note or "Delivery failed", actor.user_id, actor.role.value)
                unwind(order, payment)
            else:
                order.return_to_processing(command.note)

        repo.add(order)
        if payment is not None:
            current_domain.repository_for(Payment).add(payment)
        notify_parties(order, load_vendor(order.vendor_id), "delivery_status_changed", delivery_status=new_status.value)

        logger.info(
            "Delivery status updated",
            order_id=str(order.id),
            delivery_status=new_status.value,
            order_status=order.status,
        )
        return str(order.id)
