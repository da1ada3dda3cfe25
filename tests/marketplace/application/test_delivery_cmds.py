"""Application tests for courier assignment and the delivery sub-status."""

import threading

import pytest
from marketplace.delivery.agent import RegisterDeliveryAgent, SetAgentAvailability, find_agent
from marketplace.order.delivery import AssignDeliveryAgent, ReassignDeliveryAgent, UpdateDeliveryStatus
from marketplace.domain import marketplace
from marketplace.order.lifecycle import UpdateOrderStatus, dispatch_order
from marketplace.order.order import DeliveryStatus, Order, OrderPaymentStatus, OrderStatus
from marketplace.payment.payment import Payment, PaymentStatus
from marketplace.shared.errors import InvalidTransition, NoDeliveryAgentAvailable, NotAuthorized
from protean import current_domain

VENDOR = {"actor_id": "vendor-owner", "actor_role": "Vendor"}
AGENT = {"actor_id": "agent-1", "actor_role": "Delivery_Agent"}


def _order(order_id):
    return current_domain.repository_for(Order).get(order_id)


def _register_agent(user_id, name=None):
    current_domain.process(RegisterDeliveryAgent(user_id=user_id, name=name), asynchronous=False)


def _assign(order_id, actor=VENDOR, **kwargs):
    command = AssignDeliveryAgent(order_id=order_id, **actor, **kwargs)
    return current_domain.process(command, asynchronous=False)


def _deliver_step(order_id, status, actor=AGENT, **kwargs):
    command = UpdateDeliveryStatus(order_id=order_id, delivery_status=status, **actor, **kwargs)
    return current_domain.process(command, asynchronous=False)


@pytest.fixture
def processing_order(place_order):
    """A cash delivery order the vendor has confirmed and started on, with one courier on file."""
    _register_agent("agent-1", "Ada")
    placed = place_order()
    for status in ("Confirmed", "Processing"):
        current_domain.process(
            UpdateOrderStatus(order_id=placed["order_id"], status=status, **VENDOR),
            asynchronous=False,
        )
    return placed


@pytest.fixture
def assigned_order(processing_order):
    _assign(processing_order["order_id"], delivery_agent_id="agent-1")
    return processing_order


class TestAssignDeliveryAgentCommand:
    def test_matcher_picks_the_agent(self, processing_order, matcher, notifier):
        matcher.configure("agent-1")
        agent_id = _assign(processing_order["order_id"], location="51.5,-0.1")

        assert agent_id == "agent-1"
        order = _order(processing_order["order_id"])
        assert order.delivery_agent_id == "agent-1"
        assert order.delivery_status == DeliveryStatus.ASSIGNED.value
        assert matcher.calls == [{"vendor_id": processing_order["vendor_id"], "location": "51.5,-0.1"}]
        assert "delivery_agent_assigned" in notifier.kinds()

    def test_named_agent_skips_the_matcher(self, processing_order, matcher):
        assert _assign(processing_order["order_id"], delivery_agent_id="agent-1") == "agent-1"
        assert matcher.calls == []

    def test_no_agent_available(self, processing_order):
        with pytest.raises(NoDeliveryAgentAvailable):
            _assign(processing_order["order_id"])

    def test_unknown_agent(self, processing_order):
        with pytest.raises(NoDeliveryAgentAvailable):
            _assign(processing_order["order_id"], delivery_agent_id="ghost")

    def test_unavailable_agent(self, processing_order):
        current_domain.process(SetAgentAvailability(user_id="agent-1", is_available=False), asynchronous=False)
        with pytest.raises(NoDeliveryAgentAvailable):
            _assign(processing_order["order_id"], delivery_agent_id="agent-1")

    def test_customer_cannot_assign(self, processing_order):
        with pytest.raises(NotAuthorized):
            _assign(
                processing_order["order_id"],
                actor={"actor_id": "cust-001", "actor_role": "Customer"},
                delivery_agent_id="agent-1",
            )

    def test_pending_order_cannot_be_assigned(self, place_order):
        _register_agent("agent-1")
        placed = place_order()
        with pytest.raises(InvalidTransition):
            _assign(placed["order_id"], delivery_agent_id="agent-1")

    def test_pickup_orders_need_no_courier(self, place_order):
        _register_agent("agent-1")
        placed = place_order(fulfillment_type="Pickup")
        current_domain.process(
            UpdateOrderStatus(order_id=placed["order_id"], status="Confirmed", **VENDOR),
            asynchronous=False,
        )
        with pytest.raises(InvalidTransition):
            _assign(placed["order_id"], delivery_agent_id="agent-1")


class TestReassignDeliveryAgentCommand:
    def test_reassign_before_pickup(self, assigned_order):
        _register_agent("agent-2")
        command = ReassignDeliveryAgent(order_id=assigned_order["order_id"], delivery_agent_id="agent-2", **VENDOR)
        assert current_domain.process(command, asynchronous=False) == "agent-2"
        assert _order(assigned_order["order_id"]).delivery_agent_id == "agent-2"

    def test_reassign_after_pickup(self, assigned_order):
        _register_agent("agent-2")
        _deliver_step(assigned_order["order_id"], "Picked_Up")
        command = ReassignDeliveryAgent(order_id=assigned_order["order_id"], delivery_agent_id="agent-2", **VENDOR)
        with pytest.raises(InvalidTransition):
            current_domain.process(command, asynchronous=False)


class TestUpdateDeliveryStatusCommand:
    def test_pickup_sends_order_out(self, assigned_order):
        _deliver_step(assigned_order["order_id"], "Picked_Up", location="Vendor shop")

        order = _order(assigned_order["order_id"])
        assert order.delivery_status == DeliveryStatus.PICKED_UP.value
        assert order.status == OrderStatus.OUT_FOR_DELIVERY.value

    def test_full_delivery_settles_cash(self, assigned_order, notifier):
        for step in ("Picked_Up", "In_Transit", "Delivered"):
            _deliver_step(assigned_order["order_id"], step)

        order = _order(assigned_order["order_id"])
        assert order.status == OrderStatus.DELIVERED.value
        assert order.delivery_status == DeliveryStatus.DELIVERED.value
        assert order.payment_status == OrderPaymentStatus.PAID.value
        assert len(order.delivery_log) == 4

        payment = current_domain.repository_for(Payment).get(assigned_order["payment_id"])
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.provider == "cash"
        assert find_agent("agent-1").completed_deliveries == 1
        assert notifier.kinds().count("delivery_status_changed") == 3

    def test_only_the_assigned_agent(self, assigned_order):
        with pytest.raises(NotAuthorized):
            _deliver_step(
                assigned_order["order_id"],
                "Picked_Up",
                actor={"actor_id": "agent-2", "actor_role": "Delivery_Agent"},
            )

    def test_vendor_cannot_update_delivery(self, assigned_order):
        with pytest.raises(NotAuthorized):
            _deliver_step(assigned_order["order_id"], "Picked_Up", actor=VENDOR)

    def test_cannot_skip_pickup(self, assigned_order):
        with pytest.raises(InvalidTransition):
            _deliver_step(assigned_order["order_id"], "Delivered")

    def test_failed_delivery_goes_back_to_processing(self, assigned_order):
        _deliver_step(assigned_order["order_id"], "Picked_Up")
        _deliver_step(assigned_order["order_id"], "Failed", note="Nobody home")

        order = _order(assigned_order["order_id"])
        assert order.delivery_status == DeliveryStatus.FAILED.value
        assert order.status == OrderStatus.PROCESSING.value

    def test_failed_delivery_can_be_reassigned(self, assigned_order):
        _deliver_step(assigned_order["order_id"], "Picked_Up")
        _deliver_step(assigned_order["order_id"], "Failed")
        _register_agent("agent-2")

        assert _assign(assigned_order["order_id"], delivery_agent_id="agent-2") == "agent-2"
        assert _order(assigned_order["order_id"]).delivery_status == DeliveryStatus.ASSIGNED.value

    def test_failed_delivery_returned_to_vendor(self, assigned_order, stock):
        _deliver_step(assigned_order["order_id"], "Picked_Up")
        _deliver_step(assigned_order["order_id"], "Failed", return_to_vendor=True, note="Address not found")

        order = _order(assigned_order["order_id"])
        assert order.status == OrderStatus.RETURNED.value
        assert order.return_record.reason == "Address not found"
        assert stock.available(assigned_order["product_id"]) == 100

        payment = current_domain.repository_for(Payment).get(assigned_order["payment_id"])
        assert payment.status == PaymentStatus.VOIDED.value


class TestConcurrentDeliveries:
    def test_courier_tally_counts_every_drop_off(self, place_order):
        _register_agent("agent-1", "Ada")
        order_ids = []
        for _ in range(2):
            placed = place_order()
            for status in ("Confirmed", "Processing"):
                current_domain.process(
                    UpdateOrderStatus(order_id=placed["order_id"], status=status, **VENDOR),
                    asynchronous=False,
                )
            _assign(placed["order_id"], delivery_agent_id="agent-1")
            _deliver_step(placed["order_id"], "Picked_Up")
            order_ids.append(placed["order_id"])

        errors = []
        barrier = threading.Barrier(len(order_ids))

        def run(order_id):
            with marketplace.domain_context():
                barrier.wait()
                try:
                    dispatch_order(UpdateDeliveryStatus(order_id=order_id, delivery_status="Delivered", **AGENT))
                except Exception as exc:  # noqa: BLE001
                    errors.append(exc)

        threads = [threading.Thread(target=run, args=(order_id,)) for order_id in order_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert all(_order(order_id).status == OrderStatus.DELIVERED.value for order_id in order_ids)
        assert find_agent("agent-1").completed_deliveries == 2
