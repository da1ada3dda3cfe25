"""Application tests for actor-requested order status changes."""

import pytest
from marketplace.notify import set_notifier
from marketplace.notify.port import Notifier
from marketplace.order.lifecycle import CancelOrder, CompleteOrder, UpdateOrderStatus
from marketplace.order.order import (
    CancellationRefundStatus,
    Order,
    OrderPaymentStatus,
    OrderStatus,
    SettlementStatus,
)
from marketplace.payment.payment import Payment, PaymentStatus
from marketplace.shared.errors import ConcurrencyConflict, InvalidTransition, NotAuthorized
from protean import current_domain

VENDOR = {"actor_id": "vendor-owner", "actor_role": "Vendor"}
CUSTOMER = {"actor_id": "cust-001", "actor_role": "Customer"}


def _order(order_id):
    return current_domain.repository_for(Order).get(order_id)


def _payment(payment_id):
    return current_domain.repository_for(Payment).get(payment_id)


def _update(order_id, status, actor=VENDOR, **kwargs):
    command = UpdateOrderStatus(order_id=order_id, status=status, **actor, **kwargs)
    return current_domain.process(command, asynchronous=False)


def _cancel(order_id, actor=CUSTOMER, **kwargs):
    command = CancelOrder(order_id=order_id, reason="Changed my mind", **actor, **kwargs)
    return current_domain.process(command, asynchronous=False)


class TestVendorProgression:
    def test_vendor_confirms_cash_order(self, place_order, notifier):
        placed = place_order()
        _update(placed["order_id"], "Confirmed")

        order = _order(placed["order_id"])
        assert order.status == OrderStatus.CONFIRMED.value
        confirmed = next(h for h in order.status_history if h.status == "Confirmed")
        assert confirmed.actor_id == "vendor-owner"
        assert "order_status_changed" in notifier.kinds()

    def test_vendor_moves_through_processing(self, place_order):
        placed = place_order()
        _update(placed["order_id"], "Confirmed")
        _update(placed["order_id"], "Processing", note="Packing", attachment="photo.jpg")

        order = _order(placed["order_id"])
        assert order.status == OrderStatus.PROCESSING.value
        processing = next(h for h in order.status_history if h.status == "Processing")
        assert processing.attachment == "photo.jpg"

    def test_unpaid_card_order_cannot_be_confirmed(self, place_order):
        placed = place_order(payment_method="Card")
        with pytest.raises(InvalidTransition):
            _update(placed["order_id"], "Confirmed")

    def test_paid_card_order_confirms_itself(self, place_order, pay):
        placed = place_order(payment_method="Card")
        pay(placed["payment_id"])
        assert _order(placed["order_id"]).status == OrderStatus.CONFIRMED.value

    def test_skipping_a_step_is_rejected(self, place_order):
        placed = place_order()
        with pytest.raises(InvalidTransition):
            _update(placed["order_id"], "Processing")


class TestAuthorization:
    def test_customer_cannot_confirm(self, place_order):
        placed = place_order()
        with pytest.raises(NotAuthorized):
            _update(placed["order_id"], "Confirmed", actor=CUSTOMER)

    def test_other_vendor_cannot_touch_the_order(self, place_order):
        placed = place_order()
        with pytest.raises(NotAuthorized):
            _update(placed["order_id"], "Confirmed", actor={"actor_id": "stranger", "actor_role": "Vendor"})

    def test_other_customer_cannot_cancel(self, place_order):
        placed = place_order()
        with pytest.raises(NotAuthorized):
            _cancel(placed["order_id"], actor={"actor_id": "cust-999", "actor_role": "Customer"})

    def test_vendor_cannot_deliver_a_delivery_order(self, place_order):
        placed = place_order()
        _update(placed["order_id"], "Confirmed")
        _update(placed["order_id"], "Processing")
        with pytest.raises(NotAuthorized):
            _update(placed["order_id"], "Delivered")

    def test_rejected_change_leaves_order_untouched(self, place_order):
        placed = place_order()
        with pytest.raises(NotAuthorized):
            _update(placed["order_id"], "Confirmed", actor=CUSTOMER)
        assert _order(placed["order_id"]).status == OrderStatus.PENDING.value


class TestCancellation:
    def test_customer_cancels_pending_order(self, place_order, stock, notifier):
        placed = place_order()
        assert stock.available(placed["product_id"]) == 98

        _cancel(placed["order_id"])

        order = _order(placed["order_id"])
        assert order.status == OrderStatus.CANCELLED.value
        assert order.payment_status == OrderPaymentStatus.VOIDED.value
        assert order.cancellation.reason == "Changed my mind"
        assert order.cancellation.refund_status == CancellationRefundStatus.NOT_DUE.value
        assert stock.available(placed["product_id"]) == 100
        assert _payment(placed["payment_id"]).status == PaymentStatus.VOIDED.value
        assert "order_cancelled" in notifier.kinds()

    def test_cancelling_a_paid_order_records_refund_due(self, place_order, pay):
        placed = place_order(payment_method="Card")
        pay(placed["payment_id"])
        _cancel(placed["order_id"])

        order = _order(placed["order_id"])
        assert order.cancellation.refund_due == 20.0
        assert order.cancellation.refund_status == CancellationRefundStatus.PENDING.value
        assert _payment(placed["payment_id"]).status == PaymentStatus.COMPLETED.value

    def test_vendor_marks_order_failed(self, place_order, stock):
        placed = place_order()
        _update(placed["order_id"], "Failed", note="Out of ingredients")

        order = _order(placed["order_id"])
        assert order.status == OrderStatus.FAILED.value
        assert stock.available(placed["product_id"]) == 100


class TestTerminalStates:
    def test_cancelled_order_cannot_move(self, place_order):
        placed = place_order()
        _cancel(placed["order_id"])
        with pytest.raises(InvalidTransition):
            _update(placed["order_id"], "Confirmed")

    def test_cancelled_order_cannot_be_cancelled_again(self, place_order):
        placed = place_order()
        _cancel(placed["order_id"])
        with pytest.raises(InvalidTransition):
            _cancel(placed["order_id"])

    def test_admin_is_bound_by_terminal_states_too(self, place_order):
        placed = place_order()
        _cancel(placed["order_id"])
        with pytest.raises(InvalidTransition):
            _update(placed["order_id"], "Confirmed", actor={"actor_id": "admin-001", "actor_role": "Admin"})


class TestExpectedStatus:
    def test_matching_expected_status(self, place_order):
        placed = place_order()
        _update(placed["order_id"], "Confirmed", expected_status="Pending")
        assert _order(placed["order_id"]).status == OrderStatus.CONFIRMED.value

    def test_stale_expected_status(self, place_order):
        placed = place_order()
        _update(placed["order_id"], "Confirmed")
        with pytest.raises(ConcurrencyConflict) as exc:
            _update(placed["order_id"], "Processing", expected_status="Pending")
        assert exc.value.details == {"expected": "Pending", "actual": "Confirmed"}

    def test_conflict_is_reported_before_terminal_state(self, place_order):
        placed = place_order()
        _cancel(placed["order_id"])
        with pytest.raises(ConcurrencyConflict):
            _update(placed["order_id"], "Confirmed", expected_status="Pending")


class TimingOutNotifier(Notifier):
    def notify(self, event):
        raise TimeoutError("Notification service did not answer")


class TestNotificationFailure:
    def test_status_change_survives_a_notifier_outage(self, place_order, notifier):
        placed = place_order()
        notifier.configure(should_succeed=False)
        _update(placed["order_id"], "Confirmed")

        order = _order(placed["order_id"])
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.notification_degraded is True

    def test_unexpected_notifier_error_is_contained(self, place_order):
        placed = place_order()
        set_notifier(TimingOutNotifier())
        _cancel(placed["order_id"])

        order = _order(placed["order_id"])
        assert order.status == OrderStatus.CANCELLED.value
        assert order.notification_degraded is True


class TestPickupOrders:
    def _collected(self, place_order):
        placed = place_order(fulfillment_type="Pickup")
        for status in ("Confirmed", "Processing", "Ready_For_Pickup", "Delivered"):
            _update(placed["order_id"], status)
        return placed

    def test_vendor_hands_over_pickup_order(self, place_order):
        placed = self._collected(place_order)

        order = _order(placed["order_id"])
        assert order.status == OrderStatus.DELIVERED.value
        assert order.payment_status == OrderPaymentStatus.PAID.value
        assert order.settlement_status == SettlementStatus.FINALIZED.value
        assert order.actual_delivery_time is not None
        assert _payment(placed["payment_id"]).status == PaymentStatus.COMPLETED.value

    def test_pickup_orders_are_not_sent_out(self, place_order):
        placed = place_order(fulfillment_type="Pickup")
        _update(placed["order_id"], "Confirmed")
        _update(placed["order_id"], "Processing")
        with pytest.raises(InvalidTransition):
            _update(
                placed["order_id"],
                "Out_For_Delivery",
                actor={"actor_id": "admin-001", "actor_role": "Admin"},
            )

    def test_delivered_order_cannot_be_cancelled(self, place_order):
        placed = self._collected(place_order)
        with pytest.raises(InvalidTransition):
            _cancel(placed["order_id"])


class TestCompleteOrderCommand:
    def test_complete_delivered_order(self, place_order, notifier):
        placed = place_order(fulfillment_type="Pickup")
        for status in ("Confirmed", "Processing", "Ready_For_Pickup", "Delivered"):
            _update(placed["order_id"], status)

        command = CompleteOrder(order_id=placed["order_id"], note="Return window closed")
        current_domain.process(command, asynchronous=False)

        assert _order(placed["order_id"]).status == OrderStatus.COMPLETED.value
        assert "order_completed" in notifier.kinds()

    def test_cannot_complete_undelivered_order(self, place_order):
        placed = place_order()
        with pytest.raises(InvalidTransition):
            current_domain.process(CompleteOrder(order_id=placed["order_id"]), asynchronous=False)
