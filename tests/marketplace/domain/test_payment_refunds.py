"""Tests for the Payment aggregate: charge attempts and the refund ledger."""

from decimal import Decimal

import pytest
from marketplace.payment.events import RefundRequested
from marketplace.payment.payment import (
    MAX_PAYMENT_ATTEMPTS,
    Payment,
    PaymentStatus,
    RefundStatus,
    RefundTarget,
)
from marketplace.shared.errors import (
    AlreadyRefunded,
    InvalidRefundAmount,
    InvalidTransition,
    PaymentNotRefundable,
)
from protean.exceptions import ValidationError


def _payment(amount=20.0):
    return Payment.create(
        order_id="order-001",
        checkout_id="chk-001",
        customer_id="cust-001",
        vendor_id="vendor-001",
        amount=amount,
        payment_method="Card",
        platform_fee=2.0,
        vendor_amount=amount - 2.0,
    )


def _completed(amount=20.0):
    payment = _payment(amount)
    payment.begin_attempt()
    payment.complete("fake", "txn-001")
    return payment


class TestChargeAttempts:
    def test_new_payment_is_pending(self):
        payment = _payment()
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.attempts == 0

    def test_complete(self):
        payment = _completed()
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.provider == "fake"
        assert payment.gateway_transaction_id == "txn-001"
        assert payment.completed_at is not None

    def test_failed_payment_can_be_retried(self):
        payment = _payment()
        payment.begin_attempt()
        payment.fail("Card declined")
        payment.begin_attempt()
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.attempts == 2

    def test_attempts_are_limited(self):
        payment = _payment()
        for _ in range(MAX_PAYMENT_ATTEMPTS):
            payment.begin_attempt()
            payment.fail("Card declined")
        with pytest.raises(ValidationError):
            payment.begin_attempt()

    def test_completed_payment_cannot_be_charged_again(self):
        payment = _completed()
        with pytest.raises(InvalidTransition):
            payment.begin_attempt()

    def test_void_pending_payment(self):
        payment = _payment()
        payment.void()
        assert payment.status == PaymentStatus.VOIDED.value

    def test_completed_payment_cannot_be_voided(self):
        payment = _completed()
        with pytest.raises(InvalidTransition):
            payment.void()

    def test_gateway_outage_is_flagged(self):
        payment = _payment()
        payment.flag_gateway_degraded("Gateway unavailable")
        assert payment.gateway_degraded is True
        assert payment.status == PaymentStatus.PENDING.value


class TestRefundLedger:
    def test_partial_refund(self):
        payment = _completed()
        refund = payment.request_refund(5.0, "Damaged item", RefundTarget.ORIGINAL, "admin-1")
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert payment.total_refunded == 5.0
        assert payment.refundable_amount == Decimal("15.00")
        assert refund.status == RefundStatus.PENDING.value
        assert isinstance(payment._events[-1], RefundRequested)

    def test_refunds_add_up_to_full_refund(self):
        payment = _completed()
        payment.request_refund(5.0, "Damaged item", RefundTarget.ORIGINAL)
        payment.request_refund(15.0, "Rest of the order", RefundTarget.WALLET)
        assert payment.status == PaymentStatus.REFUNDED.value
        assert payment.is_fully_refunded
        assert payment.refundable_amount == Decimal("0.00")
        assert len(payment.refunds) == 2

    def test_fully_refunded_payment_rejects_more(self):
        payment = _completed()
        payment.request_refund(20.0, "Cancelled", RefundTarget.ORIGINAL)
        with pytest.raises(AlreadyRefunded):
            payment.request_refund(1.0, "Again", RefundTarget.ORIGINAL)

    def test_pending_payment_is_not_refundable(self):
        with pytest.raises(PaymentNotRefundable):
            _payment().request_refund(5.0, "Too early", RefundTarget.ORIGINAL)

    def test_amount_must_be_positive(self):
        with pytest.raises(InvalidRefundAmount):
            _completed().request_refund(0, "Nothing", RefundTarget.ORIGINAL)

    def test_amount_cannot_exceed_refundable_balance(self):
        payment = _completed()
        payment.request_refund(15.0, "Most of it", RefundTarget.ORIGINAL)
        with pytest.raises(InvalidRefundAmount) as exc:
            payment.request_refund(10.0, "Too much", RefundTarget.ORIGINAL)
        assert exc.value.details["refundable"] == "5.00"

    def test_refund_processed(self):
        payment = _completed()
        refund = payment.request_refund(5.0, "Damaged item", RefundTarget.ORIGINAL)
        payment.mark_refund_processed(refund.id, "rf-001")
        assert refund.status == RefundStatus.PROCESSED.value
        assert refund.gateway_refund_id == "rf-001"
        assert refund.processed_at is not None

    def test_refund_retry_keeps_it_pending(self):
        payment = _completed()
        refund = payment.request_refund(5.0, "Damaged item", RefundTarget.ORIGINAL)
        payment.schedule_refund_retry(refund.id, "Gateway unavailable")
        assert refund.status == RefundStatus.PENDING.value
        assert refund.needs_retry is True
        assert payment.pending_retries() == [refund]
        # The retried refund still counts against the balance
        assert payment.refundable_amount == Decimal("15.00")

    def test_processed_refund_cannot_be_retried(self):
        payment = _completed()
        refund = payment.request_refund(5.0, "Damaged item", RefundTarget.ORIGINAL)
        payment.mark_refund_processed(refund.id)
        with pytest.raises(ValidationError):
            payment.schedule_refund_retry(refund.id, "Late")

    def test_unknown_refund(self):
        with pytest.raises(ValidationError):
            _completed().find_refund("missing")
