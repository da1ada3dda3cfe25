"""Payment aggregate (CQRS): the charge for one order and its refund ledger.

State Machine:
    PENDING → COMPLETED → PARTIALLY_REFUNDED → REFUNDED
    PENDING → FAILED → PENDING (retry, max 3 attempts)
    PENDING | FAILED → VOIDED (order cancelled before payment)

Refunds are appended, never removed. A refund counts against the refundable
balance as soon as it is requested; only a FAILED refund gives it back.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, Integer, String

from marketplace.domain import marketplace
from marketplace.payment.events import (
    PaymentCompleted,
    PaymentCreated,
    PaymentFailed,
    PaymentVoided,
    RefundProcessed,
    RefundRequested,
    RefundRetryScheduled,
)
from marketplace.shared.choices import PaymentMethod
from marketplace.shared.errors import (
    AlreadyRefunded,
    InvalidRefundAmount,
    InvalidTransition,
    PaymentNotRefundable,
)
from marketplace.shared.money import EPSILON, ZERO, as_float, quantize, to_decimal

MAX_PAYMENT_ATTEMPTS = 3


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PaymentStatus(Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"
    PARTIALLY_REFUNDED = "Partially_Refunded"
    REFUNDED = "Refunded"
    VOIDED = "Voided"


class RefundStatus(Enum):
    PENDING = "Pending"
    PROCESSED = "Processed"
    FAILED = "Failed"


class RefundTarget(Enum):
    ORIGINAL = "Original"
    WALLET = "Wallet"


_VALID_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.VOIDED},
    PaymentStatus.FAILED: {PaymentStatus.PENDING, PaymentStatus.VOIDED},  # retry
    PaymentStatus.COMPLETED: {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),  # Terminal
    PaymentStatus.VOIDED: set(),  # Terminal
}


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@marketplace.entity(part_of="Payment")
class Refund:
    amount = Float(required=True, min_value=0.01)
    reason = String(required=True, max_length=500)
    target = String(choices=RefundTarget, default=RefundTarget.ORIGINAL.value)
    status = String(choices=RefundStatus, default=RefundStatus.PENDING.value)
    needs_retry = Boolean(default=False)
    attempts = Integer(default=0)
    gateway_refund_id = String(max_length=255)
    failure_reason = String(max_length=500)
    requested_by = String(max_length=255)
    requested_at = DateTime()
    processed_at = DateTime()


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@marketplace.aggregate
class Payment:
    order_id = Identifier(required=True, unique=True)
    checkout_id = Identifier(required=True)
    customer_id = Identifier()
    vendor_id = Identifier(required=True)
    amount = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="USD")
    payment_method = String(choices=PaymentMethod, required=True)
    provider = String(max_length=50)
    status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    platform_fee = Float(default=0.0)
    vendor_amount = Float(default=0.0)
    gateway_transaction_id = String(max_length=255)
    failure_reason = String(max_length=500)
    gateway_degraded = Boolean(default=False)
    attempts = Integer(default=0)
    refunds = HasMany(Refund)
    total_refunded = Float(default=0.0)
    created_at = DateTime()
    updated_at = DateTime()
    completed_at = DateTime()

    @invariant.post
    def refunds_must_not_exceed_amount(self):
        if (self.total_refunded or 0) > (self.amount or 0) + EPSILON:
            raise ValidationError({"total_refunded": ["Refunds cannot exceed the amount paid"]})

    @invariant.post
    def total_refunded_must_match_ledger(self):
        ledger = sum(r.amount for r in (self.refunds or []) if r.status != RefundStatus.FAILED.value)
        if abs(ledger - (self.total_refunded or 0)) > EPSILON:
            raise ValidationError({"total_refunded": ["Refunded total does not match the refund ledger"]})

    @classmethod
    def create(
        cls,
        order_id,
        checkout_id,
        customer_id,
        vendor_id,
        amount,
        payment_method,
        platform_fee,
        vendor_amount,
        currency="USD",
    ):
        now = datetime.now(UTC)
        payment = cls(
            order_id=order_id,
            checkout_id=checkout_id,
            customer_id=customer_id,
            vendor_id=vendor_id,
            amount=amount,
            currency=currency,
            payment_method=payment_method,
            status=PaymentStatus.PENDING.value,
            platform_fee=platform_fee,
            vendor_amount=vendor_amount,
            total_refunded=0.0,
            attempts=0,
            created_at=now,
            updated_at=now,
        )
        payment.raise_(
            PaymentCreated(
                payment_id=str(payment.id),
                order_id=str(order_id),
                amount=amount,
                currency=currency,
                payment_method=payment_method,
            )
        )
        return payment

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: PaymentStatus) -> None:
        current = PaymentStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransition(f"Cannot transition payment from {current.value} to {target_status.value}")

    def find_refund(self, refund_id) -> Refund:
        refund = next((r for r in (self.refunds or []) if str(r.id) == str(refund_id)), None)
        if refund is None:
            raise ValidationError({"refund_id": ["Refund not found"]})
        return refund

    @property
    def refundable_amount(self) -> Decimal:
        return max(ZERO, quantize(to_decimal(self.amount) - to_decimal(self.total_refunded)))

    @property
    def is_fully_refunded(self) -> bool:
        return PaymentStatus(self.status) == PaymentStatus.REFUNDED

    # -------------------------------------------------------------------
    # Charge lifecycle
    # -------------------------------------------------------------------
    def begin_attempt(self) -> None:
        """Count a charge attempt, re-opening a failed payment for retry."""
        current = PaymentStatus(self.status)
        if current == PaymentStatus.FAILED:
            if (self.attempts or 0) >= MAX_PAYMENT_ATTEMPTS:
                raise ValidationError({"attempts": [f"Maximum payment attempts ({MAX_PAYMENT_ATTEMPTS}) exceeded"]})
            self._assert_can_transition(PaymentStatus.PENDING)
            self.status = PaymentStatus.PENDING.value
        elif current != PaymentStatus.PENDING:
            raise InvalidTransition(f"Cannot charge a payment in {current.value} state")
        self.attempts = (self.attempts or 0) + 1
        self.updated_at = datetime.now(UTC)

    def complete(self, provider: str, gateway_transaction_id: str | None = None) -> None:
        self._assert_can_transition(PaymentStatus.COMPLETED)
        now = datetime.now(UTC)
        self.status = PaymentStatus.COMPLETED.value
        self.provider = provider
        self.gateway_transaction_id = gateway_transaction_id
        self.failure_reason = None
        self.gateway_degraded = False
        self.completed_at = now
        self.updated_at = now
        self.raise_(
            PaymentCompleted(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                amount=self.amount,
                provider=provider,
                gateway_transaction_id=gateway_transaction_id,
                completed_at=now,
            )
        )

    def fail(self, reason: str) -> None:
        self._assert_can_transition(PaymentStatus.FAILED)
        self.status = PaymentStatus.FAILED.value
        self.failure_reason = reason
        self.updated_at = datetime.now(UTC)
        self.raise_(PaymentFailed(payment_id=str(self.id), order_id=str(self.order_id), reason=reason))

    def void(self) -> None:
        self._assert_can_transition(PaymentStatus.VOIDED)
        self.status = PaymentStatus.VOIDED.value
        self.updated_at = datetime.now(UTC)
        self.raise_(PaymentVoided(payment_id=str(self.id), order_id=str(self.order_id)))

    def flag_gateway_degraded(self, reason: str) -> None:
        self.gateway_degraded = True
        self.failure_reason = reason
        self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Refund ledger
    # -------------------------------------------------------------------
    def request_refund(self, amount, reason: str, target: RefundTarget, requested_by: str | None = None) -> Refund:
        """Append a pending refund and move the payment status.

        Raises:
            AlreadyRefunded: the payment is fully refunded.
            PaymentNotRefundable: the payment never completed.
            InvalidRefundAmount: ``amount`` is not positive or exceeds what is left.
        """
        current = PaymentStatus(self.status)
        if current == PaymentStatus.REFUNDED:
            raise AlreadyRefunded("Payment has already been fully refunded")
        if current not in (PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED):
            raise PaymentNotRefundable(f"Cannot refund a payment in {current.value} state")

        requested = to_decimal(amount)
        if requested <= ZERO:
            raise InvalidRefundAmount("Refund amount must be positive")
        if requested > self.refundable_amount:
            raise InvalidRefundAmount(
                f"Refund amount exceeds the refundable balance of {self.refundable_amount}",
                refundable=str(self.refundable_amount),
            )

        now = datetime.now(UTC)
        refund = Refund(
            amount=as_float(requested),
            reason=reason,
            target=target.value,
            status=RefundStatus.PENDING.value,
            requested_by=requested_by,
            requested_at=now,
            attempts=0,
        )
        with atomic_change(self):
            self.add_refunds(refund)
            self.total_refunded = as_float(to_decimal(self.total_refunded) + requested)

        fully_refunded = self.refundable_amount == ZERO
        self.status = (PaymentStatus.REFUNDED if fully_refunded else PaymentStatus.PARTIALLY_REFUNDED).value
        self.updated_at = now

        self.raise_(
            RefundRequested(
                payment_id=str(self.id),
                refund_id=str(refund.id),
                order_id=str(self.order_id),
                amount=refund.amount,
                target=target.value,
                reason=reason,
                total_refunded=self.total_refunded,
                payment_status=self.status,
            )
        )
        return refund

    def mark_refund_processed(self, refund_id, gateway_refund_id: str | None = None) -> None:
        refund = self.find_refund(refund_id)
        if refund.status != RefundStatus.PENDING.value:
            raise ValidationError({"refund": ["Refund is not pending"]})

        now = datetime.now(UTC)
        refund.status = RefundStatus.PROCESSED.value
        refund.needs_retry = False
        refund.failure_reason = None
        refund.gateway_refund_id = gateway_refund_id
        refund.attempts = (refund.attempts or 0) + 1
        refund.processed_at = now
        self.updated_at = now
        self.raise_(
            RefundProcessed(
                payment_id=str(self.id),
                refund_id=str(refund.id),
                amount=refund.amount,
                target=refund.target,
                gateway_refund_id=gateway_refund_id,
                processed_at=now,
            )
        )

    def schedule_refund_retry(self, refund_id, reason: str) -> None:
        """The provider did not settle the refund; keep it pending and flag it."""
        refund = self.find_refund(refund_id)
        if refund.status != RefundStatus.PENDING.value:
            raise ValidationError({"refund": ["Refund is not pending"]})
        refund.needs_retry = True
        refund.failure_reason = reason
        refund.attempts = (refund.attempts or 0) + 1
        self.updated_at = datetime.now(UTC)
        self.raise_(RefundRetryScheduled(payment_id=str(self.id), refund_id=str(refund.id), reason=reason))

    def pending_retries(self) -> list[Refund]:
        return [r for r in (self.refunds or []) if r.status == RefundStatus.PENDING.value and r.needs_retry]
