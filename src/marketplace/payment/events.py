"""Domain events for the Payment aggregate."""

from protean.fields import DateTime, Float, Identifier, String

from marketplace.domain import marketplace


@marketplace.event(part_of="Payment")
class PaymentCreated:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    payment_method = String(required=True)


@marketplace.event(part_of="Payment")
class PaymentCompleted:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    provider = String(required=True)
    gateway_transaction_id = String()
    completed_at = DateTime(required=True)


@marketplace.event(part_of="Payment")
class PaymentFailed:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    reason = String(required=True)


@marketplace.event(part_of="Payment")
class PaymentVoided:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)


@marketplace.event(part_of="Payment")
class RefundRequested:
    """A refund was appended to the payment's ledger."""

    __version__ = 1

    payment_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    target = String(required=True)
    reason = String(required=True)
    total_refunded = Float(required=True)
    payment_status = String(required=True)


@marketplace.event(part_of="Payment")
class RefundProcessed:
    __version__ = 1

    payment_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    amount = Float(required=True)
    target = String(required=True)
    gateway_refund_id = String()
    processed_at = DateTime(required=True)


@marketplace.event(part_of="Payment")
class RefundRetryScheduled:
    """The provider did not settle the refund; it stays pending for a retry."""

    __version__ = 1

    payment_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    reason = String(required=True)
