"""Refunds: the financial write first, then settlement.

``request_refund`` commits the refund to the payment's ledger whatever
happens next. Settlement either credits the customer's wallet (always
succeeds) or asks the payment gateway; a gateway that declines or does not
answer leaves the refund pending with ``needs_retry`` set, to be picked up by
``RetryRefund``.
"""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Identifier, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.gateway import get_gateway
from marketplace.gateway.port import GatewayUnavailable
from marketplace.order.lifecycle import load_vendor
from marketplace.order.order import Order
from marketplace.order.permissions import authorize_refund
from marketplace.payment.payment import Payment, RefundStatus, RefundTarget
from marketplace.shared.auth import AuthContext, Role
from marketplace.shared.choices import PaymentMethod
from marketplace.shared.dispatch import dispatch_resolved
from marketplace.shared.locks import order_key, payment_key, wallet_key, wallet_owner_key
from marketplace.wallet.transactions import find_wallet, wallet_for_user
from marketplace.wallet.wallet import Wallet

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Payment")
class RefundPayment:
    payment_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String(required=True, max_length=500)
    target = String(choices=RefundTarget, default=RefundTarget.ORIGINAL.value)
    actor_id = String(max_length=255)
    actor_role = String(choices=Role)


@marketplace.command(part_of="Payment")
class RetryRefund:
    payment_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    actor_id = String(max_length=255)
    actor_role = String(choices=Role)


def settles_to_wallet(payment, refund) -> bool:
    """Wallet-paid orders are always refunded to the wallet."""
    return (
        RefundTarget(refund.target) == RefundTarget.WALLET
        or PaymentMethod(payment.payment_method) == PaymentMethod.WALLET
    )


def settle_refund(payment, refund, actor: AuthContext) -> bool:
    """Try to move the money for a pending refund. Returns True once processed."""
    method = PaymentMethod(payment.payment_method)

    if settles_to_wallet(payment, refund):
        if not payment.customer_id:
            raise ValidationError({"target": ["Guest orders cannot be refunded to a wallet"]})
        wallet = wallet_for_user(payment.customer_id)
        wallet.refund(
            refund.amount,
            description=f"Refund: {refund.reason}",
            reference=f"refund:{refund.id}",
            actor_id=actor.user_id,
        )
        current_domain.repository_for(Wallet).add(wallet)
        payment.mark_refund_processed(refund.id)
        return True

    if method == PaymentMethod.CASH:
        # Handed back in person by the vendor
        payment.mark_refund_processed(refund.id)
        return True

    try:
        result = get_gateway().create_refund(
            gateway_transaction_id=payment.gateway_transaction_id,
            amount=refund.amount,
            reason=refund.reason,
            idempotency_key=f"{refund.id}:{(refund.attempts or 0) + 1}",
        )
    except GatewayUnavailable as exc:
        payment.schedule_refund_retry(refund.id, str(exc))
        payment.flag_gateway_degraded(str(exc))
        logger.warning("Refund gateway unavailable", payment_id=str(payment.id), refund_id=str(refund.id))
        return False

    if result.approved:
        payment.mark_refund_processed(refund.id, result.reference)
        return True

    payment.schedule_refund_retry(refund.id, result.decline_reason or "Refund declined")
    logger.warning(
        "Refund declined by gateway",
        payment_id=str(payment.id),
        refund_id=str(refund.id),
        reason=result.decline_reason,
    )
    return False


def _refund_summary(payment, refund, order) -> dict:
    return {
        "payment_id": str(payment.id),
        "refund_id": str(refund.id),
        "refund_status": refund.status,
        "needs_retry": bool(refund.needs_retry),
        "payment_status": payment.status,
        "refundable_amount": float(payment.refundable_amount),
        "order_id": str(order.id),
        "order_status": order.status,
        "order_payment_status": order.payment_status,
    }


@marketplace.command_handler(part_of=Payment)
class RefundHandler:
    @handle(RefundPayment)
    def refund_payment(self, command):
        payment_repo = current_domain.repository_for(Payment)
        order_repo = current_domain.repository_for(Order)
        payment = payment_repo.get(command.payment_id)
        order = order_repo.get(payment.order_id)
        actor = AuthContext.of(command.actor_id, command.actor_role)

        authorize_refund(load_vendor(payment.vendor_id), actor)
        refund = payment.request_refund(
            command.amount,
            command.reason,
            target=RefundTarget(command.target or RefundTarget.ORIGINAL.value),
            requested_by=actor.user_id,
        )
        if payment.is_fully_refunded:
            order.mark_refunded(payment.id)
        else:
            order.record_partial_refund()

        if settle_refund(payment, refund, actor):
            order.record_cancellation_refund_processed()

        payment_repo.add(payment)
        order_repo.add(order)

        logger.info(
            "Refund recorded",
            payment_id=str(payment.id),
            refund_id=str(refund.id),
            amount=refund.amount,
            refund_status=refund.status,
            payment_status=payment.status,
        )
        return _refund_summary(payment, refund, order)

    @handle(RetryRefund)
    def retry_refund(self, command):
        payment_repo = current_domain.repository_for(Payment)
        order_repo = current_domain.repository_for(Order)
        payment = payment_repo.get(command.payment_id)
        order = order_repo.get(payment.order_id)
        actor = AuthContext.of(command.actor_id, command.actor_role)

        authorize_refund(load_vendor(payment.vendor_id), actor)
        refund = payment.find_refund(command.refund_id)
        if refund.status != RefundStatus.PENDING.value:
            raise ValidationError({"refund_id": ["Only pending refunds can be retried"]})

        if settle_refund(payment, refund, actor):
            order.record_cancellation_refund_processed()

        payment_repo.add(payment)
        order_repo.add(order)
        logger.info("Refund retried", payment_id=str(payment.id), refund_id=str(refund.id), status=refund.status)
        return _refund_summary(payment, refund, order)


def refund_lock_keys(payment_id) -> list[str]:
    payment = current_domain.repository_for(Payment).get(payment_id)
    keys = [payment_key(payment.id), order_key(payment.order_id)]
    if payment.customer_id:
        # Wallet refunds may open the wallet
        keys.append(wallet_owner_key(payment.customer_id))
        wallet = find_wallet(payment.customer_id)
        if wallet is not None:
            keys.append(wallet_key(wallet.id))
    return keys


def dispatch_refund(command):
    """Run a refund command holding the payment, its order and the customer's wallet."""
    return dispatch_resolved(command, lambda: refund_lock_keys(command.payment_id))
