"""Charging an order's payment through the payment gateway.

Only gateway-backed methods are charged here. Wallet payments settle during
checkout and cash is collected on delivery.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.gateway import get_gateway
from marketplace.gateway.port import GatewayUnavailable
from marketplace.order.lifecycle import order_lock_keys
from marketplace.order.order import Order, OrderStatus
from marketplace.payment.payment import Payment
from marketplace.shared.auth import AuthContext, Role
from marketplace.shared.choices import PaymentMethod
from marketplace.shared.dispatch import dispatch_resolved
from marketplace.shared.errors import InvalidTransition, NotAuthorized, UnsupportedPaymentMethod

logger = structlog.get_logger(__name__)

GATEWAY_METHODS = frozenset({PaymentMethod.CARD, PaymentMethod.PAYPAL, PaymentMethod.BANK_TRANSFER})


@marketplace.command(part_of="Payment")
class ProcessPayment:
    payment_id = Identifier(required=True)
    actor_id = String(max_length=255)
    actor_role = String(choices=Role)


def dispatch_payment(command):
    """Charge while holding the payment, its order and the order's courier."""

    def keys():
        payment = current_domain.repository_for(Payment).get(command.payment_id)
        return order_lock_keys(payment.order_id)

    return dispatch_resolved(command, keys)


@marketplace.command_handler(part_of=Payment)
class ProcessPaymentHandler:
    @handle(ProcessPayment)
    def process_payment(self, command):
        payment_repo = current_domain.repository_for(Payment)
        order_repo = current_domain.repository_for(Order)
        payment = payment_repo.get(command.payment_id)
        order = order_repo.get(payment.order_id)
        actor = AuthContext.of(command.actor_id, command.actor_role)

        if not actor.is_privileged and str(payment.customer_id) != actor.user_id:
            raise NotAuthorized("You can only pay for your own orders", role=actor.role.value)
        method = PaymentMethod(payment.payment_method)
        if method not in GATEWAY_METHODS:
            raise UnsupportedPaymentMethod(f"{method.value} payments are not charged through the gateway")
        if OrderStatus(order.status) != OrderStatus.PENDING:
            raise InvalidTransition(f"Order is {order.status}; its payment can no longer be charged")

        payment.begin_attempt()
        gateway = get_gateway()
        try:
            result = gateway.create_charge(
                amount=payment.amount,
                currency=payment.currency,
                payment_method=method.value,
                idempotency_key=f"{payment.id}:{payment.attempts}",
            )
        except GatewayUnavailable as exc:
            # The charge may or may not have happened; leave it pending for a retry
            payment.flag_gateway_degraded(str(exc))
            payment_repo.add(payment)
            logger.warning("Payment gateway unavailable", payment_id=str(payment.id), error=str(exc))
            return payment.status

        if result.approved:
            payment.complete(provider=gateway.name, gateway_transaction_id=result.reference)
            order.record_payment_received()
            logger.info("Payment completed", payment_id=str(payment.id), order_id=str(order.id))
        else:
            payment.fail(result.decline_reason or "Payment declined")
            order.record_payment_failed()
            logger.warning(
                "Payment declined",
                payment_id=str(payment.id),
                order_id=str(order.id),
                reason=result.decline_reason,
            )

        payment_repo.add(payment)
        order_repo.add(order)
        return payment.status


def payments_for_order(order_id) -> list[Payment]:
    """Every payment recorded against an order, oldest first."""
    repo = current_domain.repository_for(Payment)
    return sorted(repo._dao.query.filter(order_id=str(order_id)).all().items, key=lambda p: p.created_at)
