"""In-process payment provider for development and tests.

It approves everything until told otherwise: ``configure(should_succeed=False)``
declines, ``configure(available=False)`` times out. Every call is recorded in
``calls`` before the outcome is decided.
"""

from uuid import uuid4

from marketplace.gateway.port import GatewayResult, GatewayUnavailable, PaymentGateway


class FakeGateway(PaymentGateway):
    name = "fake"

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.configure()

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Card declined",
        available: bool = True,
    ) -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.available = available

    def _outcome(self, reference_prefix: str) -> GatewayResult:
        if not self.available:
            raise GatewayUnavailable("Payment provider timed out")
        if not self.should_succeed:
            return GatewayResult.declined(self.failure_reason)
        return GatewayResult(approved=True, reference=f"{reference_prefix}_{uuid4().hex[:12]}")

    def create_charge(self, amount, currency, payment_method, idempotency_key):
        self.calls.append(
            {
                "method": "create_charge",
                "amount": amount,
                "currency": currency,
                "payment_method": payment_method,
                "idempotency_key": idempotency_key,
            }
        )
        return self._outcome("fake_txn")

    def create_refund(self, gateway_transaction_id, amount, reason, idempotency_key):
        self.calls.append(
            {
                "method": "create_refund",
                "gateway_transaction_id": gateway_transaction_id,
                "amount": amount,
                "reason": reason,
                "idempotency_key": idempotency_key,
            }
        )
        return self._outcome("fake_ref")
