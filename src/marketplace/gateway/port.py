"""Payment gateway port.

The payment provider is opaque: the marketplace only asks it to charge and to
refund. Adapters raise GatewayUnavailable when the provider cannot be reached;
a declined charge or refund is a normal result, not an exception.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


class GatewayUnavailable(Exception):
    """The provider did not answer within its timeout."""


@dataclass(frozen=True)
class GatewayResult:
    """What the provider said about a charge or a refund.

    ``reference`` is the provider's id for the charge or refund and is only
    set when ``approved``.
    """

    approved: bool
    reference: str | None = None
    decline_reason: str | None = None

    @classmethod
    def declined(cls, reason: str) -> "GatewayResult":
        return cls(approved=False, decline_reason=reason)


class PaymentGateway(ABC):
    name = "gateway"

    @abstractmethod
    def create_charge(self, amount: float, currency: str, payment_method: str, idempotency_key: str) -> GatewayResult:
        """Charge the customer's payment instrument."""

    @abstractmethod
    def create_refund(
        self, gateway_transaction_id: str, amount: float, reason: str, idempotency_key: str
    ) -> GatewayResult:
        """Refund part or all of a previous charge."""
