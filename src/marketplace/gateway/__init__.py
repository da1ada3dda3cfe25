"""The active payment provider.

Payment and refund handlers call ``get_gateway()``; deployments install a real
provider with ``set_gateway()`` at startup and tests go back to the fake with
``reset_gateway()``.
"""

from marketplace.gateway.fake_adapter import FakeGateway
from marketplace.gateway.port import GatewayResult, GatewayUnavailable, PaymentGateway

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = FakeGateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    global _current_gateway
    _current_gateway = None


__all__ = [
    "FakeGateway",
    "GatewayResult",
    "GatewayUnavailable",
    "PaymentGateway",
    "get_gateway",
    "reset_gateway",
    "set_gateway",
]
