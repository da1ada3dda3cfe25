"""Business settings read from the environment.

Infrastructure (databases, brokers, event store) is configured through Protean
and PROTEAN_ENV; this module only covers marketplace rules such as the default
commission rate and wallet withdrawal limits.
"""

import os
from dataclasses import dataclass, replace
from decimal import Decimal

_current_settings: "MarketplaceSettings | None" = None


@dataclass(frozen=True)
class MarketplaceSettings:
    default_commission_rate: Decimal = Decimal("10")
    service_fee: Decimal = Decimal("0")
    currency: str = "USD"
    cart_idle_hours: int = 24
    wallet_min_withdrawal: Decimal = Decimal("10")
    wallet_max_withdrawal: Decimal = Decimal("1000")

    def __post_init__(self):
        for name in ("default_commission_rate", "service_fee", "wallet_min_withdrawal", "wallet_max_withdrawal"):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))

    @classmethod
    def from_env(cls) -> "MarketplaceSettings":
        return cls(
            default_commission_rate=Decimal(os.getenv("MARKETPLACE_DEFAULT_COMMISSION_RATE", "10")),
            service_fee=Decimal(os.getenv("MARKETPLACE_SERVICE_FEE", "0")),
            currency=os.getenv("MARKETPLACE_CURRENCY", "USD"),
            cart_idle_hours=int(os.getenv("MARKETPLACE_CART_IDLE_HOURS", "24")),
            wallet_min_withdrawal=Decimal(os.getenv("MARKETPLACE_WALLET_MIN_WITHDRAWAL", "10")),
            wallet_max_withdrawal=Decimal(os.getenv("MARKETPLACE_WALLET_MAX_WITHDRAWAL", "1000")),
        )


def get_settings() -> MarketplaceSettings:
    """Return the active settings, loading them from the environment on first use."""
    global _current_settings
    if _current_settings is None:
        _current_settings = MarketplaceSettings.from_env()
    return _current_settings


def override_settings(**overrides) -> MarketplaceSettings:
    """Replace individual settings (useful for tests)."""
    global _current_settings
    _current_settings = replace(get_settings(), **overrides)
    return _current_settings


def reset_settings() -> None:
    """Drop any overrides; the next call re-reads the environment."""
    global _current_settings
    _current_settings = None
