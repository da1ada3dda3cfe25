"""Stock reservation factory.

Provides get_stock() / set_stock() so the in-memory ledger can be swapped for
an adapter that talks to the real inventory service.
"""

from marketplace.inventory.memory_adapter import InMemoryStockLedger
from marketplace.inventory.port import StockReservation

_current_stock: StockReservation | None = None


def get_stock() -> StockReservation:
    """Return the current stock adapter. Defaults to InMemoryStockLedger."""
    global _current_stock
    if _current_stock is None:
        _current_stock = InMemoryStockLedger()
    return _current_stock


def set_stock(stock: StockReservation) -> None:
    """Override the active stock adapter (useful for tests)."""
    global _current_stock
    _current_stock = stock


def reset_stock() -> None:
    """Reset to the default adapter."""
    global _current_stock
    _current_stock = None
