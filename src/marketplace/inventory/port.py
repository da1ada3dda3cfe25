"""Stock reservation port (abstract interface).

Stock levels are owned by an external inventory service. Checkout only needs
an atomic "decrement if at least this much is available" and its inverse.
"""

from abc import ABC, abstractmethod


class StockReservation(ABC):
    """Abstract stock reservation interface."""

    @abstractmethod
    def available(self, product_id: str) -> int:
        """Return the quantity currently available for sale."""
        ...

    @abstractmethod
    def reserve(self, product_id: str, quantity: int) -> bool:
        """Atomically take ``quantity`` units if that many are available.

        Returns False, without changing anything, when stock is insufficient.
        """
        ...

    @abstractmethod
    def release(self, product_id: str, quantity: int) -> None:
        """Return previously reserved units to available stock."""
        ...

    @abstractmethod
    def set_level(self, product_id: str, quantity: int) -> None:
        """Overwrite the available quantity (restock or stock count)."""
        ...
