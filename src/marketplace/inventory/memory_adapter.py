"""In-process stock ledger for development and testing."""

import threading

from marketplace.inventory.port import StockReservation


class InMemoryStockLedger(StockReservation):
    """Stock levels held in a dict; check-and-decrement runs under one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._levels: dict[str, int] = {}
        self.calls: list[dict] = []

    def available(self, product_id: str) -> int:
        with self._lock:
            return self._levels.get(str(product_id), 0)

    def reserve(self, product_id: str, quantity: int) -> bool:
        if quantity < 1:
            raise ValueError("Reservation quantity must be at least 1")
        with self._lock:
            current = self._levels.get(str(product_id), 0)
            succeeded = current >= quantity
            if succeeded:
                self._levels[str(product_id)] = current - quantity
            self.calls.append(
                {"method": "reserve", "product_id": str(product_id), "quantity": quantity, "ok": succeeded}
            )
            return succeeded

    def release(self, product_id: str, quantity: int) -> None:
        with self._lock:
            self._levels[str(product_id)] = self._levels.get(str(product_id), 0) + quantity
            self.calls.append({"method": "release", "product_id": str(product_id), "quantity": quantity})

    def set_level(self, product_id: str, quantity: int) -> None:
        if quantity < 0:
            raise ValueError("Stock level cannot be negative")
        with self._lock:
            self._levels[str(product_id)] = quantity

    def reset(self) -> None:
        with self._lock:
            self._levels.clear()
            self.calls.clear()
