"""Per-resource locks for serializing writes to the same cart, order or wallet.

Writes to one resource run one at a time inside this process; different
resources proceed in parallel. Keys are acquired in sorted order so two
operations that touch overlapping resources cannot deadlock.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class KeyedLocks:
    """A registry of re-entrant locks, one per resource key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        ordered = sorted({k for k in keys if k})
        acquired = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def clear(self) -> None:
        with self._guard:
            self._locks.clear()


_locks = KeyedLocks()


def serialized(*keys: str):
    """Hold the locks for ``keys`` for the duration of a ``with`` block."""
    return _locks.hold(*keys)


def cart_key(cart_id) -> str:
    return f"cart:{cart_id}"


def order_key(order_id) -> str:
    return f"order:{order_id}"


def wallet_key(wallet_id) -> str:
    return f"wallet:{wallet_id}"


def payment_key(payment_id) -> str:
    return f"payment:{payment_id}"


def vendor_key(vendor_id) -> str:
    return f"vendor:{vendor_id}"


def promotion_key(promotion_id) -> str:
    return f"promotion:{promotion_id}"


def agent_key(user_id) -> str:
    return f"agent:{user_id}"


def wallet_owner_key(user_id) -> str:
    return f"wallet-owner:{user_id}"


def saved_carts_key(customer_id) -> str:
    return f"saved-carts:{customer_id}"
