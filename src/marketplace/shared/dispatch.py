"""Synchronous command dispatch under resource locks.

The unit of work commits before ``process`` returns, so holding the locks
around the whole call means a second writer always reads committed state.
"""

from collections.abc import Callable, Iterable

import structlog
from protean.utils.globals import current_domain

from marketplace.shared.locks import serialized
from marketplace.utils.logging import add_context, clear_context

logger = structlog.get_logger(__name__)


def _process(command):
    # Everything the handler logs carries the command name
    add_context(command=type(command).__name__)
    try:
        return current_domain.process(command, asynchronous=False)
    finally:
        clear_context()


def dispatch(command, *lock_keys: str):
    """Process ``command`` synchronously while holding ``lock_keys``."""
    with serialized(*lock_keys):
        logger.debug("Dispatching command", command=type(command).__name__, locks=sorted(lock_keys))
        return _process(command)


def dispatch_resolved(command, resolve_keys: Callable[[], Iterable[str]]):
    """Process ``command`` under locks that depend on stored state.

    ``resolve_keys`` reads the keys without holding anything. All of them are
    then taken in one sorted acquisition and read again; if another writer
    changed the set in between, the locks are dropped and the read repeats.
    """
    while True:
        keys = set(resolve_keys())
        with serialized(*keys):
            if set(resolve_keys()) != keys:
                logger.debug("Lock set moved, retrying", command=type(command).__name__)
                continue
            logger.debug("Dispatching command", command=type(command).__name__, locks=sorted(keys))
            return _process(command)
