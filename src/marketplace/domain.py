"""Marketplace bounded context: carts, pricing, vendor orders and settlement.

A single Protean domain so that checkout and refunds can touch carts, orders,
payments, promotions and wallets inside one unit of work.
"""

from protean.domain import Domain

from marketplace.utils.logging import configure_logging

configure_logging()

marketplace = Domain(name="marketplace")
