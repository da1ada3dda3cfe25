"""Human-readable order numbers: ``ORD-YYMMDD-<VENDORCODE>-NNNN``.

NNNN is a per-vendor, per-day counter kept in its own aggregate. Checkout
holds the vendor lock while numbering, and the counter key and the order
number are both unique fields, so two orders can never share a number.
"""

from datetime import datetime

from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.shared.clock import as_utc, utcnow


@marketplace.aggregate
class DailyOrderCounter:
    counter_key = String(required=True, max_length=80, unique=True)
    vendor_id = Identifier(required=True)
    day = String(required=True, max_length=6)  # YYMMDD
    last_value = Integer(default=0, min_value=0)
    updated_at = DateTime()

    def next_value(self) -> int:
        self.last_value = (self.last_value or 0) + 1
        self.updated_at = utcnow()
        return self.last_value


def format_order_number(day: str, vendor_code: str, sequence: int) -> str:
    return f"ORD-{day}-{vendor_code.upper()}-{sequence:04d}"


def next_order_number(vendor, now: datetime | None = None) -> str:
    """Take the next number in ``vendor``'s sequence for the day of ``now``."""
    day = as_utc(now or utcnow()).strftime("%y%m%d")
    key = f"{vendor.id}:{day}"

    repo = current_domain.repository_for(DailyOrderCounter)
    matches = repo._dao.query.filter(counter_key=key).all().items
    counter = matches[0] if matches else DailyOrderCounter(counter_key=key, vendor_id=str(vendor.id), day=day)

    sequence = counter.next_value()
    repo.add(counter)
    return format_order_number(day, vendor.code, sequence)
