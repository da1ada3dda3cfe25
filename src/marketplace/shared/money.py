"""Money arithmetic.

Aggregates store amounts as ``Float`` fields; every calculation happens in
``Decimal`` quantized to cents with ROUND_HALF_UP and is converted back only
when written onto an aggregate.
"""

from collections.abc import Hashable, Mapping
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

# Rounding tolerance for invariants that compare stored Float totals
EPSILON = 0.01


def to_decimal(value) -> Decimal:
    """Convert a float, int, str or Decimal into a cent-quantized Decimal."""
    if value is None:
        return ZERO
    return quantize(value)


def quantize(value) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def as_float(value: Decimal) -> float:
    return float(quantize(value))


def percent_of(amount: Decimal, rate) -> Decimal:
    """``rate`` percent of ``amount``, rounded to cents."""
    return quantize(amount * Decimal(str(rate)) / HUNDRED)


def approx_equal(left: float, right: float, tolerance: float = EPSILON) -> bool:
    return abs(float(left) - float(right)) <= tolerance + 1e-9


def allocate(amount: Decimal, weights: Mapping[Hashable, Decimal]) -> dict:
    """Split ``amount`` across keys in proportion to ``weights``.

    Uses the largest remainder method on whole cents so the parts always add
    up to ``amount`` exactly. Keys with zero weight receive nothing; when every
    weight is zero the result is all zeros.
    """
    amount = quantize(amount)
    keys = list(weights)
    total_weight = sum((Decimal(weights[k]) for k in keys), Decimal("0"))
    if not keys or total_weight <= 0 or amount <= 0:
        return {k: ZERO for k in keys}

    cents = int(amount / CENT)
    shares = {}
    remainders = []
    for index, key in enumerate(keys):
        exact = Decimal(cents) * Decimal(weights[key]) / total_weight
        whole = int(exact.to_integral_value(rounding=ROUND_DOWN))
        shares[key] = whole
        remainders.append((exact - whole, -index, key))

    leftover = cents - sum(shares.values())
    # Ties go to the earliest key so the split is deterministic
    for _, _, key in sorted(remainders, reverse=True)[:leftover]:
        shares[key] += 1

    return {key: (Decimal(shares[key]) * CENT).quantize(CENT) for key in keys}
