"""Raw price -> graded slab estimate.

Multipliers come from average sold-price premiums per grading company; a 10
from one grader is not worth the same as a 10 from another.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Mapping, Optional

from slabtracker.parsing.fingerprint import Grader

_LOW_GRADE_TAIL = {5: 0.9, 4: 0.8, 3: 0.7, 2: 0.6, 1: 0.5}

GRADE_MULTIPLIERS: Mapping[Grader, Mapping[int, float]] = MappingProxyType(
    {
        Grader.PSA: MappingProxyType({10: 5.0, 9: 2.0, 8: 1.5, 7: 1.2, 6: 1.0, **_LOW_GRADE_TAIL}),
        Grader.CGC: MappingProxyType({10: 6.0, 9: 1.8, 8: 1.3, 7: 1.1, 6: 1.0, **_LOW_GRADE_TAIL}),
        Grader.BGS: MappingProxyType({10: 8.0, 9: 2.0, 8: 1.4, 7: 1.1, 6: 1.0, **_LOW_GRADE_TAIL}),
        Grader.SGC: MappingProxyType({10: 4.0, 9: 1.8, 8: 1.3, 7: 1.1, 6: 1.0, **_LOW_GRADE_TAIL}),
    }
)

# Above this, an extrapolated graded price is too speculative for "medium"
LOW_CONFIDENCE_MULTIPLIER = 1.5


def parse_grader(grader: Optional[str]) -> Optional[Grader]:
    if not grader:
        return None
    try:
        return Grader(grader.strip().upper())
    except ValueError:
        return None


def grade_number(grade: Optional[str]) -> Optional[int]:
    """'9.5' -> 10, '10' -> 10, 'abc' -> None. Halves round up."""
    if grade is None:
        return None
    try:
        value = float(str(grade).strip())
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return int(math.floor(value + 0.5))


def grade_multiplier(grader: Optional[str], grade: Optional[str]) -> float:
    """Multiplier for (grader, grade); 1 when either is unknown or unparseable."""
    known = parse_grader(grader)
    number = grade_number(grade)
    if known is None or number is None:
        return 1.0
    return GRADE_MULTIPLIERS[known].get(number, 1.0)


def derived_confidence(multiplier: float) -> str:
    """Confidence of a price extrapolated from a raw price. Never above medium."""
    return "low" if multiplier > LOW_CONFIDENCE_MULTIPLIER else "medium"


def to_cents(value: float) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def estimate_graded_price(raw_price: float, grader: Optional[str], grade: Optional[str]) -> Decimal:
    return to_cents(raw_price * grade_multiplier(grader, grade))
