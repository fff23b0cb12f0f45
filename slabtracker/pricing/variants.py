"""Print-variant keys shared by every pricing source."""

from __future__ import annotations

import re
from typing import Dict, Optional, Tuple

NORMAL = "normal"
HOLOFOIL = "holofoil"
REVERSE_HOLOFOIL = "reverse-holofoil"
FIRST_EDITION = "1st-edition"
FIRST_EDITION_HOLOFOIL = "1st-edition-holofoil"

# Source-level aggregates that are not tied to a printing
MARKET = "market"
MID = "mid"
LOW = "low"
CARDMARKET = "cardmarket"

VARIANT_PRIORITY: Tuple[str, ...] = (
    MARKET,
    NORMAL,
    HOLOFOIL,
    REVERSE_HOLOFOIL,
    FIRST_EDITION_HOLOFOIL,
    FIRST_EDITION,
    MID,
    CARDMARKET,
    LOW,
)


def variant_key(label: Optional[str]) -> Optional[str]:
    """'Reverse Holo' -> 'reverse-holofoil', '1st Edition Holofoil' -> '1st-edition-holofoil'."""
    if not label:
        return None
    text = re.sub(r"[^a-z0-9]+", " ", label.lower()).strip()
    if not text:
        return None

    first_edition = "1st" in text or "first edition" in text
    holo = "holo" in text
    if "reverse" in text:
        return REVERSE_HOLOFOIL
    if first_edition:
        return FIRST_EDITION_HOLOFOIL if holo else FIRST_EDITION
    if holo:
        return HOLOFOIL
    if text in ("normal", "unlimited", "regular"):
        return NORMAL
    return None


def pick_raw_price(raw_prices: Dict[str, float], variant: Optional[str] = None) -> Optional[Tuple[str, float]]:
    """The slab's own printing when priced, else the first key in priority order."""
    preferred = variant_key(variant)
    if preferred and raw_prices.get(preferred, 0) > 0:
        return preferred, raw_prices[preferred]
    for key in VARIANT_PRIORITY:
        price = raw_prices.get(key)
        if price and price > 0:
            return key, price
    return None
