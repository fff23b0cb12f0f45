"""Resolve a parsed (card name, card number, vendor set label) to a catalog card.

Reprints make names collide across sets constantly; (name, number) pairs
collide far less, and the vendor's own set label settles the rest. When it
does not settle it, there is no match: guessing would file a card under the
wrong set.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from slabtracker.core.logging import get_logger
from slabtracker.models.catalog import CatalogCard

log = get_logger("card_matcher")

_LEADING_ZEROS_RE = re.compile(r"^0+(?=\d)")


@dataclass(frozen=True)
class CardMatch:
    set_name: str
    card_id: str


def normalize_card_number(number: Optional[str]) -> Optional[str]:
    """'029/124' -> '29', '085' -> '85', 'TG05' -> 'TG05'."""
    if number is None:
        return None
    base = str(number).split("/")[0].strip()
    if not base:
        return None
    return _LEADING_ZEROS_RE.sub("", base)


def _hint_compatible(set_name: str, hint: str) -> bool:
    canonical = set_name.lower()
    return canonical in hint or hint in canonical


def disambiguate(candidates: Sequence[CatalogCard], hint_set: Optional[str]) -> Optional[CatalogCard]:
    """Pick one candidate, or None when the choice would be a guess.

    A single candidate is accepted as is. Otherwise the hint must narrow the
    field to one set: an exact set-name hit wins, then a lone substring hit,
    then the one compatible set name that contains every other compatible one.
    """
    if len(candidates) == 1:
        return candidates[0]
    if not candidates or not hint_set:
        return None

    hint = " ".join(hint_set.split()).lower()
    compatible = [c for c in candidates if _hint_compatible(c.set_name, hint)]

    exact = [c for c in compatible if c.set_name.lower() == hint]
    if len(exact) == 1:
        return exact[0]
    if len(compatible) == 1:
        return compatible[0]

    if len(compatible) > 1:
        names = {c.set_name.lower() for c in compatible}
        broadest = [c for c in compatible if all(other in c.set_name.lower() for other in names)]
        if len(broadest) == 1:
            return broadest[0]

    return None


class CardIdentityMatcher:
    """Ordered name strategies over the catalog; the first one with any candidate decides."""

    def __init__(self, db: Session):
        self.db = db
        self.strategies: Tuple[Tuple[str, Callable[[str, str], List[CatalogCard]]], ...] = (
            ("exact_name", self._exact_name),
            ("contains_name", self._contains_name),
        )

    def match(
        self,
        card_name: Optional[str],
        card_number: Optional[str] = None,
        hint_set: Optional[str] = None,
    ) -> Optional[CardMatch]:
        if not card_name or not card_name.strip():
            return None

        name = " ".join(card_name.split())
        number_key = normalize_card_number(card_number)
        if number_key is None:
            # Name alone collides across reprints and languages
            return None

        for label, strategy in self.strategies:
            candidates = strategy(name, number_key)
            if not candidates:
                continue

            chosen = disambiguate(candidates, hint_set)
            if chosen is None:
                log.debug(
                    f"Ambiguous {label} match for {name!r} #{number_key} "
                    f"(hint={hint_set!r}, candidates={len(candidates)})"
                )
                return None
            return CardMatch(set_name=chosen.set_name, card_id=chosen.upstream_card_id)

        return None

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------
    def _exact_name(self, name: str, number_key: str) -> List[CatalogCard]:
        stmt = select(CatalogCard).where(func.lower(CatalogCard.card_name) == name.lower())
        return self._run(stmt, number_key)

    def _contains_name(self, name: str, number_key: str) -> List[CatalogCard]:
        stmt = select(CatalogCard).where(
            func.lower(CatalogCard.card_name).contains(name.lower(), autoescape=True)
        )
        return self._run(stmt, number_key)

    def _run(self, stmt, number_key: str) -> List[CatalogCard]:
        stmt = stmt.where(CatalogCard.number_key == number_key).order_by(CatalogCard.upstream_card_id)
        return list(self.db.execute(stmt).scalars().all())
