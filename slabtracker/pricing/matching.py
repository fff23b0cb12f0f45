"""Pick the search result that is the slab's card, or nothing.

Strict to loose: exact name + set, name + set by substring, exact name in any
set, and finally a lone result whose name overlaps. Each step must produce a
single card (a matching card number may break a tie); several plausible cards
mean no match, and the next pricing source gets its turn.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence

from slabtracker.identity.card_matcher import normalize_card_number
from slabtracker.ingestion.base import SourceCard


def _norm(value: Optional[str]) -> str:
    return " ".join((value or "").split()).lower()


def _overlaps(a: str, b: str) -> bool:
    return bool(a) and bool(b) and (a in b or b in a)


def _narrow_by_number(matches: List[SourceCard], card_number: Optional[str]) -> List[SourceCard]:
    number_key = normalize_card_number(card_number)
    if len(matches) <= 1 or not number_key:
        return matches
    return [m for m in matches if normalize_card_number(m.number) == number_key]


def select_candidate(
    results: Sequence[SourceCard],
    card_name: str,
    set_name: Optional[str] = None,
    card_number: Optional[str] = None,
) -> Optional[SourceCard]:
    if not results:
        return None

    name = _norm(card_name)
    set_key = _norm(set_name)

    steps: List[Callable[[SourceCard], bool]] = []
    if set_key:
        steps.append(lambda c: _norm(c.name) == name and _norm(c.set_name) == set_key)
        steps.append(lambda c: _overlaps(_norm(c.name), name) and _overlaps(_norm(c.set_name), set_key))
    steps.append(lambda c: _norm(c.name) == name)

    for predicate in steps:
        matches = [c for c in results if predicate(c)]
        if not matches:
            continue
        matches = _narrow_by_number(matches, card_number)
        return matches[0] if len(matches) == 1 else None

    if len(results) == 1 and _overlaps(_norm(results[0].name), name):
        return results[0]
    return None
