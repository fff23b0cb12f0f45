"""Vendor set label -> canonical catalog set name.

The vendor labels sets as "Pokémon Sun & Moon Burning Shadows",
"Pokémon Ssp EN-Surging Sparks" or "Paldean Fates - PAF EN" while the catalog
says "Burning Shadows", "Surging Sparks", "Paldean Fates". Resolution is an
ordered list of strategies; the first one that lands on a catalog name wins.

When nothing lands, the best candidate from the code/suffix/era strategies is
returned so differently-prefixed labels still collapse to one spelling. Input
nothing recognises is returned unchanged.
"""

from __future__ import annotations

import re
import unicodedata
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Iterable, Mapping, Optional, Tuple

BRAND_PREFIX_RE = re.compile(r"^Pok[eé]mon\s+", re.IGNORECASE)
QUALIFIER_PREFIX_RE = re.compile(r"^EX\s+", re.IGNORECASE)
TRAILING_PARENS_RE = re.compile(r"\s*\(.*\)\s*$")

# "Pokémon Ssp EN-Surging Sparks" -> "Surging Sparks"
CODE_PATTERN = re.compile(r"^Pok[eé]mon\s+\w+\s+EN[- ]+(.+)$", re.IGNORECASE)
# "Pokémon Sv4a-Shiny Treasure EX" -> "Shiny Treasure EX"
CODE_PATTERN_NO_EN = re.compile(r"^Pok[eé]mon\s+\w+-(.+)$", re.IGNORECASE)
# "Paldean Fates - PAF EN" -> "Paldean Fates"
SUFFIX_CODE_PATTERN = re.compile(r"^(.+?)\s*[-–]\s*(?:\w{2,4}\s+)?EN$", re.IGNORECASE)

# Console-generation prefixes, matched after the brand prefix is removed
ERA_PREFIXES: Tuple[str, ...] = (
    "Sword & Shield",
    "Sword and Shield",
    "Scarlet & Violet",
    "Sun & Moon",
    "Black & White",
    "Diamond & Pearl",
    "XY",
)


class MappingKind(str, Enum):
    PROMO = "promo"
    JAPANESE = "japanese"
    SPECIFIC = "specific"


# Keys are lower-cased, NFC-normalized vendor labels
SPECIAL_CASE_MAPPINGS: Mapping[MappingKind, Mapping[str, str]] = MappingProxyType(
    {
        MappingKind.PROMO: MappingProxyType(
            {
                "black star promos - sword & shield": "SWSH Black Star Promos",
                "black star promos - sun & moon": "SM Black Star Promos",
                "black star promos - scarlet & violet svp en": "SVP Black Star Promos",
                "pokémon swsh black star promo": "SWSH Black Star Promos",
                "pokémon sm black star promo": "SM Black Star Promos",
                "pokémon xy black star promos": "XY Black Star Promos",
                "sun & moon promos": "SM Black Star Promos",
                "sword & shield promos": "SWSH Black Star Promos",
                "black star promo": "Wizards Black Star Promos",
                "black star promos": "Wizards Black Star Promos",
            }
        ),
        MappingKind.JAPANESE: MappingProxyType(
            {
                "pokémon sv2a-pokemon 151": "151",
                "pokémon card 151": "151",
                "pokémon mew en-151": "151",
                "scarlet & violet 151": "151",
                "scarlet & violet 151 - mew en": "151",
            }
        ),
        MappingKind.SPECIFIC: MappingProxyType(
            {
                "pokémon celebrations classic collection": "Celebrations",
                "pokémon gym challenge": "Gym Challenge",
                "pokémon gym heroes": "Gym Heroes",
                "pokémon neo genesis": "Neo Genesis",
                "pokémon neo destiny": "Neo Destiny",
                "pokémon expedition": "Expedition Base Set",
                "pokémon promo southern islands": "Southern Islands",
                "pokémon rocket": "Team Rocket",
                "platinum - supreme victors": "Supreme Victors",
                "pokémon aquapolis": "Aquapolis",
                "pokémon ex crystal guardians": "Crystal Guardians",
                "ex team magma vs team aqua": "Team Magma vs Team Aqua",
            }
        ),
    }
)

ReferenceIndex = Dict[str, str]
Strategy = Callable[[str, ReferenceIndex], Optional[str]]


def _prepare(raw: str) -> str:
    return " ".join(unicodedata.normalize("NFC", raw).split())


def _lookup(index: ReferenceIndex, candidate: Optional[str]) -> Optional[str]:
    if not candidate:
        return None
    return index.get(candidate.strip().lower())


def _strip_brand(label: str) -> Optional[str]:
    if BRAND_PREFIX_RE.match(label):
        return BRAND_PREFIX_RE.sub("", label, count=1)
    return None


def _era_remainder(label: str) -> Optional[str]:
    """Remainder after a (brand +) era prefix, if the label carries one."""
    unbranded = _strip_brand(label) or label
    lowered = unbranded.lower()
    for prefix in ERA_PREFIXES:
        head = prefix.lower() + " "
        if lowered.startswith(head):
            remainder = unbranded[len(head):].strip()
            if remainder:
                return remainder
    return None


def _code_candidate(label: str) -> Optional[str]:
    match = CODE_PATTERN.match(label)
    return match.group(1).strip() if match else None


def _code_no_en_candidate(label: str) -> Optional[str]:
    match = CODE_PATTERN_NO_EN.match(label)
    return match.group(1).strip() if match else None


def _suffix_candidate(label: str) -> Optional[str]:
    match = SUFFIX_CODE_PATTERN.match(label)
    return match.group(1).strip() if match else None


# -----------------------------------------------------------------------------
# Resolution strategies, tried in order
# -----------------------------------------------------------------------------
def exact_match(label: str, index: ReferenceIndex) -> Optional[str]:
    return _lookup(index, label)


def brand_prefix(label: str, index: ReferenceIndex) -> Optional[str]:
    return _lookup(index, _strip_brand(label))


def qualifier_prefix(label: str, index: ReferenceIndex) -> Optional[str]:
    if not QUALIFIER_PREFIX_RE.match(label):
        return None
    stripped = QUALIFIER_PREFIX_RE.sub("", label, count=1)
    return _lookup(index, stripped) or _lookup(index, TRAILING_PARENS_RE.sub("", stripped))


def code_pattern(label: str, index: ReferenceIndex) -> Optional[str]:
    candidate = _code_candidate(label)
    if candidate:
        hit = _lookup(index, candidate) or _lookup(index, _strip_brand(candidate))
        if hit:
            return hit
    return _lookup(index, _code_no_en_candidate(label))


def suffix_code(label: str, index: ReferenceIndex) -> Optional[str]:
    return _lookup(index, _suffix_candidate(label))


def era_prefix(label: str, index: ReferenceIndex) -> Optional[str]:
    return _lookup(index, _era_remainder(label))


def special_case(label: str, index: ReferenceIndex) -> Optional[str]:
    key = label.lower()
    for kind in MappingKind:
        target = SPECIAL_CASE_MAPPINGS[kind].get(key)
        if target:
            return index.get(target.lower(), target)
    return None


RESOLUTION_STRATEGIES: Tuple[Strategy, ...] = (
    exact_match,
    brand_prefix,
    qualifier_prefix,
    code_pattern,
    suffix_code,
    era_prefix,
    special_case,
)

CANDIDATE_EXTRACTORS: Tuple[Callable[[str], Optional[str]], ...] = (
    _code_candidate,
    _code_no_en_candidate,
    _suffix_candidate,
    _era_remainder,
)


class SetNameNormalizer:
    """Callable normalizer bound to a snapshot of catalog set names.

    Deterministic and pure: the same label and the same reference names always
    give the same answer, and nothing in here raises on odd input.
    """

    def __init__(self, reference_names: Iterable[str]):
        self._index: ReferenceIndex = {}
        for name in reference_names:
            if name:
                self._index.setdefault(_prepare(name).lower(), name)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and _prepare(name).lower() in self._index

    def __call__(self, raw: Optional[str]) -> Optional[str]:
        if not isinstance(raw, str) or not raw.strip():
            return raw

        label = _prepare(raw)
        for strategy in RESOLUTION_STRATEGIES:
            hit = strategy(label, self._index)
            if hit:
                return hit

        return unresolved_candidate(label) or raw

    def resolve(self, raw: Optional[str]) -> Optional[str]:
        """Catalog spelling for the label, or None when no strategy lands on the catalog."""
        if not isinstance(raw, str) or not raw.strip():
            return None
        label = _prepare(raw)
        for strategy in RESOLUTION_STRATEGIES:
            hit = strategy(label, self._index)
            if hit and hit.lower() in self._index:
                return hit
        return None


def unresolved_candidate(raw: str) -> Optional[str]:
    """Best-effort short form of a label that matched a code, suffix or era pattern."""
    label = _prepare(raw)
    for extract in CANDIDATE_EXTRACTORS:
        candidate = extract(label)
        if candidate:
            return candidate
    return None
