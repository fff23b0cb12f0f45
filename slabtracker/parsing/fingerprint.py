"""Slab metadata parser.

Vendor metadata carries the grading identity in up to three places, tried in
order, each one only filling fields the previous one left empty:

1. structured ``attributes`` (trait_type / value pairs, matched through an alias table)
2. the pipe-delimited fingerprint, e.g.
   ``Pokemon | PSA 80543183 | 2023 151 #173 Pikachu | 10 GEM MINT``
3. free-text regexes over name + description + fingerprint (cert, grade, grader only)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


class SlabField(str, Enum):
    CERT_NUMBER = "cert_number"
    GRADER = "grader"
    GRADE = "grade"
    SET_NAME = "set_name"
    CARD_NAME = "card_name"
    CARD_NUMBER = "card_number"
    VARIANT = "variant"
    LANGUAGE = "language"
    YEAR = "year"


class Grader(str, Enum):
    PSA = "PSA"
    BGS = "BGS"
    CGC = "CGC"
    SGC = "SGC"


class ParseStatus(str, Enum):
    OK = "ok"
    PARTIAL = "partial"
    FAIL = "fail"


# Lookup is case-insensitive; first alias present wins.
ATTRIBUTE_ALIASES: Mapping[SlabField, Tuple[str, ...]] = MappingProxyType(
    {
        SlabField.CERT_NUMBER: ("Serial", "Cert Number", "cert_number", "Certificate Number"),
        SlabField.GRADER: ("Grader", "Grading Company", "grading_company"),
        SlabField.GRADE: ("Grade",),
        SlabField.SET_NAME: ("Set", "Set Name"),
        SlabField.CARD_NAME: ("Title/Subject", "Card Name"),
        SlabField.CARD_NUMBER: ("Card Number",),
        SlabField.VARIANT: ("Variant", "Edition"),
        SlabField.LANGUAGE: ("Language",),
        SlabField.YEAR: ("Year",),
    }
)

TRACKED_CATEGORY_TOKENS = ("pokemon", "pokémon")

_GRADER_ALT = "|".join(g.value for g in Grader)

GRADER_CERT_RE = re.compile(rf"\b({_GRADER_ALT})\s+(\d+)", re.IGNORECASE)
CARD_INFO_RE = re.compile(r"^(\d{4})\s+(.+?)(?:\s+#(\d+)\s+(.+))?$")
LEADING_GRADE_RE = re.compile(r"^(\d+(?:\.\d+)?)")

# Free-text fallbacks
TEXT_CERT_RE = re.compile(rf"\b({_GRADER_ALT})\s+(\d{{6,}})", re.IGNORECASE)
TEXT_GRADE_RE = re.compile(r"\|\s*(\d+(?:\.\d+)?)\s+(?:GEM\s+)?MINT", re.IGNORECASE)
TEXT_GRADER_RE = re.compile(rf"\b({_GRADER_ALT})\b", re.IGNORECASE)

# "PSA 10 Charizard VMAX - Brilliant Stars #18"
DESC_GRADED_TITLE_RE = re.compile(
    rf"(?:{_GRADER_ALT})\s+\d+(?:\.\d+)?\s+(.+?)\s*[-–]\s*(.+?)(?:\s*#(\d+))?$",
    re.IGNORECASE,
)
# "2023 Pokemon 151 #173 Pikachu"
DESC_YEAR_TITLE_RE = re.compile(r"^\d{4}\s+(.+?)\s+#(\d+)\s+(.+)")

GENERIC_NAME_RE = re.compile(r"courtyard\.io|^asset\b|^token\b|^nft\b", re.IGNORECASE)


@dataclass
class ParsedSlab:
    cert_number: Optional[str] = None
    grader: Optional[str] = None
    grade: Optional[str] = None
    set_name: Optional[str] = None
    card_name: Optional[str] = None
    card_number: Optional[str] = None
    variant: Optional[str] = None
    image_url: Optional[str] = None
    fingerprint: Optional[str] = None
    language: Optional[str] = None
    year: Optional[str] = None

    @property
    def parse_status(self) -> ParseStatus:
        return classify(self.cert_number, self.grader, self.grade)

    def fill(self, field: SlabField, value: Optional[str]) -> None:
        """Set a field only if it is still empty."""
        if value and getattr(self, field.value) is None:
            setattr(self, field.value, value)


def classify(cert_number: Optional[str], grader: Optional[str], grade: Optional[str]) -> ParseStatus:
    if cert_number and grader and grade:
        return ParseStatus.OK
    if cert_number:
        return ParseStatus.PARTIAL
    return ParseStatus.FAIL


def is_persistable(parsed: ParsedSlab) -> bool:
    """A failed parse with no card name is not a card we can show; drop it."""
    return not (parsed.parse_status is ParseStatus.FAIL and not parsed.card_name)


# -----------------------------------------------------------------------------
# Metadata accessors
# -----------------------------------------------------------------------------
def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def get_attribute(attributes: List[Dict[str, Any]], trait_type: str) -> Optional[str]:
    wanted = trait_type.lower()
    for attr in attributes:
        if not isinstance(attr, dict):
            continue
        name = attr.get("trait_type")
        if name and str(name).lower() == wanted:
            return _clean(attr.get("value"))
    return None


def lookup_field(attributes: List[Dict[str, Any]], field: SlabField) -> Optional[str]:
    for alias in ATTRIBUTE_ALIASES[field]:
        value = get_attribute(attributes, alias)
        if value:
            return value
    return None


def get_fingerprint(metadata: Dict[str, Any]) -> Optional[str]:
    token_info = metadata.get("token_info")
    if isinstance(token_info, dict):
        proof = token_info.get("proof_of_integrity")
        if isinstance(proof, dict) and proof.get("fingerprint"):
            return str(proof["fingerprint"])
    if metadata.get("fingerprint"):
        return str(metadata["fingerprint"])
    return None


def _attributes(metadata: Dict[str, Any]) -> List[Dict[str, Any]]:
    attributes = metadata.get("attributes")
    return attributes if isinstance(attributes, list) else []


def _leading_grade(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    match = LEADING_GRADE_RE.match(value)
    return match.group(1) if match else value


def normalize_grader(value: Optional[str]) -> Optional[str]:
    """'psa' -> 'PSA'; 'Beckett (BGS)' -> 'BGS'; unknown graders are kept as given."""
    if not value:
        return None
    match = TEXT_GRADER_RE.search(value)
    if match:
        return match.group(1).upper()
    return value.strip()


def is_tracked_category(
    metadata: Dict[str, Any],
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> bool:
    """True for trading-card slabs of the tracked game (the vendor also sells sports cards)."""
    category = get_attribute(_attributes(metadata), "Category")
    if category:
        return any(token in category.lower() for token in TRACKED_CATEGORY_TOKENS)

    fingerprint = get_fingerprint(metadata)
    if fingerprint:
        first = fingerprint.split("|")[0].strip().lower()
        return first in TRACKED_CATEGORY_TOKENS

    text = " ".join(part for part in (name, description) if part).lower()
    return any(token in text for token in TRACKED_CATEGORY_TOKENS)


# -----------------------------------------------------------------------------
# Extraction strategies
# -----------------------------------------------------------------------------
def _from_attributes(parsed: ParsedSlab, attributes: List[Dict[str, Any]]) -> None:
    for field in SlabField:
        value = lookup_field(attributes, field)
        if field is SlabField.GRADE:
            value = _leading_grade(value)
        elif field is SlabField.GRADER:
            value = normalize_grader(value)
        parsed.fill(field, value)


def _from_fingerprint(parsed: ParsedSlab, fingerprint: str) -> None:
    parts = [_clean(part) or "" for part in fingerprint.split("|")]
    if len(parts) < 3:
        return

    grader_cert = GRADER_CERT_RE.search(parts[1])
    if grader_cert:
        parsed.fill(SlabField.GRADER, grader_cert.group(1).upper())
        parsed.fill(SlabField.CERT_NUMBER, grader_cert.group(2))

    card_info = CARD_INFO_RE.match(parts[2])
    if card_info:
        year, set_name, number, card_name = card_info.groups()
        parsed.fill(SlabField.YEAR, year)
        parsed.fill(SlabField.SET_NAME, _clean(set_name))
        parsed.fill(SlabField.CARD_NUMBER, number)
        parsed.fill(SlabField.CARD_NAME, _clean(card_name))

    if len(parts) >= 4:
        grade = LEADING_GRADE_RE.match(parts[3])
        if grade:
            parsed.fill(SlabField.GRADE, grade.group(1))


def _from_free_text(parsed: ParsedSlab, text: str) -> None:
    if not parsed.cert_number:
        match = TEXT_CERT_RE.search(text)
        if match:
            parsed.fill(SlabField.CERT_NUMBER, match.group(2))
            parsed.fill(SlabField.GRADER, match.group(1).upper())
    if not parsed.grade:
        match = TEXT_GRADE_RE.search(text)
        if match:
            parsed.fill(SlabField.GRADE, match.group(1))


def _from_description(parsed: ParsedSlab, description: str) -> None:
    if parsed.card_name:
        return

    match = DESC_GRADED_TITLE_RE.search(description)
    if match:
        card_name, set_name, number = match.groups()
        parsed.fill(SlabField.CARD_NAME, _clean(card_name))
        parsed.fill(SlabField.SET_NAME, _clean(re.sub(r"\s*#\d+$", "", set_name)))
        parsed.fill(SlabField.CARD_NUMBER, number)
        return

    match = DESC_YEAR_TITLE_RE.match(description)
    if match:
        set_name, number, card_name = match.groups()
        parsed.fill(SlabField.SET_NAME, _clean(set_name))
        parsed.fill(SlabField.CARD_NUMBER, number)
        parsed.fill(SlabField.CARD_NAME, _clean(card_name))


def _image_url(metadata: Dict[str, Any]) -> Optional[str]:
    for key in ("image", "image_url"):
        value = metadata.get(key)
        if isinstance(value, str) and value:
            return value
    media = metadata.get("media")
    if isinstance(media, dict) and media.get("image_url"):
        return str(media["image_url"])
    return None


def parse_slab(
    metadata: Optional[Dict[str, Any]],
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> ParsedSlab:
    """Extract slab fields from raw token metadata. Never raises on malformed input."""
    metadata = metadata if isinstance(metadata, dict) else {}
    name = name or _clean(metadata.get("name"))
    description = description or _clean(metadata.get("description"))

    parsed = ParsedSlab()
    parsed.fingerprint = get_fingerprint(metadata)

    _from_attributes(parsed, _attributes(metadata))
    if parsed.fingerprint:
        _from_fingerprint(parsed, parsed.fingerprint)

    text = " ".join(part for part in (name, description, parsed.fingerprint) if part)
    _from_free_text(parsed, text)

    if description:
        _from_description(parsed, description)

    if not parsed.card_name and name and not GENERIC_NAME_RE.search(name):
        parsed.card_name = name

    parsed.image_url = _image_url(metadata)
    return parsed
