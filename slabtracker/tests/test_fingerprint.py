"""Slab metadata parser tests"""

import itertools

import pytest

from slabtracker.parsing.fingerprint import (
    ParseStatus,
    classify,
    is_persistable,
    is_tracked_category,
    parse_slab,
)

PIKACHU = "Pokemon | PSA 80543183 | 2023 151 #173 Pikachu | 10 GEM MINT"


class TestFingerprintParsing:
    """Test the pipe-delimited fingerprint path"""

    def test_pikachu_fingerprint(self):
        """Test the documented fingerprint parses into a complete slab"""
        parsed = parse_slab({"fingerprint": PIKACHU})

        assert parsed.cert_number == "80543183"
        assert parsed.grader == "PSA"
        assert parsed.grade == "10"
        assert parsed.year == "2023"
        assert parsed.set_name == "151"
        assert parsed.card_number == "173"
        assert parsed.card_name == "Pikachu"
        assert parsed.parse_status is ParseStatus.OK

    @pytest.mark.parametrize(
        "fingerprint",
        [
            "Pokemon|PSA 80543183|2023 151 #173 Pikachu|10 GEM MINT",
            "  Pokemon  |  PSA   80543183 |   2023  151   #173  Pikachu |  10   GEM MINT  ",
            "Pokemon |\tPSA 80543183\t| 2023 151 #173 Pikachu | 10 GEM MINT\n",
        ],
    )
    def test_whitespace_does_not_change_result(self, fingerprint):
        """Test surrounding whitespace never changes the extracted fields"""
        expected = parse_slab({"fingerprint": PIKACHU})
        parsed = parse_slab({"fingerprint": fingerprint})

        for field in ("cert_number", "grader", "grade", "year", "set_name", "card_number", "card_name"):
            assert getattr(parsed, field) == getattr(expected, field)

    def test_nested_fingerprint_location(self):
        """Test fingerprint under token_info.proof_of_integrity"""
        parsed = parse_slab({"token_info": {"proof_of_integrity": {"fingerprint": PIKACHU}}})
        assert parsed.fingerprint == PIKACHU
        assert parsed.card_name == "Pikachu"

    def test_fingerprint_without_card_number(self):
        """Test set-only card segment"""
        parsed = parse_slab({"fingerprint": "Pokemon | CGC 4412345 | 1999 Base Set | 9 MINT"})
        assert parsed.grader == "CGC"
        assert parsed.set_name == "Base Set"
        assert parsed.card_number is None
        assert parsed.grade == "9"

    def test_short_fingerprint_is_ignored(self):
        """Test fingerprints with fewer than three segments yield nothing"""
        parsed = parse_slab({"fingerprint": "Pokemon | PSA"})
        assert parsed.parse_status is ParseStatus.FAIL


class TestAttributeAndTextParsing:
    """Test attribute aliases, precedence and free-text fallbacks"""

    def test_attributes_take_precedence(self):
        """Test attribute values are not overwritten by the fingerprint"""
        metadata = {
            "fingerprint": PIKACHU,
            "attributes": [
                {"trait_type": "Grading Company", "value": "Beckett (BGS)"},
                {"trait_type": "grade", "value": "9.5 Gem Mint"},
                {"trait_type": "Title/Subject", "value": "Pikachu Illustration"},
                {"trait_type": "Variant", "value": "Reverse Holo"},
            ],
        }
        parsed = parse_slab(metadata)

        assert parsed.grader == "BGS"
        assert parsed.grade == "9.5"
        assert parsed.card_name == "Pikachu Illustration"
        assert parsed.variant == "Reverse Holo"
        # Fields the attributes left empty still come from the fingerprint
        assert parsed.cert_number == "80543183"
        assert parsed.set_name == "151"

    def test_free_text_cert_and_grade(self):
        """Test regex fallbacks over name and description"""
        parsed = parse_slab(
            {},
            name="Charizard PSA 12345678",
            description="Graded slab | 8 MINT",
        )
        assert parsed.cert_number == "12345678"
        assert parsed.grader == "PSA"
        assert parsed.grade == "8"

    def test_description_title(self):
        """Test card and set from a graded title in the description"""
        parsed = parse_slab({}, description="PSA 10 Charizard VMAX - Brilliant Stars #18")
        assert parsed.card_name == "Charizard VMAX"
        assert parsed.set_name == "Brilliant Stars"
        assert parsed.card_number == "18"

    def test_generic_name_not_used_as_card_name(self):
        """Test vendor placeholder names are never card names"""
        parsed = parse_slab({}, name="Courtyard.io Asset #991")
        assert parsed.card_name is None

    def test_malformed_metadata_never_raises(self):
        """Test odd inputs degrade to an empty parse"""
        for metadata in (None, [], "text", {"attributes": "nope"}, {"attributes": [1, None, {"x": 1}]}):
            parsed = parse_slab(metadata)
            assert parsed.parse_status is ParseStatus.FAIL

    def test_image_url(self):
        """Test image is taken from metadata"""
        parsed = parse_slab({"fingerprint": PIKACHU, "image": "https://img.example/p.png"})
        assert parsed.image_url == "https://img.example/p.png"


class TestParseStatus:
    """Test status classification"""

    @pytest.mark.parametrize("cert,grader,grade", list(itertools.product([None, "123"], [None, "PSA"], [None, "10"])))
    def test_classification_is_exhaustive(self, cert, grader, grade):
        """Test every combination of the three identity fields"""
        status = classify(cert, grader, grade)
        if cert and grader and grade:
            assert status is ParseStatus.OK
        elif cert:
            assert status is ParseStatus.PARTIAL
        else:
            assert status is ParseStatus.FAIL

    def test_failed_parse_with_card_name_is_persistable(self):
        """Test a named card is kept even without a cert"""
        parsed = parse_slab({}, name="Mewtwo")
        assert parsed.parse_status is ParseStatus.FAIL
        assert is_persistable(parsed)

    def test_failed_parse_without_card_name_is_dropped(self):
        """Test nothing to show means nothing to store"""
        assert not is_persistable(parse_slab({}))


class TestCategoryFilter:
    """Test tracked-category detection"""

    def test_category_attribute(self):
        assert is_tracked_category({"attributes": [{"trait_type": "Category", "value": "Pokémon"}]})
        assert not is_tracked_category({"attributes": [{"trait_type": "Category", "value": "Baseball"}]})

    def test_fingerprint_first_segment(self):
        assert is_tracked_category({"fingerprint": PIKACHU})
        assert not is_tracked_category({"fingerprint": "Baseball | PSA 1 | 1952 Topps #311 Mantle | 8 NM-MT"})

    def test_name_fallback(self):
        assert is_tracked_category({}, name="Pokemon Charizard PSA 10")
        assert not is_tracked_category({}, name="Michael Jordan rookie")
