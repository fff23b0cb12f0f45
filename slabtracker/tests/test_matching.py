"""Search candidate selection tests"""

from slabtracker.ingestion.base import SourceCard
from slabtracker.pricing.matching import select_candidate


def card(source_id, name, set_name=None, number=None):
    return SourceCard(source_id=source_id, name=name, set_name=set_name, number=number)


class TestSelectCandidate:
    """Test the strict-then-loose cascade"""

    def test_exact_name_and_set(self):
        results = [card("1", "Pikachu", "Base Set"), card("2", "Pikachu", "151")]
        assert select_candidate(results, "Pikachu", "151").source_id == "2"

    def test_substring_name_and_set(self):
        results = [card("1", "Pikachu ex", "Scarlet & Violet 151"), card("2", "Raichu", "151")]
        assert select_candidate(results, "Pikachu", "151").source_id == "1"

    def test_exact_name_any_set(self):
        results = [card("1", "Pikachu", "Jungle"), card("2", "Pikachu V", "Vivid Voltage")]
        assert select_candidate(results, "Pikachu", "Base Set").source_id == "1"

    def test_several_plausible_is_no_match(self):
        """Test ambiguity is never resolved by picking the first result"""
        results = [card("1", "Pikachu", "Jungle"), card("2", "Pikachu", "Base Set 2")]
        assert select_candidate(results, "Pikachu", "Celebrations") is None

    def test_card_number_breaks_tie(self):
        results = [card("1", "Pikachu", "151", "25"), card("2", "Pikachu", "151", "173")]
        assert select_candidate(results, "Pikachu", "151", "173/165").source_id == "2"

    def test_lone_overlapping_result(self):
        results = [card("1", "Pikachu Illustrator")]
        assert select_candidate(results, "Pikachu").source_id == "1"

    def test_lone_unrelated_result(self):
        results = [card("1", "Charizard", "Base Set")]
        assert select_candidate(results, "Pikachu", "Base Set") is None

    def test_no_results(self):
        assert select_candidate([], "Pikachu") is None

    def test_case_and_whitespace_insensitive(self):
        results = [card("1", "  PIKACHU ", "151")]
        assert select_candidate(results, "pikachu", " 151 ").source_id == "1"
