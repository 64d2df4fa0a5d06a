"""
Unit tests for the candidate matcher.
"""
import pytest

from conftest import make_movie, make_person
from cinerecon.core.errors import SelfPairError
from cinerecon.matching.candidate_matcher import CandidateMatcher, temporal_delta
from cinerecon.matching.normalizer import TitleNormalizer


@pytest.fixture
def matcher():
    return CandidateMatcher()


class TestTemporalWindow:
    """The year window narrows the pool but never excludes unanchored records."""

    @pytest.mark.unit
    def test_delta(self):
        assert temporal_delta(make_movie("a", "x", 2006), make_movie("b", "y", 2009)) == 3
        assert temporal_delta(make_movie("a", "x", 2006), make_movie("b", "y")) is None

    @pytest.mark.unit
    def test_inside_window(self, matcher):
        """A same-titled record one year off is found."""
        record = make_movie("new", "Pokiri", 2006)
        best = matcher.find_best_match(record, [make_movie("p1", "Pokiri", 2007)])
        assert best is not None
        assert best.entity_b.id == "p1"
        assert best.temporal_delta == 1

    @pytest.mark.unit
    def test_outside_window(self, matcher):
        """Records outside the exact window are filtered out."""
        record = make_movie("new", "Pokiri", 2006)
        assert matcher.find_best_match(record, [make_movie("p1", "Pokiri", 2010)]) is None

    @pytest.mark.unit
    def test_wider_window_per_call(self, matcher):
        """A call-level window overrides the default."""
        record = make_movie("new", "Pokiri", 2006)
        best = matcher.find_best_match(record, [make_movie("p1", "Pokiri", 2009)], window=3)
        assert best is not None

    @pytest.mark.unit
    def test_missing_anchor_skips_filter(self, matcher):
        """A record without a year is still compared."""
        record = make_movie("new", "Pokiri")
        best = matcher.find_best_match(record, [make_movie("p1", "Pokiri", 1990)])
        assert best is not None
        assert best.temporal_delta is None

    @pytest.mark.unit
    def test_empty_pool(self, matcher):
        assert matcher.find_best_match(make_movie("new", "Pokiri", 2006), []) is None


class TestBestMatch:
    """Tests for find_best_match ranking."""

    @pytest.mark.unit
    def test_highest_score_wins(self, matcher):
        record = make_movie("new", "Magadheera", 2009)
        pool = [
            make_movie("a", "Maryada Ramanna", 2010),
            make_movie("b", "Magadheera", 2009),
            make_movie("c", "Mogudu", 2009),
        ]
        best = matcher.find_best_match(record, pool)
        assert best.entity_b.id == "b"
        assert best.title_similarity == 100

    @pytest.mark.unit
    def test_tie_broken_by_smaller_delta(self, matcher):
        """Equal scores prefer the closer year."""
        record = make_movie("new", "Magadheera", 2009)
        pool = [
            make_movie("far", "Magadheera", 2010),
            make_movie("near", "Magadheera", 2009),
        ]
        assert matcher.find_best_match(record, pool).entity_b.id == "near"

    @pytest.mark.unit
    def test_tie_broken_by_completeness(self, matcher):
        """Equal score and delta prefer the more complete record."""
        record = make_movie("new", "Magadheera", 2009)
        pool = [
            make_movie("sparse", "Magadheera", 2009),
            make_movie("rich", "Magadheera", 2009, attributes={"director": "S. S. Rajamouli"}),
        ]
        assert matcher.find_best_match(record, pool).entity_b.id == "rich"

    @pytest.mark.unit
    def test_self_in_pool_raises(self, matcher):
        """Matching a record against a pool containing itself is a caller bug."""
        record = make_movie("m1", "Pokiri", 2006)
        with pytest.raises(SelfPairError):
            matcher.find_best_match(record, [make_movie("m2", "Pokiri", 2006), record])

    @pytest.mark.unit
    def test_retired_records_ignored(self, matcher):
        record = make_movie("new", "Pokiri", 2006)
        retired = make_movie("old", "Pokiri", 2006, active=False, canonical_id="p")
        assert matcher.find_best_match(record, [retired]) is None

    @pytest.mark.unit
    def test_localized_title_compared(self, matcher):
        """The secondary title is scored against the other secondary title."""
        record = make_movie("new", "Bahubali", 2015, alt_title="బాహుబలి")
        other = make_movie("b1", "Baahubali The Beginning", 2015, alt_title="బాహుబలి")

        best = matcher.find_best_match(record, [other])

        assert best.title_similarity == 100
        assert best.evidence["surface"] == "alt_title"

    @pytest.mark.unit
    def test_aliases_are_primary_surfaces(self, matcher):
        """Known aliases match like the title itself."""
        record = make_person("new", "Chiru", 1955)
        other = make_person("p1", "Chiranjeevi", 1955, aliases=["Chiru", "Megastar"])

        best = matcher.find_best_match(record, [other])

        assert best.title_similarity == 100
        assert best.evidence["rule"] == "exact"

    @pytest.mark.unit
    def test_zero_score_keeps_real_rule(self, matcher):
        """Non-empty keys that share nothing report edit distance, not an empty key."""
        candidate = matcher.build_candidate(make_movie("a", "Ab", 2006), make_movie("b", "Xy", 2006))

        assert candidate.title_similarity == 0
        assert candidate.evidence["rule"] == "edit_distance"

    @pytest.mark.unit
    def test_blank_title_reports_empty_rule(self, matcher):
        candidate = matcher.build_candidate(make_movie("a", "...", 2006), make_movie("b", "Xy", 2006))
        assert candidate.evidence["rule"] == "empty"

    @pytest.mark.unit
    def test_alias_table_applied(self):
        """Keys go through the matcher's normalizer."""
        matcher = CandidateMatcher(TitleNormalizer({"chiru": "chiranjeevi"}))
        best = matcher.find_best_match(
            make_person("new", "Chiru", 1955),
            [make_person("p1", "Chiranjeevi", 1955)],
        )
        assert best.title_similarity == 100

    @pytest.mark.unit
    def test_shared_identifier_flag(self, matcher):
        record = make_movie("new", "Vikram", 2006, external_ids={"tmdb:81012"})
        other = make_movie("m1", "Vikramarkudu", 2006, external_ids={"tmdb:81012", "imdb:tt1"})

        best = matcher.find_best_match(record, [other])

        assert best.auxiliary_signal is True
        assert best.evidence["shared_identifiers"] == ["tmdb:81012"]


class TestSweep:
    """Tests for find_candidates over a whole pool."""

    @pytest.fixture
    def pool(self):
        return [
            make_movie("a", "Devadasu", 2006),
            make_movie("b", "Devadasu", 2007),
            make_movie("c", "Devadasu", 2015),
            make_movie("d", "Devadasu"),
        ]

    @pytest.mark.unit
    def test_window_buckets(self, matcher, pool):
        """Only pairs within the audit window (or unanchored) are compared."""
        keys = {c.pair_key for c in matcher.find_candidates(pool)}
        assert keys == {("a", "b"), ("a", "d"), ("b", "d"), ("c", "d")}

    @pytest.mark.unit
    def test_each_pair_once(self, matcher, pool):
        candidates = matcher.find_candidates(pool, window=20)
        keys = [c.pair_key for c in candidates]
        assert len(keys) == len(set(keys)) == 6

    @pytest.mark.unit
    def test_skip_pairs(self, matcher, pool):
        """Previously rejected pairs are not compared again."""
        keys = {c.pair_key for c in matcher.find_candidates(pool, skip_pairs={("a", "b")})}
        assert ("a", "b") not in keys
        assert ("a", "d") in keys

    @pytest.mark.unit
    def test_min_similarity(self, matcher):
        """Low-scoring pairs without a shared identifier are dropped."""
        pool = [make_movie("x", "Pokiri", 2006), make_movie("y", "Khaleja", 2006)]
        assert matcher.find_candidates(pool, min_similarity=60) == []

    @pytest.mark.unit
    def test_shared_identifier_always_compared(self, matcher):
        """A shared catalog id pulls a pair in across the window and the floor."""
        pool = [
            make_movie("x", "Puli", 1990, external_ids={"tmdb:1"}),
            make_movie("y", "Something Else", 2020, external_ids={"tmdb:1"}),
        ]
        candidates = matcher.find_candidates(pool, min_similarity=60)
        assert [c.pair_key for c in candidates] == [("x", "y")]

    @pytest.mark.unit
    def test_retired_records_skipped(self, matcher):
        pool = [
            make_movie("a", "Pokiri", 2006),
            make_movie("b", "Pokiri", 2006, active=False),
        ]
        assert matcher.find_candidates(pool) == []
