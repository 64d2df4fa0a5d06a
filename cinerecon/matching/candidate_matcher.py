"""
Candidate matching: narrow a pool of entities and score what remains.

Two entry points:
- find_best_match(record, pool): the single best candidate for one
  incoming record (ingestion path, exact window)
- find_candidates(pool): every plausible pair inside a pool (audit sweep,
  coarse window, year-bucketed to avoid comparing across decades)

The temporal window is a performance/precision filter only. When either
record lacks a year the filter is skipped rather than excluding the record.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from cinerecon.core.entities import Entity, MatchCandidate, pair_key
from cinerecon.core.errors import SelfPairError
from cinerecon.matching.normalizer import TitleNormalizer
from cinerecon.matching.similarity import ScoreRule, SimilarityScore, score_keys

logger = logging.getLogger(__name__)

DEFAULT_TEMPORAL_WINDOW = 1
AUDIT_TEMPORAL_WINDOW = 3


def temporal_delta(a: Entity, b: Entity) -> Optional[int]:
    """Absolute year difference, or None when either anchor is missing."""
    if a.year is None or b.year is None:
        return None
    return abs(a.year - b.year)


class CandidateMatcher:
    """
    Scores entities against each other on primary and localized titles.

    Primary surfaces are the title plus known aliases; the localized
    surface is alt_title. The candidate score is the best of
    primary x primary and localized x localized.
    """

    def __init__(
        self,
        normalizer: Optional[TitleNormalizer] = None,
        temporal_window: int = DEFAULT_TEMPORAL_WINDOW,
    ):
        self.normalizer = normalizer or TitleNormalizer()
        self.temporal_window = temporal_window

    def within_window(self, a: Entity, b: Entity, window: Optional[int] = None) -> bool:
        delta = temporal_delta(a, b)
        if delta is None:
            return True
        return delta <= (self.temporal_window if window is None else window)

    def _surfaces(self, entity: Entity) -> Tuple[List[str], List[str]]:
        primary = []
        for text in [entity.title] + list(entity.aliases):
            key = self.normalizer.normalize(text)
            if key and key not in primary:
                primary.append(key)
        localized = []
        alt_key = self.normalizer.normalize(entity.alt_title)
        if alt_key:
            localized.append(alt_key)
        return primary, localized

    def build_candidate(self, a: Entity, b: Entity) -> MatchCandidate:
        """
        Score one pair.

        Raises:
            SelfPairError: If a and b are the same entity
        """
        if a.id == b.id:
            raise SelfPairError(f"Cannot pair entity {a.id} with itself")

        primary_a, localized_a = self._surfaces(a)
        primary_b, localized_b = self._surfaces(b)

        best = None
        best_keys = (primary_a[0] if primary_a else "", primary_b[0] if primary_b else "")
        surface = "title"

        for label, keys_a, keys_b in (
            ("title", primary_a, primary_b),
            ("alt_title", localized_a, localized_b),
        ):
            for key_a in keys_a:
                for key_b in keys_b:
                    scored = score_keys(key_a, key_b)
                    if best is None or scored.score > best.score:
                        best = scored
                        best_keys = (key_a, key_b)
                        surface = label

        if best is None:
            best = SimilarityScore(0, ScoreRule.EMPTY)

        shared = sorted(a.shared_external_ids(b))
        delta = temporal_delta(a, b)

        return MatchCandidate(
            entity_a=a,
            entity_b=b,
            title_similarity=best.score,
            temporal_delta=delta,
            auxiliary_signal=bool(shared),
            key_a=best_keys[0],
            key_b=best_keys[1],
            evidence={
                "rule": best.rule.value,
                "surface": surface,
                "key_a": best_keys[0],
                "key_b": best_keys[1],
                "shared_identifiers": shared,
            },
        )

    @staticmethod
    def _rank(candidate: MatchCandidate) -> Tuple[int, int, int]:
        # Higher score, then smaller (known) delta, then more complete target
        delta = candidate.temporal_delta
        return (
            candidate.title_similarity,
            -(delta if delta is not None else 10_000),
            candidate.entity_b.populated_field_count(),
        )

    def find_best_match(
        self,
        record: Entity,
        pool: Iterable[Entity],
        window: Optional[int] = None,
    ) -> Optional[MatchCandidate]:
        """
        Return the highest-scoring candidate for record in pool, or None.

        Retired pool entries are ignored. Ties are broken by smaller
        temporal delta, then by the more complete pool record.

        Raises:
            SelfPairError: If record itself appears in pool
        """
        best: Optional[MatchCandidate] = None
        compared = 0

        for other in pool:
            if other.id == record.id:
                raise SelfPairError(
                    f"Record {record.id} is part of the pool it is matched against"
                )
            if not other.active or not self.within_window(record, other, window):
                continue

            candidate = self.build_candidate(record, other)
            compared += 1
            if best is None or self._rank(candidate) > self._rank(best):
                best = candidate

        logger.debug(
            f"Best match for {record.id}: "
            f"{best.entity_b.id if best else None} "
            f"({best.title_similarity if best else '-'}) after {compared} comparisons"
        )
        return best

    def find_candidates(
        self,
        pool: Sequence[Entity],
        window: Optional[int] = None,
        min_similarity: int = 0,
        skip_pairs: Optional[Set[Tuple[str, str]]] = None,
    ) -> List[MatchCandidate]:
        """
        Sweep a pool for plausible duplicate pairs.

        Records are bucketed by year; each record is compared with the
        buckets inside the window and with every record lacking a year.
        Pairs sharing an external identifier are always compared. Each
        unordered pair is scored once; pairs below min_similarity that share
        no identifier are dropped.

        Returns:
            Candidates in pool order of their first member
        """
        window = AUDIT_TEMPORAL_WINDOW if window is None else window
        skip_pairs = skip_pairs or set()
        active = [e for e in pool if e.active]

        by_year: Dict[int, List[Entity]] = defaultdict(list)
        unanchored: List[Entity] = []
        by_identifier: Dict[str, List[Entity]] = defaultdict(list)
        for entity in active:
            if entity.year is None:
                unanchored.append(entity)
            else:
                by_year[entity.year].append(entity)
            for ext_id in entity.external_ids:
                by_identifier[ext_id].append(entity)

        seen: Set[Tuple[str, str]] = set()
        candidates: List[MatchCandidate] = []
        compared = 0

        for entity in active:
            if entity.year is None:
                neighbours = list(active)
            else:
                neighbours = list(unanchored)
                for year in range(entity.year - window, entity.year + window + 1):
                    neighbours.extend(by_year.get(year, ()))
            for ext_id in entity.external_ids:
                neighbours.extend(by_identifier[ext_id])

            for other in neighbours:
                if other.id == entity.id:
                    continue
                key = pair_key(entity.id, other.id)
                if key in seen or key in skip_pairs:
                    continue
                seen.add(key)

                candidate = self.build_candidate(entity, other)
                compared += 1
                if candidate.title_similarity >= min_similarity or candidate.auxiliary_signal:
                    candidates.append(candidate)

        logger.info(
            f"Sweep over {len(active)} active records: {compared} pairs compared, "
            f"{len(candidates)} candidates kept (window ±{window})"
        )
        return candidates
