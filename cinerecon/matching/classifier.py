"""
Match classification.

Maps a MatchCandidate (title similarity, temporal delta, shared-identifier
signal, variant pattern) onto a Verdict. Rules, in evaluation order:

0. Empty key on either side      -> Distinct (confidence 0), or Ambiguous
                                    when the pair shares an identifier
1. similarity >= 95, delta == 0 or both anchors absent
                                 -> Identical (95-100)
2. similarity >= 70, delta >= 40 -> Ambiguous (names recur across generations)
3. similarity >= 85, or shared identifier with similarity >= 70, or shared
   identifier with similarity >= 40 and a known delta <= 1
                                 -> SameEntity (70-100)
4. similarity >= 75 and a spelling-variant pattern
                                 -> SameEntityVariant (80-90)
5. similarity < 70               -> Distinct (100 - similarity)
6. anything else                 -> Ambiguous

Only Identical/SameEntity at confidence >= 90 may be applied without a
human; everything else goes to review.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from cinerecon.core.entities import MatchCandidate, Verdict, VerdictKind

logger = logging.getLogger(__name__)

AMBIGUOUS_CONFIDENCE = 50
EMPTY_KEY_CONFIDENCE = 0

# Transliteration folds seen in Telugu/Tamil romanization
DEFAULT_TRANSLITERATION_FOLDS: Tuple[Tuple[str, str], ...] = (
    ("aa", "a"),
    ("ee", "i"),
    ("ii", "i"),
    ("oo", "u"),
    ("uu", "u"),
    ("th", "t"),
    ("dh", "d"),
    ("bh", "b"),
    ("w", "v"),
)

# Person-name suffixes only; trailing numbers on titles mark sequels
_TRAILING_SUFFIX = re.compile(r"\s+(jr|sr|junior|senior)$")


@dataclass(frozen=True)
class MatchPolicy:
    """
    Classifier thresholds. Tunable constants, not fixed truths; build one
    from Settings.match_policy() to take values from the environment.
    """

    identical_min_similarity: int = 95
    same_entity_min_similarity: int = 85
    match_floor: int = 70
    identifier_min_similarity: int = 40
    identifier_max_temporal_delta: int = 1
    identifier_confidence: int = 92
    large_temporal_gap: int = 40
    variant_min_similarity: int = 75
    auto_apply_min_confidence: int = 90

    def is_auto_apply(self, verdict: Verdict) -> bool:
        return verdict.is_match and verdict.confidence >= self.auto_apply_min_confidence


def _fold(key: str, folds: Sequence[Tuple[str, str]]) -> str:
    for src, dst in folds:
        key = key.replace(src, dst)
    return key


def _initials_match(words_a: Sequence[str], words_b: Sequence[str]) -> bool:
    """
    "k raghavendra rao" vs "kovelamudi raghavendra rao": same word count,
    every word equal or a single letter matching the other's first letter,
    with at least one initial involved.
    """
    if len(words_a) != len(words_b) or len(words_a) < 2:
        return False
    used_initial = False
    for wa, wb in zip(words_a, words_b):
        if wa == wb:
            continue
        if (len(wa) == 1 and wb.startswith(wa)) or (len(wb) == 1 and wa.startswith(wb)):
            used_initial = True
            continue
        return False
    return used_initial


def identify_variant(
    key_a: str,
    key_b: str,
    known_variants: Iterable[Tuple[str, str]] = (),
    transliteration_folds: Sequence[Tuple[str, str]] = DEFAULT_TRANSLITERATION_FOLDS,
) -> Optional[str]:
    """
    Name the spelling-variant pattern linking two normalized keys, if any.

    Returns None when the keys are equal, empty, or no pattern applies.
    """
    if not key_a or not key_b or key_a == key_b:
        return None

    pair = tuple(sorted((key_a, key_b)))
    if pair in frozenset(known_variants):
        return "known title variant"

    if key_a.replace(" ", "") == key_b.replace(" ", ""):
        return "spacing difference"

    stripped_a = _TRAILING_SUFFIX.sub("", key_a)
    stripped_b = _TRAILING_SUFFIX.sub("", key_b)
    if stripped_a == stripped_b and stripped_a:
        return "suffix difference"

    if _fold(key_a, transliteration_folds) == _fold(key_b, transliteration_folds):
        return "transliteration variant"

    if _initials_match(key_a.split(), key_b.split()):
        return "initials vs full name"

    return None


class MatchClassifier:
    """
    Deterministic thresholding of match candidates into verdicts.

    Usage:
        classifier = MatchClassifier(MatchPolicy(), known_variants=[("kashmora", "kaashmora")])
        verdict = classifier.classify(candidate)
    """

    def __init__(
        self,
        policy: Optional[MatchPolicy] = None,
        known_variants: Iterable[Tuple[str, str]] = (),
        transliteration_folds: Sequence[Tuple[str, str]] = DEFAULT_TRANSLITERATION_FOLDS,
    ):
        self.policy = policy or MatchPolicy()
        self.known_variants = frozenset(tuple(sorted(p)) for p in known_variants)
        self.transliteration_folds = tuple(transliteration_folds)

    def same_entity_confidence(self, similarity: int) -> int:
        """70 at the same-entity threshold rising linearly to 100."""
        floor = self.policy.same_entity_min_similarity
        span = max(100 - floor, 1)
        scaled = 70 + (similarity - floor) * 30 // span
        return max(70, min(100, scaled))

    def variant_confidence(self, similarity: int) -> int:
        """80 at the variant threshold rising linearly to 90."""
        floor = self.policy.variant_min_similarity
        span = max(100 - floor, 1)
        scaled = 80 + (similarity - floor) * 10 // span
        return max(80, min(90, scaled))

    def classify(self, candidate: MatchCandidate) -> Verdict:
        """Classify one candidate. Never raises for data-quality reasons."""
        policy = self.policy
        sim = candidate.title_similarity
        delta = candidate.temporal_delta
        shared = candidate.auxiliary_signal

        if not candidate.key_a or not candidate.key_b:
            if shared:
                return Verdict(
                    VerdictKind.AMBIGUOUS,
                    AMBIGUOUS_CONFIDENCE,
                    "empty title key but shared external identifier; needs review",
                )
            return Verdict(
                VerdictKind.DISTINCT,
                EMPTY_KEY_CONFIDENCE,
                "empty title key; nothing to compare",
            )

        if sim >= policy.identical_min_similarity and (
            delta == 0 or candidate.anchors_absent
        ):
            anchor = "same year" if delta == 0 else "no temporal anchors"
            return Verdict(
                VerdictKind.IDENTICAL,
                max(policy.identical_min_similarity, min(100, sim)),
                f"title similarity {sim}, {anchor}",
            )

        if delta is not None and delta >= policy.large_temporal_gap and sim >= policy.match_floor:
            return Verdict(
                VerdictKind.AMBIGUOUS,
                AMBIGUOUS_CONFIDENCE,
                f"large temporal gap suggests distinct persons/films sharing a name "
                f"(title similarity {sim}, {delta} years apart)",
            )

        variant = identify_variant(
            candidate.key_a,
            candidate.key_b,
            self.known_variants,
            self.transliteration_folds,
        )
        identifier_window = delta is not None and delta <= policy.identifier_max_temporal_delta

        if (
            sim >= policy.same_entity_min_similarity
            or (shared and sim >= policy.match_floor)
            or (shared and identifier_window and sim >= policy.identifier_min_similarity)
        ):
            confidence = self.same_entity_confidence(sim)
            reasons = [f"title similarity {sim}"]
            if shared:
                reasons.append("shared external identifier")
                if identifier_window:
                    confidence = max(confidence, policy.identifier_confidence)
            if variant and sim >= policy.variant_min_similarity:
                reasons.append(variant)
                confidence = max(confidence, self.variant_confidence(sim))
            if delta is not None:
                reasons.append(f"{delta} years apart")
            return Verdict(VerdictKind.SAME_ENTITY, confidence, ", ".join(reasons))

        if sim >= policy.variant_min_similarity and variant:
            return Verdict(
                VerdictKind.SAME_ENTITY_VARIANT,
                self.variant_confidence(sim),
                f"{variant} (title similarity {sim})",
            )

        if sim < policy.match_floor:
            return Verdict(
                VerdictKind.DISTINCT,
                100 - sim,
                f"title similarity {sim} below {policy.match_floor}",
            )

        return Verdict(
            VerdictKind.AMBIGUOUS,
            AMBIGUOUS_CONFIDENCE,
            f"title similarity {sim} is plausible but below {policy.same_entity_min_similarity}",
        )
