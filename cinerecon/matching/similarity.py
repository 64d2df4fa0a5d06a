"""
Similarity scoring between normalized keys.

Scores are integers 0-100. Rules are applied in a fixed priority order and
the first one that applies wins, so every score can be explained by naming
the rule that produced it:

1. Exact equality                          -> 100
2. Containment (shorter inside longer, shorter >= 4 chars)
                                           -> floor(len(shorter) / len(longer) * 90)
3. Normalized Levenshtein similarity       -> floor((maxLen - distance) / maxLen * 100)

Containment is capped below 100 because a short word inside a longer
compound title is a common false positive ("puli" / "pulijoodam"). For the
same reason a single-word key only counts as contained when the longer key
starts with it; an embedded substring falls through to edit distance.
"""

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

MIN_CONTAINMENT_LENGTH = 4
CONTAINMENT_CAP = 90
GUARDED_WORD_LENGTH = 3


class ScoreRule(str, Enum):
    """Which rule produced a similarity score."""
    EMPTY = "empty"
    EXACT = "exact"
    CONTAINMENT = "containment"
    EDIT_DISTANCE = "edit_distance"


@dataclass(frozen=True)
class SimilarityScore:
    """A similarity score and the rule that produced it."""

    score: int
    rule: ScoreRule


def levenshtein_distance(s1: str, s2: str) -> int:
    """
    Calculate the Levenshtein (edit) distance between two strings.

    The Levenshtein distance is the minimum number of single-character
    edits (insertions, deletions, substitutions) needed to transform
    one string into another.

    Args:
        s1: First string
        s2: Second string

    Returns:
        Edit distance (0 = identical)
    """
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)

    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))

    for i, c1 in enumerate(s1):
        current_row = [i + 1]

        for j, c2 in enumerate(s2):
            # Cost is 0 if characters match, 1 otherwise
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)

            current_row.append(min(insertions, deletions, substitutions))

        previous_row = current_row

    return previous_row[-1]


def _containment_allowed(shorter: str, longer: str) -> bool:
    if len(shorter) < MIN_CONTAINMENT_LENGTH or shorter not in longer:
        return False
    is_single_word = " " not in shorter
    if is_single_word and len(shorter) >= GUARDED_WORD_LENGTH:
        return longer.startswith(shorter)
    return True


def score_keys(a: str, b: str) -> SimilarityScore:
    """
    Score two normalized keys and report the rule used.

    Empty keys never match anything, not even another empty key.
    Symmetric: score_keys(a, b) == score_keys(b, a).
    """
    if not a or not b:
        return SimilarityScore(0, ScoreRule.EMPTY)

    if a == b:
        return SimilarityScore(100, ScoreRule.EXACT)

    # Sort on (length, text) so argument order never changes the result
    shorter, longer = sorted((a, b), key=lambda s: (len(s), s))

    if _containment_allowed(shorter, longer):
        return SimilarityScore(
            len(shorter) * CONTAINMENT_CAP // len(longer),
            ScoreRule.CONTAINMENT,
        )

    max_len = len(longer)
    distance = levenshtein_distance(a, b)
    return SimilarityScore(
        (max_len - distance) * 100 // max_len,
        ScoreRule.EDIT_DISTANCE,
    )


def similarity_score(a: str, b: str) -> int:
    """Similarity of two normalized keys, 0-100."""
    return score_keys(a, b).score
