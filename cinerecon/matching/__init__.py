"""
Pure matching pipeline: normalize -> score -> match -> classify.

Nothing in this package performs I/O.
"""

from cinerecon.matching.normalizer import TitleNormalizer, normalize
from cinerecon.matching.similarity import levenshtein_distance, similarity_score
from cinerecon.matching.candidate_matcher import CandidateMatcher
from cinerecon.matching.classifier import MatchClassifier, MatchPolicy

__all__ = [
    "TitleNormalizer",
    "normalize",
    "levenshtein_distance",
    "similarity_score",
    "CandidateMatcher",
    "MatchClassifier",
    "MatchPolicy",
]
