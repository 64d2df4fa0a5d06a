"""
Entity reconciliation for the movies and celebrities portal.

Deterministic, explainable deduplication of movie and person records
collected from uncoordinated sources.
"""

__version__ = "0.1.0"
