"""Search indexers."""

from .fuzzy import FuzzyIndex, Match, match_score

__all__ = ["FuzzyIndex", "Match", "match_score"]
