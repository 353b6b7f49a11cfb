"""
Typo-tolerant fuzzy index over one source's records.

Scores are normalized edit distances in [0, 1], 0 meaning the query occurs
verbatim (case-insensitive) and 1 meaning no resemblance. A query shorter
than a field is aligned against the best window of that field, so a keyword
anywhere in a long title scores the same as one at the start.
"""

import time
from typing import List, Optional, Sequence, Tuple
from dataclasses import dataclass

from rapidfuzz import fuzz
from loguru import logger

from ..records import Record, SourceKind


MATCH_KEYS = ("title", "url", "search_text")

# Guards the threshold comparison against float drift (1 - 0.3 != 0.7)
_EPSILON = 1e-9


@dataclass(frozen=True)
class Match:
    """A record that matched a query."""
    record: Record
    score: float
    key: str


def match_score(pattern: str, text: Optional[str], threshold: float = 1.0) -> float:
    """
    Score ``pattern`` against ``text``; both are expected lowercased.

    Returns 1.0 when the score is worse than ``threshold`` so callers can
    skip the exact computation for hopeless candidates.
    """
    if not pattern or not text:
        return 1.0
    if pattern in text:
        return 0.0

    cutoff = max(0.0, (1.0 - threshold) * 100 - _EPSILON)
    if len(pattern) > len(text):
        similarity = fuzz.ratio(pattern, text, score_cutoff=cutoff)
    else:
        similarity = fuzz.partial_ratio(pattern, text, score_cutoff=cutoff)

    if not similarity:
        return 1.0
    return 1.0 - similarity / 100.0


class FuzzyIndex:
    """Fuzzy matcher over an immutable snapshot of one cache's records."""

    def __init__(self, source: SourceKind, threshold: float = 0.3):
        self.source = source
        self.threshold = threshold
        self._entries: Tuple[Tuple[Record, Tuple[Optional[str], ...]], ...] = ()

        self.stats = {
            "records_indexed": 0,
            "rebuilds": 0,
            "searches": 0,
            "last_search_ms": 0.0
        }

    def rebuild(self, records: Sequence[Record], threshold: Optional[float] = None) -> None:
        """Discard the current index and build a new one over ``records``."""
        if threshold is not None:
            self.threshold = threshold

        entries = []
        for record in records:
            fields = tuple(
                value.lower() if value else None
                for value in (getattr(record, key) for key in MATCH_KEYS)
            )
            entries.append((record, fields))

        self._entries = tuple(entries)
        self.stats["records_indexed"] = len(self._entries)
        self.stats["rebuilds"] += 1
        logger.debug(f"Rebuilt {self.source.value} index with {len(self._entries)} records")

    def set_threshold(self, threshold: float) -> None:
        self.threshold = threshold

    def search(self, query: str) -> List[Match]:
        """
        Find records whose title, url or combined text is within threshold.

        Results are ordered best score first; equal scores keep the order
        the records had in the cache.
        """
        pattern = query.strip().lower()
        if not pattern:
            return []

        start = time.perf_counter()
        threshold = self.threshold
        matches = []

        for record, fields in self._entries:
            best_score = 1.0
            best_key = None
            for key, text in zip(MATCH_KEYS, fields):
                score = match_score(pattern, text, threshold)
                if score < best_score or best_key is None:
                    best_score, best_key = score, key
                if best_score == 0.0:
                    break

            if best_score <= threshold + _EPSILON:
                matches.append(Match(record=record, score=best_score, key=best_key))

        # list.sort is stable, so ties stay in cache order
        matches.sort(key=lambda m: m.score)

        self.stats["searches"] += 1
        self.stats["last_search_ms"] = (time.perf_counter() - start) * 1000
        return matches

    def __len__(self) -> int:
        return len(self._entries)
