"""Shared search state: the threshold, four caches and four indices."""

from typing import Dict, List, Sequence, Tuple
from dataclasses import dataclass, field

from .cache import SourceCache
from .config import Config, validate_fuzziness
from .indexers import FuzzyIndex, Match
from .records import Record, SourceKind, SOURCE_ORDER


LAZY_SOURCES = (SourceKind.HISTORY, SourceKind.CLOSED_TAB)


@dataclass
class SearchEngineState:
    """
    Everything the coordinator mutates, in one explicit value.

    Every cache replacement is followed immediately by a rebuild of the
    matching index, so an index never lags its cache.
    """
    threshold: float
    caches: Dict[SourceKind, SourceCache] = field(default_factory=dict)
    indices: Dict[SourceKind, FuzzyIndex] = field(default_factory=dict)

    @classmethod
    def create(cls, config: Config) -> "SearchEngineState":
        capacities = {
            SourceKind.TAB: None,
            SourceKind.BOOKMARK: None,
            SourceKind.HISTORY: config.sources.history_capacity,
            SourceKind.CLOSED_TAB: config.sources.closed_tabs_capacity,
        }
        threshold = config.search.fuzziness
        state = cls(threshold=threshold)
        for source in SOURCE_ORDER:
            state.caches[source] = SourceCache(source, capacity=capacities[source])
            state.indices[source] = FuzzyIndex(source, threshold=threshold)
        return state

    def replace_records(self, source: SourceKind, records: Sequence[Record]) -> Tuple[Record, ...]:
        stored = self.caches[source].replace(records)
        self.indices[source].rebuild(stored, self.threshold)
        return stored

    def set_threshold(self, threshold: float) -> None:
        threshold = validate_fuzziness(threshold)
        self.threshold = threshold
        for index in self.indices.values():
            index.set_threshold(threshold)

    def search(self, source: SourceKind, query: str) -> List[Match]:
        return self.indices[source].search(query)

    def top(self, source: SourceKind, limit: int) -> Tuple[Record, ...]:
        return self.caches[source].top(limit)

    def is_loaded(self, source: SourceKind) -> bool:
        return self.caches[source].loaded

    def mark_lazy_unloaded(self) -> None:
        for source in LAZY_SOURCES:
            self.caches[source].mark_unloaded()
