"""Per-source record cache with a hard size cap."""

from typing import Iterable, Optional, Tuple

from loguru import logger

from .records import Record, SourceKind


class SourceCache:
    """
    Holds the current record set for one source.

    Records are stored as an immutable tuple and only ever swapped in whole,
    so a reader sees either the previous set or the new one, never a mix.
    Lazy sources (history, closed tabs) start with ``loaded = False``.
    """

    def __init__(self, source: SourceKind, capacity: Optional[int] = None):
        self.source = source
        self.capacity = capacity
        self.loaded = False
        self._records: Tuple[Record, ...] = ()

    @property
    def records(self) -> Tuple[Record, ...]:
        return self._records

    def replace(self, records: Iterable[Record]) -> Tuple[Record, ...]:
        """Swap in a new record set, truncated to capacity in provider order."""
        records = tuple(records)
        if self.capacity is not None and len(records) > self.capacity:
            logger.debug(
                f"{self.source.value} cache truncated {len(records)} -> {self.capacity}"
            )
            records = records[:self.capacity]

        self._records = records
        self.loaded = True
        return records

    def mark_unloaded(self) -> None:
        self.loaded = False

    def top(self, limit: int) -> Tuple[Record, ...]:
        return self._records[:limit]

    def __len__(self) -> int:
        return len(self._records)
