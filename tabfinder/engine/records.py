"""Normalized records and the per-source normalizers.

Each provider hands back differently shaped payloads. Everything that gets
indexed or displayed goes through ``normalize`` first, so the matcher only
ever sees one ``Record`` shape.
"""

from typing import Any, Dict, Iterable, Iterator, List, Optional
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import quote, urlsplit

from loguru import logger

from .errors import MalformedRecord


FAVICON_SERVICE = "https://www.google.com/s2/favicons?domain={host}&sz=16"
HTTP_SCHEMES = frozenset({"http", "https"})


class SourceKind(Enum):
    """The four independent record sources."""
    TAB = "tab"
    BOOKMARK = "bookmark"
    HISTORY = "history"
    CLOSED_TAB = "closed_tab"


# Display order of the result sections
SOURCE_ORDER = (
    SourceKind.TAB,
    SourceKind.BOOKMARK,
    SourceKind.HISTORY,
    SourceKind.CLOSED_TAB,
)


@dataclass(frozen=True)
class Record:
    """A normalized, immutable search record."""
    id: str
    source: SourceKind
    title: Optional[str] = None
    url: Optional[str] = None
    icon_hint: Optional[str] = None
    window_id: Optional[int] = None
    search_text: str = field(init=False, repr=False)

    def __post_init__(self):
        if not self.title and not self.url:
            raise MalformedRecord(f"{self.source.value} record {self.id!r} has no title or url")
        parts = [p for p in (self.title, self.url) if p]
        object.__setattr__(self, "search_text", " ".join(parts))

    @property
    def display_title(self) -> str:
        return self.title or self.url


def favicon_for_url(url: Optional[str]) -> Optional[str]:
    """Favicon service URL for an http(s) page, None for anything else."""
    if not url:
        return None
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError:
        return None
    if parts.scheme.lower() not in HTTP_SCHEMES or not hostname:
        return None
    return FAVICON_SERVICE.format(host=quote(hostname, safe=""))


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    return value or None


def _window_id(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedRecord(f"windowId {value!r} is not an integer")


def _normalize_tab(payload: Dict[str, Any]) -> Record:
    return Record(
        id=str(payload.get("id")),
        source=SourceKind.TAB,
        title=_text(payload.get("title")),
        url=_text(payload.get("url")),
        icon_hint=_text(payload.get("favIconUrl")),
        window_id=_window_id(payload.get("windowId")),
    )


def _normalize_bookmark(payload: Dict[str, Any]) -> Record:
    url = _text(payload.get("url"))
    return Record(
        id=str(payload.get("id")),
        source=SourceKind.BOOKMARK,
        title=_text(payload.get("title")),
        url=url,
        icon_hint=favicon_for_url(url),
    )


def _normalize_history(payload: Dict[str, Any]) -> Record:
    url = _text(payload.get("url"))
    return Record(
        id=str(payload.get("id")),
        source=SourceKind.HISTORY,
        title=_text(payload.get("title")),
        url=url,
        icon_hint=favicon_for_url(url),
    )


def _normalize_closed_tab(payload: Dict[str, Any]) -> Record:
    tab = payload.get("tab")
    if not tab:
        raise MalformedRecord(f"session {payload.get('sessionId')!r} is not a closed tab")
    return Record(
        id=str(payload.get("sessionId")),
        source=SourceKind.CLOSED_TAB,
        title=_text(tab.get("title")),
        url=_text(tab.get("url")),
        icon_hint=_text(tab.get("favIconUrl")),
    )


_NORMALIZERS = {
    SourceKind.TAB: _normalize_tab,
    SourceKind.BOOKMARK: _normalize_bookmark,
    SourceKind.HISTORY: _normalize_history,
    SourceKind.CLOSED_TAB: _normalize_closed_tab,
}


def normalize(source: SourceKind, payload: Dict[str, Any]) -> Record:
    """
    Convert one provider payload into a Record.

    Raises:
        MalformedRecord: payload has neither title nor url, or a field
            has the wrong type
    """
    return _NORMALIZERS[source](payload)


def normalize_many(source: SourceKind, payloads: Iterable[Dict[str, Any]]) -> List[Record]:
    """Normalize a batch, dropping malformed payloads and keeping order."""
    records = []
    skipped = 0

    for payload in payloads:
        try:
            records.append(normalize(source, payload))
        except MalformedRecord as e:
            skipped += 1
            logger.debug(f"Skipping payload: {e}")

    if skipped:
        logger.debug(f"Dropped {skipped} malformed {source.value} payloads")
    return records


def flatten_bookmarks(nodes: Iterable[Dict[str, Any]]) -> Iterator[Dict[str, Any]]:
    """Walk a bookmark tree depth-first, yielding only nodes with a url."""
    for node in nodes:
        if node.get("url"):
            yield node
        children = node.get("children")
        if children:
            yield from flatten_bookmarks(children)
