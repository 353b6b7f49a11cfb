"""Platform provider and action sink contracts, plus snapshot-backed versions.

The host platform supplies the real implementations (tab list, bookmark
tree, history log, session list and their actions). ``SnapshotProvider``
serves the same contract from a JSON or YAML file so the engine can run
outside a browser.
"""

import json
import copy
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiofiles
import yaml
from loguru import logger

from .errors import ProviderError


Payload = Dict[str, Any]


class BrowserProvider(ABC):
    """Asynchronous access to the four record sources."""

    @abstractmethod
    async def list_open_tabs(self) -> List[Payload]:
        """Open tabs: ``{id, title, url, favIconUrl, windowId}``."""

    @abstractmethod
    async def list_bookmarks(self) -> List[Payload]:
        """Bookmark tree roots: ``{id, title, url?, children?}``."""

    @abstractmethod
    async def search_history(self, text: str, max_results: int) -> List[Payload]:
        """History entries ``{id, title, url}``, most recent first."""

    @abstractmethod
    async def list_recently_closed(self, max_results: int) -> List[Payload]:
        """Sessions ``{sessionId, tab?: {title, url, favIconUrl}}``, most recent first."""


class ActionSink(ABC):
    """Fire-and-forget platform actions. Failures raise ActionError."""

    @abstractmethod
    async def activate_tab(self, tab_id: str) -> Optional[int]:
        """Make a tab active; returns the id of its window when known."""

    @abstractmethod
    async def focus_window(self, window_id: int) -> None:
        ...

    @abstractmethod
    async def open_url(self, url: str) -> None:
        ...

    @abstractmethod
    async def restore_session(self, session_id: str) -> None:
        ...

    @abstractmethod
    async def dispatch_web_search(self, text: str) -> None:
        ...


class SnapshotProvider(BrowserProvider):
    """
    Provider backed by a snapshot of browser data.

    The snapshot has four top-level keys, ``tabs``, ``bookmarks``,
    ``history`` and ``closed``, each holding payloads in the platform's
    shape. When constructed with a path the file is re-read on every call,
    so edits show up on the next refresh.
    """

    def __init__(self, path: Optional[Path] = None, data: Optional[Dict[str, Any]] = None):
        if path is None and data is None:
            raise ValueError("SnapshotProvider needs a path or data")
        self.path = Path(path) if path is not None else None
        self.data = data
        self.calls: Dict[str, int] = {"tabs": 0, "bookmarks": 0, "history": 0, "closed": 0}

    async def _section(self, name: str) -> List[Payload]:
        self.calls[name] += 1
        if self.path is None:
            return copy.deepcopy(self.data.get(name, []))

        try:
            async with aiofiles.open(self.path, 'r') as f:
                raw = await f.read()
        except OSError as e:
            raise ProviderError(name, f"cannot read snapshot {self.path}: {e}") from e

        try:
            if self.path.suffix in (".yaml", ".yml"):
                snapshot = yaml.safe_load(raw) or {}
            else:
                snapshot = json.loads(raw)
        except (ValueError, yaml.YAMLError) as e:
            raise ProviderError(name, f"invalid snapshot {self.path}: {e}") from e

        section = snapshot.get(name, [])
        if not isinstance(section, list):
            raise ProviderError(name, f"snapshot section {name!r} is not a list")
        return section

    async def list_open_tabs(self) -> List[Payload]:
        return await self._section("tabs")

    async def list_bookmarks(self) -> List[Payload]:
        return await self._section("bookmarks")

    async def search_history(self, text: str, max_results: int) -> List[Payload]:
        entries = await self._section("history")
        if text:
            needle = text.lower()
            entries = [
                e for e in entries
                if needle in (e.get("title") or "").lower() or needle in (e.get("url") or "").lower()
            ]
        return entries[:max_results]

    async def list_recently_closed(self, max_results: int) -> List[Payload]:
        sessions = await self._section("closed")
        return sessions[:max_results]


class RecordingActionSink(ActionSink):
    """Action sink that logs and records every dispatched action."""

    def __init__(self, tab_windows: Optional[Dict[str, int]] = None):
        self.tab_windows = tab_windows or {}
        self.actions: List[Tuple[str, Any]] = []

    def _record(self, action: str, target: Any) -> None:
        self.actions.append((action, target))
        logger.info(f"Action {action}: {target}")

    async def activate_tab(self, tab_id: str) -> Optional[int]:
        self._record("activate_tab", tab_id)
        return self.tab_windows.get(tab_id)

    async def focus_window(self, window_id: int) -> None:
        self._record("focus_window", window_id)

    async def open_url(self, url: str) -> None:
        self._record("open_url", url)

    async def restore_session(self, session_id: str) -> None:
        self._record("restore_session", session_id)

    async def dispatch_web_search(self, text: str) -> None:
        self._record("web_search", text)
