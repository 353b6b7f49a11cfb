"""Query coordinator: debounced, lazily-loading search across all sources.

Keystrokes restart a single debounce timer. When it fires, an empty query
refreshes the cheap sources and shows the top of every cache (browse mode);
a non-empty query starts lazy loads for history and closed tabs if they were
never fetched, then searches all four indices and shows every match.

Fetch completions are events too: a lazy load that lands while results are
on screen re-displays its own section.
"""

import asyncio
import time
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple, Any
from collections import defaultdict
from enum import Enum

from loguru import logger

from .actions import ActionDispatcher
from .bus import Event, EventBus
from .config import Config, SettingsStore
from .errors import ProviderError, SourceHealth
from .navigation import NavigationState
from .providers import BrowserProvider, Payload
from .records import Record, SourceKind, SOURCE_ORDER, flatten_bookmarks, normalize_many
from .state import LAZY_SOURCES, SearchEngineState


ResultsCallback = Callable[[SourceKind, Tuple[Record, ...]], None]
FocusCallback = Callable[[int], None]


class CoordinatorState(Enum):
    IDLE = "idle"
    PENDING_DEBOUNCE = "pending_debounce"
    EXECUTING = "executing"
    DISPLAYED = "displayed"


class QueryCoordinator:
    """
    Owns the search state and turns input events into displayed results.

    Everything runs on one event loop. The debounce timer is the only
    cancellable unit of work; fetches run to completion and the last one
    to finish wins.
    """

    def __init__(
        self,
        config: Config,
        provider: BrowserProvider,
        state: Optional[SearchEngineState] = None,
        dispatcher: Optional[ActionDispatcher] = None,
        event_bus: Optional[EventBus] = None,
        settings: Optional[SettingsStore] = None,
        on_results_changed: Optional[ResultsCallback] = None,
        on_focus_changed: Optional[FocusCallback] = None,
    ):
        self.config = config
        self.provider = provider
        self.state = state or SearchEngineState.create(config)
        self.dispatcher = dispatcher
        self.event_bus = event_bus
        self.settings = settings
        self._on_results_changed = on_results_changed
        self._on_focus_changed = on_focus_changed

        self.navigation = NavigationState(on_focus_changed=self._focus_changed)
        self.status = CoordinatorState.IDLE
        self.input_text = ""
        self.active_query = ""
        self.visible: Dict[SourceKind, Tuple[Record, ...]] = {s: () for s in SOURCE_ORDER}

        self._debounce: Optional[asyncio.TimerHandle] = None
        self._executions: Set[asyncio.Future] = set()
        self._fetches: Dict[SourceKind, asyncio.Task] = {}
        self._generation = 0

        self.health = {s: SourceHealth(name=s.value) for s in SOURCE_ORDER}
        self.stats = defaultdict(int)

    @property
    def debounce_seconds(self) -> float:
        return self.config.search.debounce_ms / 1000.0

    @property
    def browse_limit(self) -> int:
        return self.config.search.browse_limit

    # Lifecycle

    async def start(self) -> None:
        """Show the initial browse view; lazy sources stay unfetched."""
        self.state.mark_lazy_unloaded()
        await self.execute("")
        logger.info("Query coordinator started")

    async def stop(self) -> None:
        self._cancel_debounce()
        tasks = self._pending_tasks()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.status = CoordinatorState.IDLE
        logger.info("Query coordinator stopped")

    # Input events

    def on_input(self, text: str) -> None:
        """Handle a keystroke: restart the debounce timer with the new text."""
        self.input_text = text
        self._cancel_debounce()
        loop = asyncio.get_running_loop()
        self._debounce = loop.call_later(self.debounce_seconds, self._on_debounce_fired)
        self.status = CoordinatorState.PENDING_DEBOUNCE
        self.stats['keystrokes'] += 1

    def _cancel_debounce(self) -> None:
        handle = self._debounce
        self._debounce = None
        if handle is not None:
            handle.cancel()

    def _on_debounce_fired(self) -> None:
        self._debounce = None
        # Read the input at fire time, not at keystroke time
        task = asyncio.ensure_future(self.execute(self.input_text))
        # A superseded browse keeps running until its fetches land
        self._executions.add(task)
        task.add_done_callback(self._executions.discard)

    async def submit(self, text: str) -> Dict[SourceKind, Tuple[Record, ...]]:
        """Type ``text`` and wait for the resulting display to settle."""
        self.on_input(text)
        await self.wait_idle()
        return dict(self.visible)

    async def wait_idle(self) -> None:
        """Wait for the pending timer, the execution and any fetches."""
        loop = asyncio.get_running_loop()
        while True:
            handle = self._debounce
            if handle is not None:
                await asyncio.sleep(max(0.0, handle.when() - loop.time()))
                continue

            pending = self._pending_tasks()
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _pending_tasks(self) -> List[asyncio.Future]:
        tasks = [t for t in self._fetches.values() if not t.done()]
        tasks.extend(t for t in self._executions if not t.done())
        return tasks

    # Execution

    async def execute(self, raw_query: str) -> None:
        """Run one query immediately, bypassing the debounce timer."""
        self._generation += 1
        generation = self._generation
        self.status = CoordinatorState.EXECUTING
        self.stats['executions'] += 1
        start = time.perf_counter()

        query = raw_query.strip()
        if query:
            self._start_lazy_loads()
            self._display_search(query)
        else:
            await self._browse(generation)

        if generation != self._generation:
            return

        latency_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"Executed {query!r} in {latency_ms:.1f}ms")
        self._emit("search.completed", {
            "query": query,
            "mode": "search" if query else "browse",
            "result_count": sum(len(r) for r in self.visible.values()),
            "latency_ms": latency_ms
        })

    async def _browse(self, generation: int) -> None:
        sources = [SourceKind.TAB, SourceKind.BOOKMARK]
        # Unloaded lazy sources are not fetched just to clear the search box
        sources += [s for s in LAZY_SOURCES if self.state.is_loaded(s)]
        await asyncio.gather(*(self._browse_fetch(s, generation) for s in sources))

        if generation != self._generation:
            logger.debug("Browse superseded by a newer query")
            return

        self.active_query = ""
        self._display({s: self.state.top(s, self.browse_limit) for s in SOURCE_ORDER})

    async def _browse_fetch(self, source: SourceKind, generation: int) -> None:
        if await self._fetch(source) and generation != self._generation:
            # A newer query is on screen; show it the fresh records
            self._redisplay_source(source)

    def _display_search(self, query: str) -> None:
        self.active_query = query
        self._display({
            s: tuple(m.record for m in self.state.search(s, query))
            for s in SOURCE_ORDER
        })

    def _display(
        self,
        results: Dict[SourceKind, Tuple[Record, ...]],
        keep_focus: Optional[Record] = None
    ) -> None:
        for source in SOURCE_ORDER:
            if source in results:
                self.visible[source] = results[source]
                self._notify_results(source, results[source])
        self.status = CoordinatorState.DISPLAYED
        items = self.visible_items()
        if keep_focus is not None:
            for index, record in enumerate(items):
                if record.source == keep_focus.source and record.id == keep_focus.id:
                    self.navigation.focus(index, len(items))
                    return
        self.navigation.select_first(len(items))

    def _redisplay_source(self, source: SourceKind) -> None:
        """Refresh one section after its cache changed under the current view."""
        if self.status != CoordinatorState.DISPLAYED:
            return
        if self.active_query:
            records = tuple(m.record for m in self.state.search(source, self.active_query))
        else:
            records = self.state.top(source, self.browse_limit)
        self._display({source: records}, keep_focus=self.focused_record())

    # Fetching

    def _start_lazy_loads(self) -> None:
        for source in LAZY_SOURCES:
            if self.state.is_loaded(source):
                continue
            task = self._fetches.get(source)
            if task is not None and not task.done():
                continue
            logger.debug(f"Lazy-loading {source.value}")
            self._fetches[source] = asyncio.ensure_future(self._lazy_load(source))

    async def _lazy_load(self, source: SourceKind) -> None:
        if await self._fetch(source):
            self._redisplay_source(source)

    async def _fetch(self, source: SourceKind) -> bool:
        """Fetch, normalize and swap in one source. Failures keep the old cache."""
        start = time.perf_counter()
        try:
            payloads = await self._fetch_payloads(source)
            records = normalize_many(source, payloads)
        except Exception as e:
            error = e if isinstance(e, ProviderError) else ProviderError(source.value, str(e))
            self.health[source].record_failure(error)
            self.stats['fetch_errors'] += 1
            logger.error(f"Fetching {source.value} failed: {error}")
            self._emit("provider.failed", {"source": source.value, "error": str(error)})
            return False

        stored = self.state.replace_records(source, records)
        self.health[source].record_success()
        self.stats['fetches'] += 1
        logger.debug(
            f"Fetched {len(stored)} {source.value} records in "
            f"{(time.perf_counter() - start) * 1000:.1f}ms"
        )
        return True

    async def _fetch_payloads(self, source: SourceKind) -> Iterable[Payload]:
        sources = self.config.sources
        if source == SourceKind.TAB:
            return await self.provider.list_open_tabs()
        if source == SourceKind.BOOKMARK:
            return list(flatten_bookmarks(await self.provider.list_bookmarks()))
        if source == SourceKind.HISTORY:
            # Empty text: the whole recent superset is indexed locally
            return await self.provider.search_history("", sources.history_max_results)
        sessions = await self.provider.list_recently_closed(sources.closed_tabs_max_results)
        # Sessions without a tab are closed windows
        return [s for s in sessions if s.get("tab")]

    # Settings

    def set_fuzziness(self, value: float, commit: bool = False) -> None:
        """
        Apply a new threshold to every index and re-query at once.

        Raises:
            ValueError: value outside [0, 1]
        """
        self.state.set_threshold(value)
        self.config.search.fuzziness = self.state.threshold

        if self.active_query and self.status == CoordinatorState.DISPLAYED:
            self._display_search(self.active_query)

        if commit and self.settings is not None:
            self.settings.commit(self.config)

    # Navigation

    def visible_items(self) -> List[Record]:
        items = []
        for source in SOURCE_ORDER:
            items.extend(self.visible[source])
        return items

    def advance(self) -> int:
        return self.navigation.advance()

    def retreat(self) -> int:
        return self.navigation.retreat()

    def focused_record(self) -> Optional[Record]:
        if not self.navigation.has_focus:
            return None
        return self.visible_items()[self.navigation.focused_index]

    async def activate(self) -> bool:
        """Activate the focused row, or fall back to the raw typed text."""
        if self.dispatcher is None:
            logger.warning("No action dispatcher configured")
            return False

        record = self.focused_record()
        if record is not None:
            return await self.dispatcher.activate(record)

        if self.input_text.strip():
            return await self.dispatcher.fallback(self.input_text)
        return False

    # Notifications

    def _notify_results(self, source: SourceKind, records: Tuple[Record, ...]) -> None:
        if self._on_results_changed:
            try:
                self._on_results_changed(source, records)
            except Exception as e:
                logger.error(f"Results callback failed for {source.value}: {e}")
        self._emit("results.changed", {
            "source": source.value,
            "count": len(records),
            "ids": [r.id for r in records]
        })

    def _focus_changed(self, index: int) -> None:
        if self._on_focus_changed:
            try:
                self._on_focus_changed(index)
            except Exception as e:
                logger.error(f"Focus callback failed: {e}")
        self._emit("focus.changed", {"index": index})

    def _emit(self, event_type: str, data: Dict[str, Any]) -> None:
        if self.event_bus is not None and self.event_bus.running:
            self.event_bus.emit_nowait(Event(type=event_type, data=data, source="coordinator"))

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.status.value,
            "query": self.active_query,
            "threshold": self.state.threshold,
            "focused_index": self.navigation.focused_index,
            "sources": {
                s.value: {
                    "cached": len(self.state.caches[s]),
                    "visible": len(self.visible[s]),
                    "loaded": self.state.is_loaded(s),
                    "health": self.health[s].to_dict()
                }
                for s in SOURCE_ORDER
            },
            "stats": dict(self.stats)
        }
