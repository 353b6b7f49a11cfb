"""Tests for the query coordinator state machine."""

import asyncio
import pytest

from tabfinder.engine.actions import ActionDispatcher
from tabfinder.engine.config import Config, SearchConfig, SettingsStore
from tabfinder.engine.coordinator import CoordinatorState, QueryCoordinator
from tabfinder.engine.errors import ProviderError
from tabfinder.engine.providers import SnapshotProvider
from tabfinder.engine.records import SourceKind


def ids(records):
    return [r.id for r in records]


class CountingCoordinator(QueryCoordinator):
    """Records the text each execution ran with."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.executed = []

    async def execute(self, raw_query):
        self.executed.append(raw_query)
        await super().execute(raw_query)


class FlakyProvider(SnapshotProvider):
    """Snapshot provider whose history fetch can be switched to fail."""

    def __init__(self, data):
        super().__init__(data=data)
        self.fail_history = False

    async def search_history(self, text, max_results):
        if self.fail_history:
            raise ProviderError("history", "history.search failed")
        return await super().search_history(text, max_results)


class BrokenTabsProvider(SnapshotProvider):
    async def list_open_tabs(self):
        raise RuntimeError("tabs API unavailable")


@pytest.fixture
def coordinator(test_config, provider, sink):
    return CountingCoordinator(test_config, provider, dispatcher=ActionDispatcher(sink))


@pytest.mark.asyncio
async def test_start_shows_browse_view_without_lazy_sources(coordinator, provider):
    await coordinator.start()

    assert coordinator.status == CoordinatorState.DISPLAYED
    assert ids(coordinator.visible[SourceKind.TAB]) == ["11", "12", "13"]
    assert ids(coordinator.visible[SourceKind.BOOKMARK]) == ["10", "11", "20"]
    assert coordinator.visible[SourceKind.HISTORY] == ()
    assert not coordinator.state.is_loaded(SourceKind.HISTORY)
    assert not coordinator.state.is_loaded(SourceKind.CLOSED_TAB)
    assert provider.calls["history"] == 0
    assert provider.calls["closed"] == 0
    assert coordinator.navigation.focused_index == 0


@pytest.mark.asyncio
async def test_debounce_coalesces_keystrokes(coordinator):
    coordinator.config.search.debounce_ms = 150
    await coordinator.start()
    coordinator.executed.clear()

    for text in ["g", "gi", "git", "gith", "githu"]:
        coordinator.on_input(text)
        assert coordinator.status == CoordinatorState.PENDING_DEBOUNCE
        await asyncio.sleep(0.005)
    coordinator.input_text = "github"

    await coordinator.wait_idle()

    # One execution, with the text present when the timer fired
    assert coordinator.executed == ["github"]
    assert coordinator.stats["keystrokes"] == 5
    assert ids(coordinator.visible[SourceKind.TAB]) == ["11"]


@pytest.mark.asyncio
async def test_spaced_keystrokes_execute_separately(coordinator):
    await coordinator.start()
    coordinator.executed.clear()

    coordinator.on_input("py")
    await coordinator.wait_idle()
    coordinator.on_input("python")
    await coordinator.wait_idle()

    assert coordinator.executed == ["py", "python"]


@pytest.mark.asyncio
async def test_first_search_lazy_loads_history_and_closed_tabs(coordinator, provider):
    await coordinator.start()

    await coordinator.submit("docs")

    assert coordinator.state.is_loaded(SourceKind.HISTORY)
    assert coordinator.state.is_loaded(SourceKind.CLOSED_TAB)
    assert ids(coordinator.visible[SourceKind.HISTORY]) == ["h2"]

    await coordinator.submit("maps")
    await coordinator.submit("")

    # Fetched once lazily, then refreshed only by browse mode
    assert provider.calls["history"] == 2
    assert coordinator.state.is_loaded(SourceKind.HISTORY)


@pytest.mark.asyncio
async def test_closed_window_sessions_are_discarded(coordinator):
    await coordinator.start()
    await coordinator.submit("a")

    cached = coordinator.state.caches[SourceKind.CLOSED_TAB].records
    assert ids(cached) == ["s1", "s3"]


@pytest.mark.asyncio
async def test_typo_query_finds_tab(coordinator):
    await coordinator.start()

    results = await coordinator.submit("gethub")

    assert ids(results[SourceKind.TAB]) == ["11"]
    assert coordinator.focused_record().title == "GitHub"


@pytest.mark.asyncio
async def test_nonexistent_query_clears_every_source(coordinator):
    await coordinator.start()
    await coordinator.submit("docs")

    results = await coordinator.submit("xyz-nonexistent-zzz")

    assert all(records == () for records in results.values())
    assert coordinator.navigation.focused_index == -1
    assert coordinator.visible_items() == []


@pytest.mark.asyncio
async def test_search_shows_all_matches_but_browse_caps(test_config, snapshot):
    snapshot["history"] = [
        {"id": f"h{i}", "title": f"Release notes {i}", "url": f"https://releases.example/{i}"}
        for i in range(40)
    ]
    coordinator = QueryCoordinator(test_config, SnapshotProvider(data=snapshot))
    await coordinator.start()

    await coordinator.submit("release notes")
    assert len(coordinator.visible[SourceKind.HISTORY]) == 40

    await coordinator.submit("  ")
    assert ids(coordinator.visible[SourceKind.HISTORY]) == [f"h{i}" for i in range(10)]
    assert len(coordinator.state.caches[SourceKind.HISTORY]) == 40


@pytest.mark.asyncio
async def test_browse_after_search_refreshes_sources(coordinator, provider, snapshot):
    await coordinator.start()
    await coordinator.submit("wiki")

    provider.data["tabs"].append({"id": 14, "title": "New tab", "url": "https://new.example"})
    provider.data["closed"].insert(0, {"sessionId": "s0", "tab": {"title": "Just closed", "url": "https://x.example"}})

    await coordinator.submit("")

    assert ids(coordinator.visible[SourceKind.TAB]) == ["11", "12", "13", "14"]
    assert ids(coordinator.visible[SourceKind.CLOSED_TAB]) == ["s0", "s1", "s3"]
    assert coordinator.active_query == ""


@pytest.mark.asyncio
async def test_threshold_change_requeries_immediately(coordinator):
    await coordinator.start()
    coordinator.set_fuzziness(0.0)
    await coordinator.submit("pyhton")
    assert coordinator.visible[SourceKind.TAB] == ()

    executions = coordinator.stats["executions"]
    coordinator.set_fuzziness(0.4)

    # Re-queried synchronously, no debounce and no new execution
    assert ids(coordinator.visible[SourceKind.TAB]) == ["12"]
    assert coordinator.stats["executions"] == executions
    assert coordinator.config.search.fuzziness == 0.4


@pytest.mark.asyncio
async def test_threshold_commit_persists(tmp_path, provider):
    path = tmp_path / "config.yaml"
    config = Config(search=SearchConfig(debounce_ms=10))
    coordinator = QueryCoordinator(config, provider, settings=SettingsStore(path))
    await coordinator.start()

    coordinator.set_fuzziness(0.5)
    assert not path.exists()

    coordinator.set_fuzziness(0.45, commit=True)
    assert Config.load(path).search.fuzziness == 0.45


@pytest.mark.asyncio
async def test_invalid_threshold_rejected(coordinator):
    await coordinator.start()

    with pytest.raises(ValueError):
        coordinator.set_fuzziness(-0.1)
    assert coordinator.state.threshold == 0.3


@pytest.mark.asyncio
async def test_provider_failure_keeps_previous_cache(test_config, snapshot):
    provider = FlakyProvider(snapshot)
    coordinator = QueryCoordinator(test_config, provider)
    await coordinator.start()
    await coordinator.submit("weather")
    assert ids(coordinator.visible[SourceKind.HISTORY]) == ["h1"]

    provider.fail_history = True
    await coordinator.submit("")

    assert len(coordinator.state.caches[SourceKind.HISTORY]) == 3
    assert ids(coordinator.visible[SourceKind.HISTORY]) == ["h1", "h2", "h3"]
    assert coordinator.health[SourceKind.HISTORY].error_count == 1
    assert coordinator.stats["fetch_errors"] == 1


@pytest.mark.asyncio
async def test_unexpected_provider_exception_is_contained(test_config, snapshot):
    coordinator = QueryCoordinator(test_config, BrokenTabsProvider(data=snapshot))
    await coordinator.start()

    results = await coordinator.submit("rust")

    assert results[SourceKind.TAB] == ()
    assert ids(results[SourceKind.BOOKMARK]) == ["11"]
    last_error = coordinator.health[SourceKind.TAB].last_error
    assert last_error.error_type == "ProviderError"


@pytest.mark.asyncio
async def test_navigation_spans_sources(coordinator):
    await coordinator.start()
    await coordinator.submit("docs")

    # python docs tab, doc.rust-lang.org bookmark, asyncio docs history entry
    items = coordinator.visible_items()
    assert [r.source for r in items] == [SourceKind.TAB, SourceKind.BOOKMARK, SourceKind.HISTORY]
    assert ids(items) == ["12", "11", "h2"]

    assert coordinator.advance() == 1
    assert coordinator.advance() == 2
    assert coordinator.focused_record().id == "h2"
    assert coordinator.advance() == 0
    assert coordinator.retreat() == 2


@pytest.mark.asyncio
async def test_activate_focused_and_fallback(coordinator, sink):
    await coordinator.start()
    await coordinator.submit("gethub")

    assert await coordinator.activate()
    assert sink.actions[:2] == [("activate_tab", "11"), ("focus_window", 1)]

    await coordinator.submit("example.org/nothing-here-at-all")
    assert coordinator.navigation.focused_index == -1
    assert await coordinator.activate()
    assert sink.actions[-1] == ("open_url", "https://example.org/nothing-here-at-all")


@pytest.mark.asyncio
async def test_results_callback_and_status(test_config, provider):
    seen = {}
    focus = []
    coordinator = QueryCoordinator(
        test_config, provider,
        on_results_changed=lambda source, records: seen.__setitem__(source, ids(records)),
        on_focus_changed=focus.append,
    )
    await coordinator.start()
    await coordinator.submit("maps")

    assert seen[SourceKind.CLOSED_TAB] == ["s3"]
    assert focus[-1] == 0

    status = coordinator.get_status()
    assert status["state"] == "displayed"
    assert status["query"] == "maps"
    assert status["sources"]["closed_tab"]["loaded"] is True


@pytest.mark.asyncio
async def test_stop_cancels_pending_debounce(coordinator):
    await coordinator.start()
    coordinator.executed.clear()

    coordinator.on_input("never runs")
    await coordinator.stop()
    await asyncio.sleep(0.05)

    assert coordinator.executed == []
    assert coordinator.status == CoordinatorState.IDLE


class SlowProvider(SnapshotProvider):
    """Snapshot provider whose tab and history fetches can be slowed down."""

    def __init__(self, data):
        super().__init__(data=data)
        self.tabs_delay = 0.0
        self.history_delay = 0.0

    async def list_open_tabs(self):
        await asyncio.sleep(self.tabs_delay)
        return await super().list_open_tabs()

    async def search_history(self, text, max_results):
        await asyncio.sleep(self.history_delay)
        return await super().search_history(text, max_results)


K8S_TAB = {"id": 99, "windowId": 1, "title": "Kubernetes dashboard", "url": "https://k8s.example"}


@pytest.mark.asyncio
async def test_superseded_browse_fetch_refreshes_current_search(test_config, snapshot):
    provider = SlowProvider(snapshot)
    coordinator = QueryCoordinator(test_config, provider)
    await coordinator.start()

    provider.data["tabs"].append(dict(K8S_TAB))
    provider.tabs_delay = 0.2
    coordinator.on_input("")
    await asyncio.sleep(0.05)

    # The search runs while the browse is still waiting on tabs
    await coordinator.submit("kubernetes")

    assert ids(coordinator.state.caches[SourceKind.TAB].records) == ["11", "12", "13", "99"]
    assert ids(coordinator.visible[SourceKind.TAB]) == ["99"]
    assert coordinator.active_query == "kubernetes"


@pytest.mark.asyncio
async def test_stop_cancels_superseded_browse(test_config, snapshot):
    provider = SlowProvider(snapshot)
    coordinator = QueryCoordinator(test_config, provider)
    await coordinator.start()

    provider.data["tabs"].append(dict(K8S_TAB))
    provider.tabs_delay = 0.2
    coordinator.on_input("")
    await asyncio.sleep(0.05)
    coordinator.on_input("kubernetes")
    await asyncio.sleep(0.05)

    await coordinator.stop()
    await asyncio.sleep(0.25)

    assert ids(coordinator.state.caches[SourceKind.TAB].records) == ["11", "12", "13"]
    assert coordinator.status == CoordinatorState.IDLE


@pytest.mark.asyncio
async def test_lazy_load_keeps_moved_focus(test_config, snapshot):
    provider = SlowProvider(snapshot)
    provider.history_delay = 0.05
    coordinator = QueryCoordinator(test_config, provider)
    await coordinator.start()

    # Displays from the cache at once; history is still loading
    await coordinator.execute("docs")
    assert ids(coordinator.visible_items()) == ["12", "11"]
    coordinator.advance()

    await coordinator.wait_idle()

    assert ids(coordinator.visible_items()) == ["12", "11", "h2"]
    assert coordinator.navigation.focused_index == 1
    assert coordinator.focused_record().source == SourceKind.BOOKMARK


@pytest.mark.asyncio
async def test_bad_window_id_is_dropped_not_fatal(test_config, snapshot):
    snapshot["tabs"].append({"id": 14, "windowId": "w1", "title": "Odd", "url": "https://odd.example"})
    coordinator = QueryCoordinator(test_config, SnapshotProvider(data=snapshot))

    await coordinator.start()

    assert coordinator.status == CoordinatorState.DISPLAYED
    assert ids(coordinator.visible[SourceKind.TAB]) == ["11", "12", "13"]
    assert coordinator.health[SourceKind.TAB].error_count == 0
