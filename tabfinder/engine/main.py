"""Engine wiring for tabfinder."""

import sys
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone

from loguru import logger

from .actions import ActionDispatcher
from .bus import Event, EventBus
from .config import Config, SettingsStore
from .coordinator import FocusCallback, QueryCoordinator, ResultsCallback
from .providers import ActionSink, BrowserProvider


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Route loguru to stderr and, optionally, a rotating file."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level)

    if log_file is not None:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            rotation="1 day",
            retention="7 days",
            level="DEBUG"
        )


class TabFinder:
    """Coordinates the search engine, event bus and platform actions."""

    def __init__(
        self,
        config: Config,
        provider: BrowserProvider,
        sink: Optional[ActionSink] = None,
        settings: Optional[SettingsStore] = None,
        on_results_changed: Optional[ResultsCallback] = None,
        on_focus_changed: Optional[FocusCallback] = None,
    ):
        self.config = config
        self.start_time = datetime.now(timezone.utc)

        self.event_bus = EventBus()
        self.dispatcher = ActionDispatcher(sink) if sink is not None else None
        self.coordinator = QueryCoordinator(
            config,
            provider,
            dispatcher=self.dispatcher,
            event_bus=self.event_bus,
            settings=settings,
            on_results_changed=on_results_changed,
            on_focus_changed=on_focus_changed,
        )

        self.stats = {
            "search_count": 0,
            "provider_failures": 0
        }

    async def start(self) -> None:
        logger.info("Starting tabfinder engine...")
        await self.event_bus.start()

        self.event_bus.subscribe("search.completed", self._on_search)
        self.event_bus.subscribe("provider.failed", self._on_provider_failed)

        await self.coordinator.start()
        logger.info("tabfinder engine started")

    async def stop(self) -> None:
        logger.info("Stopping tabfinder engine...")
        await self.coordinator.stop()
        await self.event_bus.stop()
        logger.info("tabfinder engine stopped")

    async def settle(self) -> None:
        """Wait for pending work and the notifications it produced."""
        await self.coordinator.wait_idle()
        await self.event_bus.drain()

    async def _on_search(self, event: Event) -> None:
        self.stats["search_count"] += 1

    async def _on_provider_failed(self, event: Event) -> None:
        self.stats["provider_failures"] += 1
        logger.warning(f"Source {event.data.get('source')} is showing stale results")

    def get_status(self) -> dict:
        uptime = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "uptime": f"{uptime:.0f}s",
            "stats": dict(self.stats),
            "bus": self.event_bus.get_stats(),
            "engine": self.coordinator.get_status()
        }
