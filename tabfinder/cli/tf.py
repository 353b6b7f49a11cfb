#!/usr/bin/env python3
"""
Command line front end for tabfinder.

Usage:
    tf search "query" -s snapshot.json    - Fuzzy search all sources
    tf browse -s snapshot.json            - Show the top of every source
    tf open "query" -s snapshot.json      - Activate the best match
    tf config show                        - Print effective configuration
    tf config set-fuzziness 0.4           - Persist the fuzziness threshold
"""

import asyncio
from pathlib import Path
from typing import Dict, Optional, Tuple

import click
import yaml
from rich.console import Console
from rich.table import Table
from loguru import logger

from ..engine.actions import describe
from ..engine.config import Config, SearchConfig, SettingsStore
from ..engine.main import TabFinder, setup_logging
from ..engine.providers import RecordingActionSink, SnapshotProvider
from ..engine.records import Record, SourceKind, SOURCE_ORDER

console = Console()

SECTION_TITLES = {
    SourceKind.TAB: "Open Tabs",
    SourceKind.BOOKMARK: "Bookmarks",
    SourceKind.HISTORY: "History",
    SourceKind.CLOSED_TAB: "Recently Closed",
}

snapshot_option = click.option(
    "--snapshot", "-s",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="JSON or YAML snapshot of browser data"
)
fuzziness_option = click.option(
    "--fuzziness", "-f", type=click.FloatRange(0, 1), help="Override fuzziness threshold"
)


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx, config_path: Optional[Path], verbose: bool):
    """tabfinder - fuzzy search across tabs, bookmarks, history and closed tabs."""
    if config_path is None:
        config = Config.load()
    elif config_path.exists():
        config = Config.load(config_path)
    else:
        config = Config()
    setup_logging("DEBUG" if verbose else "WARNING", config.logging.file)
    ctx.obj = {"config": config, "config_path": config_path}


def _engine(ctx, snapshot: Path, fuzziness: Optional[float]) -> Tuple[TabFinder, RecordingActionSink]:
    config: Config = ctx.obj["config"]
    if fuzziness is not None:
        config.search.fuzziness = fuzziness
    sink = RecordingActionSink()
    return TabFinder(config, SnapshotProvider(snapshot), sink=sink), sink


async def run_query(engine: TabFinder, query: str) -> Dict[SourceKind, Tuple[Record, ...]]:
    await engine.start()
    try:
        if query:
            await engine.coordinator.submit(query)
            await engine.settle()
        return dict(engine.coordinator.visible)
    finally:
        await engine.stop()


def display_results(results: Dict[SourceKind, Tuple[Record, ...]], focused: int = -1):
    """Display each source's results as a table."""
    if not any(results.values()):
        console.print("[yellow]No results found[/yellow]")
        return

    offset = 0
    for source in SOURCE_ORDER:
        records = results.get(source, ())
        if not records:
            continue

        table = Table(title=f"{SECTION_TITLES[source]} ({len(records)})", title_justify="left")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Title", style="cyan", no_wrap=False)
        table.add_column("URL", style="magenta", no_wrap=False)

        for i, record in enumerate(records):
            marker = "›" if offset + i == focused else str(offset + i + 1)
            table.add_row(marker, record.display_title, record.url or "")

        console.print(table)
        offset += len(records)


@cli.command()
@click.argument("query")
@snapshot_option
@fuzziness_option
@click.pass_context
def search(ctx, query: str, snapshot: Path, fuzziness: Optional[float]):
    """Fuzzy search every source."""
    engine, _ = _engine(ctx, snapshot, fuzziness)
    results = asyncio.run(run_query(engine, query))
    display_results(results, engine.coordinator.navigation.focused_index)


@cli.command()
@snapshot_option
@click.pass_context
def browse(ctx, snapshot: Path):
    """Show the top entries of every source."""
    engine, _ = _engine(ctx, snapshot, None)
    results = asyncio.run(run_query(engine, ""))
    display_results(results)


@cli.command(name="open")
@click.argument("query")
@snapshot_option
@fuzziness_option
@click.option("--skip", "-n", default=0, help="Move focus down N rows before opening")
@click.pass_context
def open_(ctx, query: str, snapshot: Path, fuzziness: Optional[float], skip: int):
    """Activate the best match, or open/search the raw text."""
    engine, sink = _engine(ctx, snapshot, fuzziness)

    async def run():
        await engine.start()
        try:
            coordinator = engine.coordinator
            await coordinator.submit(query)
            for _ in range(skip):
                coordinator.advance()
            target = coordinator.focused_record()
            await coordinator.activate()
            return target
        finally:
            await engine.stop()

    target = asyncio.run(run())
    if target is not None:
        console.print(f"[green]✓[/green] {describe(target)}")
    for action, value in sink.actions:
        console.print(f"  {action}: [cyan]{value}[/cyan]")
    if not sink.actions:
        console.print("[yellow]Nothing to open[/yellow]")


@cli.group(name="config")
def config_group():
    """Inspect and change settings."""
    pass


@config_group.command(name="show")
@click.pass_context
def config_show(ctx):
    """Print the effective configuration."""
    config: Config = ctx.obj["config"]
    console.print(yaml.safe_dump(config.model_dump(mode="json"), default_flow_style=False))


@config_group.command(name="set-fuzziness")
@click.argument("value", type=float)
@click.pass_context
def config_set_fuzziness(ctx, value: float):
    """Persist a new fuzziness threshold (0 = exact, 1 = anything)."""
    config: Config = ctx.obj["config"]
    try:
        config.search = SearchConfig(**{**config.search.model_dump(), "fuzziness": value})
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="VALUE")

    store = SettingsStore(ctx.obj["config_path"])
    if store.commit(config):
        console.print(f"[green]✓[/green] fuzziness = {config.search.fuzziness} ({store.path})")
    else:
        logger.error("Settings were not saved")
        raise SystemExit(1)


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
