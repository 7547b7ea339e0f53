import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import click
from rich.console import Console
from rich.table import Table

from ..config import Config, load_config
from ..models import Collection
from ..sync.coordinator import SyncCoordinator, build_coordinator
from ..sync.events import EventType, SyncEvent, SyncNotifier

console = Console()
logger = logging.getLogger(__name__)

T = TypeVar('T')

COLLECTION_NAMES = [collection.value for collection in Collection]


def setup_logging(verbosity: int = 0, log_file: Optional[Path] = None):
    """Configure logging based on verbosity level."""
    log_level = logging.WARNING
    if verbosity == 1:
        log_level = logging.INFO
    elif verbosity >= 2:
        log_level = logging.DEBUG

    handlers = [logging.StreamHandler()]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def _print_event(event: SyncEvent) -> None:
    if event.type is EventType.ERROR:
        console.print(f"[yellow]Warning ({event.error_kind.value}): {event.message}")


def run_with_coordinator(
    config: Config,
    operation: Callable[[SyncCoordinator], Awaitable[T]],
    initialize: bool = True
) -> T:
    """Build a coordinator, run ``operation`` on it and close it."""
    async def runner() -> T:
        notifier = SyncNotifier()
        notifier.subscribe(_print_event)
        coordinator = build_coordinator(config, notifier)
        try:
            if initialize:
                await coordinator.initialize()
            return await operation(coordinator)
        finally:
            await coordinator.close()

    return asyncio.run(runner())


@click.group()
@click.option('--config', 'config_path', type=click.Path(exists=True, path_type=Path),
              help="Path to a YAML configuration file")
@click.option('-v', '--verbose', count=True, help="Increase verbosity (-v, -vv)")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: int):
    """Synchronize player collections between local storage and a remote document."""
    config = load_config(config_path)
    setup_logging(verbose, config.log_file)
    ctx.obj = config


@cli.command()
@click.pass_obj
def status(config: Config):
    """Show synchronization state and collection sizes."""
    async def operation(coordinator: SyncCoordinator):
        return coordinator.state, {
            name: coordinator.store.get(name.value) or [] for name in Collection
        }, coordinator.client.rate_limit

    state, collections, rate_limit = run_with_coordinator(config, operation)

    table = Table(title="Storage status")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("Mode", state.mode.value)
    table.add_row("Credentials valid", "yes" if state.credentials_valid else "no")
    table.add_row("Last sync", state.last_sync.isoformat() if state.last_sync else "never")
    if state.last_error:
        table.add_row("Last error", f"{state.last_error.kind.value}: {state.last_error.message}")
    if rate_limit.remaining is not None:
        table.add_row("Rate limit remaining", str(rate_limit.remaining))
    for name, value in collections.items():
        table.add_row(name.value, f"{len(value)} entries")
    console.print(table)


@cli.command()
@click.argument('name', type=click.Choice(COLLECTION_NAMES))
@click.pass_obj
def load(config: Config, name: str):
    """Print a collection as JSON."""
    value = run_with_coordinator(config, lambda coordinator: coordinator.load_data(name))
    if value is None:
        console.print(f"[yellow]No data stored for {name}")
        return
    console.print_json(json.dumps(value))


@cli.command()
@click.argument('name', type=click.Choice(COLLECTION_NAMES))
@click.argument('source', type=click.File('r'))
@click.pass_obj
def save(config: Config, name: str, source):
    """Replace a collection with the JSON array read from SOURCE."""
    try:
        value = json.load(source)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}", param_hint='SOURCE')

    saved = run_with_coordinator(config, lambda coordinator: coordinator.save_data(name, value))
    if saved:
        console.print(f"[green]Saved {len(value)} entries to {name}")
    else:
        console.print(f"[red]Failed to save {name}")
        sys.exit(1)


@cli.command()
@click.pass_obj
def reconcile(config: Config):
    """Restore consistency between the track collections."""
    changed = run_with_coordinator(
        config, lambda coordinator: coordinator.sync_track_collections()
    )
    if changed:
        console.print(f"[green]Updated {', '.join(sorted(name.value for name in changed))}")
    else:
        console.print("[green]Track collections already consistent")


@cli.command()
@click.pass_obj
def sync(config: Config):
    """Push local collections, pull the remote document and reconcile."""
    result = run_with_coordinator(config, lambda coordinator: coordinator.force_sync_all())
    if not result.success:
        console.print(f"[red]Sync failed: {result.error}")
        sys.exit(1)

    table = Table(title="Synchronized collections")
    table.add_column("Collection")
    table.add_column("Entries", justify="right")
    table.add_row(Collection.TRACKS.value, str(len(result.tracks)))
    table.add_row(Collection.APPROVED.value, str(len(result.approved_tracks)))
    table.add_row(Collection.PENDING.value, str(len(result.pending_tracks)))
    console.print(table)


@cli.command('set-token')
@click.argument('token')
@click.pass_obj
def set_token(config: Config, token: str):
    """Store the remote access token (an empty string clears it)."""
    async def operation(coordinator: SyncCoordinator) -> bool:
        task = coordinator.set_credential(token)
        if task is not None:
            await task
        return coordinator.state.credentials_valid

    valid = run_with_coordinator(config, operation, initialize=False)
    if not token:
        console.print("[yellow]Token cleared, using local storage only")
    elif valid:
        console.print("[green]Token saved and validated")
    else:
        console.print("[yellow]Token saved but remote settings are not valid yet")


@cli.command('set-document')
@click.argument('document_id')
@click.pass_obj
def set_document(config: Config, document_id: str):
    """Store the remote document id (an empty string clears it)."""
    async def operation(coordinator: SyncCoordinator) -> None:
        coordinator.set_document_id(document_id)

    run_with_coordinator(config, operation, initialize=False)
    if document_id:
        console.print(f"[green]Document id set to {document_id}")
    else:
        console.print("[yellow]Document id cleared, using local storage only")


if __name__ == '__main__':
    cli()
