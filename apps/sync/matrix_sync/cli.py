"""CLI tools for the matrix spreadsheet."""

import logging

import anyio
import click

from matrix_sync.core.config import settings
from matrix_sync.core.deps import build_store
from matrix_sync.core.errors import MatrixSyncError
from matrix_sync.core.structured_logging import configure_logging
from matrix_sync.services.matrix_state import MatrixStateStore
from matrix_sync.services.sync_scheduler import SyncScheduler

logger = logging.getLogger(__name__)


async def _connect(store: MatrixStateStore) -> None:
    if not await store.initialize():
        raise click.ClickException(store.last_error or "Sync failed")


def _run(coro_fn, *args):
    try:
        return anyio.run(coro_fn, *args)
    except MatrixSyncError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def cli(log_level: str | None):
    """Messaging matrix sync tools."""
    configure_logging(log_level or settings.LOG_LEVEL)


@cli.command()
def status():
    """Connect, load the matrix and print collection counts."""

    async def _status() -> MatrixStateStore:
        store = build_store()
        await _connect(store)
        return store

    store = _run(_status)
    click.echo(f"Spreadsheet: {store.client.spreadsheet_url}")
    click.echo(f"Service account: {store.client.transport.token_issuer.service_account_email}")
    click.echo(f"Audiences: {len(store.audiences)}")
    click.echo(f"Topics: {len(store.topics)}")
    live = [m for m in store.messages if not m.is_removed]
    click.echo(f"Messages: {len(live)} live, {len(store.messages) - len(live)} removed")
    click.echo(f"Templates: {len(store.templates)}")


@cli.command()
@click.option("--topic", "topic_key", default=None, help="Only show this topic key")
def pull(topic_key: str | None):
    """Print the matrix: live message names per topic and audience."""

    async def _pull() -> MatrixStateStore:
        store = build_store()
        await _connect(store)
        return store

    store = _run(_pull)
    for topic in store.topics:
        if topic_key and topic.key != topic_key:
            continue
        click.echo(f"{topic.name} [{topic.key}]")
        for audience in store.audiences:
            names = [m.name for m in store.get_messages_for_cell(topic.key, audience.key)]
            if names:
                click.echo(f"  {audience.key}: {', '.join(names)}")


@cli.command()
def url():
    """Print the spreadsheet edit URL."""
    if not settings.GOOGLE_SPREADSHEET_ID:
        raise click.ClickException("GOOGLE_SPREADSHEET_ID not configured")
    click.echo(settings.spreadsheet_url)


@cli.command()
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between refreshes (defaults to SYNC_INTERVAL_SECONDS)",
)
@click.option(
    "--count",
    type=click.IntRange(min=0),
    default=0,
    help="Stop after this many status reports (0 = until interrupted)",
)
def watch(interval: float | None, count: int):
    """Keep the matrix refreshed in the background until interrupted."""
    interval = interval or settings.SYNC_INTERVAL_SECONDS

    async def _watch() -> None:
        store = build_store()
        await _connect(store)
        scheduler = SyncScheduler(store)
        scheduler.start(interval)
        reports = 0
        try:
            while not count or reports < count:
                await anyio.sleep(interval)
                reports += 1
                click.echo(
                    f"Last sync: {store.last_sync_time.isoformat() if store.last_sync_time else 'never'}"
                    f" ({len(store.messages)} messages)"
                )
        finally:
            await scheduler.stop()

    try:
        _run(_watch)
    except KeyboardInterrupt:
        logger.info("Watch stopped")


if __name__ == "__main__":
    cli()
