"""
Command-line interface for the alliance membership watcher.

Usage:
    alliance-watch run                 # poll forever, announce joins/leaves
    alliance-watch run --dry-run       # log only, snapshot left untouched
    alliance-watch once                # a single cycle, prints its summary
    alliance-watch status              # show the persisted snapshot
    alliance-watch baseline --force    # re-establish the baseline silently

Exit codes: 0 on clean shutdown, 1 on a fatal error (configuration,
corrupt/incompatible snapshot, rejected alliance id or credentials,
persistence failure).
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys

import click
from dotenv import find_dotenv, load_dotenv
from pydantic import ValidationError

from . import __version__
from .app import build_components, build_esi_client, build_store
from .core.config import Settings, get_settings
from .core.errors import AllianceWatchError, FetchError, StoreError
from .providers import EsiRosterSource
from .scheduler import CycleOutcome

logger = logging.getLogger("alliance_watch.cli")


def setup_logging(level: str) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def load_settings() -> Settings:
    """Resolve settings or exit 1 with the validation problems."""
    try:
        return get_settings()
    except ValidationError as e:
        click.echo("ERROR: invalid configuration", err=True)
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"]) or "settings"
            click.echo(f"  {field.upper()}: {error['msg']}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(__version__, prog_name="alliance-watch")
def cli():
    """Announce corporations joining or leaving an EVE alliance."""
    load_dotenv(find_dotenv(usecwd=True))


# =============================================================================
# run
# =============================================================================


@cli.command()
@click.option(
    "--dry-run",
    is_flag=True,
    help="Log notifications instead of posting to Discord; the snapshot is not updated.",
)
def run(dry_run: bool):
    """Poll ESI on the configured interval until interrupted."""
    settings = load_settings()
    setup_logging(settings.log_level)
    sys.exit(asyncio.run(_run(settings, dry_run)))


async def _run(settings: Settings, dry_run: bool) -> int:
    try:
        components = build_components(settings, dry_run=dry_run)
    except AllianceWatchError as e:
        logger.error(e.message)
        return 1

    scheduler = components.scheduler(settings)
    _install_signal_handlers(scheduler.stop)

    try:
        scheduler.start()
        await scheduler.run()
    except AllianceWatchError as e:
        logger.error(f"Fatal: {e.message}")
        return 1
    finally:
        await components.close()

    return 0


def _install_signal_handlers(callback) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, callback)
        except (NotImplementedError, RuntimeError):
            # Not available on Windows event loops; Ctrl+C still raises KeyboardInterrupt.
            logger.debug(f"Signal handler for {sig.name} not installed")


# =============================================================================
# once
# =============================================================================


@cli.command()
@click.option(
    "--dry-run",
    is_flag=True,
    help="Log notifications instead of posting to Discord; the snapshot is not updated.",
)
def once(dry_run: bool):
    """Run a single cycle and print its summary as JSON."""
    settings = load_settings()
    setup_logging(settings.log_level)
    sys.exit(asyncio.run(_once(settings, dry_run)))


async def _once(settings: Settings, dry_run: bool) -> int:
    try:
        components = build_components(settings, dry_run=dry_run)
    except AllianceWatchError as e:
        logger.error(e.message)
        return 1

    scheduler = components.scheduler(settings)
    _install_signal_handlers(scheduler.stop)

    try:
        scheduler.start()
        result = await scheduler.run_cycle()
    except AllianceWatchError as e:
        logger.error(f"Fatal: {e.message}")
        return 1
    finally:
        await components.close()

    click.echo(json.dumps(result.to_dict(), indent=2))
    return 1 if result.outcome is CycleOutcome.FETCH_FAILED else 0


# =============================================================================
# status
# =============================================================================


@cli.command()
def status():
    """Show the persisted roster snapshot."""
    settings = load_settings()
    store = build_store(settings)

    try:
        record = store.read()
    except StoreError as e:
        click.echo(f"ERROR: {e.message}", err=True)
        sys.exit(1)

    if record is None:
        click.echo(f"No snapshot at {store.path} (first run will set the baseline)")
        return

    click.echo(f"\nSnapshot Status")
    click.echo("=" * 50)
    click.echo(f"Location: {store.path}")
    click.echo(f"Alliance: {record.alliance_id}")
    click.echo(f"Cycle: {record.cycle}")
    click.echo(f"Saved At: {record.saved_at.isoformat()}")
    click.echo(f"Corporations: {len(record.corporations)}")
    for corporation_id in record.corporations:
        click.echo(f"  {corporation_id}")


# =============================================================================
# baseline
# =============================================================================


@cli.command()
@click.option("--force", is_flag=True, help="Overwrite an existing, corrupt or incompatible snapshot.")
def baseline(force: bool):
    """Fetch the roster and persist it without sending notifications."""
    settings = load_settings()
    setup_logging(settings.log_level)
    sys.exit(asyncio.run(_baseline(settings, force)))


async def _baseline(settings: Settings, force: bool) -> int:
    store = build_store(settings)

    if force:
        try:
            # Seeds the cycle counter so it stays monotonic across the replacement.
            store.read()
        except StoreError as e:
            logger.warning(f"Replacing unreadable snapshot: {e.message}")
    else:
        try:
            existing = store.read()
        except StoreError as e:
            click.echo(f"ERROR: {e.message}", err=True)
            return 1
        if existing is not None:
            click.echo(
                f"Snapshot already exists at {store.path} (cycle {existing.cycle}); "
                f"use --force to replace it",
                err=True,
            )
            return 1

    source = EsiRosterSource(build_esi_client(settings), settings.alliance_id)
    try:
        roster = await settings.retry_policy().call(
            source.fetch,
            operation="fetch roster",
            is_retryable=lambda e: isinstance(e, FetchError) and e.retryable,
            timeout=settings.fetch_timeout_seconds,
        )
        store.save(roster)
    except AllianceWatchError as e:
        click.echo(f"ERROR: {e.message}", err=True)
        return 1
    finally:
        await source.close()

    click.echo(f"Baseline saved: {len(roster)} corporations in alliance {settings.alliance_id}")
    return 0


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
