"""
Command line interface for Tidemark.
"""

from pathlib import Path
from typing import Optional, Tuple
import asyncio
import json
import sys

import click
from rich.table import Table

from . import __version__
from .storage import create_store
from .sync import SyncEngine
from .utils.config import ConfigLoader, TidemarkConfig, load_config
from .utils.errors import TidemarkError
from .utils.logging import console, get_logger, setup_logging


logger = get_logger("tidemark.cli")


def _load(config_paths: Tuple[str, ...], loader: Optional[ConfigLoader] = None) -> TidemarkConfig:
    return asyncio.run(load_config([Path(p) for p in config_paths], loader=loader))


def _setup_logging(config: TidemarkConfig):
    return setup_logging(
        app_name=config.app_name,
        log_level="DEBUG" if config.debug else config.logging.level,
        log_dir=config.logging.directory,
        enable_json=config.logging.format == "json",
        enable_sentry=config.logging.enable_sentry,
        sentry_dsn=config.logging.sentry_dsn,
    )


@click.group()
@click.version_option(__version__, prog_name="tidemark")
def main():
    """Tidemark - offline-first record synchronisation."""


@main.command()
@click.option('--config', '-c', 'config_paths', multiple=True, type=click.Path(dir_okay=False),
              help='Configuration file (repeatable, later files win)')
@click.option('--once', is_flag=True, help='Run a single sync cycle and print its summary')
def run(config_paths: Tuple[str, ...], once: bool):
    """Run the sync engine."""
    try:
        if once:
            config = _load(config_paths)
            logging_info = _setup_logging(config)
            summary = asyncio.run(_run_once(config, logging_info['metrics']))
            click.echo(json.dumps(summary, indent=2))
        else:
            asyncio.run(_run_forever(config_paths))
    except TidemarkError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("received_interrupt_signal")


async def _run_once(config: TidemarkConfig, metrics=None) -> dict:
    engine = SyncEngine.from_config(config, metrics=metrics)
    try:
        result = await engine.start()
    finally:
        await engine.stop()
    return result.to_dict() if result else {}


async def _run_forever(config_paths: Tuple[str, ...]) -> None:
    loader = ConfigLoader()
    config = await load_config([Path(p) for p in config_paths], loader=loader)
    logging_info = _setup_logging(config)

    engine = SyncEngine.from_config(config, metrics=logging_info['metrics'])
    engine.watch_config(loader)
    try:
        await engine.start()
        await asyncio.Event().wait()
    finally:
        await engine.stop()
        loader.shutdown()


@main.command()
@click.option('--config', '-c', 'config_paths', multiple=True, type=click.Path(dir_okay=False),
              help='Configuration file (repeatable, later files win)')
def collections(config_paths: Tuple[str, ...]):
    """List declared collections."""
    try:
        config = _load(config_paths)
    except TidemarkError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    if not config.collections:
        click.echo("No collections declared")
        return

    table = Table(title="Collections")
    for column in ("name", "primary key", "timestamp", "read", "create", "update"):
        table.add_column(column)
    for c in config.collections:
        table.add_row(
            c.name,
            c.primary_key_field,
            c.timestamp_field,
            c.read_endpoint,
            c.create_endpoint,
            c.update_endpoint or c.create_endpoint,
        )
    console.print(table)
    click.echo(json.dumps([c.model_dump() for c in config.collections]))


@main.command()
@click.option('--config', '-c', 'config_paths', multiple=True, type=click.Path(dir_okay=False),
              help='Configuration file (repeatable, later files win)')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
def wipe(config_paths: Tuple[str, ...], yes: bool):
    """Delete all locally persisted records."""
    try:
        config = _load(config_paths)
    except TidemarkError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    if not yes:
        click.confirm(f"Delete all local data in {config.storage.path}?", abort=True)

    try:
        asyncio.run(_wipe(config))
    except TidemarkError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    click.echo("Local data wiped")


async def _wipe(config: TidemarkConfig) -> None:
    async with create_store(config.storage) as store:
        await store.delete_all_data()


if __name__ == "__main__":
    main()
