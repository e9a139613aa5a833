# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Main CLI entry point for the Heartstream relay.
"""

import asyncio
import os
import signal
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import click
import redis
from rich.console import Console
from rich.live import Live
from rich.table import Table

from .. import __version__
from ..capture.redis_source import publish_sample
from ..config import Config
from ..identity import LocalIdentityProvider, ShareIdStore
from ..models import Sample, format_timestamp, parse_timestamp
from ..processing.sinks import PublicStreamReader
from ..server import (
    RelayServer,
    create_redis_client,
    create_state_store,
    cursor_source_key,
    setup_logging,
)
from ..storage.cursor_store import SQLiteCursorStore
from .dashboard import HeartRateDashboard

console = Console()

pass_config = click.make_pass_decorator(Config, ensure=True)


@click.group()
@click.version_option(version=__version__, prog_name="heartstream")
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="HEARTSTREAM_CONFIG",
    help="Path to config.yaml"
)
@click.option(
    "--debug",
    envvar="HEARTSTREAM_DEBUG",
    is_flag=True,
    help="Enable debug logging"
)
@click.pass_context
def cli(ctx, config_path: Optional[Path], debug: bool):
    """
    Heartstream - relay heart-rate samples to a private log and a public share stream.

    Examples:
        heartstream run
        heartstream emit --bpm 72 --source Watch
        heartstream latest
        heartstream history --limit 20
    """
    config = Config(config_path=config_path)
    if debug:
        config.log_level = "DEBUG"
    ctx.obj = config


@cli.command()
@click.option("--no-dashboard", is_flag=True, help="Log only, no live display")
@pass_config
def run(config: Config, no_dashboard: bool):
    """Observe the sensor stream and relay new samples."""
    errors = config.validate()
    if errors:
        for error in errors:
            console.print(f"[red]Configuration error:[/red] {error}")
        sys.exit(2)

    if no_dashboard:
        setup_logging(config.log_level)
    else:
        # Keep log lines from tearing the live display
        setup_logging("WARNING" if config.log_level.upper() != "DEBUG" else "DEBUG")

    server = RelayServer(config)
    try:
        exit_code = asyncio.run(_run(server, dashboard=not no_dashboard))
    except KeyboardInterrupt:
        console.print("\n[yellow]Monitoring stopped[/yellow]")
        exit_code = 0
    sys.exit(exit_code)


async def _run(server: RelayServer, dashboard: bool) -> int:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(server.stop()))

    if not dashboard:
        return await server.run()

    server.setup()
    view = HeartRateDashboard(share_id=server.identity.get_or_create_share_id())
    server.session.add_state_listener(view.set_state)

    try:
        with Live(view.render(), console=console, refresh_per_second=4) as live:
            result = await server.start()
            live.update(view.render())
            if not result.success:
                return 1

            feed = server.relay.feed
            while server.running:
                try:
                    record = await asyncio.wait_for(feed.next(), timeout=1.0)
                    view.update_record(record)
                except asyncio.TimeoutError:
                    pass
                live.update(view.render())
    finally:
        await server.stop()

    return 0


@cli.command()
@click.option("--bpm", type=float, required=True, help="Heart rate in beats per minute")
@click.option("--source", default="heartstream-cli", show_default=True, help="Source device name")
@click.option("--at", "at", help="Sample end time, ISO-8601 with timezone (default: now)")
@click.option("--duration", type=float, default=0.0, show_default=True, help="Sample duration in seconds")
@pass_config
def emit(config: Config, bpm: float, source: str, at: Optional[str], duration: float):
    """Append a sample to the sensor stream."""
    try:
        end = parse_timestamp(at) if at else datetime.now(timezone.utc)
        sample = Sample(
            value=bpm,
            start_time=end - timedelta(seconds=duration),
            end_time=end,
            source_name=source,
        )
    except ValueError as e:
        raise click.BadParameter(str(e))

    client = create_redis_client(config)
    try:
        entry_id = publish_sample(client, sample, stream_name=config.stream_name)
    except redis.RedisError as e:
        console.print(f"[red]Error:[/red] Could not write to {config.stream_name}: {e}")
        sys.exit(1)
    finally:
        client.close()

    console.print(f"[green]✓[/green] {bpm:g} BPM at {format_timestamp(end)} -> {entry_id}")


@cli.command("share-id")
@pass_config
def share_id(config: Config):
    """Print the public share id for this install."""
    click.echo(_resolve_share_id(config, None))


def _resolve_share_id(config: Config, share: Optional[str]) -> str:
    if share:
        return share
    return LocalIdentityProvider(ShareIdStore(create_state_store(config))).get_or_create_share_id()


@cli.command()
@click.argument("share", required=False)
@pass_config
def latest(config: Config, share: Optional[str]):
    """Show the latest record on a public share stream."""
    share = _resolve_share_id(config, share)
    client = create_redis_client(config)
    try:
        record = PublicStreamReader(client).latest(share)
    except redis.RedisError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        client.close()

    if record is None:
        console.print(f"[yellow]No data published for {share}[/yellow]")
        return

    console.print(f"[bold red]{record.bpm}[/bold red] BPM  "
                  f"[dim]{format_timestamp(record.end)}  {record.source}[/dim]")


@cli.command()
@click.argument("share", required=False)
@click.option("--limit", type=int, default=20, show_default=True, help="Number of records")
@pass_config
def history(config: Config, share: Optional[str], limit: int):
    """List recent records on a public share stream, newest first."""
    share = _resolve_share_id(config, share)
    client = create_redis_client(config)
    try:
        records = PublicStreamReader(client).history(share, limit=limit)
    except redis.RedisError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        client.close()

    if not records:
        console.print(f"[yellow]No history for {share}[/yellow]")
        return

    table = Table(title=f"public/{share}/heartRate", header_style="bold magenta")
    table.add_column("Key", style="dim")
    table.add_column("BPM", justify="right", style="red")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Source", style="cyan")
    for record in records:
        table.add_row(
            record.key,
            str(record.bpm),
            format_timestamp(record.start),
            format_timestamp(record.end),
            record.source,
        )
    console.print(table)


@cli.command("reset-cursor")
@click.confirmation_option(prompt="Replay the full sensor history on next run?")
@pass_config
def reset_cursor(config: Config):
    """Forget the stored cursor."""
    store = SQLiteCursorStore(create_state_store(config), cursor_source_key(config))
    store.clear()
    console.print("[green]✓[/green] Cursor cleared")


def main():
    """Main entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        if os.environ.get("HEARTSTREAM_DEBUG"):
            console.print_exception()
        else:
            console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
