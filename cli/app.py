from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from redis.exceptions import RedisError

from cli.render import render_status
from datastore.keys import KeyNamer
from datastore.redis_client import RedisLike, build_client
from logging_config import configure_logging
from models.records import MalformedCheckinError
from services.aggregator import AggregateStore, BatchError
from services.event_source import CheckinStream
from services.loader import load_checkins
from services.position import PositionStore
from services.processor import build_processor
from settings import STORE_BACKENDS, Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class CLIState:
    settings: Settings
    client: RedisLike
    keys: KeyNamer


app = typer.Typer(
    help="Run and inspect the check-in stream processor.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    redis_url: Optional[str] = typer.Option(
        None,
        "--redis-url",
        "-u",
        help="Redis connection URL (defaults to REDIS_URL env or redis://localhost:6379/0).",
    ),
    key_prefix: Optional[str] = typer.Option(
        None,
        "--key-prefix",
        help="Prefix for every key name (defaults to REDIS_KEY_PREFIX env or 'ncc').",
    ),
    block_ms: Optional[int] = typer.Option(
        None,
        "--block-ms",
        min=1,
        help="Milliseconds each stream read waits for a new checkin.",
    ),
    backend: Optional[str] = typer.Option(
        None,
        "--backend",
        help="Store backend: 'redis' or the in-process 'mock'.",
    ),
) -> None:
    """Entry point for the CLI."""
    overrides = {}
    if redis_url is not None:
        overrides["redis_url"] = redis_url
    if key_prefix is not None:
        overrides["key_prefix"] = key_prefix
    if block_ms is not None:
        overrides["block_ms"] = block_ms
    if backend is not None:
        if backend not in STORE_BACKENDS:
            raise typer.BadParameter(
                f"Backend must be one of: {', '.join(STORE_BACKENDS)}.", param_hint="--backend"
            )
        overrides["store_backend"] = backend
    settings = replace(get_settings(), **overrides)

    try:
        keys = KeyNamer(settings.key_prefix)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--key-prefix") from exc

    client = build_client(settings)
    ctx.obj = CLIState(settings=settings, client=client, keys=keys)
    ctx.call_on_close(client.close)


@app.command("run")
def run_command(ctx: typer.Context) -> None:
    """Process checkins until interrupted."""
    state = _get_state(ctx)
    configure_logging(state.settings.log_level)
    processor = None
    try:
        processor = build_processor(state.client, state.settings, keys=state.keys)
        processor.run()
    except KeyboardInterrupt:
        typer.echo("Stopped.")
    except (MalformedCheckinError, BatchError, RedisError) as exc:
        logger.exception(
            "Checkin processor stopped on error.",
            extra={"last_id": processor.last_id if processor is not None else None},
        )
        raise typer.Exit(code=1) from exc


@app.command("status")
def status_command(
    ctx: typer.Context,
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Location ID to show."),
    user: Optional[str] = typer.Option(None, "--user", help="User ID to show."),
) -> None:
    """Show the stored position and, optionally, a location or user aggregate."""
    state = _get_state(ctx)
    positions = PositionStore(state.client, state.keys)
    stream = CheckinStream(state.client, state.keys, block_ms=state.settings.block_ms)
    aggregates = AggregateStore(state.client, state.keys)
    render_status(
        last_id=positions.load(),
        stream_length=stream.length(),
        location=aggregates.fetch_location(location) if location else None,
        user=aggregates.fetch_user(user) if user else None,
    )


@app.command("checkin")
def checkin_command(
    ctx: typer.Context,
    location_id: str = typer.Argument(..., help="Location being checked in to."),
    user_id: str = typer.Argument(..., help="User checking in."),
    star_rating: int = typer.Argument(..., min=1, max=5, help="Rating from 1 to 5."),
) -> None:
    """Append a single checkin to the stream."""
    state = _get_state(ctx)
    stream = CheckinStream(state.client, state.keys, block_ms=state.settings.block_ms)
    checkin_id = stream.append(location_id, user_id, star_rating)
    typer.secho(f"Checkin added. id={checkin_id}", fg=typer.colors.GREEN)


@app.command("load")
def load_command(
    ctx: typer.Context,
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Checkins JSON file."),
) -> None:
    """Replace the checkin stream with the entries of a JSON file."""
    state = _get_state(ctx)
    stream = CheckinStream(state.client, state.keys, block_ms=state.settings.block_ms)
    typer.echo(f"Loading checkin stream entries from {file} ...")
    try:
        entry_count = load_checkins(stream, file)
    except ValidationError as exc:
        typer.secho(f"Invalid checkins file: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    except RedisError as exc:
        typer.secho(
            f"Loading stopped on a store error: {exc}. The stream holds {stream.length()} entries.",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1) from exc
    typer.secho(f"Loaded {entry_count} checkin stream entries.", fg=typer.colors.GREEN)


@app.command("seek")
def seek_command(
    ctx: typer.Context,
    checkin_id: str = typer.Argument(..., help="ID of the last checkin to treat as processed."),
) -> None:
    """Overwrite the stored processor position."""
    state = _get_state(ctx)
    positions = PositionStore(state.client, state.keys)
    try:
        positions.save(checkin_id)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="CHECKIN_ID") from exc
    typer.echo(f"Processor position set to {checkin_id}.")
