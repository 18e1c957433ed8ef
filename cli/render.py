from __future__ import annotations

from typing import Any, Iterable, Optional

import typer

from models.schemas import LocationAggregate, UserAggregate


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value if value is not None else '-'}")


def render_status(
    last_id: str,
    stream_length: int,
    location: Optional[LocationAggregate] = None,
    user: Optional[UserAggregate] = None,
) -> None:
    echo_heading("Processor")
    echo_key_values([("last_id", last_id), ("stream_length", stream_length)])

    if location is not None:
        typer.echo()
        echo_heading("Location")
        echo_key_values(
            [
                ("location_id", location.location_id),
                ("numCheckins", location.num_checkins),
                ("numStars", location.num_stars),
                ("averageStars", location.average_stars),
            ]
        )

    if user is not None:
        typer.echo()
        echo_heading("User")
        echo_key_values(
            [
                ("user_id", user.user_id),
                ("numCheckins", user.num_checkins),
                ("lastCheckin", user.last_checkin),
                ("lastSeenAt", user.last_seen_at),
            ]
        )
