"""Domain records decoded from the check-in stream."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Tuple

BEGINNING = "0"

_REQUIRED_FIELDS = ("locationId", "userId", "starRating")


class MalformedCheckinError(ValueError):
    """Raised when a stream entry cannot be decoded into a check-in."""


def parse_stream_id(value: str) -> Tuple[int, int]:
    """Split a ``<ms>-<seq>`` stream id into a sortable tuple.

    A bare millisecond value is accepted and treated as sequence zero, which
    is how ``"0"`` (the beginning of the stream) is expressed.
    """
    candidate = value.strip()
    ms_part, _, seq_part = candidate.partition("-")
    try:
        ms = int(ms_part)
        seq = int(seq_part) if seq_part else 0
    except ValueError as exc:
        raise ValueError(f"Invalid stream ID {value!r}") from exc
    if ms < 0 or seq < 0:
        raise ValueError(f"Invalid stream ID {value!r}")
    return ms, seq


@dataclass(frozen=True, slots=True)
class Checkin:
    """A single check-in read from the stream."""

    id: str
    timestamp: int
    location_id: str
    user_id: str
    star_rating: int

    @classmethod
    def from_stream_entry(cls, entry_id: str, fields: Mapping[str, str]) -> "Checkin":
        missing = [name for name in _REQUIRED_FIELDS if fields.get(name) is None]
        if missing:
            raise MalformedCheckinError(
                f"Checkin {entry_id} is missing required fields: {', '.join(missing)}"
            )

        try:
            timestamp, _ = parse_stream_id(entry_id)
        except ValueError as exc:
            raise MalformedCheckinError(str(exc)) from exc

        raw_rating = str(fields["starRating"]).strip()
        try:
            star_rating = int(raw_rating)
        except ValueError as exc:
            raise MalformedCheckinError(
                f"Checkin {entry_id} has a non-integer starRating {raw_rating!r}"
            ) from exc

        return cls(
            id=entry_id,
            timestamp=timestamp,
            location_id=fields["locationId"],
            user_id=fields["userId"],
            star_rating=star_rating,
        )
