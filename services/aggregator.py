"""Per-user and per-location check-in aggregates."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List

from datastore.keys import KeyNamer
from datastore.redis_client import RedisLike
from models.records import Checkin
from models.schemas import LocationAggregate, UserAggregate

logger = logging.getLogger(__name__)


class BatchError(RuntimeError):
    """One or more commands of a submitted batch reported an error."""

    def __init__(self, message: str, errors: List[Exception]) -> None:
        super().__init__(message)
        self.errors = errors


def average_stars(num_stars: int, num_checkins: int) -> int:
    """Round ``num_stars / num_checkins`` to the nearest integer, halves away from zero.

    Integer arithmetic keeps exact halves (e.g. 3 / 2) from being affected by
    float representation or by Python's half-to-even ``round``.
    """
    if num_checkins <= 0:
        raise ValueError("num_checkins must be positive.")
    quotient, remainder = divmod(abs(num_stars), num_checkins)
    if remainder * 2 >= num_checkins:
        quotient += 1
    return quotient if num_stars >= 0 else -quotient


@dataclass(frozen=True)
class LocationCounters:
    """Location counter values as returned by the counter batch."""

    location_id: str
    num_checkins: int
    num_stars: int


class AggregateStore:
    """Reads and batch-updates the user and location hashes."""

    def __init__(self, client: RedisLike, keys: KeyNamer) -> None:
        self.client = client
        self.keys = keys

    def increment_counters(self, checkin: Checkin) -> LocationCounters:
        user_key = self.keys.user(checkin.user_id)
        location_key = self.keys.location(checkin.location_id)

        logger.debug(
            "Updating user and location.",
            extra={"user_id": checkin.user_id, "location_id": checkin.location_id},
        )

        pipeline = self.client.pipeline(transaction=True)
        pipeline.hset(
            user_key,
            mapping={"lastCheckin": checkin.timestamp, "lastSeenAt": checkin.location_id},
        )
        pipeline.hincrby(user_key, "numCheckins", 1)
        pipeline.hincrby(location_key, "numCheckins", 1)
        pipeline.hincrby(location_key, "numStars", checkin.star_rating)
        results = pipeline.execute(raise_on_error=False)

        errors = [result for result in results if isinstance(result, Exception)]
        if errors:
            raise BatchError(
                f"Counter batch for checkin {checkin.id} failed: {errors[0]}", errors
            )

        return LocationCounters(
            location_id=checkin.location_id,
            num_checkins=int(results[2]),
            num_stars=int(results[3]),
        )

    def stage_average(self, pipeline: Any, location_id: str, value: int) -> None:
        pipeline.hset(self.keys.location(location_id), "averageStars", value)

    def fetch_location(self, location_id: str) -> LocationAggregate:
        fields = self.client.hgetall(self.keys.location(location_id))
        return LocationAggregate.model_validate({"location_id": location_id, **fields})

    def fetch_user(self, user_id: str) -> UserAggregate:
        fields = self.client.hgetall(self.keys.user(user_id))
        return UserAggregate.model_validate({"user_id": user_id, **fields})
