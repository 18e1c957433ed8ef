"""Continuous check-in processing against the stream and aggregate hashes."""

from __future__ import annotations

import logging
from collections import deque
from functools import lru_cache
from typing import Deque, Optional

from datastore.keys import KeyNamer, build_default_key_namer
from datastore.redis_client import RedisLike, build_default_client
from models.records import Checkin
from services.aggregator import AggregateStore, average_stars
from services.event_source import CheckinStream
from services.position import PositionStore
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

UNPERSISTED_HISTORY = 100


class CheckinProcessor:
    """Applies check-ins to the aggregates in stream order, one at a time.

    Each check-in is applied with two sequential batches. The first
    increments the counters; the second writes the derived average and
    advances the stored position. A crash between the two leaves the
    counters incremented with the position still on the previous event, so
    the event is applied again after a restart.
    """

    def __init__(
        self,
        client: RedisLike,
        stream: CheckinStream,
        positions: PositionStore,
        aggregates: AggregateStore,
        last_id: Optional[str] = None,
    ) -> None:
        self.client = client
        self.stream = stream
        self.positions = positions
        self.aggregates = aggregates
        self.last_id = last_id if last_id is not None else positions.load()
        self.processed_count = 0
        self.stale_average_count = 0
        self.unpersisted_count = 0
        self.unpersisted_ids: Deque[str] = deque(maxlen=UNPERSISTED_HISTORY)
        logger.info(
            f"Reading stream from last ID {self.last_id}.",
            extra={"stream_key": stream.key, "last_id": self.last_id},
        )

    def run(self) -> None:
        """Process check-ins until the process is stopped."""
        while True:
            self.poll_once()

    def poll_once(self) -> Optional[Checkin]:
        """Wait for the next check-in and apply it, returning it if one arrived."""
        checkin = self.stream.next_checkin(self.last_id)
        if checkin is None:
            logger.info("Waiting for more checkins...", extra={"last_id": self.last_id})
            return None
        self.apply(checkin)
        return checkin

    def apply(self, checkin: Checkin) -> None:
        counters = self.aggregates.increment_counters(checkin)
        logger.debug(
            "Counters committed; average and position pending.",
            extra={
                "checkin_id": checkin.id,
                "location_id": checkin.location_id,
                "num_checkins": counters.num_checkins,
                "num_stars": counters.num_stars,
            },
        )

        new_average = average_stars(counters.num_stars, counters.num_checkins)

        pipeline = self.client.pipeline(transaction=True)
        self.aggregates.stage_average(pipeline, checkin.location_id, new_average)
        self.positions.stage_advance(pipeline, checkin.id)
        average_result, position_result = pipeline.execute(raise_on_error=False)

        self.last_id = checkin.id
        self.processed_count += 1
        context = {"checkin_id": checkin.id, "location_id": checkin.location_id}

        if isinstance(average_result, Exception):
            self.stale_average_count += 1
            logger.warning(
                f"Average write for checkin {checkin.id} failed ({average_result}); "
                f"averageStars for location {checkin.location_id} is stale until its next checkin.",
                extra={**context, "average_stars": new_average},
            )

        if isinstance(position_result, Exception):
            self.unpersisted_count += 1
            self.unpersisted_ids.append(checkin.id)
            logger.warning(
                f"Position write for checkin {checkin.id} failed ({position_result}); counters "
                "were already incremented and the checkin will be counted again after a restart.",
                extra={**context, "error_count": self.unpersisted_count},
            )

        if isinstance(average_result, Exception) or isinstance(position_result, Exception):
            return

        logger.info(
            f"Processed checkin {checkin.id}.",
            extra={**context, "average_stars": new_average},
        )


def build_processor(
    client: RedisLike,
    settings: Settings,
    keys: Optional[KeyNamer] = None,
    last_id: Optional[str] = None,
) -> CheckinProcessor:
    """Wire a processor and its collaborators around one store client."""
    key_namer = keys or KeyNamer(settings.key_prefix)
    return CheckinProcessor(
        client=client,
        stream=CheckinStream(client, key_namer, block_ms=settings.block_ms),
        positions=PositionStore(client, key_namer),
        aggregates=AggregateStore(client, key_namer),
        last_id=last_id,
    )


@lru_cache
def build_default_processor() -> CheckinProcessor:
    """Factory that wires the processor from environment settings."""
    return build_processor(
        client=build_default_client(),
        settings=get_settings(),
        keys=build_default_key_namer(),
    )
