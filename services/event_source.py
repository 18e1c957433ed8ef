"""Blocking reader over the check-in stream."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from datastore.keys import KeyNamer
from datastore.redis_client import RedisLike
from models.records import BEGINNING, Checkin

logger = logging.getLogger(__name__)


class CheckinStream:
    """Reads check-ins one at a time with ``XREAD COUNT 1 BLOCK``."""

    def __init__(self, client: RedisLike, keys: KeyNamer, block_ms: int = 5000) -> None:
        if block_ms <= 0:
            raise ValueError("block_ms must be positive; zero would block forever.")
        self.client = client
        self.key = keys.checkins()
        self.block_ms = block_ms

    def next_checkin(self, after_id: Optional[str] = BEGINNING) -> Optional[Checkin]:
        """Return the first check-in with an id greater than ``after_id``.

        Waits up to ``block_ms`` for one to arrive and returns ``None`` if the
        interval elapses first.
        """
        response = self.client.xread(
            {self.key: after_id or BEGINNING}, count=1, block=self.block_ms
        )
        if not response:
            return None

        _stream, entries = response[0]
        entry_id, fields = entries[0]
        return Checkin.from_stream_entry(entry_id, fields)

    def append(
        self,
        location_id: str,
        user_id: str,
        star_rating: int,
        checkin_id: str = "*",
    ) -> str:
        fields: Mapping[str, Any] = {
            "locationId": location_id,
            "userId": user_id,
            "starRating": star_rating,
        }
        entry_id = self.client.xadd(self.key, fields, id=checkin_id)
        logger.debug(
            "Appended checkin.",
            extra={"checkin_id": entry_id, "location_id": location_id, "user_id": user_id},
        )
        return entry_id

    def length(self) -> int:
        return int(self.client.xlen(self.key))
