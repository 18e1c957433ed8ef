from __future__ import annotations

import logging
from typing import Any

from datastore.keys import KeyNamer
from datastore.redis_client import RedisLike
from models.records import BEGINNING, parse_stream_id

logger = logging.getLogger(__name__)


class PositionStore:
    """Durable id of the last check-in the processor fully applied."""

    def __init__(self, client: RedisLike, keys: KeyNamer) -> None:
        self.client = client
        self.key = keys.processor_position()

    def load(self) -> str:
        value = self.client.get(self.key)
        return value if value else BEGINNING

    def save(self, checkin_id: str) -> None:
        parse_stream_id(checkin_id)
        self.client.set(self.key, checkin_id)
        logger.info("Stored processor position.", extra={"last_id": checkin_id})

    def stage_advance(self, pipeline: Any, checkin_id: str) -> None:
        """Queue the cursor write on a batch owned by the caller."""
        pipeline.set(self.key, checkin_id)
