"""Seed the check-in stream from a JSON file."""

from __future__ import annotations

import logging
from pathlib import Path

from models.schemas import CheckinSeedFile
from services.event_source import CheckinStream

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


def load_checkins(stream: CheckinStream, path: Path, batch_size: int = DEFAULT_BATCH_SIZE) -> int:
    """Replace the stream contents with the check-ins in ``path``.

    Entries keep their ``id`` when the file provides one, so ids in the file
    must be strictly increasing. Returns the stream length after loading.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive.")

    seed = CheckinSeedFile.model_validate_json(path.read_text(encoding="utf-8"))
    client = stream.client

    client.delete(stream.key)
    logger.info("Cleared checkin stream.", extra={"stream_key": stream.key})

    pipeline = client.pipeline(transaction=False)
    for index, checkin in enumerate(seed.checkins, start=1):
        pipeline.xadd(
            stream.key,
            {
                "locationId": checkin.location_id,
                "userId": checkin.user_id,
                "starRating": checkin.star_rating,
            },
            id=checkin.id or "*",
        )
        if index % batch_size == 0:
            pipeline.execute()
    if len(pipeline):
        pipeline.execute()

    entry_count = stream.length()
    logger.info(f"Loaded {entry_count} checkin stream entries.", extra={"entry_count": entry_count})
    return entry_count
