from __future__ import annotations

import pytest

from datastore.keys import KeyNamer
from datastore.mock_redis import MockRedis
from models.records import BEGINNING, MalformedCheckinError
from services.event_source import CheckinStream
from services.position import PositionStore


def _stream(client: MockRedis, block_ms: int = 20) -> CheckinStream:
    return CheckinStream(client, KeyNamer("test"), block_ms=block_ms)


def test_next_checkin_reads_one_entry_after_position() -> None:
    client = MockRedis()
    stream = _stream(client)
    first = stream.append("L1", "U1", 5, checkin_id="1000-0")
    second = stream.append("L2", "U2", 3, checkin_id="1000-1")

    assert stream.next_checkin(BEGINNING).id == first
    checkin = stream.next_checkin(first)
    assert checkin is not None
    assert checkin.id == second
    assert checkin.location_id == "L2"
    assert checkin.star_rating == 3


def test_next_checkin_returns_none_on_timeout() -> None:
    stream = _stream(MockRedis())

    assert stream.next_checkin(BEGINNING) is None


def test_next_checkin_treats_missing_position_as_beginning() -> None:
    client = MockRedis()
    stream = _stream(client)
    stream.append("L1", "U1", 4, checkin_id="5-0")

    assert stream.next_checkin(None).id == "5-0"


def test_next_checkin_rejects_malformed_entries() -> None:
    client = MockRedis()
    stream = _stream(client)
    client.xadd(stream.key, {"locationId": "L1", "userId": "U1"}, id="1-0")

    with pytest.raises(MalformedCheckinError):
        stream.next_checkin(BEGINNING)


def test_stream_requires_positive_block_interval() -> None:
    with pytest.raises(ValueError):
        CheckinStream(MockRedis(), KeyNamer("test"), block_ms=0)


def test_position_store_defaults_to_beginning_and_saves() -> None:
    client = MockRedis()
    positions = PositionStore(client, KeyNamer("test"))

    assert positions.load() == BEGINNING

    positions.save("1700000000000-2")

    assert client.get("test:checkinprocessor:lastid") == "1700000000000-2"
    assert positions.load() == "1700000000000-2"


def test_position_store_rejects_invalid_ids() -> None:
    positions = PositionStore(MockRedis(), KeyNamer("test"))

    with pytest.raises(ValueError):
        positions.save("latest")
