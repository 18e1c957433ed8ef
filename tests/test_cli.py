from __future__ import annotations

import json
import logging
from dataclasses import replace

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from typer.testing import CliRunner

from cli.app import app
from datastore.mock_redis import MockRedis
from models.records import MalformedCheckinError
from services.processor import build_processor


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def client(monkeypatch) -> MockRedis:
    shared = MockRedis()
    monkeypatch.setattr("cli.app.build_client", lambda settings: shared)
    monkeypatch.setattr("cli.app.configure_logging", lambda level=None: None)
    return shared


def _install_draining_processor(monkeypatch) -> None:
    def factory(client, settings, keys=None, last_id=None):
        processor = build_processor(client, replace(settings, block_ms=10), keys=keys)

        def run() -> None:
            while processor.poll_once() is not None:
                pass
            raise KeyboardInterrupt

        processor.run = run  # type: ignore[method-assign]
        return processor

    monkeypatch.setattr("cli.app.build_processor", factory)


def test_checkin_appends_to_stream(runner: CliRunner, client: MockRedis) -> None:
    result = runner.invoke(app, ["--key-prefix", "t", "checkin", "L1", "U1", "4"])

    assert result.exit_code == 0
    assert "Checkin added" in result.stdout
    assert client.xlen("t:checkins") == 1


def test_checkin_rejects_out_of_range_rating(runner: CliRunner, client: MockRedis) -> None:
    result = runner.invoke(app, ["checkin", "L1", "U1", "9"])

    assert result.exit_code != 0
    assert client.xlen("ncc:checkins") == 0


def test_run_then_status_shows_aggregates(monkeypatch, runner: CliRunner, client: MockRedis) -> None:
    _install_draining_processor(monkeypatch)
    for rating in ("5", "3", "4"):
        assert runner.invoke(app, ["checkin", "L1", "U1", rating]).exit_code == 0

    run_result = runner.invoke(app, ["run"])
    status_result = runner.invoke(app, ["status", "--location", "L1", "--user", "U1"])

    assert run_result.exit_code == 0
    assert "Stopped." in run_result.stdout
    assert status_result.exit_code == 0
    assert "stream_length: 3" in status_result.stdout
    assert "numStars: 12" in status_result.stdout
    assert "averageStars: 4" in status_result.stdout
    assert "lastSeenAt: L1" in status_result.stdout
    assert "last_id: 0" not in status_result.stdout


def test_run_exits_non_zero_on_fatal_error(monkeypatch, runner: CliRunner, client: MockRedis) -> None:
    class BrokenProcessor:
        last_id = "0"

        def run(self) -> None:
            raise MalformedCheckinError("Checkin 1-0 is missing required fields: userId")

    monkeypatch.setattr(
        "cli.app.build_processor", lambda client, settings, keys=None, last_id=None: BrokenProcessor()
    )

    result = runner.invoke(app, ["run"])

    assert result.exit_code == 1


def test_load_and_seek(runner: CliRunner, client: MockRedis, tmp_path) -> None:
    seed = tmp_path / "checkins.json"
    seed.write_text(
        json.dumps(
            {
                "checkins": [
                    {"id": "10-0", "locationId": "L1", "userId": "U1", "starRating": 2},
                    {"id": "11-0", "locationId": "L1", "userId": "U2", "starRating": 3},
                ]
            }
        )
    )

    load_result = runner.invoke(app, ["load", str(seed)])
    seek_result = runner.invoke(app, ["seek", "10-0"])
    status_result = runner.invoke(app, ["status"])

    assert load_result.exit_code == 0
    assert "Loaded 2 checkin stream entries." in load_result.stdout
    assert seek_result.exit_code == 0
    assert client.get("ncc:checkinprocessor:lastid") == "10-0"
    assert "last_id: 10-0" in status_result.stdout


def test_seek_rejects_invalid_id(runner: CliRunner, client: MockRedis) -> None:
    result = runner.invoke(app, ["seek", "latest"])

    assert result.exit_code != 0
    assert client.get("ncc:checkinprocessor:lastid") is None


def test_unknown_backend_is_rejected(runner: CliRunner, client: MockRedis) -> None:
    result = runner.invoke(app, ["--backend", "memcached", "status"])

    assert result.exit_code != 0


def test_load_reports_unordered_ids(runner: CliRunner, client: MockRedis, tmp_path) -> None:
    seed = tmp_path / "checkins.json"
    seed.write_text(
        json.dumps(
            {
                "checkins": [
                    {"id": "11-0", "locationId": "L1", "userId": "U1", "starRating": 2},
                    {"id": "10-0", "locationId": "L1", "userId": "U2", "starRating": 3},
                ]
            }
        )
    )

    result = runner.invoke(app, ["load", str(seed)])

    assert result.exit_code == 1
    assert "Invalid checkins file" in result.output
    assert client.xlen("ncc:checkins") == 0


def test_load_reports_store_errors(runner: CliRunner, client: MockRedis, tmp_path) -> None:
    seed = tmp_path / "checkins.json"
    seed.write_text(
        json.dumps(
            {
                "checkins": [
                    {"locationId": "L1", "userId": "U1", "starRating": 2},
                    {"id": "10-0", "locationId": "L1", "userId": "U2", "starRating": 3},
                ]
            }
        )
    )

    result = runner.invoke(app, ["load", str(seed)])

    assert result.exit_code == 1
    assert "Loading stopped on a store error" in result.output
    assert not isinstance(result.exception, ResponseError)


class _UnreachableRedis(MockRedis):
    def get(self, name):
        raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")


def test_run_logs_unreachable_store_at_startup(monkeypatch, runner: CliRunner, caplog) -> None:
    monkeypatch.setattr("cli.app.build_client", lambda settings: _UnreachableRedis())
    monkeypatch.setattr("cli.app.configure_logging", lambda level=None: None)

    with caplog.at_level(logging.ERROR, logger="cli.app"):
        result = runner.invoke(app, ["run"])

    assert result.exit_code == 1
    assert any(r.getMessage() == "Checkin processor stopped on error." for r in caplog.records)
