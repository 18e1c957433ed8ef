"""In-process stand-in for the subset of Redis the processor relies on."""

from __future__ import annotations

import time
from pathlib import Path
from threading import Condition, RLock
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, ValidationError
from redis.exceptions import ResponseError

from models.records import parse_stream_id

StreamEntry = Tuple[str, Dict[str, str]]
Command = Tuple[str, Sequence[Any], Dict[str, Any]]

_WRONGTYPE = "WRONGTYPE Operation against a key holding the wrong kind of value"


class StoredStreamEntry(BaseModel):
    id: str
    fields: Dict[str, str]


class MockRedisSnapshot(BaseModel):
    """On-disk representation of the whole keyspace."""

    strings: Dict[str, str] = Field(default_factory=dict)
    hashes: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    streams: Dict[str, List[StoredStreamEntry]] = Field(default_factory=dict)


def _encode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class MockRedis:
    """Thread-safe keyspace of strings, hashes and streams.

    Method names and return shapes follow ``redis.Redis`` created with
    ``decode_responses=True`` so the services can run against either.
    Every write is applied under one lock, which also makes a pipeline's
    commands atomic with respect to other callers.
    """

    def __init__(self, persistence_path: Optional[Path] = None) -> None:
        self.persistence_path = persistence_path
        self._strings: Dict[str, str] = {}
        self._hashes: Dict[str, Dict[str, str]] = {}
        self._streams: Dict[str, List[StreamEntry]] = {}
        self._lock = RLock()
        self._changed = Condition(self._lock)
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    # -- reads -------------------------------------------------------------

    def ping(self) -> bool:
        return True

    def get(self, name: str) -> Optional[str]:
        with self._lock:
            self._check_type(name, self._strings)
            return self._strings.get(name)

    def hget(self, name: str, key: str) -> Optional[str]:
        with self._lock:
            self._check_type(name, self._hashes)
            return self._hashes.get(name, {}).get(key)

    def hgetall(self, name: str) -> Dict[str, str]:
        with self._lock:
            self._check_type(name, self._hashes)
            return dict(self._hashes.get(name, {}))

    def xlen(self, name: str) -> int:
        with self._lock:
            self._check_type(name, self._streams)
            return len(self._streams.get(name, []))

    def xrange(
        self, name: str, min: str = "-", max: str = "+", count: Optional[int] = None
    ) -> List[StreamEntry]:
        low = (0, 0) if min == "-" else self._parse_id(min)
        high = None if max == "+" else self._parse_id(max)
        with self._lock:
            self._check_type(name, self._streams)
            entries = [
                (entry_id, dict(fields))
                for entry_id, fields in self._streams.get(name, [])
                if low <= parse_stream_id(entry_id) and (high is None or parse_stream_id(entry_id) <= high)
            ]
        return entries[:count] if count else entries

    def xread(
        self,
        streams: Mapping[str, str],
        count: Optional[int] = None,
        block: Optional[int] = None,
    ) -> List[List[Any]]:
        """Return entries newer than the given ids, waiting up to ``block`` ms.

        ``block=None`` never waits and ``block=0`` waits until data arrives.
        """
        deadline = time.monotonic() + block / 1000.0 if block else None
        with self._changed:
            while True:
                response = self._collect(streams, count)
                if response or block is None:
                    return response
                if deadline is None:
                    self._changed.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return []
                self._changed.wait(remaining)

    # -- writes ------------------------------------------------------------

    def set(self, name: str, value: Any) -> bool:
        return self._execute([("set", (name, value), {})])[0]

    def delete(self, *names: str) -> int:
        return self._execute([("delete", names, {})])[0]

    def hset(
        self,
        name: str,
        key: Optional[str] = None,
        value: Any = None,
        mapping: Optional[Mapping[str, Any]] = None,
    ) -> int:
        return self._execute(
            [("hset", (name,), {"key": key, "value": value, "mapping": mapping})]
        )[0]

    def hincrby(self, name: str, key: str, amount: int = 1) -> int:
        return self._execute([("hincrby", (name, key, amount), {})])[0]

    def xadd(self, name: str, fields: Mapping[str, Any], id: str = "*") -> str:
        return self._execute([("xadd", (name, fields), {"id": id})])[0]

    def pipeline(self, transaction: bool = True) -> "MockPipeline":
        return MockPipeline(self, transaction=transaction)

    def close(self) -> None:
        with self._lock:
            self._persist()

    def _execute(self, commands: Sequence[Command], raise_on_error: bool = True) -> List[Any]:
        results: List[Any] = []
        with self._changed:
            for name, args, kwargs in commands:
                handler = getattr(self, f"_do_{name}")
                try:
                    results.append(handler(*args, **kwargs))
                except ResponseError as exc:
                    results.append(exc)
            self._persist()
            self._changed.notify_all()

        if raise_on_error:
            for result in results:
                if isinstance(result, ResponseError):
                    raise result
        return results

    def _do_set(self, name: str, value: Any) -> bool:
        self._hashes.pop(name, None)
        self._streams.pop(name, None)
        self._strings[name] = _encode(value)
        return True

    def _do_delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            for store in (self._strings, self._hashes, self._streams):
                if store.pop(name, None) is not None:
                    removed += 1
        return removed

    def _do_hset(
        self,
        name: str,
        key: Optional[str] = None,
        value: Any = None,
        mapping: Optional[Mapping[str, Any]] = None,
    ) -> int:
        fields: Dict[str, str] = {}
        if key is not None:
            fields[_encode(key)] = _encode(value)
        for field_name, field_value in (mapping or {}).items():
            fields[_encode(field_name)] = _encode(field_value)
        if not fields:
            raise ResponseError("ERR wrong number of arguments for 'hset' command")

        self._check_type(name, self._hashes)
        stored = self._hashes.setdefault(name, {})
        added = sum(1 for field_name in fields if field_name not in stored)
        stored.update(fields)
        return added

    def _do_hincrby(self, name: str, key: str, amount: int = 1) -> int:
        self._check_type(name, self._hashes)
        stored = self._hashes.setdefault(name, {})
        try:
            current = int(stored.get(key, "0"))
            increment = int(amount)
        except ValueError as exc:
            raise ResponseError("ERR hash value is not an integer") from exc
        updated = current + increment
        stored[key] = str(updated)
        return updated

    def _do_xadd(self, name: str, fields: Mapping[str, Any], id: str = "*") -> str:
        if not fields:
            raise ResponseError("ERR wrong number of arguments for 'xadd' command")
        self._check_type(name, self._streams)
        entries = self._streams.get(name, [])
        top = parse_stream_id(entries[-1][0]) if entries else (0, 0)

        if id == "*":
            now_ms = int(time.time() * 1000)
            new_id = (now_ms, 0) if now_ms > top[0] else (top[0], top[1] + 1)
        else:
            new_id = self._parse_id(id)
            if new_id <= top:
                raise ResponseError(
                    "ERR The ID specified in XADD is equal or smaller than the target stream top item"
                )

        entry_id = f"{new_id[0]}-{new_id[1]}"
        encoded = {_encode(k): _encode(v) for k, v in fields.items()}
        self._streams.setdefault(name, []).append((entry_id, encoded))
        return entry_id

    # -- helpers -----------------------------------------------------------

    def _collect(self, streams: Mapping[str, str], count: Optional[int]) -> List[List[Any]]:
        response: List[List[Any]] = []
        for name, last_id in streams.items():
            self._check_type(name, self._streams)
            after = self._parse_id(str(last_id))
            entries = [
                (entry_id, dict(fields))
                for entry_id, fields in self._streams.get(name, [])
                if parse_stream_id(entry_id) > after
            ]
            if count:
                entries = entries[:count]
            if entries:
                response.append([name, entries])
        return response

    def _check_type(self, name: str, expected: Dict[str, Any]) -> None:
        for store in (self._strings, self._hashes, self._streams):
            if store is not expected and name in store:
                raise ResponseError(_WRONGTYPE)

    @staticmethod
    def _parse_id(value: str) -> Tuple[int, int]:
        try:
            return parse_stream_id(value)
        except ValueError as exc:
            raise ResponseError(
                "ERR Invalid stream ID specified as stream command argument"
            ) from exc

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        snapshot = MockRedisSnapshot(
            strings=self._strings,
            hashes=self._hashes,
            streams={
                name: [StoredStreamEntry(id=entry_id, fields=fields) for entry_id, fields in entries]
                for name, entries in self._streams.items()
            },
        )
        self.persistence_path.write_text(snapshot.model_dump_json(indent=2))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            snapshot = MockRedisSnapshot.model_validate_json(
                self.persistence_path.read_text() or "{}"
            )
        except (OSError, ValidationError):
            snapshot = MockRedisSnapshot()

        self._strings = dict(snapshot.strings)
        self._hashes = {name: dict(fields) for name, fields in snapshot.hashes.items()}
        self._streams = {
            name: [(entry.id, dict(entry.fields)) for entry in entries]
            for name, entries in snapshot.streams.items()
        }


class MockPipeline:
    """Queues commands and applies them together on ``execute``."""

    def __init__(self, client: MockRedis, transaction: bool = True) -> None:
        self._client = client
        self.transaction = transaction
        self._commands: List[Command] = []

    def __enter__(self) -> "MockPipeline":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.reset()

    def __len__(self) -> int:
        return len(self._commands)

    def reset(self) -> None:
        self._commands = []

    def set(self, name: str, value: Any) -> "MockPipeline":
        return self._queue("set", (name, value))

    def delete(self, *names: str) -> "MockPipeline":
        return self._queue("delete", names)

    def hset(
        self,
        name: str,
        key: Optional[str] = None,
        value: Any = None,
        mapping: Optional[Mapping[str, Any]] = None,
    ) -> "MockPipeline":
        return self._queue("hset", (name,), key=key, value=value, mapping=mapping)

    def hincrby(self, name: str, key: str, amount: int = 1) -> "MockPipeline":
        return self._queue("hincrby", (name, key, amount))

    def xadd(self, name: str, fields: Mapping[str, Any], id: str = "*") -> "MockPipeline":
        return self._queue("xadd", (name, fields), id=id)

    def execute(self, raise_on_error: bool = True) -> List[Any]:
        commands, self._commands = self._commands, []
        return self._client._execute(commands, raise_on_error=raise_on_error)

    def _queue(self, name: str, args: Sequence[Any], **kwargs: Any) -> "MockPipeline":
        self._commands.append((name, args, kwargs))
        return self
