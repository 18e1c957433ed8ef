from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_REDIS_URL_ENV = "REDIS_URL"
_KEY_PREFIX_ENV = "REDIS_KEY_PREFIX"
_BLOCK_MS_ENV = "CHECKIN_BLOCK_MS"
_BACKEND_ENV = "STORE_BACKEND"
_MOCK_PATH_ENV = "MOCK_REDIS_PERSISTENCE_PATH"
_LOG_LEVEL_ENV = "LOG_LEVEL"

STORE_BACKENDS = ("redis", "mock")


@dataclass(frozen=True)
class Settings:
    redis_url: str
    key_prefix: str
    block_ms: int
    store_backend: str
    mock_persistence_path: Optional[str]
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_block_ms(default: int) -> int:
    value = os.getenv(_BLOCK_MS_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_backend(default: str) -> str:
    candidate = _read_str_env(_BACKEND_ENV, default).lower()
    return candidate if candidate in STORE_BACKENDS else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        redis_url=_read_str_env(_REDIS_URL_ENV, "redis://localhost:6379/0"),
        key_prefix=_read_str_env(_KEY_PREFIX_ENV, "ncc"),
        block_ms=_read_block_ms(5000),
        store_backend=_read_backend("redis"),
        mock_persistence_path=_read_optional_env(_MOCK_PATH_ENV, "./tmp/mock_redis.json"),
        log_level=_read_log_level("INFO"),
    )
