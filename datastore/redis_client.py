from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Union

import redis

from datastore.mock_redis import MockRedis
from settings import Settings, get_settings

RedisLike = Union[redis.Redis, MockRedis]


def build_client(settings: Settings) -> RedisLike:
    """Create the store client selected by ``settings.store_backend``."""
    if settings.store_backend == "mock":
        path = Path(settings.mock_persistence_path) if settings.mock_persistence_path else None
        return MockRedis(persistence_path=path)
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)


@lru_cache
def build_default_client() -> RedisLike:
    return build_client(get_settings())
