from __future__ import annotations

from functools import lru_cache
from typing import Optional, Union

from settings import get_settings


class KeyNamer:
    """Builds ``<prefix>:<category>[:<id>...]`` Redis key names."""

    separator = ":"

    def __init__(self, prefix: str) -> None:
        if not prefix or self.separator in prefix:
            raise ValueError(f"Invalid key prefix {prefix!r}.")
        self.prefix = prefix

    def name(self, category: str, *ids: Union[str, int]) -> str:
        if not category or self.separator in category:
            raise ValueError(f"Invalid key category {category!r}.")
        return self.separator.join([self.prefix, category, *(str(part) for part in ids)])

    def checkins(self) -> str:
        return self.name("checkins")

    def user(self, user_id: str) -> str:
        return self.name("users", user_id)

    def location(self, location_id: str) -> str:
        return self.name("locations", location_id)

    def processor_position(self) -> str:
        return self.name("checkinprocessor", "lastid")


@lru_cache
def build_default_key_namer(prefix: Optional[str] = None) -> KeyNamer:
    settings = get_settings()
    return KeyNamer(settings.key_prefix if prefix is None else prefix)
