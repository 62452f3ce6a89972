"""In-process result cache for successful profile fetches.

Entries expire a fixed TTL after they were fetched. Expired entries are
dropped lazily when looked up; nothing sweeps the map in the background.

Values are kept as JSON text and decoded on every hit, so a caller that
mutates what it got back never changes the stored entry.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable

from guidestats.config import settings

logger = logging.getLogger(__name__)


def cache_key(contrib_url: str, mode: str) -> str:
    return f"{contrib_url}|{mode}"


@dataclass(frozen=True)
class CacheEntry:
    value: str
    fetched_at: float
    expires_at: float


class ResultCache:
    """Fixed-TTL mapping of cache key -> serialized stats payload."""

    def __init__(
        self,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        enabled: bool | None = None,
    ):
        self._ttl = settings.CACHE_TTL_SECONDS if ttl is None else ttl
        self._enabled = settings.CACHE_ENABLED if enabled is None else enabled
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: str) -> dict | None:
        if not self._enabled:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            logger.debug("Cache entry expired for %s", key)
            return None
        logger.debug("Cache hit for %s", key)
        return json.loads(entry.value)

    def set(self, key: str, value: dict) -> CacheEntry | None:
        if not self._enabled:
            return None
        now = self._clock()
        entry = CacheEntry(value=json.dumps(value), fetched_at=now, expires_at=now + self._ttl)
        self._entries[key] = entry
        logger.debug("Cached %s (TTL=%ss)", key, self._ttl)
        return entry

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
