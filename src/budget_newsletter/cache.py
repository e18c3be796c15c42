"""Optional per-process response cache for budget provider reads.

Entries are keyed by a short token prefix plus the endpoint path and
expire after a fixed TTL. The cache is injected into the provider client;
analytics never consult it, so results are the same with or without it.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

TOKEN_PREFIX_LENGTH = 8


@dataclass
class _Entry:
    value: object
    expires_at: float


class ResponseCache:
    """In-memory TTL cache.

    Args:
        ttl: Lifetime of an entry in seconds.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    @staticmethod
    def key(token: str, endpoint: str) -> str:
        return f"{token[:TOKEN_PREFIX_LENGTH]}:{endpoint}"

    def get(self, key: str) -> object | None:
        """Return a copy of the cached value, or ``None`` if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        logger.debug("Cache hit for %s", key)
        return copy.deepcopy(entry.value)

    def set(self, key: str, value: object) -> None:
        self._entries[key] = _Entry(copy.deepcopy(value), self._clock() + self.ttl)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
