"""
Time-bounded verification cache with an injectable clock.

Entries expire after `ttl`. When the cache grows past `max_entries`, expired
entries are swept first; if more than `sweep_target` remain, the
`evict_count` oldest entries (by insertion time) are dropped.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable
from loguru import logger
from .entity import CachedVerification, EntityVerificationResult


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VerificationCache:
    def __init__(
        self,
        ttl: timedelta = timedelta(hours=24),
        max_entries: int = 1000,
        sweep_target: int = 800,
        evict_count: int = 200,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self.sweep_target = sweep_target
        self.evict_count = evict_count
        self.clock = clock
        self._entries: dict[str, CachedVerification] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> EntityVerificationResult | None:
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                return None
            if self.clock() > cached.expires_at:
                del self._entries[key]
                return None
            return cached.to_result()

    def put(self, key: str, result: EntityVerificationResult) -> CachedVerification:
        now = self.clock()
        cached = CachedVerification(**result.model_dump(), cached_at=now, expires_at=now + self.ttl)
        with self._lock:
            # re-insert so dict order tracks insertion time
            self._entries.pop(key, None)
            self._entries[key] = cached
            if len(self._entries) > self.max_entries:
                self.sweep()
                if len(self._entries) > self.sweep_target:
                    self.evict_oldest(self.evict_count)
        return cached

    def sweep(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self.clock()
        with self._lock:
            expired = [key for key, value in self._entries.items() if now > value.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Swept expired verification cache entries", removed=len(expired))
        return len(expired)

    def evict_oldest(self, count: int) -> int:
        with self._lock:
            oldest = sorted(self._entries.items(), key=lambda item: item[1].cached_at)[:count]
            for key, _ in oldest:
                del self._entries[key]
        logger.debug("Evicted oldest verification cache entries", removed=len(oldest), remaining=len(self._entries))
        return len(oldest)

    def clear(self):
        with self._lock:
            self._entries.clear()
