"""
Rate Lowry Backend — In-Process TTL Cache
===========================================

What:  Small key/value cache with per-entry expiry, used for the food item
       aggregation payloads.
Who:   FoodItemService reads and writes it; admin clear and the lifespan
       manage it.

Expired entries are never served. A background sweeper removes them every
`ttl` seconds so the dict does not grow with stale keys.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    stored_at: datetime


class TTLCache:
    """
    Dict-backed cache with a fixed time-to-live.

    Args:
        ttl:   Seconds an entry stays valid.
        clock: Monotonic clock; injectable for tests.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._sweeper_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for key, or None if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def set(self, key: str, value: Any) -> CacheEntry:
        entry = CacheEntry(
            value=value,
            expires_at=self._clock() + self.ttl,
            stored_at=datetime.now(timezone.utc),
        )
        self._entries[key] = entry
        return entry

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Cache sweep removed %d expired entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    # ── Sweeper ───────────────────────────────────────────────────────────

    def start_sweeper(self) -> None:
        if self._sweeper_task is not None and not self._sweeper_task.done():
            return
        self._sweeper_task = asyncio.create_task(self._run_sweeper(), name="ttl-cache-sweeper")

    async def stop_sweeper(self) -> None:
        if self._sweeper_task is None:
            return
        self._sweeper_task.cancel()
        try:
            await self._sweeper_task
        except asyncio.CancelledError:
            pass
        self._sweeper_task = None

    async def _run_sweeper(self) -> None:
        while True:
            await asyncio.sleep(self.ttl)
            self.sweep()
