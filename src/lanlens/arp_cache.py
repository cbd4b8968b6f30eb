"""
TTL cache over the system ARP table.

Keeps the last ARP read keyed by MAC with a reverse IP index so the
discovery manager can resolve addresses without shelling out to ``arp``
on every lookup. Entries expire after a TTL; when the cache is full the
oldest insertions are evicted first.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from ._types import now_utc
from .discovery.base import ARPEntry
from .vendor import normalize_mac

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30.0
DEFAULT_MAX_ENTRIES = 500


@dataclass
class _CachedEntry:
    entry: ARPEntry
    cached_at: datetime


class ARPCache:
    """
    ARP entries with expiry, reverse lookup and hit/miss counters.

    ``get_arp_table`` is serialized by a lock so concurrent callers share
    one ``arp`` read instead of racing each other.
    """

    def __init__(
        self,
        reader: Callable[[], Awaitable[list[ARPEntry]]],
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._reader = reader
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_entries = max_entries
        self._clock = clock
        self._lock = asyncio.Lock()

        self._entries: dict[str, _CachedEntry] = {}
        self._ip_index: dict[str, str] = {}
        self._last_refresh: Optional[datetime] = None

        self._hit_count = 0
        self._miss_count = 0
        self._refresh_count = 0

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    def needs_refresh(self) -> bool:
        if self._last_refresh is None:
            return True
        return self._clock() - self._last_refresh >= self.ttl

    async def get_arp_table(self, force_refresh: bool = False) -> list[ARPEntry]:
        """
        Return the current ARP table, re-reading it when stale.

        A re-read returns exactly the rows the system listed; entries that
        vanished stay cached for lookups until they expire.

        Args:
            force_refresh: Read the system table even if the cache is fresh
        """
        async with self._lock:
            if force_refresh or self.needs_refresh():
                entries = await self._reader()
                self.update(entries)
                return list(entries)
            return [c.entry for c in self._entries.values() if not self._is_expired(c)]

    def update(self, entries: list[ARPEntry]) -> None:
        """Insert or refresh entries, evicting the oldest when over capacity."""
        now = self._clock()
        fresh = []
        for entry in entries:
            entry.mac = normalize_mac(entry.mac)
            if entry.mac in self._entries:
                self._remove_index(entry.mac)
                self._entries[entry.mac] = _CachedEntry(entry, now)
                self._ip_index[entry.ip] = entry.mac
            else:
                fresh.append(entry)

        overflow = len(self._entries) + len(fresh) - self.max_entries
        if overflow > 0:
            self._evict_oldest(overflow)

        for entry in fresh[-self.max_entries:]:
            self._entries[entry.mac] = _CachedEntry(entry, now)
            self._ip_index[entry.ip] = entry.mac

        self._last_refresh = now
        self._refresh_count += 1
        logger.debug(f"ARP cache refreshed: {len(entries)} read, {len(self._entries)} cached")

    def _evict_oldest(self, count: int) -> None:
        oldest = sorted(self._entries.items(), key=lambda kv: kv[1].cached_at)[:count]
        for mac, _ in oldest:
            self._remove_index(mac)
            del self._entries[mac]
        if oldest:
            logger.debug(f"ARP cache evicted {len(oldest)} entries")

    def _remove_index(self, mac: str) -> None:
        cached = self._entries.get(mac)
        if cached and self._ip_index.get(cached.entry.ip) == mac:
            del self._ip_index[cached.entry.ip]

    def _is_expired(self, cached: _CachedEntry) -> bool:
        return self._clock() - cached.cached_at >= self.ttl

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_by_mac(self, mac: str) -> Optional[ARPEntry]:
        cached = self._entries.get(normalize_mac(mac))
        if cached is None or self._is_expired(cached):
            self._miss_count += 1
            return None
        self._hit_count += 1
        return cached.entry

    def get_by_ip(self, ip: str) -> Optional[ARPEntry]:
        mac = self._ip_index.get(ip)
        if mac is None:
            self._miss_count += 1
            return None
        return self.get_by_mac(mac)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def prune(self) -> int:
        """Drop expired entries, returning how many were removed."""
        expired = [mac for mac, cached in self._entries.items() if self._is_expired(cached)]
        for mac in expired:
            self._remove_index(mac)
            del self._entries[mac]
        if expired:
            logger.debug(f"ARP cache pruned {len(expired)} expired entries")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self._ip_index.clear()
        self._last_refresh = None

    def reset_stats(self) -> None:
        self._hit_count = 0
        self._miss_count = 0
        self._refresh_count = 0

    def get_stats(self) -> dict[str, Any]:
        lookups = self._hit_count + self._miss_count
        return {
            "entry_count": len(self._entries),
            "hit_count": self._hit_count,
            "miss_count": self._miss_count,
            "refresh_count": self._refresh_count,
            "hit_rate": self._hit_count / lookups if lookups else 0.0,
            "last_refresh": self._last_refresh.isoformat() if self._last_refresh else None,
        }

    def __len__(self) -> int:
        return len(self._entries)
