"""
Fingerprint caches.

- ``UPnPCache``: in-memory, keyed by MAC, remembers the description URL
  the fingerprint was fetched from. 24 hour TTL.
- ``FingerbankCache``: SQLite, keyed by MAC, validated against a signal
  hash of the device's secondary fingerprints. 30 day TTL.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from .._types import DeviceFingerprint, now_utc

logger = logging.getLogger(__name__)

UPNP_CACHE_TTL = timedelta(hours=24)
FINGERBANK_CACHE_TTL = timedelta(days=30)


def compute_signal_hash(
    mac: str,
    dhcp_fingerprint: Optional[str] = None,
    user_agents: Optional[list[str]] = None,
) -> str:
    """
    Hash of a MAC plus its observed secondary signals.

    A change in the DHCP fingerprint or the set of user agents changes
    the hash, which invalidates any cached remote fingerprint.
    """
    components = [mac.upper()]
    if dhcp_fingerprint:
        components.append(dhcp_fingerprint)
    if user_agents:
        components.append(",".join(sorted(user_agents)))
    return hashlib.sha256(":".join(components).encode()).hexdigest()


# =============================================================================
# UPnP memory cache
# =============================================================================

@dataclass
class _UPnPEntry:
    location: str
    fingerprint: DeviceFingerprint
    cached_at: datetime


class UPnPCache:
    """UPnP description results keyed by MAC."""

    def __init__(
        self,
        ttl: timedelta = UPNP_CACHE_TTL,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, _UPnPEntry] = {}
        self.hits = 0
        self.misses = 0

    def get(self, mac: str, location: str) -> Optional[DeviceFingerprint]:
        """Cached fingerprint for a MAC, if it came from the same URL and is fresh."""
        entry = self._entries.get(mac.upper())
        if entry is None or entry.location != location:
            self.misses += 1
            return None
        if self._clock() - entry.cached_at >= self.ttl:
            del self._entries[mac.upper()]
            self.misses += 1
            return None

        self.hits += 1
        return entry.fingerprint

    def store(self, mac: str, location: str, fingerprint: DeviceFingerprint) -> None:
        self._entries[mac.upper()] = _UPnPEntry(location, fingerprint, self._clock())

    def invalidate(self, mac: str) -> None:
        self._entries.pop(mac.upper(), None)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def prune(self) -> int:
        now = self._clock()
        expired = [mac for mac, e in self._entries.items() if now - e.cached_at >= self.ttl]
        for mac in expired:
            del self._entries[mac]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# Fingerbank SQLite cache
# =============================================================================

SCHEMA = """
CREATE TABLE IF NOT EXISTS fingerbank_cache (
    mac TEXT PRIMARY KEY,
    signal_hash TEXT NOT NULL,
    payload TEXT NOT NULL,  -- JSON fingerprint
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS fingerbank_cache_meta (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    total_hits INTEGER NOT NULL DEFAULT 0,
    total_misses INTEGER NOT NULL DEFAULT 0,
    last_prune_at TEXT
);

INSERT OR IGNORE INTO fingerbank_cache_meta (id, total_hits, total_misses) VALUES (1, 0, 0);

CREATE INDEX IF NOT EXISTS idx_fingerbank_cache_expires ON fingerbank_cache(expires_at);
"""


class FingerbankCache:
    """
    Remote fingerprint results keyed by MAC and validated by signal hash.

    A row whose payload no longer decodes is deleted and counted as a miss.
    """

    def __init__(
        self,
        db_path: Path | str,
        ttl: timedelta = FINGERBANK_CACHE_TTL,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.db_path = Path(db_path)
        self.ttl = ttl
        self._clock = clock
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.commit()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _bump(self, conn: sqlite3.Connection, column: str) -> None:
        conn.execute(f"UPDATE fingerbank_cache_meta SET {column} = {column} + 1 WHERE id = 1")

    def get(self, mac: str, signal_hash: str) -> Optional[DeviceFingerprint]:
        """Return the cached fingerprint if present, unexpired and hash-matching."""
        mac = mac.upper()
        now = self._clock()
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM fingerbank_cache WHERE mac = ?", (mac,)
            ).fetchone()

            if row is None:
                self._bump(conn, "total_misses")
                conn.commit()
                return None

            try:
                expires_at = datetime.fromisoformat(row["expires_at"])
                if now >= expires_at or row["signal_hash"] != signal_hash:
                    self._bump(conn, "total_misses")
                    conn.commit()
                    return None
                fingerprint = DeviceFingerprint.from_dict(json.loads(row["payload"]))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Discarding corrupt fingerprint cache entry for {mac}: {e}")
                conn.execute("DELETE FROM fingerbank_cache WHERE mac = ?", (mac,))
                self._bump(conn, "total_misses")
                conn.commit()
                return None

            self._bump(conn, "total_hits")
            conn.commit()

        fingerprint.cache_hit = True
        return fingerprint

    def store(self, mac: str, signal_hash: str, fingerprint: DeviceFingerprint) -> None:
        now = self._clock()
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO fingerbank_cache (
                    mac, signal_hash, payload, created_at, expires_at
                ) VALUES (?, ?, ?, ?, ?)
            """, (
                mac.upper(),
                signal_hash,
                json.dumps(fingerprint.to_dict()),
                now.isoformat(),
                (now + self.ttl).isoformat(),
            ))
            conn.commit()

    def invalidate(self, mac: str) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM fingerbank_cache WHERE mac = ?", (mac.upper(),))
            conn.commit()

    def prune_expired(self) -> int:
        now = self._clock().isoformat()
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM fingerbank_cache WHERE expires_at <= ?", (now,))
            conn.execute("UPDATE fingerbank_cache_meta SET last_prune_at = ? WHERE id = 1", (now,))
            conn.commit()
            deleted = cursor.rowcount
        if deleted:
            logger.info(f"Pruned {deleted} expired fingerprint cache entries")
        return deleted

    def delete_all(self) -> None:
        """Remove every entry and reset the counters."""
        with self._get_connection() as conn:
            conn.execute("DELETE FROM fingerbank_cache")
            conn.execute("""
                UPDATE fingerbank_cache_meta
                SET total_hits = 0, total_misses = 0, last_prune_at = NULL
                WHERE id = 1
            """)
            conn.commit()

    def count_valid(self) -> int:
        with self._get_connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM fingerbank_cache WHERE expires_at > ?",
                (self._clock().isoformat(),),
            ).fetchone()[0]

    def get_stats(self) -> dict[str, Any]:
        with self._get_connection() as conn:
            total = conn.execute("SELECT COUNT(*) FROM fingerbank_cache").fetchone()[0]
            meta = conn.execute("SELECT * FROM fingerbank_cache_meta WHERE id = 1").fetchone()
        return {
            "total_entries": total,
            "total_hits": meta["total_hits"],
            "total_misses": meta["total_misses"],
            "last_prune_at": meta["last_prune_at"],
        }
