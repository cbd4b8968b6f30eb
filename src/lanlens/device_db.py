"""
Device database for LanLens.

SQLite database storing:
- Device snapshots (one JSON document per MAC)
- Presence records (append-only time series per MAC)

Uses WAL mode for crash safety and concurrent reads. The in-memory
registry is authoritative; this is its durable mirror.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from ._types import Device, PresenceRecord, UptimeStats, now_utc

logger = logging.getLogger(__name__)


# Database schema
SCHEMA = """
-- Device snapshots
CREATE TABLE IF NOT EXISTS devices (
    mac TEXT PRIMARY KEY,
    ip TEXT,
    device_type TEXT NOT NULL DEFAULT 'unknown',
    first_seen TEXT NOT NULL,
    last_seen TEXT NOT NULL,
    data TEXT NOT NULL,  -- JSON snapshot
    updated_at TEXT NOT NULL
);

-- Presence observations
CREATE TABLE IF NOT EXISTS presence_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    mac TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    is_online BOOLEAN NOT NULL,
    ip TEXT,
    services TEXT  -- JSON array
);

CREATE INDEX IF NOT EXISTS idx_devices_type ON devices(device_type);
CREATE INDEX IF NOT EXISTS idx_devices_last_seen ON devices(last_seen);
CREATE INDEX IF NOT EXISTS idx_presence_mac_time ON presence_records(mac, timestamp);
CREATE INDEX IF NOT EXISTS idx_presence_time ON presence_records(timestamp);
"""


def _iso_format(dt: datetime) -> str:
    """Format datetime as ISO string."""
    return dt.isoformat()


def _parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string."""
    if not s:
        return None
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        return None


class DeviceDatabase:
    """
    SQLite database for device snapshots and presence history.

    Also serves as the behavior tracker's presence repository.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._ensure_directory()
        self._init_db()

    def _ensure_directory(self) -> None:
        """Ensure database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _init_db(self) -> None:
        """Initialize database with schema."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.commit()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Devices
    # -------------------------------------------------------------------------

    def save_device(self, device: Device) -> None:
        self.save_devices([device])

    def save_devices(self, devices: list[Device]) -> None:
        """Insert or replace device snapshots."""
        if not devices:
            return
        now = _iso_format(now_utc())
        with self._get_connection() as conn:
            conn.executemany("""
                INSERT OR REPLACE INTO devices (
                    mac, ip, device_type, first_seen, last_seen, data, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                (
                    d.mac,
                    d.ip,
                    d.device_type.value,
                    _iso_format(d.first_seen),
                    _iso_format(d.last_seen),
                    json.dumps(d.to_dict()),
                    now,
                )
                for d in devices
            ])
            conn.commit()

    def get_device(self, mac: str) -> Optional[Device]:
        """Get device by MAC."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM devices WHERE mac = ?", (mac.upper(),)
            ).fetchone()
            if row:
                return self._row_to_device(row)
            return None

    def get_all_devices(self) -> list[Device]:
        """All stored devices, most recently seen first. Undecodable rows are skipped."""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM devices ORDER BY last_seen DESC").fetchall()

        devices = []
        for row in rows:
            device = self._row_to_device(row)
            if device is not None:
                devices.append(device)
        return devices

    def delete_device(self, mac: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM devices WHERE mac = ?", (mac.upper(),))
            conn.commit()
            return cursor.rowcount > 0

    def delete_all_devices(self) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM devices")
            conn.commit()
            return cursor.rowcount

    def count_devices(self) -> int:
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM devices").fetchone()[0]

    def _row_to_device(self, row: sqlite3.Row) -> Optional[Device]:
        try:
            return Device.from_dict(json.loads(row["data"]))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable device snapshot for {row['mac']}: {e}")
            return None

    # -------------------------------------------------------------------------
    # Presence records
    # -------------------------------------------------------------------------

    def record_presence_batch(self, records: list[PresenceRecord]) -> None:
        if not records:
            return
        with self._get_connection() as conn:
            conn.executemany("""
                INSERT INTO presence_records (mac, timestamp, is_online, ip, services)
                VALUES (?, ?, ?, ?, ?)
            """, [
                (r.mac, _iso_format(r.timestamp), r.is_online, r.ip, json.dumps(r.services))
                for r in records
            ])
            conn.commit()

    def fetch_history(
        self,
        mac: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[PresenceRecord]:
        """
        Presence records for a MAC in chronological order.

        With ``limit`` only the most recent ``limit`` records are returned.
        """
        query = "SELECT * FROM presence_records WHERE mac = ?"
        params: list = [mac]

        if since:
            query += " AND timestamp >= ?"
            params.append(_iso_format(since))
        if until:
            query += " AND timestamp <= ?"
            params.append(_iso_format(until))

        query += " ORDER BY timestamp DESC, id DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_presence(row) for row in reversed(rows)]

    def fetch_devices_seen_between(self, start: datetime, end: datetime) -> list[str]:
        """MACs with at least one online observation in [start, end]."""
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT DISTINCT mac FROM presence_records
                WHERE is_online = 1 AND timestamp >= ? AND timestamp <= ?
                ORDER BY mac
            """, (_iso_format(start), _iso_format(end))).fetchall()
        return [row["mac"] for row in rows]

    def count_records(self, mac: Optional[str] = None) -> int:
        with self._get_connection() as conn:
            if mac:
                row = conn.execute(
                    "SELECT COUNT(*) FROM presence_records WHERE mac = ?", (mac,)
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM presence_records").fetchone()
            return row[0]

    def delete_records(self, mac: str) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM presence_records WHERE mac = ?", (mac,))
            conn.commit()
            return cursor.rowcount

    def prune_old_records(self, older_than: datetime) -> int:
        """Delete presence records older than the cutoff."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM presence_records WHERE timestamp < ?",
                (_iso_format(older_than),),
            )
            conn.commit()
            return cursor.rowcount

    def calculate_uptime_stats(self, mac: str, since: Optional[datetime] = None) -> UptimeStats:
        query = """
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(CASE WHEN is_online THEN 1 ELSE 0 END), 0) AS online,
                   MIN(timestamp) AS first_seen,
                   MAX(timestamp) AS last_seen
            FROM presence_records WHERE mac = ?
        """
        params: list = [mac]
        if since:
            query += " AND timestamp >= ?"
            params.append(_iso_format(since))

        with self._get_connection() as conn:
            row = conn.execute(query, params).fetchone()

        total = row["total"] or 0
        online = row["online"] or 0
        return UptimeStats(
            total_observations=total,
            online_observations=online,
            uptime_percent=(online / total * 100.0) if total else 0.0,
            first_seen=_parse_datetime(row["first_seen"]),
            last_seen=_parse_datetime(row["last_seen"]),
        )

    def _row_to_presence(self, row: sqlite3.Row) -> PresenceRecord:
        try:
            services = json.loads(row["services"]) if row["services"] else []
        except ValueError:
            services = []
        return PresenceRecord(
            mac=row["mac"],
            timestamp=_parse_datetime(row["timestamp"]) or now_utc(),
            is_online=bool(row["is_online"]),
            ip=row["ip"],
            services=services,
        )
