"""
Bundled offline fingerprint database.

A read-only SQLite file shipped alongside LanLens with Fingerbank-derived
entries keyed by OUI and by DHCP fingerprint hash. Lets devices be
identified without an API key or network access.

Tables:
    oui_entries(oui, device_name, device_types, vendor, operating_system, confidence)
    dhcp_entries(dhcp_hash, device_name, device_types, vendor, operating_system, confidence)
    metadata(key, value)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional

from .._types import DeviceFingerprint, FingerprintSource

logger = logging.getLogger(__name__)


@dataclass
class BundledEntry:
    device_name: str
    device_types: list[str] = field(default_factory=list)
    vendor: Optional[str] = None
    operating_system: Optional[str] = None
    confidence: float = 0.0

    def to_fingerprint(self) -> DeviceFingerprint:
        """Bundled lookups are reported as cached Fingerbank results."""
        return DeviceFingerprint(
            manufacturer=self.vendor,
            fingerbank_device_name=self.device_name,
            operating_system=self.operating_system,
            source=FingerprintSource.FINGERBANK,
            cache_hit=True,
        )


def normalize_oui(value: str) -> str:
    """Uppercase hex without separators, first six characters."""
    cleaned = value.replace(":", "").replace("-", "").replace(".", "").upper()
    return cleaned[:6]


class BundledDatabase:
    """Read-only access to the bundled fingerprint database."""

    def __init__(self, db_path: Optional[Path | str]):
        self.db_path = Path(db_path) if db_path else None

    @property
    def is_available(self) -> bool:
        return self.db_path is not None and self.db_path.exists()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True, timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _query(self, sql: str, key: str) -> Optional[BundledEntry]:
        if not self.is_available:
            return None
        try:
            with self._get_connection() as conn:
                row = conn.execute(sql, (key,)).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Bundled database query failed: {e}")
            return None
        if row is None:
            return None
        return self._row_to_entry(row)

    def query_by_oui(self, mac_or_oui: str) -> Optional[BundledEntry]:
        oui = normalize_oui(mac_or_oui)
        if len(oui) != 6:
            logger.debug(f"Invalid OUI format: {mac_or_oui}")
            return None
        entry = self._query("SELECT * FROM oui_entries WHERE oui = ?", oui)
        if entry:
            logger.debug(f"Bundled database OUI hit for {oui}: {entry.device_name}")
        return entry

    def query_by_dhcp_hash(self, dhcp_hash: str) -> Optional[BundledEntry]:
        if not dhcp_hash:
            return None
        entry = self._query("SELECT * FROM dhcp_entries WHERE dhcp_hash = ?", dhcp_hash)
        if entry:
            logger.debug(f"Bundled database DHCP hit for hash {dhcp_hash[:16]}...")
        return entry

    def get_metadata(self) -> dict[str, Any]:
        """Metadata key/values plus entry counts; empty when unavailable."""
        if not self.is_available:
            return {}
        try:
            with self._get_connection() as conn:
                meta = {r["key"]: r["value"] for r in conn.execute("SELECT key, value FROM metadata")}
                meta["oui_count"] = conn.execute("SELECT COUNT(*) FROM oui_entries").fetchone()[0]
                meta["dhcp_count"] = conn.execute("SELECT COUNT(*) FROM dhcp_entries").fetchone()[0]
        except sqlite3.Error as e:
            logger.error(f"Failed to read bundled database metadata: {e}")
            return {}
        return meta

    def _row_to_entry(self, row: sqlite3.Row) -> BundledEntry:
        try:
            device_types = json.loads(row["device_types"] or "[]")
        except ValueError:
            device_types = []
        return BundledEntry(
            device_name=row["device_name"],
            device_types=device_types if isinstance(device_types, list) else [],
            vendor=row["vendor"],
            operating_system=row["operating_system"],
            confidence=row["confidence"] or 0.0,
        )
