"""Tests for the bundled offline fingerprint database."""

import json
import sqlite3
import tempfile
from pathlib import Path

import pytest

from lanlens._types import FingerprintSource
from lanlens.fingerprint.bundled import BundledDatabase, normalize_oui


@pytest.fixture
def bundled_path():
    """Create a small bundled database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    conn = sqlite3.connect(str(db_path))
    conn.executescript("""
        CREATE TABLE oui_entries (
            oui TEXT PRIMARY KEY, device_name TEXT, device_types TEXT,
            vendor TEXT, operating_system TEXT, confidence REAL
        );
        CREATE TABLE dhcp_entries (
            dhcp_hash TEXT PRIMARY KEY, device_name TEXT, device_types TEXT,
            vendor TEXT, operating_system TEXT, confidence REAL
        );
        CREATE TABLE metadata (key TEXT PRIMARY KEY, value TEXT);
    """)
    conn.execute(
        "INSERT INTO oui_entries VALUES (?, ?, ?, ?, ?, ?)",
        ("B8E937", "Sonos Speaker", json.dumps(["speaker"]), "Sonos", None, 0.8),
    )
    conn.execute(
        "INSERT INTO oui_entries VALUES (?, ?, ?, ?, ?, ?)",
        ("001788", "Philips Hue Bridge", "not json", "Philips", "Linux", None),
    )
    conn.execute(
        "INSERT INTO dhcp_entries VALUES (?, ?, ?, ?, ?, ?)",
        ("abc123", "Apple iPhone", json.dumps(["phone"]), "Apple", "iOS", 0.9),
    )
    conn.execute("INSERT INTO metadata VALUES ('version', '2024.03')")
    conn.commit()
    conn.close()

    yield db_path

    db_path.unlink(missing_ok=True)


class TestNormalizeOui:
    @pytest.mark.parametrize("value,expected", [
        ("b8:e9:37:01:02:03", "B8E937"),
        ("B8-E9-37", "B8E937"),
        ("b8e9.3701.0203", "B8E937"),
    ])
    def test_normalize(self, value, expected):
        assert normalize_oui(value) == expected


class TestBundledDatabase:
    """Tests for BundledDatabase lookups."""

    def test_query_by_mac(self, bundled_path):
        db = BundledDatabase(bundled_path)
        entry = db.query_by_oui("B8:E9:37:AA:BB:CC")

        assert entry.device_name == "Sonos Speaker"
        assert entry.device_types == ["speaker"]
        assert entry.confidence == pytest.approx(0.8)

    def test_bad_device_types_tolerated(self, bundled_path):
        """Undecodable type lists and null confidence fall back to defaults."""
        entry = BundledDatabase(bundled_path).query_by_oui("00:17:88:00:00:01")
        assert entry.device_types == []
        assert entry.confidence == 0.0

    def test_unknown_oui(self, bundled_path):
        assert BundledDatabase(bundled_path).query_by_oui("02:00:00:00:00:01") is None

    def test_short_oui_rejected(self, bundled_path):
        assert BundledDatabase(bundled_path).query_by_oui("B8:E9") is None

    def test_query_by_dhcp_hash(self, bundled_path):
        db = BundledDatabase(bundled_path)
        assert db.query_by_dhcp_hash("abc123").operating_system == "iOS"
        assert db.query_by_dhcp_hash("") is None

    def test_entry_to_fingerprint(self, bundled_path):
        """Bundled hits look like cached Fingerbank results."""
        fp = BundledDatabase(bundled_path).query_by_oui("B8E937").to_fingerprint()

        assert fp.fingerbank_device_name == "Sonos Speaker"
        assert fp.manufacturer == "Sonos"
        assert fp.source == FingerprintSource.FINGERBANK
        assert fp.cache_hit is True

    def test_metadata(self, bundled_path):
        meta = BundledDatabase(bundled_path).get_metadata()
        assert meta == {"version": "2024.03", "oui_count": 2, "dhcp_count": 1}

    def test_missing_file(self, tmp_path):
        db = BundledDatabase(tmp_path / "missing.db")

        assert db.is_available is False
        assert db.query_by_oui("B8:E9:37:00:00:01") is None
        assert db.get_metadata() == {}

    def test_no_path(self):
        assert BundledDatabase(None).is_available is False
