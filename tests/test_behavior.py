"""Tests for the behavioral presence tracker."""

import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from lanlens._types import (
    BehaviorClassification,
    DeviceType,
    PresenceRecord,
    Signal,
    SignalSource,
)
from lanlens.behavior import (
    BehaviorTracker,
    calculate_peak_hours,
    calculate_uptime,
    classify,
    consistent_services,
    detect_daily_pattern,
)
from lanlens.device_db import DeviceDatabase


MAC = "AA:BB:CC:DD:EE:01"
BASE = datetime(2024, 3, 1, tzinfo=timezone.utc)


def record(hour: int, online: bool = True, day: int = 0, services=None) -> PresenceRecord:
    return PresenceRecord(
        mac=MAC,
        timestamp=BASE + timedelta(days=day, hours=hour),
        is_online=online,
        services=services or [],
    )


@pytest.fixture
def db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    database = DeviceDatabase(db_path)
    yield database

    db_path.unlink(missing_ok=True)
    db_path.with_suffix(".db-wal").unlink(missing_ok=True)
    db_path.with_suffix(".db-shm").unlink(missing_ok=True)


class TestAnalysisHelpers:
    """Tests for the pure analysis functions."""

    def test_uptime(self):
        history = [record(9), record(10), record(11, online=False), record(12)]
        assert calculate_uptime(history) == pytest.approx(75.0)

    def test_uptime_empty(self):
        assert calculate_uptime([]) == 0.0

    def test_peak_hours_threshold(self):
        """Hours with at least half the busiest hour's count are peaks."""
        history = [record(9, day=d) for d in range(4)] + [record(10, day=0), record(10, day=1)]
        history.append(record(3))
        assert calculate_peak_hours(history) == [9, 10]

    def test_peak_hours_ignores_offline(self):
        assert calculate_peak_hours([record(9, online=False)]) == []

    @pytest.mark.parametrize("hours,expected", [
        ([9, 10, 11, 12], True),
        ([9], False),
        (list(range(17)), False),
        ([1, 3, 5, 7], False),
        ([1, 3, 5], True),
    ])
    def test_daily_pattern(self, hours, expected):
        assert detect_daily_pattern(hours) is expected

    @pytest.mark.parametrize("uptime,pattern,expected", [
        (99.0, False, BehaviorClassification.INFRASTRUCTURE),
        (90.0, True, BehaviorClassification.SERVER),
        (90.0, False, BehaviorClassification.IOT),
        (60.0, True, BehaviorClassification.WORKSTATION),
        (60.0, False, BehaviorClassification.PORTABLE),
        (30.0, True, BehaviorClassification.PORTABLE),
        (30.0, False, BehaviorClassification.MOBILE),
        (10.0, False, BehaviorClassification.MOBILE),
        (2.0, True, BehaviorClassification.GUEST),
    ])
    def test_classify(self, uptime, pattern, expected):
        assert classify(uptime, pattern) == expected

    def test_consistent_services(self):
        """A service seen in at least 80% of online observations is consistent."""
        history = [record(h, services=["_airplay._tcp"]) for h in range(8)]
        history += [record(8, services=["_ssh._tcp"]), record(9)]
        assert consistent_services(history) == ["_airplay._tcp"]


class TestBehaviorTracker:
    """Tests for BehaviorTracker."""

    def test_unknown_below_minimum_observations(self):
        """Fewer than 10 observations classify as unknown and give no signals."""
        tracker = BehaviorTracker()
        for hour in range(9):
            tracker.record_presence(MAC, True, timestamp=BASE + timedelta(hours=hour))

        profile = tracker.get_profile(MAC)
        assert profile.observation_count == 9
        assert profile.classification == BehaviorClassification.UNKNOWN
        assert tracker.generate_signals(MAC) == []

    def test_server_scenario(self):
        """Twelve observations over ten days, eleven online in office hours."""
        tracker = BehaviorTracker()
        hours = [9, 10, 11, 12, 13, 14, 15, 16, 17, 9, 10]
        for day, hour in enumerate(hours):
            tracker.record_presence(MAC, True, timestamp=BASE + timedelta(days=day % 10, hours=hour))
        tracker.record_presence(MAC, False, timestamp=BASE + timedelta(days=9, hours=12))

        profile = tracker.get_profile(MAC)
        assert profile.observation_count == 12
        assert profile.uptime_percent == pytest.approx(91.67, abs=0.01)
        assert profile.has_daily_pattern is True
        assert profile.classification == BehaviorClassification.SERVER
        assert profile.is_always_on is True
        assert tracker.generate_signals(MAC) == [
            Signal(SignalSource.BEHAVIOR, DeviceType.NAS, 0.35)
        ]

    def test_history_capped(self):
        tracker = BehaviorTracker()
        for i in range(150):
            tracker.record_presence(MAC, True, timestamp=BASE + timedelta(minutes=i))

        profile = tracker.get_profile(MAC)
        assert len(profile.presence_history) == 100
        assert profile.observation_count == 150
        assert profile.presence_history[0].timestamp == BASE + timedelta(minutes=50)

    def test_lru_eviction(self):
        """The least recently accessed profile is evicted at capacity."""
        tracker = BehaviorTracker(max_profiles=1000)
        macs = [f"AA:BB:CC:00:{i // 256:02X}:{i % 256:02X}" for i in range(1001)]

        for mac in macs[:1000]:
            tracker.record_presence(mac, True, timestamp=BASE)
        # Touch the oldest so the second-oldest becomes least recently used
        tracker.get_profile(macs[0])
        tracker.record_presence(macs[1000], True, timestamp=BASE)

        assert tracker.tracked_device_count == 1000
        assert tracker.get_profile(macs[1]) is None
        assert tracker.get_profile(macs[0]) is not None
        assert all(tracker.get_profile(m) is not None for m in macs[2:])

    def test_ids_normalized(self):
        tracker = BehaviorTracker()
        tracker.record_presence("aa:bb:cc:dd:ee:01", True)
        assert tracker.get_profile(MAC) is not None

    def test_hashed_ids(self):
        """Hashed identifiers never store the raw MAC."""
        tracker = BehaviorTracker(hash_device_ids=True)
        profile = tracker.record_presence(MAC, True)

        assert profile.device_id != MAC
        assert len(profile.device_id) == 64
        assert tracker.get_profile(MAC) is profile

    def test_remove_and_clear(self):
        tracker = BehaviorTracker()
        tracker.record_presence(MAC, True)
        tracker.record_presence("AA:BB:CC:DD:EE:02", True)

        assert tracker.remove_profile(MAC) is True
        assert tracker.remove_profile(MAC) is False
        tracker.clear_all_profiles()
        assert tracker.tracked_device_count == 0


class TestBehaviorPersistence:
    """Tests for buffered persistence to the presence repository."""

    def test_flush_every_interval(self, db):
        """Records are written in batches of persistence_interval."""
        tracker = BehaviorTracker(repository=db, persistence_interval=3)
        for hour in range(5):
            tracker.record_presence(MAC, True, timestamp=BASE + timedelta(hours=hour))

        assert db.count_records(MAC) == 3
        assert tracker.flush_pending_records() == 2
        assert db.count_records(MAC) == 5

    def test_failed_flush_requeues(self):
        """A failed batch stays pending for the next flush."""
        repo = MagicMock()
        repo.record_presence_batch.side_effect = sqlite3.OperationalError("locked")
        tracker = BehaviorTracker(repository=repo, persistence_interval=100)
        tracker.record_presence(MAC, True)
        tracker.record_presence(MAC, False)

        assert tracker.flush_pending_records() == 0

        repo.record_presence_batch.side_effect = None
        assert tracker.flush_pending_records() == 2
        batch = repo.record_presence_batch.call_args[0][0]
        assert [r.is_online for r in batch] == [True, False]

    def test_profile_rebuilt_from_history(self, db):
        """An evicted profile is restored from durable history."""
        tracker = BehaviorTracker(repository=db, max_profiles=1, persistence_interval=1)
        for hour in range(12):
            tracker.record_presence(MAC, True, timestamp=BASE + timedelta(hours=hour))
        tracker.record_presence("AA:BB:CC:DD:EE:02", True, timestamp=BASE)

        assert tracker.tracked_device_count == 1
        profile = tracker.get_profile(MAC)
        assert profile is not None
        assert profile.observation_count == 12
        assert profile.classification == BehaviorClassification.INFRASTRUCTURE

    def test_rebuilt_profile_includes_buffered_records(self, db):
        """Should flush pending observations before rebuilding an evicted profile."""
        tracker = BehaviorTracker(repository=db, max_profiles=1, persistence_interval=100)
        for hour in range(5):
            tracker.record_presence(MAC, True, timestamp=BASE + timedelta(hours=hour))
        tracker.record_presence("AA:BB:CC:DD:EE:02", True, timestamp=BASE)

        profile = tracker.get_profile(MAC)

        assert profile is not None
        assert profile.observation_count == 5

    def test_uptime_stats_and_seen_between(self, db):
        tracker = BehaviorTracker(repository=db)
        tracker.record_presence(MAC, True, timestamp=BASE)
        tracker.record_presence(MAC, False, timestamp=BASE + timedelta(hours=1))
        tracker.record_presence("AA:BB:CC:DD:EE:02", False, timestamp=BASE)

        stats = tracker.get_uptime_stats(MAC)
        assert stats.total_observations == 2
        assert stats.uptime_percent == pytest.approx(50.0)

        seen = tracker.get_devices_seen_between(BASE - timedelta(hours=1), BASE + timedelta(hours=2))
        assert seen == [MAC]

    def test_prune_old_records(self, db):
        now = BASE + timedelta(days=40)
        tracker = BehaviorTracker(repository=db, persistence_interval=1, clock=lambda: now)
        tracker.record_presence(MAC, True, timestamp=BASE)
        tracker.record_presence(MAC, True, timestamp=now)

        assert tracker.prune_old_records(retention_days=30) == 1
        assert len(tracker.get_presence_history(MAC)) == 1

    def test_in_memory_history_without_repository(self):
        tracker = BehaviorTracker()
        tracker.record_presence(MAC, True, timestamp=BASE)
        tracker.record_presence(MAC, True, timestamp=BASE + timedelta(days=2))

        history = tracker.get_presence_history(MAC, since=BASE + timedelta(days=1))
        assert len(history) == 1
