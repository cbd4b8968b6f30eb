"""
Behavioral presence tracking.

Every ARP refresh produces one presence observation per device. The
tracker keeps a bounded history per device, derives uptime, peak hours
and a daily-pattern flag from it, and classifies the device by how it
comes and goes (always-on infrastructure, daytime workstation, phone
that wanders in and out). The classification is fed back into type
inference as a low-weight signal.

Profiles live in an LRU-bounded in-memory cache. Durable history is
written to a presence repository in batches; evicting a profile never
touches the repository.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import sqlite3
from collections import Counter, OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

from ._types import (
    BehaviorClassification,
    BehaviorProfile,
    PresenceRecord,
    Signal,
    UptimeStats,
    now_utc,
)
from .inference import signals_from_behavior

logger = logging.getLogger(__name__)


MAX_HISTORY = 100
MIN_OBSERVATIONS = 10
CONSISTENT_SERVICE_PERCENT = 80
DEFAULT_MAX_PROFILES = 1000
DEFAULT_PERSISTENCE_INTERVAL = 10

ALWAYS_ON_CLASSES = frozenset({
    BehaviorClassification.INFRASTRUCTURE,
    BehaviorClassification.SERVER,
    BehaviorClassification.IOT,
})
INTERMITTENT_CLASSES = frozenset({
    BehaviorClassification.PORTABLE,
    BehaviorClassification.MOBILE,
    BehaviorClassification.GUEST,
})


class PresenceRepository(Protocol):
    """Durable presence storage (implemented by ``DeviceDatabase``)."""

    def record_presence_batch(self, records: list[PresenceRecord]) -> None: ...

    def fetch_history(
        self,
        mac: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[PresenceRecord]: ...

    def fetch_devices_seen_between(self, start: datetime, end: datetime) -> list[str]: ...

    def prune_old_records(self, older_than: datetime) -> int: ...

    def calculate_uptime_stats(
        self, mac: str, since: Optional[datetime] = None
    ) -> UptimeStats: ...


# =============================================================================
# Pure analysis helpers
# =============================================================================

def calculate_uptime(history: list[PresenceRecord]) -> float:
    """Percentage of observations in which the device was online."""
    if not history:
        return 0.0
    online = sum(1 for r in history if r.is_online)
    return online / len(history) * 100.0


def calculate_peak_hours(history: list[PresenceRecord]) -> list[int]:
    """Hours whose online count is at least half of the busiest hour's."""
    counts = Counter(r.hour_of_day for r in history if r.is_online)
    if not counts:
        return []
    threshold = max(counts.values()) // 2
    return sorted(hour for hour, count in counts.items() if count >= threshold)


def detect_daily_pattern(peak_hours: list[int]) -> bool:
    """
    A daily pattern is 2-16 peak hours with at most two multi-hour gaps.

    A gap is any jump of more than one hour between consecutive peak hours.
    """
    if not 2 <= len(peak_hours) <= 16:
        return False
    hours = sorted(peak_hours)
    gaps = sum(1 for a, b in zip(hours, hours[1:]) if b - a > 1)
    return gaps <= 2


def classify(uptime_percent: float, has_daily_pattern: bool) -> BehaviorClassification:
    if uptime_percent >= 95:
        return BehaviorClassification.INFRASTRUCTURE
    if uptime_percent >= 85:
        return BehaviorClassification.SERVER if has_daily_pattern else BehaviorClassification.IOT
    if uptime_percent >= 50:
        return (
            BehaviorClassification.WORKSTATION if has_daily_pattern
            else BehaviorClassification.PORTABLE
        )
    if uptime_percent >= 20:
        return BehaviorClassification.PORTABLE if has_daily_pattern else BehaviorClassification.MOBILE
    if uptime_percent >= 5:
        return BehaviorClassification.MOBILE
    return BehaviorClassification.GUEST


def consistent_services(history: list[PresenceRecord]) -> list[str]:
    """Services present in at least 80% of online observations."""
    online = [r for r in history if r.is_online]
    if not online:
        return []
    counts = Counter(s for r in online for s in set(r.services))
    threshold = max(1, len(online) * CONSISTENT_SERVICE_PERCENT // 100)
    return sorted(s for s, count in counts.items() if count >= threshold)


# =============================================================================
# Tracker
# =============================================================================

class BehaviorTracker:
    """
    Per-device presence profiles with LRU eviction and batched persistence.

    All methods are synchronous and never yield to the event loop, so
    each call runs to completion before the next one starts.
    """

    def __init__(
        self,
        repository: Optional[PresenceRepository] = None,
        max_profiles: int = DEFAULT_MAX_PROFILES,
        persistence_interval: int = DEFAULT_PERSISTENCE_INTERVAL,
        hash_device_ids: bool = False,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.repository = repository
        self.max_profiles = max_profiles
        self.persistence_interval = max(1, persistence_interval)
        self.hash_device_ids = hash_device_ids
        self._clock = clock
        self._salt = secrets.token_hex(16)

        self._profiles: OrderedDict[str, BehaviorProfile] = OrderedDict()
        self._pending: list[PresenceRecord] = []
        self._updates_since_flush = 0

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    def normalize_id(self, device_id: str) -> str:
        normalized = device_id.strip().upper()
        if self.hash_device_ids:
            return hashlib.sha256(f"{self._salt}{normalized}".encode()).hexdigest()
        return normalized

    # -------------------------------------------------------------------------
    # Observations
    # -------------------------------------------------------------------------

    def record_presence(
        self,
        device_id: str,
        is_present: bool,
        services: Optional[list[str]] = None,
        ip: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> BehaviorProfile:
        """
        Record one presence observation and return the updated profile.

        Args:
            device_id: MAC address of the device
            is_present: Whether the device answered in this observation
            services: Service names seen on the device in this observation
            ip: IP address at the time of the observation
            timestamp: Observation time, defaults to now
        """
        key = self.normalize_id(device_id)
        record = PresenceRecord(
            mac=key,
            timestamp=timestamp or self._clock(),
            is_online=is_present,
            ip=ip,
            services=list(services or []),
        )

        profile = self._profiles.get(key)
        if profile is None:
            profile = BehaviorProfile(device_id=key, first_observed=record.timestamp)
            self._profiles[key] = profile

        profile.presence_history.append(record)
        if len(profile.presence_history) > MAX_HISTORY:
            del profile.presence_history[: len(profile.presence_history) - MAX_HISTORY]
        profile.observation_count += 1
        profile.last_observed = record.timestamp

        if is_present and record.services:
            profile.consistent_services = consistent_services(profile.presence_history)

        self._update_classification(profile)
        self._touch(key)
        self._evict()

        if self.repository is not None:
            self._pending.append(record)
            self._updates_since_flush += 1
            if self._updates_since_flush >= self.persistence_interval:
                self.flush_pending_records()

        return profile

    def get_profile(self, device_id: str) -> Optional[BehaviorProfile]:
        """
        Return the profile for a device, rebuilding it from durable history
        when it is not (or no longer) in memory.
        """
        key = self.normalize_id(device_id)
        profile = self._profiles.get(key)
        if profile is not None:
            self._touch(key)
            return profile

        if self.repository is None:
            return None

        self.flush_pending_records()
        try:
            history = self.repository.fetch_history(key, limit=MAX_HISTORY)
        except sqlite3.Error as e:
            logger.error(f"Failed to load presence history for {key}: {e}")
            return None
        if not history:
            return None

        profile = BehaviorProfile(
            device_id=key,
            presence_history=history,
            observation_count=len(history),
            consistent_services=consistent_services(history),
            first_observed=history[0].timestamp,
            last_observed=history[-1].timestamp,
        )
        self._update_classification(profile)
        self._profiles[key] = profile
        self._evict()
        return profile

    def update_classification(self, device_id: str) -> BehaviorClassification:
        profile = self.get_profile(device_id)
        if profile is None:
            return BehaviorClassification.UNKNOWN
        self._update_classification(profile)
        return profile.classification

    def _update_classification(self, profile: BehaviorProfile) -> None:
        history = profile.presence_history
        profile.uptime_percent = calculate_uptime(history)
        profile.peak_hours = calculate_peak_hours(history)
        profile.has_daily_pattern = detect_daily_pattern(profile.peak_hours)

        if profile.observation_count < MIN_OBSERVATIONS:
            profile.classification = BehaviorClassification.UNKNOWN
        else:
            profile.classification = classify(profile.uptime_percent, profile.has_daily_pattern)

        profile.is_always_on = profile.classification in ALWAYS_ON_CLASSES
        profile.is_intermittent = profile.classification in INTERMITTENT_CLASSES

    def generate_signals(self, device_id: str) -> list[Signal]:
        """Inference signals implied by the device's presence behavior."""
        profile = self.get_profile(device_id)
        if profile is None or profile.observation_count < MIN_OBSERVATIONS:
            return []
        return signals_from_behavior(profile.classification, profile.peak_hours)

    # -------------------------------------------------------------------------
    # LRU cache
    # -------------------------------------------------------------------------

    def _touch(self, key: str) -> None:
        self._profiles.move_to_end(key)

    def _evict(self) -> None:
        while len(self._profiles) > self.max_profiles:
            evicted, _ = self._profiles.popitem(last=False)
            logger.debug(f"Evicted behavior profile {evicted}")

    @property
    def tracked_device_count(self) -> int:
        return len(self._profiles)

    def remove_profile(self, device_id: str) -> bool:
        return self._profiles.pop(self.normalize_id(device_id), None) is not None

    def clear_all_profiles(self) -> None:
        self._profiles.clear()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def flush_pending_records(self) -> int:
        """Write buffered observations; a failed batch is kept for the next flush."""
        self._updates_since_flush = 0
        if self.repository is None or not self._pending:
            return 0

        batch, self._pending = self._pending, []
        try:
            self.repository.record_presence_batch(batch)
        except sqlite3.Error as e:
            logger.error(f"Failed to persist {len(batch)} presence records: {e}")
            self._pending = batch + self._pending
            return 0

        logger.debug(f"Persisted {len(batch)} presence records")
        return len(batch)

    def prune_old_records(self, retention_days: int = 30) -> int:
        if self.repository is None:
            return 0
        cutoff = self._clock() - timedelta(days=retention_days)
        try:
            deleted = self.repository.prune_old_records(cutoff)
        except sqlite3.Error as e:
            logger.error(f"Failed to prune presence records: {e}")
            return 0
        if deleted:
            logger.info(f"Pruned {deleted} presence records older than {retention_days} days")
        return deleted

    # -------------------------------------------------------------------------
    # History queries
    # -------------------------------------------------------------------------

    def get_presence_history(
        self, device_id: str, since: Optional[datetime] = None
    ) -> list[PresenceRecord]:
        key = self.normalize_id(device_id)
        if self.repository is not None:
            self.flush_pending_records()
            return self.repository.fetch_history(key, since=since)

        profile = self._profiles.get(key)
        if profile is None:
            return []
        return [r for r in profile.presence_history if since is None or r.timestamp >= since]

    def get_uptime_stats(self, device_id: str, since: Optional[datetime] = None) -> UptimeStats:
        key = self.normalize_id(device_id)
        if self.repository is not None:
            self.flush_pending_records()
            return self.repository.calculate_uptime_stats(key, since)

        history = self.get_presence_history(device_id, since)
        if not history:
            return UptimeStats()
        online = sum(1 for r in history if r.is_online)
        return UptimeStats(
            total_observations=len(history),
            online_observations=online,
            uptime_percent=online / len(history) * 100.0,
            first_seen=history[0].timestamp,
            last_seen=history[-1].timestamp,
        )

    def get_devices_seen_between(self, start: datetime, end: datetime) -> list[str]:
        if self.repository is not None:
            self.flush_pending_records()
            return self.repository.fetch_devices_seen_between(start, end)

        return sorted(
            key for key, profile in self._profiles.items()
            if any(r.is_online and start <= r.timestamp <= end for r in profile.presence_history)
        )
