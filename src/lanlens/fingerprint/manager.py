"""
Fingerprint resolution pipeline.

Level 1 - UPnP: fetch the description document the device advertised
over SSDP. Cached in memory per MAC and URL.

Level 2 - Fingerbank: consult the SQLite cache (validated by signal
hash), then the bundled offline database, then the remote API when a
key is configured.

The two levels are merged additively. Remote failures never reach the
caller: a rejected key or rate limit switches remote lookups off for the
rest of the session with a single warning, anything else is a miss.
"""

from __future__ import annotations

import dataclasses
import logging
import sqlite3
from typing import Any, Optional

from .._types import Device, DeviceFingerprint, FingerprintSource, ServiceType, now_utc
from .bundled import BundledDatabase
from .cache import FingerbankCache, UPnPCache, compute_signal_hash
from .fingerbank import (
    FingerbankAuthError,
    FingerbankClient,
    FingerbankError,
    FingerbankRateLimitError,
)
from .upnp import UPnPDescriptionFetcher

logger = logging.getLogger(__name__)

_UPNP_FIELDS = (
    "friendly_name",
    "manufacturer",
    "manufacturer_url",
    "model_description",
    "model_name",
    "model_number",
    "serial_number",
    "upnp_device_type",
    "upnp_services",
)
_FINGERBANK_FIELDS = (
    "fingerbank_device_name",
    "fingerbank_device_id",
    "fingerbank_parents",
    "fingerbank_score",
    "operating_system",
    "os_version",
    "is_mobile",
    "is_tablet",
)


def ssdp_location(device: Device) -> Optional[str]:
    """LOCATION URL from the first SSDP service that has one."""
    for service in device.services:
        if service.type == ServiceType.SSDP and service.txt.get("location"):
            return service.txt["location"]
    return None


def merge_fingerprints(
    upnp: Optional[DeviceFingerprint],
    fingerbank: Optional[DeviceFingerprint],
) -> Optional[DeviceFingerprint]:
    """
    Combine the two levels into one fingerprint.

    UPnP fields come only from the UPnP result and fingerbank fields only
    from the fingerbank result; the manufacturer falls back to the
    fingerbank side when UPnP has none. ``cache_hit`` holds only when
    every contributing result was served from cache.
    """
    if upnp is None and fingerbank is None:
        return None

    merged = DeviceFingerprint(timestamp=now_utc())
    if upnp is not None:
        for name in _UPNP_FIELDS:
            setattr(merged, name, getattr(upnp, name))
    if fingerbank is not None:
        for name in _FINGERBANK_FIELDS:
            setattr(merged, name, getattr(fingerbank, name))
        if not merged.manufacturer:
            merged.manufacturer = fingerbank.manufacturer

    if upnp is not None and fingerbank is not None:
        merged.source = FingerprintSource.BOTH
    elif upnp is not None:
        merged.source = FingerprintSource.UPNP
    else:
        merged.source = FingerprintSource.FINGERBANK

    merged.cache_hit = all(f.cache_hit for f in (upnp, fingerbank) if f is not None)
    return merged


class FingerprintManager:
    """
    Resolves device fingerprints through the UPnP and Fingerbank levels.

    Every collaborator is optional; a manager without a Fingerbank client
    only does UPnP and the bundled database.
    """

    def __init__(
        self,
        upnp_fetcher: Optional[UPnPDescriptionFetcher] = None,
        fingerbank_client: Optional[FingerbankClient] = None,
        fingerbank_cache: Optional[FingerbankCache] = None,
        bundled_db: Optional[BundledDatabase] = None,
        upnp_cache: Optional[UPnPCache] = None,
    ):
        self.upnp_fetcher = upnp_fetcher or UPnPDescriptionFetcher()
        self.fingerbank_client = fingerbank_client
        self.fingerbank_cache = fingerbank_cache
        self.bundled_db = bundled_db
        self.upnp_cache = upnp_cache or UPnPCache()

        self.remote_enabled = fingerbank_client is not None
        self.remote_disabled_reason: Optional[str] = None

    @property
    def can_identify_by_mac(self) -> bool:
        """True if a lookup without a UPnP location can still produce data."""
        return self.remote_enabled or bool(self.bundled_db and self.bundled_db.is_available)

    async def close(self) -> None:
        await self.upnp_fetcher.close()
        if self.fingerbank_client is not None:
            await self.fingerbank_client.close()

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    async def get_fingerprint(
        self,
        device: Device,
        location_url: Optional[str] = None,
        dhcp_fingerprint: Optional[str] = None,
        user_agents: Optional[list[str]] = None,
        force_refresh: bool = False,
    ) -> Optional[DeviceFingerprint]:
        """
        Resolve a fingerprint for a device.

        Args:
            device: Device to identify
            location_url: UPnP description URL; defaults to the device's SSDP LOCATION
            dhcp_fingerprint: DHCP option 55 list, part of the signal hash
            user_agents: Observed HTTP user agents, part of the signal hash
            force_refresh: Skip every cache and the bundled database

        Returns:
            Merged fingerprint, or None when no level produced data
        """
        location = location_url or ssdp_location(device)
        upnp = await self._resolve_upnp(device.mac, location, force_refresh) if location else None
        fingerbank = await self._resolve_fingerbank(
            device.mac, dhcp_fingerprint, user_agents, force_refresh
        )

        merged = merge_fingerprints(upnp, fingerbank)
        if merged is not None:
            logger.debug(
                f"Fingerprint for {device.mac}: source={merged.source.value} "
                f"name={merged.best_name} cache_hit={merged.cache_hit}"
            )
        return merged

    async def _resolve_upnp(
        self, mac: str, location: str, force_refresh: bool
    ) -> Optional[DeviceFingerprint]:
        if not force_refresh:
            cached = self.upnp_cache.get(mac, location)
            if cached is not None:
                return dataclasses.replace(cached, cache_hit=True)

        result = await self.upnp_fetcher.fetch(location)
        if result is not None:
            self.upnp_cache.store(mac, location, result)
        return result

    async def _resolve_fingerbank(
        self,
        mac: str,
        dhcp_fingerprint: Optional[str],
        user_agents: Optional[list[str]],
        force_refresh: bool,
    ) -> Optional[DeviceFingerprint]:
        signal_hash = compute_signal_hash(mac, dhcp_fingerprint, user_agents)

        if not force_refresh:
            cached = self._cache_get(mac, signal_hash)
            if cached is not None:
                return cached

            bundled = self._lookup_bundled(mac, dhcp_fingerprint)
            if bundled is not None:
                return bundled

        if not self.remote_enabled or self.fingerbank_client is None:
            return None

        try:
            result = await self.fingerbank_client.interrogate(mac, dhcp_fingerprint, user_agents)
        except (FingerbankAuthError, FingerbankRateLimitError) as e:
            self._disable_remote(str(e))
            return None
        except FingerbankError as e:
            logger.debug(f"Fingerbank lookup for {mac} failed: {e}")
            return None

        self._cache_store(mac, signal_hash, result)
        return result

    def _cache_get(self, mac: str, signal_hash: str) -> Optional[DeviceFingerprint]:
        if self.fingerbank_cache is None:
            return None
        try:
            return self.fingerbank_cache.get(mac, signal_hash)
        except sqlite3.Error as e:
            logger.warning(f"SQLite cache error reading fingerprint for {mac}: {e}")
            return None

    def _cache_store(self, mac: str, signal_hash: str, fingerprint: DeviceFingerprint) -> None:
        if self.fingerbank_cache is None:
            return
        try:
            self.fingerbank_cache.store(mac, signal_hash, fingerprint)
        except sqlite3.Error as e:
            logger.warning(f"SQLite cache error storing fingerprint for {mac}: {e}")

    def _lookup_bundled(
        self, mac: str, dhcp_fingerprint: Optional[str]
    ) -> Optional[DeviceFingerprint]:
        if self.bundled_db is None or not self.bundled_db.is_available:
            return None

        entry = self.bundled_db.query_by_oui(mac)
        if entry is None and dhcp_fingerprint:
            entry = self.bundled_db.query_by_dhcp_hash(compute_signal_hash(mac, dhcp_fingerprint))
        if entry is None:
            return None
        return entry.to_fingerprint()

    def _disable_remote(self, reason: str) -> None:
        if not self.remote_enabled:
            return
        self.remote_enabled = False
        self.remote_disabled_reason = reason
        logger.warning(f"Remote fingerprinting disabled for this session: {reason}")

    # -------------------------------------------------------------------------
    # Cache management
    # -------------------------------------------------------------------------

    def clear_cache(self, mac: str) -> None:
        self.upnp_cache.invalidate(mac)
        if self.fingerbank_cache is not None:
            self.fingerbank_cache.invalidate(mac)

    def clear_all_cache(self) -> None:
        self.upnp_cache.clear()
        if self.fingerbank_cache is not None:
            self.fingerbank_cache.delete_all()

    def prune_expired_cache(self) -> int:
        pruned = self.upnp_cache.prune()
        if self.fingerbank_cache is not None:
            pruned += self.fingerbank_cache.prune_expired()
        return pruned

    def get_cache_stats(self) -> dict[str, Any]:
        return {
            "upnp": {
                "entries": len(self.upnp_cache),
                "hits": self.upnp_cache.hits,
                "misses": self.upnp_cache.misses,
            },
            "fingerbank": self.fingerbank_cache.get_stats() if self.fingerbank_cache else None,
            "bundled_available": bool(self.bundled_db and self.bundled_db.is_available),
            "remote_enabled": self.remote_enabled,
            "remote_disabled_reason": self.remote_disabled_reason,
        }
