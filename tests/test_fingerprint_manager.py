"""Tests for the fingerprint resolution pipeline."""

import logging
import sqlite3
import tempfile
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from lanlens._types import (
    Device,
    DeviceFingerprint,
    DiscoveredService,
    FingerprintSource,
    ServiceType,
    now_utc,
)
from lanlens.fingerprint.bundled import BundledEntry
from lanlens.fingerprint.cache import FingerbankCache
from lanlens.fingerprint.fingerbank import (
    FingerbankAuthError,
    FingerbankRateLimitError,
    FingerbankServerError,
)
from lanlens.fingerprint.manager import FingerprintManager, merge_fingerprints, ssdp_location


MAC = "B8:E9:37:01:02:03"
LOCATION = "http://192.168.1.20:1400/xml/device_description.xml"


def upnp_fp() -> DeviceFingerprint:
    return DeviceFingerprint(
        friendly_name="Kitchen",
        manufacturer="Sonos, Inc.",
        model_name="Sonos One",
        source=FingerprintSource.UPNP,
    )


def fingerbank_fp() -> DeviceFingerprint:
    return DeviceFingerprint(
        manufacturer="Sonos",
        fingerbank_device_name="Sonos Speaker",
        operating_system="Linux",
        source=FingerprintSource.FINGERBANK,
    )


@pytest.fixture
def fb_cache():
    """Create a temporary Fingerbank cache for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield FingerbankCache(db_path)

    db_path.unlink(missing_ok=True)
    db_path.with_suffix(".db-wal").unlink(missing_ok=True)
    db_path.with_suffix(".db-shm").unlink(missing_ok=True)


@pytest.fixture
def fetcher():
    fetcher = AsyncMock()
    fetcher.fetch.return_value = upnp_fp()
    return fetcher


@pytest.fixture
def client():
    client = AsyncMock()
    client.interrogate.return_value = fingerbank_fp()
    return client


class TestMergeFingerprints:
    """Tests for merge_fingerprints."""

    def test_nothing_to_merge(self):
        assert merge_fingerprints(None, None) is None

    def test_both_levels(self):
        """UPnP fields stay, fingerbank fields are added."""
        merged = merge_fingerprints(upnp_fp(), fingerbank_fp())

        assert merged.source == FingerprintSource.BOTH
        assert merged.friendly_name == "Kitchen"
        assert merged.manufacturer == "Sonos, Inc."
        assert merged.fingerbank_device_name == "Sonos Speaker"
        assert merged.operating_system == "Linux"

    def test_manufacturer_fallback(self):
        upnp = DeviceFingerprint(friendly_name="Kitchen", source=FingerprintSource.UPNP)
        merged = merge_fingerprints(upnp, fingerbank_fp())
        assert merged.manufacturer == "Sonos"

    def test_cache_hit_requires_all(self):
        """cache_hit holds only when every contributor was cached."""
        cached = upnp_fp()
        cached.cache_hit = True
        fresh = fingerbank_fp()

        assert merge_fingerprints(cached, fresh).cache_hit is False
        fresh.cache_hit = True
        assert merge_fingerprints(cached, fresh).cache_hit is True
        assert merge_fingerprints(None, fresh).source == FingerprintSource.FINGERBANK


class TestSSDPLocation:
    def test_first_ssdp_service_with_location(self):
        device = Device(mac=MAC, services=[
            DiscoveredService("_sonos._tcp", ServiceType.MDNS, 1443, {"location": "ignored"}),
            DiscoveredService("upnp:rootdevice", ServiceType.SSDP, None, {}),
            DiscoveredService("ZonePlayer", ServiceType.SSDP, 1400, {"location": LOCATION}),
        ])
        assert ssdp_location(device) == LOCATION

    def test_none(self):
        assert ssdp_location(Device(mac=MAC)) is None


class TestFingerprintManager:
    """Tests for FingerprintManager.get_fingerprint."""

    @pytest.mark.asyncio
    async def test_upnp_only_and_cached(self, fetcher):
        """The second lookup for the same URL comes from the memory cache."""
        manager = FingerprintManager(upnp_fetcher=fetcher)
        device = Device(mac=MAC)

        first = await manager.get_fingerprint(device, LOCATION)
        second = await manager.get_fingerprint(device, LOCATION)

        assert first.source == FingerprintSource.UPNP
        assert first.cache_hit is False
        assert second.cache_hit is True
        fetcher.fetch.assert_awaited_once_with(LOCATION)

    @pytest.mark.asyncio
    async def test_location_from_ssdp_service(self, fetcher):
        device = Device(mac=MAC, services=[
            DiscoveredService("ZonePlayer", ServiceType.SSDP, 1400, {"location": LOCATION}),
        ])
        manager = FingerprintManager(upnp_fetcher=fetcher)

        await manager.get_fingerprint(device)

        fetcher.fetch.assert_awaited_once_with(LOCATION)

    @pytest.mark.asyncio
    async def test_no_sources_returns_none(self, fetcher):
        manager = FingerprintManager(upnp_fetcher=fetcher)
        assert await manager.get_fingerprint(Device(mac=MAC)) is None
        fetcher.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remote_result_cached(self, fetcher, client, fb_cache):
        manager = FingerprintManager(
            upnp_fetcher=fetcher, fingerbank_client=client, fingerbank_cache=fb_cache
        )
        device = Device(mac=MAC)

        first = await manager.get_fingerprint(device, LOCATION, dhcp_fingerprint="1,3,6")
        second = await manager.get_fingerprint(device, LOCATION, dhcp_fingerprint="1,3,6")

        assert first.source == FingerprintSource.BOTH
        assert first.cache_hit is False
        assert second.cache_hit is True
        client.interrogate.assert_awaited_once_with(MAC, "1,3,6", None)

    @pytest.mark.asyncio
    async def test_new_dhcp_fingerprint_requeries(self, fetcher, client, fb_cache):
        manager = FingerprintManager(
            upnp_fetcher=fetcher, fingerbank_client=client, fingerbank_cache=fb_cache
        )
        device = Device(mac=MAC)

        await manager.get_fingerprint(device, dhcp_fingerprint="1,3,6")
        await manager.get_fingerprint(device, dhcp_fingerprint="1,3,6,15")

        assert client.interrogate.await_count == 2

    @pytest.mark.asyncio
    async def test_force_refresh_skips_caches(self, fetcher, client, fb_cache):
        """Forcing a refresh goes back to the network for both levels."""
        manager = FingerprintManager(
            upnp_fetcher=fetcher, fingerbank_client=client, fingerbank_cache=fb_cache
        )
        device = Device(mac=MAC)

        await manager.get_fingerprint(device, LOCATION)
        result = await manager.get_fingerprint(device, LOCATION, force_refresh=True)

        assert result.cache_hit is False
        assert fetcher.fetch.await_count == 2
        assert client.interrogate.await_count == 2

    @pytest.mark.asyncio
    async def test_bundled_before_remote(self, fetcher, client):
        bundled = MagicMock()
        bundled.is_available = True
        bundled.query_by_oui.return_value = BundledEntry("Sonos Speaker", ["speaker"], "Sonos")
        manager = FingerprintManager(
            upnp_fetcher=fetcher, fingerbank_client=client, bundled_db=bundled
        )

        result = await manager.get_fingerprint(Device(mac=MAC))

        assert result.fingerbank_device_name == "Sonos Speaker"
        assert result.cache_hit is True
        client.interrogate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_auth_error_disables_remote_once(self, fetcher, client, caplog):
        """A rejected key switches remote lookups off with one warning."""
        client.interrogate.side_effect = FingerbankAuthError("Invalid Fingerbank API key")
        manager = FingerprintManager(upnp_fetcher=fetcher, fingerbank_client=client)

        with caplog.at_level(logging.WARNING, logger="lanlens.fingerprint.manager"):
            first = await manager.get_fingerprint(Device(mac=MAC), LOCATION)
            await manager.get_fingerprint(Device(mac="AA:BB:CC:DD:EE:02"), LOCATION)

        assert first.source == FingerprintSource.UPNP
        assert manager.remote_enabled is False
        assert "Invalid Fingerbank API key" in manager.remote_disabled_reason
        assert client.interrogate.await_count == 1
        warnings = [r for r in caplog.records if "disabled" in r.getMessage()]
        assert len(warnings) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_disables_remote(self, fetcher, client):
        client.interrogate.side_effect = FingerbankRateLimitError(now_utc() + timedelta(hours=1))
        manager = FingerprintManager(upnp_fetcher=fetcher, fingerbank_client=client)

        assert await manager.get_fingerprint(Device(mac=MAC)) is None
        assert manager.remote_enabled is False

    @pytest.mark.asyncio
    async def test_server_error_is_a_miss(self, fetcher, client):
        """Transient failures leave remote lookups enabled."""
        client.interrogate.side_effect = FingerbankServerError(503)
        manager = FingerprintManager(upnp_fetcher=fetcher, fingerbank_client=client)

        assert await manager.get_fingerprint(Device(mac=MAC)) is None
        assert manager.remote_enabled is True

    @pytest.mark.asyncio
    async def test_broken_cache_keeps_upnp_result(self, fetcher, client, fb_cache):
        """Should fall back to the remote lookup when the SQLite cache is unusable."""
        conn = sqlite3.connect(str(fb_cache.db_path))
        conn.execute("DROP TABLE fingerbank_cache")
        conn.commit()
        conn.close()
        manager = FingerprintManager(
            upnp_fetcher=fetcher, fingerbank_client=client, fingerbank_cache=fb_cache
        )

        result = await manager.get_fingerprint(Device(mac=MAC), location_url=LOCATION)

        assert result.friendly_name == "Kitchen"
        assert result.fingerbank_device_name == "Sonos Speaker"
        client.interrogate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_broken_cache_upnp_only(self, fetcher, fb_cache):
        conn = sqlite3.connect(str(fb_cache.db_path))
        conn.execute("DROP TABLE fingerbank_cache")
        conn.commit()
        conn.close()
        manager = FingerprintManager(upnp_fetcher=fetcher, fingerbank_cache=fb_cache)

        result = await manager.get_fingerprint(Device(mac=MAC), location_url=LOCATION)

        assert result.source == FingerprintSource.UPNP
        assert result.friendly_name == "Kitchen"

    def test_can_identify_by_mac(self, fetcher, client):
        assert FingerprintManager(upnp_fetcher=fetcher).can_identify_by_mac is False
        assert FingerprintManager(upnp_fetcher=fetcher, fingerbank_client=client).can_identify_by_mac

    @pytest.mark.asyncio
    async def test_cache_management(self, fetcher, client, fb_cache):
        manager = FingerprintManager(
            upnp_fetcher=fetcher, fingerbank_client=client, fingerbank_cache=fb_cache
        )
        await manager.get_fingerprint(Device(mac=MAC), LOCATION)

        stats = manager.get_cache_stats()
        assert stats["upnp"]["entries"] == 1
        assert stats["fingerbank"]["total_entries"] == 1
        assert stats["remote_enabled"] is True

        manager.clear_cache(MAC)
        stats = manager.get_cache_stats()
        assert stats["upnp"]["entries"] == 0
        assert stats["fingerbank"]["total_entries"] == 0

        await manager.get_fingerprint(Device(mac=MAC), LOCATION)
        manager.clear_all_cache()
        assert manager.get_cache_stats()["upnp"]["entries"] == 0
        assert manager.prune_expired_cache() == 0

    @pytest.mark.asyncio
    async def test_close(self, fetcher, client):
        manager = FingerprintManager(upnp_fetcher=fetcher, fingerbank_client=client)
        await manager.close()
        fetcher.close.assert_awaited_once()
        client.close.assert_awaited_once()
