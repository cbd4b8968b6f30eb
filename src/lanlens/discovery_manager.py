"""
Discovery manager - the device registry.

Owns the single authoritative MAC -> Device map. Every source (ARP, SSDP,
mDNS, port scans, fingerprint lookups) reports through this class, which
merges the observation into the device record, persists it, and emits a
debounced change event.

Mutations of one device are serialized by a per-MAC asyncio lock; work
for different devices proceeds concurrently. Callers only ever receive
copies of the stored devices.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
from datetime import datetime
from typing import Any, Callable, Optional

from ._types import (
    Device,
    DeviceType,
    DiscoveredService,
    Port,
    PortBannerData,
    PortState,
    ScanSummary,
    ServiceType,
    Signal,
    SmartSignal,
    SmartSignalType,
    UpdateKind,
    now_utc,
)
from .arp_cache import ARPCache
from .behavior import BehaviorTracker
from .config import LanLensConfig
from .device_db import DeviceDatabase
from .discovery import mdns as mdns_source
from .discovery import ssdp as ssdp_source
from .discovery.arp import ARPDiscovery
from .discovery.banner import BannerGrabber
from .discovery.base import PortInfo, ServiceRecord
from .discovery.mdns import MDNSListener
from .discovery.port_scanner import PortScanner
from .discovery.ssdp import SSDPListener
from .events import DebouncedEmitter, Observer
from .export import ExportFormat, export_devices
from .fingerprint import (
    BundledDatabase,
    FingerbankCache,
    FingerbankClient,
    FingerprintManager,
    UPnPDescriptionFetcher,
)
from .inference import collect_signals, infer_enhanced, signals_from_ssdp_headers
from .mac_analysis import analyze_mac, signals_from_mac_analysis
from .vendor import lookup_vendor, normalize_mac

logger = logging.getLogger(__name__)

MAC_PATTERN = re.compile(r"^([0-9A-F]{2}:){5}[0-9A-F]{2}$")

MAX_SMART_SCORE = 100
SERVICE_BONUS = 5
PORT_BONUS = 5
HTTP_SERVER_WEIGHT = 10
DEFAULT_MIN_SMART_SCORE = 20
STOP_GRACE_SECONDS = 0.5

KNOWN_BRANDS = [
    "Sonos", "Roku", "Samsung", "LG", "Sony", "Vizio", "Philips",
    "Bose", "Denon", "Yamaha", "Onkyo", "Pioneer", "Hue", "Ring",
    "Nest", "Ecobee", "Wemo", "TP-Link", "Netgear", "Asus", "Linksys",
]

SERVICE_NAMES = [
    ("sonos", "Sonos Player"),
    ("roku", "Roku"),
    ("samsung", "Samsung TV"),
    ("lg", "LG TV"),
    ("philips", "Philips"),
    ("hue", "Philips Hue"),
    ("ring", "Ring"),
    ("nest", "Nest"),
    ("wemo", "Wemo"),
    ("streammagic", "StreamMagic"),
    ("dlna", "DLNA"),
    ("mediarenderer", "Media Renderer"),
    ("mediaserver", "Media Server"),
]

_SERVER_NOISE = frozenset({"upnp", "linux", "http"})


# =============================================================================
# Helpers
# =============================================================================

def calculate_smart_score(device: Device) -> int:
    """Signal weights, plus a bonus for services and per open port, capped at 100."""
    score = sum(s.weight for s in device.smart_signals)
    if device.services:
        score += SERVICE_BONUS
    score += len(device.open_ports) * PORT_BONUS
    return max(0, min(score, MAX_SMART_SCORE))


def _first_meaningful_token(server: str) -> Optional[str]:
    for token in re.split(r"[/ ]", server):
        token = token.strip()
        if len(token) > 2 and "." not in token and token.lower() not in _SERVER_NOISE:
            return token
    return None


def extract_device_name(server: str) -> Optional[str]:
    """
    Guess a device name from an SSDP SERVER header.

    ``"Linux UPnP/1.0 Sonos/92.0-72090 (ZPS57)"`` gives ``"Sonos"``.
    """
    lower = server.lower()
    for brand in KNOWN_BRANDS:
        if brand.lower() in lower:
            return brand
    return _first_meaningful_token(server)


def extract_service_name(server: Optional[str]) -> Optional[str]:
    if not server:
        return None
    lower = server.lower()
    for pattern, name in SERVICE_NAMES:
        if pattern in lower:
            return name
    return _first_meaningful_token(server)


def _add_smart_signal(device: Device, signal: SmartSignal) -> None:
    if not device.has_smart_signal(signal.type, signal.description):
        device.smart_signals.append(signal)


# =============================================================================
# Registry
# =============================================================================

class DiscoveryManager:
    """
    Device registry and discovery orchestrator.

    Every collaborator is injected; ``from_config`` wires the standard set.
    """

    def __init__(
        self,
        arp_cache: Optional[ARPCache] = None,
        port_scanner: Optional[PortScanner] = None,
        banner_grabber: Optional[BannerGrabber] = None,
        fingerprint_manager: Optional[FingerprintManager] = None,
        behavior_tracker: Optional[BehaviorTracker] = None,
        device_db: Optional[DeviceDatabase] = None,
        emitter: Optional[DebouncedEmitter] = None,
        ssdp_listener: Optional[SSDPListener] = None,
        mdns_listener: Optional[MDNSListener] = None,
        max_concurrent_scans: int = 32,
        stop_grace_seconds: float = STOP_GRACE_SECONDS,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.arp_cache = arp_cache
        self.port_scanner = port_scanner
        self.banner_grabber = banner_grabber
        self.fingerprint_manager = fingerprint_manager
        self.behavior_tracker = behavior_tracker
        self.device_db = device_db
        self.emitter = emitter or DebouncedEmitter()
        self.ssdp_listener = ssdp_listener
        self.mdns_listener = mdns_listener
        self.max_concurrent_scans = max(1, max_concurrent_scans)
        self.stop_grace_seconds = stop_grace_seconds
        self._clock = clock

        self._devices: dict[str, Device] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._banners: dict[str, PortBannerData] = {}

        self._fingerprinting: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

        self._passive_running = False
        self._disabled_sources: set[str] = set()
        self._scan_cancelled = False

    @classmethod
    def from_config(cls, config: LanLensConfig) -> "DiscoveryManager":
        """Build a manager with every collaborator configured from settings."""
        device_db = DeviceDatabase(config.db_path)

        fingerbank_client = None
        if config.fingerbank_api_key:
            fingerbank_client = FingerbankClient(config.fingerbank_api_key)

        fingerprint_manager = FingerprintManager(
            upnp_fetcher=UPnPDescriptionFetcher(
                timeout_seconds=config.description_timeout_seconds
            ),
            fingerbank_client=fingerbank_client,
            fingerbank_cache=FingerbankCache(config.db_path),
            bundled_db=BundledDatabase(config.bundled_db_path) if config.bundled_db_path else None,
        )

        manager = cls(
            arp_cache=ARPCache(
                ARPDiscovery().discover,
                ttl_seconds=config.arp_ttl_seconds,
                max_entries=config.arp_max_entries,
            ),
            port_scanner=PortScanner(connect_timeout=config.port_timeout_seconds),
            banner_grabber=BannerGrabber(timeout_seconds=config.banner_timeout_seconds),
            fingerprint_manager=fingerprint_manager,
            behavior_tracker=BehaviorTracker(
                repository=device_db,
                max_profiles=config.behavior_max_profiles,
                persistence_interval=config.behavior_persistence_interval,
                hash_device_ids=config.hash_device_ids,
            ),
            device_db=device_db,
            emitter=DebouncedEmitter(config.debounce_seconds),
            ssdp_listener=SSDPListener() if config.enable_ssdp else None,
            mdns_listener=MDNSListener() if config.enable_mdns else None,
            max_concurrent_scans=config.max_concurrent_scans,
        )
        if not config.enable_arp:
            manager._disabled_sources.add("arp")
        return manager

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _lock_for(self, mac: str) -> asyncio.Lock:
        lock = self._locks.get(mac)
        if lock is None:
            lock = self._locks[mac] = asyncio.Lock()
        return lock

    def _persist(self, device: Device) -> None:
        if self.device_db is None:
            return
        try:
            self.device_db.save_device(device)
        except sqlite3.Error as e:
            logger.error(f"Failed to persist device {device.mac}: {e}")

    def _commit(self, device: Device, kind: UpdateKind) -> Device:
        """Persist, notify observers and return a snapshot."""
        self._persist(device)
        self.emitter.emit(device, kind)
        return device.copy()

    def _track(self, coro: Any) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _collect_signals(self, device: Device) -> tuple[list[Signal], list[tuple[str, dict[str, str]]]]:
        signals: list[Signal] = []
        mdns_types: list[str] = []
        mdns_txt: list[tuple[str, dict[str, str]]] = []
        for service in device.services:
            if service.type == ServiceType.SSDP:
                signals += signals_from_ssdp_headers(
                    service.txt.get("server"), service.txt.get("usn"), service.txt.get("st")
                )
            elif service.type == ServiceType.MDNS:
                mdns_types.append(service.name)
                if service.txt:
                    mdns_txt.append((service.name, service.txt))

        signals += collect_signals(
            mdns_service_types=mdns_types,
            open_ports=[p.number for p in device.open_ports],
            fingerprint=device.fingerprint,
            hostname=device.hostname,
        )
        if self.behavior_tracker is not None:
            signals += self.behavior_tracker.generate_signals(device.mac)
        return signals, mdns_txt

    def _infer(self, device: Device) -> tuple[DeviceType, float]:
        signals, mdns_txt = self._collect_signals(device)
        mac_signals = signals_from_mac_analysis(analyze_mac(device.mac, device.vendor))
        return infer_enhanced(
            signals,
            mdns_txt=mdns_txt,
            banners=self._banners.get(device.mac),
            mac_signals=mac_signals,
        )

    def _update_type_if_unknown(self, device: Device, hint: DeviceType = DeviceType.UNKNOWN) -> None:
        if device.device_type != DeviceType.UNKNOWN:
            return
        inferred, confidence = self._infer(device)
        if inferred != DeviceType.UNKNOWN:
            device.device_type = inferred
            logger.debug(f"Inferred {device.mac} as {inferred.value} ({confidence:.2f})")
        elif hint != DeviceType.UNKNOWN:
            device.device_type = hint

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def upsert_from_observation(self, mac: str, ip: str, source_label: str = "observation") -> Device:
        """
        Create or refresh the device for a MAC seen at an IP.

        A new MAC gets a vendor lookup and a ``discovered`` event; a known
        MAC gets its IP, ``last_seen`` and online flag refreshed and an
        ``updated`` event. ``first_seen`` never moves.

        Raises:
            ValueError: The MAC address is malformed
        """
        mac = normalize_mac(mac)
        if not MAC_PATTERN.match(mac):
            raise ValueError(f"Invalid MAC address: {mac}")

        async with self._lock_for(mac):
            now = self._clock()
            device = self._devices.get(mac)
            if device is None:
                device = Device(
                    mac=mac,
                    ip=ip,
                    vendor=lookup_vendor(mac),
                    first_seen=now,
                    last_seen=now,
                    is_online=True,
                )
                self._devices[mac] = device
                logger.info(f"Discovered {mac} at {ip} via {source_label}")
                return self._commit(device, UpdateKind.DISCOVERED)

            device.ip = ip or device.ip
            device.last_seen = max(device.last_seen, now)
            device.is_online = True
            logger.debug(f"Refreshed {mac} at {ip} via {source_label}")
            return self._commit(device, UpdateKind.UPDATED)

    async def apply_port_scan_result(
        self,
        mac: str,
        ports: list[PortInfo],
        banners: Optional[PortBannerData] = None,
    ) -> Optional[Device]:
        """Merge scanned ports (and optional banners) into a known device."""
        mac = normalize_mac(mac)
        async with self._lock_for(mac):
            device = self._devices.get(mac)
            if device is None:
                logger.debug(f"Port scan result for unknown device {mac} ignored")
                return None

            hint = DeviceType.UNKNOWN
            for info in ports:
                if not device.has_port(info.port, info.protocol):
                    device.open_ports.append(Port(
                        number=info.port,
                        protocol=info.protocol,
                        state=PortState.OPEN,
                        service_name=info.service,
                        banner=info.version,
                    ))
                if info.is_smart_indicator:
                    _add_smart_signal(device, SmartSignal(
                        SmartSignalType.OPEN_PORT,
                        f"Port {info.port}: {info.service or 'open'}",
                        info.smart_weight,
                    ))
                if hint == DeviceType.UNKNOWN:
                    hint = info.inferred_type

            if banners is not None and not banners.is_empty:
                self._banners[mac] = banners
                for http in (banners.http, banners.https):
                    if http and http.server:
                        _add_smart_signal(device, SmartSignal(
                            SmartSignalType.HTTP_SERVER, f"HTTP: {http.server}", HTTP_SERVER_WEIGHT
                        ))

            device.open_ports.sort(key=lambda p: (p.number, p.protocol.value))
            self._update_type_if_unknown(device, hint)
            device.smart_score = calculate_smart_score(device)
            return self._commit(device, UpdateKind.UPDATED)

    async def apply_service_discovery(
        self,
        mac: str,
        service: DiscoveredService,
        smart_signal: Optional[SmartSignal] = None,
        inferred_type: DeviceType = DeviceType.UNKNOWN,
        hostname: Optional[str] = None,
    ) -> Optional[Device]:
        """
        Merge an announced service into a known device.

        SSDP services are deduplicated by their LOCATION, others by name
        and type. The hostname is only filled in when the device has none.
        """
        mac = normalize_mac(mac)
        async with self._lock_for(mac):
            device = self._devices.get(mac)
            if device is None:
                logger.debug(f"Service {service.name} for unknown device {mac} ignored")
                return None

            location = service.txt.get("location") if service.type == ServiceType.SSDP else None
            if location:
                duplicate = any(
                    s.type == ServiceType.SSDP and s.txt.get("location") == location
                    for s in device.services
                )
            else:
                duplicate = device.has_service(service.name, service.type)
            if not duplicate:
                device.services.append(service)

            if smart_signal is not None:
                _add_smart_signal(device, smart_signal)
            if hostname and not device.hostname:
                device.hostname = hostname

            self._update_type_if_unknown(device, inferred_type)
            device.smart_score = calculate_smart_score(device)
            return self._commit(device, UpdateKind.UPDATED)

    async def mark_offline(self, mac: str) -> Optional[Device]:
        mac = normalize_mac(mac)
        async with self._lock_for(mac):
            device = self._devices.get(mac)
            if device is None or not device.is_online:
                return None
            device.is_online = False
            logger.info(f"{mac} went offline")
            return self._commit(device, UpdateKind.WENT_OFFLINE)

    async def set_user_label(self, mac: str, label: Optional[str]) -> Optional[Device]:
        """Set (or clear, with an empty label) the human-assigned name."""
        mac = normalize_mac(mac)
        async with self._lock_for(mac):
            device = self._devices.get(mac)
            if device is None:
                return None
            device.user_label = (label or "").strip() or None
            return self._commit(device, UpdateKind.UPDATED)

    async def reinfer(self, mac: str) -> Optional[tuple[DeviceType, float]]:
        """
        Re-run inference over every signal source for a device.

        Unlike the merge operations this replaces an already inferred type.
        """
        mac = normalize_mac(mac)
        async with self._lock_for(mac):
            device = self._devices.get(mac)
            if device is None:
                return None
            device_type, confidence = self._infer(device)
            if device_type != device.device_type:
                device.device_type = device_type
                device.smart_score = calculate_smart_score(device)
                self._commit(device, UpdateKind.UPDATED)
            return device_type, confidence

    # -------------------------------------------------------------------------
    # Fingerprinting
    # -------------------------------------------------------------------------

    def trigger_fingerprint(
        self,
        mac: str,
        location_url: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        """
        Start a background fingerprint lookup for a device.

        Returns the task, or None when the device is unknown, already has
        a fingerprint, or a lookup is already in flight.
        """
        if self.fingerprint_manager is None:
            return None
        mac = normalize_mac(mac)
        device = self._devices.get(mac)
        if device is None or device.fingerprint is not None or mac in self._fingerprinting:
            return None

        self._fingerprinting.add(mac)
        return self._track(self._run_fingerprint(mac, location_url))

    async def _run_fingerprint(self, mac: str, location_url: Optional[str]) -> None:
        try:
            device = self._devices.get(mac)
            if device is None:
                return
            fingerprint = await self.fingerprint_manager.get_fingerprint(
                device.copy(), location_url=location_url
            )
            if fingerprint is None:
                logger.debug(f"No fingerprint data for {mac}")
                return

            async with self._lock_for(mac):
                device = self._devices.get(mac)
                if device is None or device.fingerprint is not None:
                    return
                device.fingerprint = fingerprint
                if not device.hostname and fingerprint.friendly_name:
                    device.hostname = fingerprint.friendly_name
                self._update_type_if_unknown(device)
                logger.info(
                    f"Fingerprinted {mac}: {fingerprint.best_name or 'unnamed'} "
                    f"({fingerprint.source.value})"
                )
                self._commit(device, UpdateKind.UPDATED)
        except Exception:
            logger.exception(f"Fingerprint lookup for {mac} failed")
        finally:
            self._fingerprinting.discard(mac)

    async def wait_for_fingerprints(self) -> None:
        """Wait for every in-flight background task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------

    async def _resolve_mac(self, ip: str) -> Optional[str]:
        ip = ip.strip("[]")
        if self.arp_cache is not None:
            entry = self.arp_cache.get_by_ip(ip)
            if entry is None:
                try:
                    await self.arp_cache.get_arp_table()
                except OSError as e:
                    logger.warning(f"ARP table unreadable: {e}")
                entry = self.arp_cache.get_by_ip(ip)
            if entry is not None:
                return entry.mac

        for device in self._devices.values():
            if device.ip == ip:
                return device.mac
        return None

    async def refresh_arp(self) -> list[Device]:
        """
        Read the ARP table and reconcile the registry with it.

        Every listed device is upserted and recorded present; online
        devices missing from the table go offline and are recorded absent.
        """
        if self.arp_cache is None or "arp" in self._disabled_sources:
            return []
        try:
            entries = await self.arp_cache.get_arp_table(force_refresh=True)
        except OSError as e:
            logger.warning(f"ARP table unreadable: {e}")
            return []

        seen: set[str] = set()
        devices: list[Device] = []
        for entry in entries:
            try:
                device = await self.upsert_from_observation(entry.mac, entry.ip, "arp")
            except ValueError as e:
                logger.debug(f"Skipping ARP entry {entry.ip}: {e}")
                continue
            seen.add(device.mac)
            if entry.hostname and not device.hostname:
                async with self._lock_for(device.mac):
                    current = self._devices.get(device.mac)
                    if current is None:
                        continue
                    current.hostname = entry.hostname
                    device = self._commit(current, UpdateKind.UPDATED)
            devices.append(device)
            self._record_presence(device, True)

        for mac in [m for m, d in self._devices.items() if d.is_online and m not in seen]:
            device = await self.mark_offline(mac)
            if device is not None:
                self._record_presence(device, False)

        if self.fingerprint_manager is not None and self.fingerprint_manager.can_identify_by_mac:
            for device in devices:
                self.trigger_fingerprint(device.mac)

        logger.info(f"ARP refresh: {len(devices)} present, {len(self._devices) - len(seen)} not in table")
        return devices

    def _record_presence(self, device: Device, is_present: bool) -> None:
        if self.behavior_tracker is None:
            return
        try:
            self.behavior_tracker.record_presence(
                device.mac,
                is_present,
                services=[s.name for s in device.services] if is_present else [],
                ip=device.ip or None,
            )
        except sqlite3.Error as e:
            logger.error(f"Failed to record presence for {device.mac}: {e}")

    async def handle_ssdp_service(self, record: ServiceRecord) -> Optional[Device]:
        """Merge an SSDP announcement and start UPnP fingerprinting."""
        if not record.host_ip:
            logger.warning("SSDP announcement without host address skipped")
            return None
        mac = await self._resolve_mac(record.host_ip)
        if mac is None:
            logger.debug(f"SSDP: no MAC known for {record.host_ip}")
            return None

        await self.upsert_from_observation(mac, record.host_ip.strip("[]"), "ssdp")
        server = record.server
        service = DiscoveredService(
            name=record.st or extract_service_name(server) or "UPnP Service",
            type=ServiceType.SSDP,
            txt={k: v for k, v in record.txt.items() if v},
        )
        device = await self.apply_service_discovery(
            mac,
            service,
            smart_signal=SmartSignal(
                SmartSignalType.SSDP_SERVICE,
                f"SSDP: {server or 'UPnP device'}",
                ssdp_source.SSDP_SMART_WEIGHT,
            ),
            inferred_type=ssdp_source.inferred_type(record),
            hostname=extract_device_name(server) if server else None,
        )
        if device is not None and record.location:
            self.trigger_fingerprint(mac, record.location)
        return device

    async def handle_mdns_service(self, record: ServiceRecord) -> Optional[Device]:
        """Merge an mDNS service; the service type becomes the service name."""
        if not record.host_ip:
            return None
        mac = await self._resolve_mac(record.host_ip)
        if mac is None:
            logger.debug(f"mDNS: no MAC known for {record.host_ip}")
            return None

        service_type = record.service_type or record.name
        await self.upsert_from_observation(mac, record.host_ip.strip("[]"), "mdns")
        return await self.apply_service_discovery(
            mac,
            DiscoveredService(
                name=service_type,
                type=ServiceType.MDNS,
                port=record.port,
                txt=dict(record.txt),
            ),
            smart_signal=SmartSignal(
                SmartSignalType.MDNS_SERVICE,
                f"mDNS: {service_type}",
                mdns_source.smart_weight(service_type),
            ),
            inferred_type=mdns_source.inferred_type(service_type),
            hostname=record.host_name,
        )

    def _on_ssdp_record(self, record: ServiceRecord) -> None:
        if self._passive_running:
            self._track(self.handle_ssdp_service(record))

    def _on_mdns_record(self, record: ServiceRecord) -> None:
        if self._passive_running:
            self._track(self.handle_mdns_service(record))

    # -------------------------------------------------------------------------
    # Passive discovery
    # -------------------------------------------------------------------------

    @property
    def is_passive_running(self) -> bool:
        return self._passive_running

    @property
    def disabled_sources(self) -> list[str]:
        return sorted(self._disabled_sources)

    async def start_passive_discovery(self) -> list[str]:
        """
        Start the SSDP and mDNS listeners and take an initial ARP reading.

        A listener that fails to start is disabled for the session; the
        others keep running. Returns the names of the active sources.
        """
        if self._passive_running:
            logger.debug("Passive discovery already running")
            return self._active_sources()
        self._passive_running = True

        for listener, callback in (
            (self.ssdp_listener, self._on_ssdp_record),
            (self.mdns_listener, self._on_mdns_record),
        ):
            if listener is None or listener.name in self._disabled_sources:
                continue
            if not await listener.start(callback):
                self._disabled_sources.add(listener.name)

        if self.arp_cache is not None:
            await self.refresh_arp()

        active = self._active_sources()
        logger.info(f"Passive discovery started: {', '.join(active) or 'no sources'}")
        return active

    def _active_sources(self) -> list[str]:
        active = []
        if self.arp_cache is not None and "arp" not in self._disabled_sources:
            active.append("arp")
        for listener in (self.ssdp_listener, self.mdns_listener):
            if listener is not None and listener.is_running:
                active.append(listener.name)
        return active

    async def stop_passive_discovery(self) -> None:
        """
        Stop the listeners and detach their callbacks.

        Fingerprint lookups already in flight are left to finish.
        """
        if not self._passive_running:
            return
        self._passive_running = False
        for listener in (self.ssdp_listener, self.mdns_listener):
            if listener is not None and listener.is_running:
                await listener.stop()
        if self.stop_grace_seconds > 0:
            await asyncio.sleep(self.stop_grace_seconds)
        logger.info("Passive discovery stopped")

    # -------------------------------------------------------------------------
    # Active scans
    # -------------------------------------------------------------------------

    def stop_scan(self) -> None:
        """Stop the running scan; devices not yet started are skipped."""
        self._scan_cancelled = True

    async def quick_scan(self) -> ScanSummary:
        return await self._scan_all("quick")

    async def full_scan(self) -> ScanSummary:
        return await self._scan_all("full")

    async def _scan_all(self, scan_type: str) -> ScanSummary:
        summary = ScanSummary(scan_type=scan_type, started_at=self._clock())
        if self.port_scanner is None:
            summary.errors.append("Port scanner not configured")
            summary.status = "completed"
            summary.completed_at = self._clock()
            return summary

        self._scan_cancelled = False
        semaphore = asyncio.Semaphore(self.max_concurrent_scans)
        targets = [(d.mac, d.ip) for d in self._devices.values() if d.ip]
        logger.info(f"Starting {scan_type} scan of {len(targets)} devices")

        async def scan_one(mac: str, ip: str) -> None:
            async with semaphore:
                if self._scan_cancelled:
                    return
                try:
                    if scan_type == "quick":
                        ports = await self.port_scanner.quick_scan(ip)
                        banners = None
                    else:
                        ports = await self.port_scanner.scan(ip)
                        banners = None
                        if self.banner_grabber is not None and ports:
                            banners = await self.banner_grabber.grab_all(
                                ip, [p.port for p in ports]
                            )
                    await self.apply_port_scan_result(mac, ports, banners)
                    summary.devices_scanned += 1
                    summary.ports_found += len(ports)
                except Exception as e:
                    logger.warning(f"Scan of {mac} ({ip}) failed: {e}")
                    summary.errors.append(f"{mac}: {e}")

        await asyncio.gather(*(scan_one(mac, ip) for mac, ip in targets))

        summary.completed_at = self._clock()
        summary.status = "cancelled" if self._scan_cancelled else "completed"
        logger.info(
            f"{scan_type.capitalize()} scan {summary.status}: {summary.devices_scanned} devices, "
            f"{summary.ports_found} ports, {len(summary.errors)} errors"
        )
        return summary

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_all_devices(self) -> list[Device]:
        """Copies of every device, most recently seen first."""
        devices = sorted(self._devices.values(), key=lambda d: d.last_seen, reverse=True)
        return [d.copy() for d in devices]

    def get_smart_devices(self, min_score: int = DEFAULT_MIN_SMART_SCORE) -> list[Device]:
        devices = [d for d in self._devices.values() if d.smart_score >= min_score]
        devices.sort(key=lambda d: d.smart_score, reverse=True)
        return [d.copy() for d in devices]

    def get_device(self, mac: str) -> Optional[Device]:
        device = self._devices.get(normalize_mac(mac))
        return device.copy() if device else None

    def get_behavior_profile(self, mac: str) -> Optional[dict[str, Any]]:
        if self.behavior_tracker is None:
            return None
        profile = self.behavior_tracker.get_profile(normalize_mac(mac))
        return profile.to_dict() if profile else None

    @property
    def device_count(self) -> int:
        return len(self._devices)

    def export_devices(self, fmt: ExportFormat | str = ExportFormat.JSON) -> bytes:
        return export_devices(self.get_all_devices(), fmt)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def add_observer(self, observer: Observer) -> None:
        self.emitter.add_observer(observer)

    def remove_observer(self, observer: Observer) -> None:
        self.emitter.remove_observer(observer)

    def clear_devices(self) -> int:
        """Forget every device, in memory and in the database."""
        count = len(self._devices)
        self._devices.clear()
        self._banners.clear()
        # Held locks stay so in-flight mutations keep serializing
        self._locks = {mac: lock for mac, lock in self._locks.items() if lock.locked()}
        if self.device_db is not None:
            try:
                self.device_db.delete_all_devices()
            except sqlite3.Error as e:
                logger.error(f"Failed to delete persisted devices: {e}")
        logger.info(f"Cleared {count} devices")
        return count

    def clear_caches(self) -> None:
        if self.fingerprint_manager is not None:
            self.fingerprint_manager.clear_all_cache()
        if self.arp_cache is not None:
            self.arp_cache.clear()
        logger.info("Caches cleared")

    def prune(self, retention_days: int = 30) -> dict[str, int]:
        """Drop expired cache entries and presence records older than the retention window."""
        result = {"arp": 0, "fingerprint": 0, "presence": 0}
        if self.arp_cache is not None:
            result["arp"] = self.arp_cache.prune()
        if self.fingerprint_manager is not None:
            result["fingerprint"] = self.fingerprint_manager.prune_expired_cache()
        if self.behavior_tracker is not None:
            result["presence"] = self.behavior_tracker.prune_old_records(retention_days)
        return result

    def load_persisted_devices(self) -> int:
        """
        Load devices saved by a previous run. They start offline and do
        not replace anything already in memory.
        """
        if self.device_db is None:
            return 0
        try:
            stored = self.device_db.get_all_devices()
        except sqlite3.Error as e:
            logger.error(f"Failed to load persisted devices: {e}")
            return 0

        loaded = 0
        for device in stored:
            if device.mac in self._devices:
                continue
            device.is_online = False
            self._devices[device.mac] = device
            loaded += 1
        logger.info(f"Loaded {loaded} persisted devices")
        return loaded

    def get_stats(self) -> dict[str, Any]:
        online = sum(1 for d in self._devices.values() if d.is_online)
        return {
            "devices": len(self._devices),
            "online": online,
            "smart": sum(
                1 for d in self._devices.values() if d.smart_score >= DEFAULT_MIN_SMART_SCORE
            ),
            "passive_running": self._passive_running,
            "disabled_sources": self.disabled_sources,
            "pending_fingerprints": len(self._fingerprinting),
            "arp_cache": self.arp_cache.get_stats() if self.arp_cache else None,
            "fingerprint_cache": (
                self.fingerprint_manager.get_cache_stats() if self.fingerprint_manager else None
            ),
        }

    async def close(self) -> None:
        await self.stop_passive_discovery()
        if self.behavior_tracker is not None:
            self.behavior_tracker.flush_pending_records()
        if self.fingerprint_manager is not None:
            await self.fingerprint_manager.close()
        self.emitter.flush()
