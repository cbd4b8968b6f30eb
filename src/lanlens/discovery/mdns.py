"""
mDNS / DNS-SD browsing with zeroconf.

zeroconf runs its own thread; browser callbacks resolve the service
there and forward the resulting ServiceRecord to the asyncio loop with
``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from zeroconf import ServiceBrowser, ServiceInfo, Zeroconf

from .._types import DeviceType, ServiceType
from .base import DiscoveryMethod, ServiceRecord

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_TYPES = [
    "_hap._tcp",              # HomeKit Accessory Protocol
    "_homekit._tcp",
    "_airplay._tcp",
    "_raop._tcp",             # AirPlay audio
    "_googlecast._tcp",
    "_spotify-connect._tcp",
    "_sonos._tcp",
    "_http._tcp",
    "_https._tcp",
    "_ssh._tcp",
    "_smb._tcp",
    "_afpovertcp._tcp",
    "_printer._tcp",
    "_ipp._tcp",
    "_scanner._tcp",
    "_mqtt._tcp",
    "_hue._tcp",
    "_bond._tcp",             # Bond Home (fans, shades)
    "_leap._tcp",             # Lutron
    "_ecobee._tcp",
    "_nest._tcp",
    "_amzn-wplay._tcp",
    "_alexa._tcp",
    "_dacp._tcp",
    "_touch-able._tcp",
    "_companion-link._tcp",
    "_device-info._tcp",
]

INFERRED_TYPES: dict[str, DeviceType] = {
    "_hap._tcp": DeviceType.HUB,
    "_homekit._tcp": DeviceType.HUB,
    "_airplay._tcp": DeviceType.SMART_TV,
    "_raop._tcp": DeviceType.SMART_TV,
    "_googlecast._tcp": DeviceType.SMART_TV,
    "_spotify-connect._tcp": DeviceType.SPEAKER,
    "_sonos._tcp": DeviceType.SPEAKER,
    "_printer._tcp": DeviceType.PRINTER,
    "_ipp._tcp": DeviceType.PRINTER,
    "_scanner._tcp": DeviceType.PRINTER,
    "_hue._tcp": DeviceType.LIGHT,
    "_ecobee._tcp": DeviceType.THERMOSTAT,
    "_nest._tcp": DeviceType.THERMOSTAT,
    "_amzn-wplay._tcp": DeviceType.SPEAKER,
    "_alexa._tcp": DeviceType.SPEAKER,
    "_ssh._tcp": DeviceType.COMPUTER,
    "_smb._tcp": DeviceType.COMPUTER,
    "_afpovertcp._tcp": DeviceType.COMPUTER,
}

SMART_WEIGHTS: dict[str, int] = {
    "_hap._tcp": 30,
    "_homekit._tcp": 30,
    "_googlecast._tcp": 25,
    "_airplay._tcp": 25,
    "_mqtt._tcp": 25,
    "_coap._udp": 25,
    "_http._tcp": 15,
    "_https._tcp": 15,
}
DEFAULT_SMART_WEIGHT = 10

ServiceCallback = Callable[[ServiceRecord], None]


def _bare_type(service_type: str) -> str:
    service_type = service_type.rstrip(".")
    if service_type.endswith(".local"):
        service_type = service_type[: -len(".local")]
    return service_type


def inferred_type(service_type: str) -> DeviceType:
    return INFERRED_TYPES.get(_bare_type(service_type), DeviceType.UNKNOWN)


def smart_weight(service_type: str) -> int:
    return SMART_WEIGHTS.get(_bare_type(service_type), DEFAULT_SMART_WEIGHT)


def _decode(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def record_from_info(info: ServiceInfo, type_: str, name: str) -> Optional[ServiceRecord]:
    """Build a ServiceRecord from resolved zeroconf service info."""
    addresses = info.parsed_addresses()
    ipv4 = [a for a in addresses if ":" not in a]
    if not ipv4:
        return None

    service_type = _bare_type(type_)
    instance = name
    suffix = f".{type_}"
    if instance.endswith(suffix):
        instance = instance[: -len(suffix)]

    txt = {_decode(k): _decode(v) for k, v in (info.properties or {}).items() if k}
    host_name = _bare_type(info.server) if info.server else None

    return ServiceRecord(
        name=instance,
        type=ServiceType.MDNS,
        host_ip=ipv4[0],
        port=info.port,
        service_type=service_type,
        host_name=host_name,
        txt=txt,
    )


class _BrowserHandler:
    """zeroconf listener; runs on the zeroconf thread."""

    def __init__(self, listener: "MDNSListener"):
        self.listener = listener

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        info = zc.get_service_info(type_, name, timeout=3000)
        if info is None:
            logger.debug(f"mDNS service {name} did not resolve")
            return
        record = record_from_info(info, type_, name)
        if record is not None:
            self.listener.forward(record)

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self.add_service(zc, type_, name)

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        logger.debug(f"mDNS service removed: {name}")


class MDNSListener(DiscoveryMethod):
    """
    Browses a fixed set of DNS-SD service types.

    Args:
        service_types: Service types to browse, without the ``.local.`` suffix
        browse_seconds: Window used by ``discover()``
    """

    def __init__(
        self,
        service_types: Optional[list[str]] = None,
        browse_seconds: float = 5.0,
    ):
        self.service_types = list(service_types or DEFAULT_SERVICE_TYPES)
        self.browse_seconds = browse_seconds
        self._zeroconf: Optional[Zeroconf] = None
        self._browsers: list[ServiceBrowser] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._on_service: Optional[ServiceCallback] = None
        self._discovered: dict[str, ServiceRecord] = {}

    @property
    def name(self) -> str:
        return "mdns"

    @property
    def is_running(self) -> bool:
        return self._zeroconf is not None

    def get_discovered(self) -> list[ServiceRecord]:
        return list(self._discovered.values())

    async def start(self, on_service: Optional[ServiceCallback] = None) -> bool:
        """
        Start browsing. Returns False if zeroconf could not start (for
        example when another responder holds port 5353 exclusively).
        """
        if self.is_running:
            return True
        self._loop = asyncio.get_running_loop()
        self._on_service = on_service
        self._discovered.clear()

        try:
            await self._loop.run_in_executor(None, self._start_browsers)
        except OSError as e:
            logger.warning(f"mDNS listener failed to start, source disabled: {e}")
            self._on_service = None
            return False

        logger.info(f"Started mDNS browsing for {len(self.service_types)} service types")
        return True

    def _start_browsers(self) -> None:
        zc = Zeroconf()
        handler = _BrowserHandler(self)
        self._browsers = [
            ServiceBrowser(zc, f"{service_type}.local.", handler)
            for service_type in self.service_types
        ]
        self._zeroconf = zc

    async def stop(self) -> None:
        if self._zeroconf is None:
            return
        zc, browsers = self._zeroconf, self._browsers
        self._zeroconf = None
        self._browsers = []
        self._on_service = None

        def _close() -> None:
            for browser in browsers:
                browser.cancel()
            zc.close()

        await asyncio.get_running_loop().run_in_executor(None, _close)
        logger.info("mDNS listener stopped")

    def forward(self, record: ServiceRecord) -> None:
        """Hand a record from the zeroconf thread to the event loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._deliver, record)

    def _deliver(self, record: ServiceRecord) -> None:
        key = f"{record.name}.{record.service_type}"
        self._discovered[key] = record
        if self._on_service is None:
            return
        try:
            self._on_service(record)
        except Exception:
            logger.exception("mDNS service callback failed")

    async def discover(self) -> list[ServiceRecord]:
        started_here = not self.is_running
        if started_here and not await self.start():
            return []
        try:
            await asyncio.sleep(self.browse_seconds)
            return self.get_discovered()
        finally:
            if started_here:
                await self.stop()
