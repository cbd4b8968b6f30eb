"""
SSDP listener.

Sends an M-SEARCH to the SSDP multicast group and collects the unicast
responses, and (when port 1900 can be bound) also listens for NOTIFY
announcements. Every announcement that carries a LOCATION and a USN is
turned into a ServiceRecord and handed to the registered callback.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import struct
from typing import Callable, Optional
from urllib.parse import urlparse

from .._types import DeviceType, ServiceType
from .base import DiscoveryMethod, ServiceRecord

logger = logging.getLogger(__name__)

SSDP_ADDR = "239.255.255.250"
SSDP_PORT = 1900
SSDP_SMART_WEIGHT = 20

M_SEARCH = (
    "M-SEARCH * HTTP/1.1\r\n"
    f"HOST: {SSDP_ADDR}:{SSDP_PORT}\r\n"
    'MAN: "ssdp:discover"\r\n'
    "MX: 3\r\n"
    "ST: ssdp:all\r\n"
    "\r\n"
).encode()

ServiceCallback = Callable[[ServiceRecord], None]


def parse_ssdp_message(message: str, sender_ip: Optional[str] = None) -> Optional[ServiceRecord]:
    """
    Parse an M-SEARCH response or NOTIFY announcement.

    Returns None for messages without LOCATION or USN and for
    ``ssdp:byebye`` notifications.
    """
    headers: dict[str, str] = {}
    for line in message.splitlines()[1:]:
        if ":" not in line:
            continue
        key, _, value = line.partition(":")
        headers.setdefault(key.strip().upper(), value.strip())

    if headers.get("NTS", "").lower() == "ssdp:byebye":
        return None

    location = headers.get("LOCATION")
    usn = headers.get("USN")
    if not location or not usn:
        return None

    # NOTIFY carries the target in NT instead of ST
    st = headers.get("ST") or headers.get("NT") or ""
    host_ip = urlparse(location).hostname or sender_ip

    txt = {"location": location, "usn": usn, "st": st}
    if headers.get("SERVER"):
        txt["server"] = headers["SERVER"]

    return ServiceRecord(
        name=st or usn,
        type=ServiceType.SSDP,
        host_ip=host_ip,
        service_type=st or None,
        txt=txt,
    )


def inferred_type(record: ServiceRecord) -> DeviceType:
    """Coarse device type from the SERVER, USN and ST headers."""
    server = (record.server or "").lower()
    usn = (record.usn or "").lower()
    st = (record.st or "").lower()

    if "roku" in server:
        return DeviceType.SMART_TV
    if any(k in server for k in ("samsung", "lg", "sony")):
        return DeviceType.SMART_TV
    if "sonos" in server or "sonos" in usn:
        return DeviceType.SPEAKER
    if "philips-hue" in server or "hue" in usn:
        return DeviceType.HUB
    if "printer" in st or "printer" in server:
        return DeviceType.PRINTER
    if "mediaserver" in st or "mediarenderer" in st:
        return DeviceType.SMART_TV
    if "synology" in server or "qnap" in server:
        return DeviceType.NAS
    return DeviceType.UNKNOWN


class _SSDPProtocol(asyncio.DatagramProtocol):
    def __init__(self, listener: "SSDPListener"):
        self.listener = listener

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self.listener.handle_datagram(data, addr[0])

    def error_received(self, exc: Exception) -> None:
        logger.debug(f"SSDP socket error: {exc}")


class SSDPListener(DiscoveryMethod):
    """
    Passive and active SSDP discovery.

    Announcements are deduplicated by USN for the lifetime of a run.
    """

    def __init__(self, search_duration: float = 5.0):
        self.search_duration = search_duration
        self._on_service: Optional[ServiceCallback] = None
        self._search_transport: Optional[asyncio.DatagramTransport] = None
        self._notify_transport: Optional[asyncio.DatagramTransport] = None
        self._discovered: dict[str, ServiceRecord] = {}

    @property
    def name(self) -> str:
        return "ssdp"

    @property
    def is_running(self) -> bool:
        return self._search_transport is not None

    def get_discovered(self) -> list[ServiceRecord]:
        return list(self._discovered.values())

    async def start(self, on_service: Optional[ServiceCallback] = None) -> bool:
        """
        Open the sockets and send the initial M-SEARCH.

        Returns False if the search socket could not be opened; the source
        is then unavailable for this session.
        """
        if self.is_running:
            return True
        self._on_service = on_service
        self._discovered.clear()
        loop = asyncio.get_running_loop()

        try:
            self._search_transport, _ = await loop.create_datagram_endpoint(
                lambda: _SSDPProtocol(self),
                local_addr=("0.0.0.0", 0),
                family=socket.AF_INET,
            )
        except OSError as e:
            logger.warning(f"SSDP listener failed to start, source disabled: {e}")
            self._on_service = None
            return False

        try:
            self._notify_transport, _ = await loop.create_datagram_endpoint(
                lambda: _SSDPProtocol(self),
                sock=self._multicast_socket(),
            )
        except OSError as e:
            logger.info(f"SSDP NOTIFY listening unavailable ({e}), using M-SEARCH only")
            self._notify_transport = None

        self.send_search()
        logger.info("SSDP listener started")
        return True

    async def stop(self) -> None:
        for transport in (self._search_transport, self._notify_transport):
            if transport is not None:
                transport.close()
        self._search_transport = None
        self._notify_transport = None
        self._on_service = None
        logger.info("SSDP listener stopped")

    def send_search(self) -> None:
        if self._search_transport is None:
            return
        self._search_transport.sendto(M_SEARCH, (SSDP_ADDR, SSDP_PORT))
        logger.debug("Sent SSDP M-SEARCH")

    @staticmethod
    def _multicast_socket() -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.bind(("", SSDP_PORT))
            membership = struct.pack("4sl", socket.inet_aton(SSDP_ADDR), socket.INADDR_ANY)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
        except OSError:
            sock.close()
            raise
        sock.setblocking(False)
        return sock

    def handle_datagram(self, data: bytes, sender_ip: str) -> Optional[ServiceRecord]:
        """Parse one datagram and deliver it if it is a new announcement."""
        record = parse_ssdp_message(data.decode("utf-8", errors="ignore"), sender_ip)
        if record is None or record.usn in self._discovered:
            return None

        self._discovered[record.usn] = record
        logger.debug(
            f"SSDP device at {record.host_ip}: server={record.server} location={record.location}"
        )
        if self._on_service is not None:
            try:
                self._on_service(record)
            except Exception:
                logger.exception("SSDP service callback failed")
        return record

    async def discover(self) -> list[ServiceRecord]:
        """Run a single search window and return what answered."""
        started_here = not self.is_running
        if started_here and not await self.start():
            return []
        try:
            await asyncio.sleep(self.search_duration)
            return self.get_discovered()
        finally:
            if started_here:
                await self.stop()
