"""
Port scanning for smart-device fingerprinting.

Uses nmap (TCP connect with light version detection) through python-nmap
when the nmap binary is installed, otherwise plain TCP connect probes.
Only a short list of ports that smart devices are known to expose is
scanned.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import nmap

from .._types import DeviceType, PortProtocol
from .base import PortInfo

logger = logging.getLogger(__name__)


SMART_DEVICE_PORTS = [
    22,     # SSH
    80,     # HTTP
    443,    # HTTPS
    548,    # AFP
    554,    # RTSP (cameras)
    1400,   # Sonos
    1883,   # MQTT
    3000,   # Various web apps
    3478,   # STUN/TURN
    3689,   # DAAP (iTunes)
    5000,   # UPnP, Synology
    5001,   # Synology SSL
    5353,   # mDNS
    6466,   # Android TV remote
    7000,   # AirPlay
    8008,   # Google Cast
    8009,   # Google Cast
    8080,   # HTTP alt
    8123,   # Home Assistant
    8443,   # HTTPS alt
    8883,   # MQTT SSL
    9000,   # Portainer, PHP-FPM
    9090,   # Prometheus
    9100,   # Printer
    49152,  # UPnP
    49153,  # UPnP
    49154,  # UPnP
]

QUICK_PORTS = [22, 80, 443, 554, 1883, 5000, 7000, 8008, 8080, 8123]

SERVICE_NAMES = {
    22: "ssh",
    23: "telnet",
    80: "http",
    443: "https",
    445: "smb",
    548: "afp",
    554: "rtsp",
    1400: "sonos",
    1883: "mqtt",
    3000: "http",
    3689: "daap",
    5000: "upnp",
    5001: "upnp-ssl",
    5353: "mdns",
    7000: "airplay",
    8008: "googlecast",
    8009: "googlecast",
    8080: "http-alt",
    8123: "homeassistant",
    8443: "https-alt",
    8883: "mqtt-ssl",
    9000: "http",
    9090: "prometheus",
    9100: "printing",
    32400: "plex",
}

SMART_INDICATOR_PORTS = frozenset({554, 1400, 1883, 7000, 8008, 8009, 8123, 8883, 32400})

SMART_WEIGHTS = {
    554: 20,    # RTSP, likely camera
    1400: 25,   # Sonos
    1883: 25,   # MQTT, definitely IoT
    8883: 25,
    7000: 20,   # AirPlay
    8008: 20,   # Google Cast
    8009: 20,
    8123: 30,   # Home Assistant
    32400: 15,  # Plex
    80: 5,
    443: 5,
    22: 5,
}

INFERRED_TYPES = {
    554: DeviceType.CAMERA,
    1400: DeviceType.SPEAKER,
    7000: DeviceType.SMART_TV,
    8008: DeviceType.SMART_TV,
    8009: DeviceType.SMART_TV,
    8123: DeviceType.HUB,
    32400: DeviceType.COMPUTER,
    9100: DeviceType.PRINTER,
}


def guess_service(port: int) -> Optional[str]:
    if 49152 <= port <= 49160:
        return "upnp"
    return SERVICE_NAMES.get(port)


def make_port_info(
    port: int,
    protocol: PortProtocol = PortProtocol.TCP,
    service: Optional[str] = None,
    version: Optional[str] = None,
) -> PortInfo:
    """Build a PortInfo with the smart-device tables applied."""
    return PortInfo(
        port=port,
        protocol=protocol,
        service=service or guess_service(port),
        version=version or None,
        is_smart_indicator=port in SMART_INDICATOR_PORTS,
        smart_weight=SMART_WEIGHTS.get(port, 0),
        inferred_type=INFERRED_TYPES.get(port, DeviceType.UNKNOWN),
    )


class PortScanner:
    """
    Scans a host for open smart-device ports.

    Args:
        connect_timeout: Per-port TCP connect timeout for the fallback scanner
        nmap_timeout: Host timeout passed to nmap, in seconds
        max_workers: Threads available for concurrent nmap runs
    """

    def __init__(
        self,
        connect_timeout: float = 1.0,
        nmap_timeout: int = 60,
        max_workers: int = 8,
    ):
        self.connect_timeout = connect_timeout
        self.nmap_timeout = nmap_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers)

    @staticmethod
    def nmap_available() -> bool:
        return shutil.which("nmap") is not None

    async def scan(
        self,
        ip: str,
        ports: Optional[list[int]] = None,
        use_nmap: bool = True,
    ) -> list[PortInfo]:
        """
        Scan a host.

        Returns open ports sorted by number. Falls back to TCP connect
        probes if nmap is missing or fails.
        """
        ports = ports or SMART_DEVICE_PORTS

        if use_nmap and self.nmap_available():
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(self._executor, self._scan_with_nmap, ip, ports)
            if result is not None:
                return result

        return await self._scan_with_sockets(ip, ports)

    async def quick_scan(self, ip: str) -> list[PortInfo]:
        return await self.scan(ip, QUICK_PORTS, use_nmap=False)

    def _scan_with_nmap(self, ip: str, ports: list[int]) -> Optional[list[PortInfo]]:
        """Run nmap (blocking, called in the executor)."""
        port_list = ",".join(str(p) for p in ports)
        args = f"-sT -sV --version-light -T4 --host-timeout {self.nmap_timeout}s"
        try:
            scanner = nmap.PortScanner()
            scanner.scan(hosts=ip, ports=port_list, arguments=args)
        except nmap.PortScannerError as e:
            logger.warning(f"nmap scan of {ip} failed: {e}")
            return None

        if ip not in scanner.all_hosts():
            return []

        host_info = scanner[ip]
        open_ports = []
        for proto in ("tcp", "udp"):
            if proto not in host_info:
                continue
            for port, port_info in host_info[proto].items():
                if port_info.get("state") != "open":
                    continue
                version = " ".join(
                    v for v in (port_info.get("product", ""), port_info.get("version", "")) if v
                )
                open_ports.append(make_port_info(
                    port,
                    PortProtocol(proto),
                    service=port_info.get("name") or None,
                    version=version or None,
                ))

        logger.debug(f"nmap found {len(open_ports)} open ports on {ip}")
        return sorted(open_ports, key=lambda p: p.port)

    async def _scan_with_sockets(self, ip: str, ports: list[int]) -> list[PortInfo]:
        results = await asyncio.gather(*(self._is_port_open(ip, p) for p in ports))
        open_ports = [make_port_info(p) for p, is_open in zip(ports, results) if is_open]
        logger.debug(f"Connect scan found {len(open_ports)} open ports on {ip}")
        return sorted(open_ports, key=lambda p: p.port)

    async def _is_port_open(self, ip: str, port: int) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(ip, port), timeout=self.connect_timeout
            )
        except (asyncio.TimeoutError, OSError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True
