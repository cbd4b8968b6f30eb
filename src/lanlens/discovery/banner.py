"""
Service banner grabbing.

Connects to SSH, HTTP(S) and RTSP ports and reads what the service says
about itself: the SSH identification string, the HTTP Server header and
the RTSP Server/Public headers. Every probe has a hard timeout and a
timeout or refused connection is simply "no banner".
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Optional

from .._types import HTTPBannerInfo, PortBannerData, RTSPBannerInfo, SSHBannerInfo

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 3.0
MAX_READ = 4096

SSH_OS_HINTS = [
    (("ubuntu", "debian", "fedora", "centos", "redhat", "linux"), "linux"),
    (("freebsd", "openbsd", "netbsd"), "freebsd"),
    (("dropbear",), "embedded"),
    (("apple", "macos", "darwin"), "macOS"),
    (("windows", "openssh_for_windows"), "windows"),
]
NETWORK_EQUIPMENT_KEYWORDS = ("cisco", "juniper", "mikrotik", "ubiquiti", "routeros", "edgeos")
NAS_KEYWORDS = ("synology", "qnap", "drobo", "netgear", "readynas", "terramaster")

CAMERA_SERVERS = (
    "hikvision", "dahua", "axis", "foscam", "amcrest", "reolink", "vivotek", "geovision",
)
PRINTER_SERVERS = (
    "printer", "cups", "hp-", "canon", "epson", "brother", "xerox", "lexmark", "ipp",
)
NAS_SERVERS = (
    "synology", "qnap", "dsm", "asustor", "terramaster", "freenas", "truenas", "unraid",
    "openmediavault",
)
ROUTER_SERVERS = (
    "router", "gateway", "mikrotik", "openwrt", "dd-wrt", "tomato", "asus", "netgear",
    "tp-link", "linksys", "ubiquiti", "unifi",
)

RTSP_CAMERA_VENDORS = [
    (("hikvision", "hik-connect"), "Hikvision"),
    (("dahua",), "Dahua"),
    (("axis",), "Axis"),
    (("foscam",), "Foscam"),
    (("amcrest",), "Amcrest"),
    (("reolink",), "Reolink"),
    (("vivotek",), "Vivotek"),
    (("geovision",), "GeoVision"),
    (("ubiquiti", "unifi"), "Ubiquiti"),
    (("hanwha", "samsung"), "Hanwha/Samsung"),
]


# =============================================================================
# Parsers
# =============================================================================

def _headers(response: str) -> tuple[str, dict[str, str]]:
    lines = response.replace("\r\n", "\n").split("\n")
    status_line = lines[0] if lines else ""
    headers: dict[str, str] = {}
    for line in lines[1:]:
        if not line.strip():
            break
        if ":" in line:
            key, value = line.split(":", 1)
            headers.setdefault(key.strip().lower(), value.strip())
    return status_line, headers


def parse_ssh_banner(banner: str) -> Optional[SSHBannerInfo]:
    """
    Parse an SSH identification string like ``SSH-2.0-OpenSSH_8.9p1 Ubuntu-3``.

    Returns None if the text is not an SSH banner.
    """
    banner = banner.strip().splitlines()[0] if banner.strip() else ""
    if not banner.startswith("SSH-"):
        return None

    parts = banner.split("-", 2)
    protocol_version = parts[1] if len(parts) > 1 else None
    software = parts[2] if len(parts) > 2 else ""
    software_version = software.split(" ", 1)[0] or None

    lower = banner.lower()
    os_hint = None
    for keywords, hint in SSH_OS_HINTS:
        if any(k in lower for k in keywords):
            os_hint = hint
            break

    return SSHBannerInfo(
        raw_banner=banner,
        protocol_version=protocol_version,
        software_version=software_version,
        os_hint=os_hint,
        is_network_equipment=any(k in lower for k in NETWORK_EQUIPMENT_KEYWORDS),
        is_nas=any(k in lower for k in NAS_KEYWORDS),
    )


def parse_http_response(response: str) -> Optional[HTTPBannerInfo]:
    """Extract identifying headers and interface hints from an HTTP response."""
    if not response.startswith("HTTP/"):
        return None

    _, headers = _headers(response)
    server = headers.get("server")
    authenticate = headers.get("www-authenticate")
    server_lower = (server or "").lower()
    full = response.lower()

    return HTTPBannerInfo(
        server=server,
        powered_by=headers.get("x-powered-by"),
        authenticate=authenticate,
        content_type=headers.get("content-type"),
        is_admin_interface=(
            any(k in full for k in ("admin", "login", "management")) or authenticate is not None
        ),
        is_camera_interface=(
            any(k in server_lower for k in CAMERA_SERVERS)
            or "camera" in full or "ipcam" in full
        ),
        is_printer_interface=any(k in server_lower for k in PRINTER_SERVERS),
        is_router_interface=any(k in server_lower for k in ROUTER_SERVERS),
        is_nas_interface=any(k in server_lower for k in NAS_SERVERS),
    )


def parse_rtsp_response(response: str) -> Optional[RTSPBannerInfo]:
    if not response.startswith("RTSP/"):
        return None

    status_line, headers = _headers(response)
    server = headers.get("server")
    methods = [m.strip() for m in headers.get("public", "").split(",") if m.strip()]

    camera_vendor = None
    server_lower = (server or "").lower()
    for keywords, vendor in RTSP_CAMERA_VENDORS:
        if any(k in server_lower for k in keywords):
            camera_vendor = vendor
            break

    return RTSPBannerInfo(
        server=server,
        methods=methods,
        requires_auth="401" in status_line or "www-authenticate" in headers,
        camera_vendor=camera_vendor,
    )


# =============================================================================
# Grabber
# =============================================================================

class BannerGrabber:
    """Reads SSH, HTTP(S) and RTSP banners from a host."""

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds
        # Device admin pages use self-signed certificates
        self._ssl_context = ssl.create_default_context()
        self._ssl_context.check_hostname = False
        self._ssl_context.verify_mode = ssl.CERT_NONE

    async def _exchange(
        self,
        ip: str,
        port: int,
        request: Optional[bytes],
        use_ssl: bool = False,
    ) -> Optional[str]:
        """Connect, optionally send a request, and read the first response chunk."""
        try:
            return await asyncio.wait_for(
                self._do_exchange(ip, port, request, use_ssl), timeout=self.timeout_seconds
            )
        except (asyncio.TimeoutError, OSError) as e:
            logger.debug(f"Banner probe {ip}:{port} failed: {e!r}")
            return None

    async def _do_exchange(
        self, ip: str, port: int, request: Optional[bytes], use_ssl: bool
    ) -> Optional[str]:
        reader, writer = await asyncio.open_connection(
            ip, port, ssl=self._ssl_context if use_ssl else None
        )
        try:
            if request:
                writer.write(request)
                await writer.drain()
            data = await reader.read(MAX_READ)
        finally:
            writer.close()
        return data.decode("utf-8", errors="replace") if data else None

    async def grab_ssh(self, ip: str, port: int = 22) -> Optional[SSHBannerInfo]:
        response = await self._exchange(ip, port, None)
        return parse_ssh_banner(response) if response else None

    async def grab_http(
        self, ip: str, port: int = 80, use_ssl: bool = False
    ) -> Optional[HTTPBannerInfo]:
        request = f"HEAD / HTTP/1.1\r\nHost: {ip}\r\nConnection: close\r\n\r\n".encode()
        response = await self._exchange(ip, port, request, use_ssl)
        return parse_http_response(response) if response else None

    async def grab_rtsp(self, ip: str, port: int = 554) -> Optional[RTSPBannerInfo]:
        request = f"OPTIONS rtsp://{ip}:{port}/ RTSP/1.0\r\nCSeq: 1\r\n\r\n".encode()
        response = await self._exchange(ip, port, request)
        return parse_rtsp_response(response) if response else None

    async def grab_all(self, ip: str, open_ports: list[int]) -> PortBannerData:
        """Grab every banner applicable to the given open ports, concurrently."""
        ports = set(open_ports)
        tasks = {}
        if 22 in ports:
            tasks["ssh"] = self.grab_ssh(ip)
        if 80 in ports:
            tasks["http"] = self.grab_http(ip, 80)
        elif 8080 in ports:
            tasks["http"] = self.grab_http(ip, 8080)
        if 443 in ports:
            tasks["https"] = self.grab_http(ip, 443, use_ssl=True)
        elif 8443 in ports:
            tasks["https"] = self.grab_http(ip, 8443, use_ssl=True)
        if 554 in ports:
            tasks["rtsp"] = self.grab_rtsp(ip)

        if not tasks:
            return PortBannerData()

        results = await asyncio.gather(*tasks.values())
        return PortBannerData(**dict(zip(tasks.keys(), results)))
