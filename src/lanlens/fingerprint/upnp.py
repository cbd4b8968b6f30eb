"""
UPnP device description fetcher.

SSDP announcements carry a LOCATION header pointing at an XML document
that describes the device (friendly name, manufacturer, model, services).
Fetching it is the cheapest and most precise identification we have.
"""

from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET
from typing import Optional

import aiohttp

from .._types import DeviceFingerprint, FingerprintSource, UPnPService

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0

_DEVICE_FIELDS = {
    "friendlyName": "friendly_name",
    "manufacturer": "manufacturer",
    "manufacturerURL": "manufacturer_url",
    "modelDescription": "model_description",
    "modelName": "model_name",
    "modelNumber": "model_number",
    "serialNumber": "serial_number",
    "deviceType": "upnp_device_type",
}


def _local(tag: str) -> str:
    """Strip the XML namespace from a tag."""
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element, name: str) -> Optional[ET.Element]:
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


def _text(element: ET.Element, name: str) -> Optional[str]:
    child = _child(element, name)
    if child is None or child.text is None:
        return None
    return child.text.strip() or None


def parse_description(xml_text: str | bytes) -> Optional[DeviceFingerprint]:
    """
    Parse a UPnP device description document.

    Returns None for malformed XML or a document without any of
    friendlyName, manufacturer, modelName or deviceType.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        logger.debug(f"Invalid UPnP description XML: {e}")
        return None

    device = _child(root, "device")
    if device is None:
        return None

    fields = {attr: _text(device, tag) for tag, attr in _DEVICE_FIELDS.items()}
    if not any(fields[k] for k in ("friendly_name", "manufacturer", "model_name", "upnp_device_type")):
        return None

    services = []
    service_list = _child(device, "serviceList")
    if service_list is not None:
        for service in service_list:
            if _local(service.tag) != "service":
                continue
            service_type = _text(service, "serviceType")
            service_id = _text(service, "serviceId")
            if not service_type or not service_id:
                continue
            services.append(UPnPService(
                service_type=service_type,
                service_id=service_id,
                control_url=_text(service, "controlURL"),
                event_sub_url=_text(service, "eventSubURL"),
                scpd_url=_text(service, "SCPDURL"),
            ))

    return DeviceFingerprint(
        **fields,
        upnp_services=services or None,
        source=FingerprintSource.UPNP,
    )


class UPnPDescriptionFetcher:
    """Fetches and parses UPnP descriptions with a hard timeout."""

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self._session = session

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def fetch(self, location: str) -> Optional[DeviceFingerprint]:
        """
        Fetch the description at ``location``.

        Timeouts, connection errors and non-2xx responses all yield None.
        """
        session = await self._get_session()
        try:
            async with session.get(location) as resp:
                if not 200 <= resp.status < 300:
                    logger.debug(f"UPnP description {location} returned HTTP {resp.status}")
                    return None
                body = await resp.read()
        except asyncio.TimeoutError:
            logger.debug(f"UPnP description fetch timed out: {location}")
            return None
        except (aiohttp.ClientError, ValueError) as e:
            logger.debug(f"UPnP description fetch failed for {location}: {e}")
            return None

        fingerprint = parse_description(body)
        if fingerprint:
            logger.debug(
                f"UPnP description {location}: {fingerprint.friendly_name} "
                f"({fingerprint.manufacturer} {fingerprint.model_name})"
            )
        return fingerprint
