"""Tests for UPnP description parsing and fetching."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from lanlens._types import FingerprintSource
from lanlens.fingerprint.upnp import UPnPDescriptionFetcher, parse_description


SONOS_XML = """<?xml version="1.0" encoding="utf-8"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <specVersion><major>1</major><minor>0</minor></specVersion>
  <device>
    <deviceType>urn:schemas-upnp-org:device:ZonePlayer:1</deviceType>
    <friendlyName>192.168.1.20 - Sonos One</friendlyName>
    <manufacturer>Sonos, Inc.</manufacturer>
    <manufacturerURL>http://www.sonos.com</manufacturerURL>
    <modelNumber>S18</modelNumber>
    <modelDescription>Sonos One</modelDescription>
    <modelName>Sonos One</modelName>
    <serialNumber>B8-E9-37-01-02-03:4</serialNumber>
    <serviceList>
      <service>
        <serviceType>urn:schemas-upnp-org:service:AlarmClock:1</serviceType>
        <serviceId>urn:upnp-org:serviceId:AlarmClock</serviceId>
        <controlURL>/AlarmClock/Control</controlURL>
        <eventSubURL>/AlarmClock/Event</eventSubURL>
        <SCPDURL>/xml/AlarmClock1.xml</SCPDURL>
      </service>
      <service>
        <serviceType>urn:schemas-upnp-org:service:Broken:1</serviceType>
      </service>
    </serviceList>
  </device>
</root>
"""


def mock_session(status=200, body=b"", error=None):
    session = MagicMock()
    session.closed = False
    if error is not None:
        session.get.side_effect = error
        return session
    resp = MagicMock()
    resp.status = status
    resp.read = AsyncMock(return_value=body)
    session.get.return_value.__aenter__.return_value = resp
    return session


class TestParseDescription:
    """Tests for parse_description."""

    def test_parses_device_fields(self):
        """Should read the device element with namespaces stripped."""
        fp = parse_description(SONOS_XML)

        assert fp is not None
        assert fp.friendly_name == "192.168.1.20 - Sonos One"
        assert fp.manufacturer == "Sonos, Inc."
        assert fp.manufacturer_url == "http://www.sonos.com"
        assert fp.model_name == "Sonos One"
        assert fp.model_number == "S18"
        assert fp.serial_number == "B8-E9-37-01-02-03:4"
        assert fp.upnp_device_type == "urn:schemas-upnp-org:device:ZonePlayer:1"
        assert fp.source == FingerprintSource.UPNP

    def test_incomplete_services_skipped(self):
        """Services without a type and id are dropped."""
        fp = parse_description(SONOS_XML)

        assert len(fp.upnp_services) == 1
        service = fp.upnp_services[0]
        assert service.service_id == "urn:upnp-org:serviceId:AlarmClock"
        assert service.control_url == "/AlarmClock/Control"
        assert service.scpd_url == "/xml/AlarmClock1.xml"

    def test_no_service_list(self):
        xml = "<root><device><friendlyName>Printer</friendlyName></device></root>"
        fp = parse_description(xml)
        assert fp.friendly_name == "Printer"
        assert fp.upnp_services is None

    def test_accepts_bytes(self):
        assert parse_description(SONOS_XML.encode()) is not None

    @pytest.mark.parametrize("xml", [
        "<root><device>",
        "not xml at all",
        "<root><specVersion/></root>",
        "<root><device><serialNumber>123</serialNumber></device></root>",
    ])
    def test_rejected_documents(self, xml):
        """Malformed or uninformative documents give None."""
        assert parse_description(xml) is None


class TestDescriptionFetcher:
    """Tests for UPnPDescriptionFetcher."""

    @pytest.mark.asyncio
    async def test_fetch_success(self):
        session = mock_session(body=SONOS_XML.encode())
        fetcher = UPnPDescriptionFetcher(session=session)

        fp = await fetcher.fetch("http://192.168.1.20:1400/xml/device_description.xml")

        assert fp.model_name == "Sonos One"
        session.get.assert_called_once_with("http://192.168.1.20:1400/xml/device_description.xml")

    @pytest.mark.asyncio
    async def test_non_2xx_is_none(self):
        fetcher = UPnPDescriptionFetcher(session=mock_session(status=404))
        assert await fetcher.fetch("http://192.168.1.20/desc.xml") is None

    @pytest.mark.asyncio
    async def test_timeout_is_none(self):
        fetcher = UPnPDescriptionFetcher(session=mock_session(error=asyncio.TimeoutError()))
        assert await fetcher.fetch("http://192.168.1.20/desc.xml") is None

    @pytest.mark.asyncio
    async def test_connection_error_is_none(self):
        error = aiohttp.ClientConnectionError("refused")
        fetcher = UPnPDescriptionFetcher(session=mock_session(error=error))
        assert await fetcher.fetch("http://192.168.1.20/desc.xml") is None
