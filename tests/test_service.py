"""Tests for the LanLens API handlers."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from lanlens._types import Device, DeviceType
from lanlens.config import LanLensConfig
from lanlens.export import ExportFormat
from lanlens.service import LanLensService


MAC = "B8:E9:37:01:02:03"


def make_request(match_info=None, query=None, body=None):
    request = MagicMock()
    request.match_info = match_info or {}
    request.query = query or {}
    request.json = AsyncMock(return_value=body or {})
    return request


def body_of(response):
    return json.loads(response.body)


@pytest.fixture
def manager():
    manager = MagicMock()
    manager.device_count = 2
    manager.is_passive_running = True
    manager.disabled_sources = ["mdns"]
    manager.get_all_devices.return_value = [
        Device(mac=MAC, ip="192.168.1.20", device_type=DeviceType.SPEAKER),
        Device(mac="AA:BB:CC:00:00:01", ip="192.168.1.30", is_online=False),
    ]
    manager.get_behavior_profile.return_value = None
    return manager


@pytest.fixture
def service(manager):
    return LanLensService(LanLensConfig(), manager=manager)


class TestDeviceHandlers:
    """Tests for device endpoints."""

    @pytest.mark.asyncio
    async def test_health(self, service):
        response = await service._handle_health(make_request())
        data = body_of(response)

        assert data["status"] == "ok"
        assert data["devices"] == 2
        assert data["disabled_sources"] == ["mdns"]

    @pytest.mark.asyncio
    async def test_list_devices_filters(self, service):
        """Should filter by type and online state."""
        response = await service._handle_list_devices(make_request(query={"type": "speaker"}))
        assert body_of(response)["total"] == 1

        response = await service._handle_list_devices(make_request(query={"online": "true"}))
        assert [d["mac"] for d in body_of(response)["devices"]] == [MAC]

    @pytest.mark.asyncio
    async def test_list_devices_error(self, service, manager):
        manager.get_all_devices.side_effect = RuntimeError("registry broken")

        response = await service._handle_list_devices(make_request())

        assert response.status == 500
        assert body_of(response) == {"status": "error", "message": "registry broken"}

    @pytest.mark.asyncio
    async def test_smart_devices_bad_score(self, service):
        response = await service._handle_smart_devices(make_request(query={"min_score": "high"}))
        assert response.status == 400

    @pytest.mark.asyncio
    async def test_get_device(self, service, manager):
        manager.get_device.return_value = Device(mac=MAC)

        response = await service._handle_get_device(make_request(match_info={"mac": MAC}))

        assert response.status == 200
        assert body_of(response)["device"]["mac"] == MAC

    @pytest.mark.asyncio
    async def test_get_device_not_found(self, service, manager):
        manager.get_device.return_value = None

        response = await service._handle_get_device(make_request(match_info={"mac": MAC}))

        assert response.status == 404

    @pytest.mark.asyncio
    async def test_set_label(self, service, manager):
        manager.set_user_label = AsyncMock(return_value=Device(mac=MAC, user_label="Kitchen"))

        response = await service._handle_set_label(
            make_request(match_info={"mac": MAC}, body={"label": "Kitchen"})
        )

        assert body_of(response)["device"]["user_label"] == "Kitchen"
        manager.set_user_label.assert_awaited_once_with(MAC, "Kitchen")

    @pytest.mark.asyncio
    async def test_set_label_unknown_device(self, service, manager):
        manager.set_user_label = AsyncMock(return_value=None)

        response = await service._handle_set_label(
            make_request(match_info={"mac": MAC}, body={"label": "Kitchen"})
        )

        assert response.status == 404


class TestScanAndExportHandlers:
    """Tests for scan control and export."""

    @pytest.mark.asyncio
    async def test_second_scan_rejected(self, service, manager):
        """Only one scan runs at a time."""
        manager.quick_scan = AsyncMock(return_value=[])
        service._scan_task = MagicMock()
        service._scan_task.done.return_value = False

        response = await service._handle_quick_scan(make_request())

        assert response.status == 409
        manager.quick_scan.assert_not_called()

    @pytest.mark.asyncio
    async def test_scan_started(self, service, manager):
        manager.full_scan = AsyncMock(return_value=[])

        response = await service._handle_full_scan(make_request())
        await service._scan_task

        assert body_of(response)["status"] == "started"
        manager.full_scan.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_export_csv(self, service, manager):
        manager.export_devices.return_value = b"MAC,IP\n"

        response = await service._handle_export(make_request(query={"format": "csv"}))

        assert response.body == b"MAC,IP\n"
        assert response.content_type == "text/csv"
        manager.export_devices.assert_called_once_with(ExportFormat.CSV)

    @pytest.mark.asyncio
    async def test_export_unknown_format(self, service):
        response = await service._handle_export(make_request(query={"format": "xml"}))
        assert response.status == 400

    def test_routes_registered(self, service):
        paths = {r.resource.canonical for r in service.build_app().router.routes()}
        assert "/api/devices/{mac}/label" in paths
        assert "/api/export" in paths
