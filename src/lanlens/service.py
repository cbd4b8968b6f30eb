"""
LanLens Service - Main orchestration loop.

Runs passive discovery, keeps the ARP view fresh, prunes old presence
data, and serves the management API.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from aiohttp import web

from .config import LanLensConfig
from .discovery_manager import DEFAULT_MIN_SMART_SCORE, DiscoveryManager
from .events import DeviceEvent
from .export import ExportError, ExportFormat

logger = logging.getLogger(__name__)

MAINTENANCE_INTERVAL_SECONDS = 3600.0


class LanLensService:
    """
    Main LanLens service.

    Owns the discovery manager and exposes it over a small JSON API.
    """

    def __init__(self, config: LanLensConfig, manager: Optional[DiscoveryManager] = None):
        """
        Initialize service.

        Args:
            config: LanLens configuration
            manager: Pre-built discovery manager, built from config if omitted
        """
        self.config = config
        self.manager = manager or DiscoveryManager.from_config(config)
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._scan_task: Optional[asyncio.Task] = None

        self._api_app: Optional[web.Application] = None
        self._api_runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        """Start the service and block until it is stopped."""
        logger.info("Starting LanLens")
        self._running = True

        self.manager.add_observer(self._log_events)
        self.manager.load_persisted_devices()
        await self.manager.start_passive_discovery()

        await self._start_api_server()
        await self._main_loop()

    async def stop(self) -> None:
        """Stop the service."""
        if not self._running:
            return
        logger.info("Stopping LanLens")
        self._running = False
        self._shutdown_event.set()

        if self._scan_task and not self._scan_task.done():
            self.manager.stop_scan()
        await self.manager.close()

        if self._api_runner:
            await self._api_runner.cleanup()
            self._api_runner = None

    def _log_events(self, events: list[DeviceEvent]) -> None:
        for event in events:
            logger.debug(f"{event.kind.value}: {event.device.mac} ({event.device.display_name})")

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/health", self._handle_health)
        app.router.add_get("/api/devices", self._handle_list_devices)
        app.router.add_get("/api/devices/smart", self._handle_smart_devices)
        app.router.add_get("/api/devices/{mac}", self._handle_get_device)
        app.router.add_put("/api/devices/{mac}/label", self._handle_set_label)
        app.router.add_post("/api/scans/quick", self._handle_quick_scan)
        app.router.add_post("/api/scans/full", self._handle_full_scan)
        app.router.add_post("/api/scans/stop", self._handle_stop_scan)
        app.router.add_post("/api/discovery/start", self._handle_start_discovery)
        app.router.add_post("/api/discovery/stop", self._handle_stop_discovery)
        app.router.add_post("/api/cache/clear", self._handle_clear_cache)
        app.router.add_get("/api/stats", self._handle_stats)
        app.router.add_get("/api/export", self._handle_export)
        return app

    async def _start_api_server(self) -> None:
        """Start API server."""
        self._api_app = self.build_app()
        self._api_runner = web.AppRunner(self._api_app)
        await self._api_runner.setup()

        site = web.TCPSite(self._api_runner, self.config.api_host, self.config.api_port)
        await site.start()

        logger.info(f"API server started on {self.config.api_host}:{self.config.api_port}")

    async def _main_loop(self) -> None:
        """Refresh the ARP view every TTL and run maintenance hourly."""
        logger.info("LanLens main loop started")
        interval = self.config.arp_ttl_seconds
        since_maintenance = 0.0

        while self._running:
            try:
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
                    break
                except asyncio.TimeoutError:
                    pass

                if self.config.arp_auto_refresh and self.manager.is_passive_running:
                    await self.manager.refresh_arp()

                since_maintenance += interval
                if since_maintenance >= MAINTENANCE_INTERVAL_SECONDS:
                    since_maintenance = 0.0
                    pruned = self.manager.prune(self.config.behavior_retention_days)
                    logger.info(f"Maintenance: pruned {pruned}")

            except Exception as e:
                logger.error(f"Error in main loop: {e}")
                await asyncio.sleep(interval)

        logger.info("LanLens main loop stopped")

    def _run_scan(self, scan_type: str) -> bool:
        if self._scan_task and not self._scan_task.done():
            return False
        coro = self.manager.full_scan() if scan_type == "full" else self.manager.quick_scan()
        self._scan_task = asyncio.create_task(coro)
        return True

    # -------------------------------------------------------------------------
    # API Handlers
    # -------------------------------------------------------------------------

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Handle GET /api/health."""
        return web.json_response({
            "status": "ok",
            "service": "lanlens",
            "devices": self.manager.device_count,
            "passive_discovery": self.manager.is_passive_running,
            "disabled_sources": self.manager.disabled_sources,
        })

    async def _handle_list_devices(self, request: web.Request) -> web.Response:
        """Handle GET /api/devices."""
        try:
            devices = self.manager.get_all_devices()
            device_type = request.query.get("type")
            if device_type:
                devices = [d for d in devices if d.device_type.value == device_type]
            if request.query.get("online") == "true":
                devices = [d for d in devices if d.is_online]

            return web.json_response({
                "devices": [d.to_dict() for d in devices],
                "total": len(devices),
            })
        except Exception as e:
            return web.json_response(
                {"status": "error", "message": str(e)},
                status=500,
            )

    async def _handle_smart_devices(self, request: web.Request) -> web.Response:
        """Handle GET /api/devices/smart."""
        try:
            min_score = int(request.query.get("min_score", str(DEFAULT_MIN_SMART_SCORE)))
            devices = self.manager.get_smart_devices(min_score)
            return web.json_response({
                "devices": [d.to_dict() for d in devices],
                "total": len(devices),
            })
        except ValueError:
            return web.json_response(
                {"status": "error", "message": "min_score must be an integer"},
                status=400,
            )

    async def _handle_get_device(self, request: web.Request) -> web.Response:
        """Handle GET /api/devices/{mac}."""
        try:
            mac = request.match_info["mac"]
            device = self.manager.get_device(mac)
            if not device:
                return web.json_response(
                    {"status": "error", "message": "Device not found"},
                    status=404,
                )

            return web.json_response({
                "device": device.to_dict(),
                "behavior": self.manager.get_behavior_profile(mac),
            })
        except Exception as e:
            return web.json_response(
                {"status": "error", "message": str(e)},
                status=500,
            )

    async def _handle_set_label(self, request: web.Request) -> web.Response:
        """Handle PUT /api/devices/{mac}/label."""
        try:
            mac = request.match_info["mac"]
            data = await request.json()
            device = await self.manager.set_user_label(mac, data.get("label"))

            if device:
                return web.json_response({"status": "ok", "device": device.to_dict()})
            else:
                return web.json_response(
                    {"status": "error", "message": "Device not found"},
                    status=404,
                )

        except Exception as e:
            return web.json_response(
                {"status": "error", "message": str(e)},
                status=500,
            )

    async def _handle_quick_scan(self, request: web.Request) -> web.Response:
        """Handle POST /api/scans/quick."""
        return self._scan_response("quick")

    async def _handle_full_scan(self, request: web.Request) -> web.Response:
        """Handle POST /api/scans/full."""
        return self._scan_response("full")

    def _scan_response(self, scan_type: str) -> web.Response:
        if not self._run_scan(scan_type):
            return web.json_response(
                {"status": "error", "message": "A scan is already running"},
                status=409,
            )
        return web.json_response({
            "status": "started",
            "message": f"Scan triggered ({scan_type})",
        })

    async def _handle_stop_scan(self, request: web.Request) -> web.Response:
        """Handle POST /api/scans/stop."""
        self.manager.stop_scan()
        return web.json_response({"status": "ok"})

    async def _handle_start_discovery(self, request: web.Request) -> web.Response:
        """Handle POST /api/discovery/start."""
        try:
            sources = await self.manager.start_passive_discovery()
            return web.json_response({"status": "ok", "sources": sources})
        except Exception as e:
            return web.json_response(
                {"status": "error", "message": str(e)},
                status=500,
            )

    async def _handle_stop_discovery(self, request: web.Request) -> web.Response:
        """Handle POST /api/discovery/stop."""
        await self.manager.stop_passive_discovery()
        return web.json_response({"status": "ok"})

    async def _handle_clear_cache(self, request: web.Request) -> web.Response:
        """Handle POST /api/cache/clear."""
        try:
            self.manager.clear_caches()
            return web.json_response({"status": "ok"})
        except Exception as e:
            return web.json_response(
                {"status": "error", "message": str(e)},
                status=500,
            )

    async def _handle_stats(self, request: web.Request) -> web.Response:
        """Handle GET /api/stats."""
        return web.json_response(self.manager.get_stats())

    async def _handle_export(self, request: web.Request) -> web.Response:
        """Handle GET /api/export?format=json|csv."""
        try:
            fmt = ExportFormat(request.query.get("format", "json"))
            data = self.manager.export_devices(fmt)
        except (ValueError, ExportError) as e:
            return web.json_response(
                {"status": "error", "message": str(e)},
                status=400,
            )

        return web.Response(
            body=data,
            content_type=fmt.mime_type,
            headers={"Content-Disposition": f'attachment; filename="lanlens-export.{fmt.value}"'},
        )


def main():
    """Entry point for the lanlens service."""
    import argparse

    parser = argparse.ArgumentParser(description="LanLens LAN device discovery service")
    parser.add_argument("--config", type=str, help="Path to config file")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="API host")
    parser.add_argument("--port", type=int, default=8085, help="API port")
    parser.add_argument("--log-level", type=str, default="INFO", help="Log level")
    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # Load configuration
    if args.config:
        config = LanLensConfig.from_yaml(Path(args.config))
    else:
        config = LanLensConfig.from_env()

    # Override with CLI args
    config.api_host = args.host
    config.api_port = args.port
    config.log_level = args.log_level

    # Fingerbank key lives in a separate file
    config.load_credentials()

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Config error: {error}")
        sys.exit(1)

    service = LanLensService(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(service.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        loop.run_until_complete(service.start())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        loop.run_until_complete(service.stop())
        loop.close()


if __name__ == "__main__":
    main()
