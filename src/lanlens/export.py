"""
Device inventory export (JSON and CSV).
"""

from __future__ import annotations

import csv
import io
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from ._types import Device, now_utc

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "MAC",
    "IP",
    "Hostname",
    "Vendor",
    "Type",
    "Label",
    "SmartScore",
    "FirstSeen",
    "LastSeen",
    "Online",
]


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"

    @property
    def mime_type(self) -> str:
        return "application/json" if self == ExportFormat.JSON else "text/csv"


class ExportError(Exception):
    """Raised when an export cannot be produced or written."""
    pass


def _timestamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def export_json(devices: list[Device], exported_at: Optional[datetime] = None) -> bytes:
    payload = {
        "export_date": _timestamp(exported_at or now_utc()),
        "device_count": len(devices),
        "devices": [d.to_dict() for d in devices],
    }
    try:
        return json.dumps(payload, indent=2, sort_keys=True).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise ExportError(f"Failed to encode devices as JSON: {e}") from e


def export_csv(devices: list[Device]) -> bytes:
    """One row per device; fields containing commas, quotes or newlines are quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for device in devices:
        writer.writerow([
            device.mac,
            device.ip,
            device.hostname or "",
            device.vendor or "",
            device.device_type.value,
            device.user_label or "",
            device.smart_score,
            _timestamp(device.first_seen),
            _timestamp(device.last_seen),
            "true" if device.is_online else "false",
        ])
    return buffer.getvalue().encode("utf-8")


def export_devices(devices: list[Device], fmt: ExportFormat | str) -> bytes:
    """
    Serialize devices in the requested format.

    Raises:
        ExportError: Unknown format or encoding failure
    """
    try:
        fmt = ExportFormat(fmt)
    except ValueError as e:
        raise ExportError(f"Unsupported export format: {fmt}") from e

    logger.info(f"Exporting {len(devices)} devices as {fmt.value}")
    data = export_json(devices) if fmt == ExportFormat.JSON else export_csv(devices)
    logger.debug(f"Export complete: {len(data)} bytes")
    return data


def export_to_file(
    devices: list[Device],
    fmt: ExportFormat | str,
    directory: Path | str,
) -> Path:
    """
    Write an export file named ``lanlens-export-<timestamp>.<ext>``.

    Returns:
        Path of the written file
    """
    if not devices:
        raise ExportError("No devices to export")

    directory = Path(directory)
    if not directory.is_dir():
        raise ExportError(f"Invalid export directory: {directory}")

    data = export_devices(devices, fmt)
    stamp = _timestamp(now_utc()).replace(":", "-")
    path = directory / f"lanlens-export-{stamp}.{ExportFormat(fmt).value}"

    try:
        path.write_bytes(data)
    except OSError as e:
        logger.error(f"Failed to write export file {path}: {e}")
        raise ExportError(f"Failed to write export file: {e}") from e

    logger.info(f"Wrote export file {path.name}")
    return path
