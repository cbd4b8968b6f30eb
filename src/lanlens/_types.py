"""
Type definitions for LanLens.

These dataclasses define the core domain model shared by discovery,
fingerprinting, inference and behavior tracking. Everything here is a
plain value type; ownership of live instances belongs to the registry,
the caches and the behavior tracker.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def now_utc() -> datetime:
    """Get current UTC timestamp (replaces deprecated datetime.utcnow())."""
    return datetime.now(timezone.utc)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class DeviceType(str, Enum):
    """
    Device classification types.

    Declaration order matters: when two types reach the same inference
    score, the one declared first wins.
    """
    SMART_TV = "smart_tv"
    SPEAKER = "speaker"
    CAMERA = "camera"
    THERMOSTAT = "thermostat"
    LIGHT = "light"
    PLUG = "plug"
    HUB = "hub"
    PRINTER = "printer"
    NAS = "nas"
    COMPUTER = "computer"
    PHONE = "phone"
    TABLET = "tablet"
    ROUTER = "router"
    ACCESS_POINT = "access_point"
    APPLIANCE = "appliance"
    UNKNOWN = "unknown"


class SignalSource(str, Enum):
    """Where a piece of inference evidence came from."""
    FINGERPRINT = "fingerprint"
    MDNS_TXT = "mdns_txt"
    UPNP = "upnp"
    PORT_BANNER = "port_banner"
    MDNS = "mdns"
    SSDP = "ssdp"
    DHCP_FINGERPRINT = "dhcp_fingerprint"
    HOSTNAME = "hostname"
    MAC_ANALYSIS = "mac_analysis"
    BEHAVIOR = "behavior"
    PORT = "port"


class SmartSignalType(str, Enum):
    """Kinds of evidence that contribute to a device's smart score."""
    OPEN_PORT = "open_port"
    MDNS_SERVICE = "mdns_service"
    SSDP_SERVICE = "ssdp_service"
    HTTP_SERVER = "http_server"
    MAC_VENDOR = "mac_vendor"
    HOSTNAME = "hostname"


class PortProtocol(str, Enum):
    TCP = "tcp"
    UDP = "udp"


class PortState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    FILTERED = "filtered"


class ServiceType(str, Enum):
    """Protocol a service was announced over."""
    MDNS = "mdns"
    SSDP = "ssdp"
    UPNP = "upnp"


class UpdateKind(str, Enum):
    """Change notification kinds emitted by the registry."""
    DISCOVERED = "discovered"
    UPDATED = "updated"
    WENT_OFFLINE = "went_offline"


class FingerprintSource(str, Enum):
    """Which lookup origin(s) contributed to a fingerprint."""
    UPNP = "upnp"
    FINGERBANK = "fingerbank"
    BOTH = "both"
    NONE = "none"


class BehaviorClassification(str, Enum):
    """Category derived from a device's historical uptime pattern."""
    INFRASTRUCTURE = "infrastructure"
    SERVER = "server"
    IOT = "iot"
    WORKSTATION = "workstation"
    PORTABLE = "portable"
    MOBILE = "mobile"
    GUEST = "guest"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Signal:
    """
    A single piece of typed evidence suggesting a device type.

    Signals are ephemeral: they are produced by the factory functions in
    ``inference``, scored, and thrown away. Confidence is clamped to [0, 1].
    """
    source: SignalSource
    suggested_type: DeviceType
    confidence: float

    def __post_init__(self) -> None:
        clamped = max(0.0, min(1.0, float(self.confidence)))
        object.__setattr__(self, "confidence", clamped)


@dataclass
class Port:
    """An open port discovered on a device."""
    number: int
    protocol: PortProtocol = PortProtocol.TCP
    state: PortState = PortState.OPEN
    service_name: Optional[str] = None
    banner: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "protocol": self.protocol.value,
            "state": self.state.value,
            "service_name": self.service_name,
            "banner": self.banner,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Port":
        return cls(
            number=int(data["number"]),
            protocol=PortProtocol(data.get("protocol", "tcp")),
            state=PortState(data.get("state", "open")),
            service_name=data.get("service_name"),
            banner=data.get("banner"),
        )


@dataclass
class DiscoveredService:
    """A service announced by a device over mDNS, SSDP or UPnP."""
    name: str
    type: ServiceType
    port: Optional[int] = None
    txt: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "port": self.port,
            "txt": dict(self.txt),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiscoveredService":
        return cls(
            name=data["name"],
            type=ServiceType(data["type"]),
            port=data.get("port"),
            txt=dict(data.get("txt") or {}),
        )


@dataclass
class SmartSignal:
    """Persisted smart-score evidence attached to a device."""
    type: SmartSignalType
    description: str
    weight: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "description": self.description, "weight": self.weight}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SmartSignal":
        return cls(
            type=SmartSignalType(data["type"]),
            description=data["description"],
            weight=int(data["weight"]),
        )


@dataclass
class UPnPService:
    """A service entry from a UPnP device description."""
    service_type: str
    service_id: str
    control_url: Optional[str] = None
    event_sub_url: Optional[str] = None
    scpd_url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_type": self.service_type,
            "service_id": self.service_id,
            "control_url": self.control_url,
            "event_sub_url": self.event_sub_url,
            "scpd_url": self.scpd_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UPnPService":
        return cls(
            service_type=data["service_type"],
            service_id=data["service_id"],
            control_url=data.get("control_url"),
            event_sub_url=data.get("event_sub_url"),
            scpd_url=data.get("scpd_url"),
        )


@dataclass
class DeviceFingerprint:
    """
    Merged identification data for a device.

    UPnP fields come from the device's own description document; the
    fingerbank fields come from the remote fingerprint service or the
    bundled offline database.
    """
    # UPnP description
    friendly_name: Optional[str] = None
    manufacturer: Optional[str] = None
    manufacturer_url: Optional[str] = None
    model_description: Optional[str] = None
    model_name: Optional[str] = None
    model_number: Optional[str] = None
    serial_number: Optional[str] = None
    upnp_device_type: Optional[str] = None
    upnp_services: Optional[list[UPnPService]] = None

    # Remote fingerprint service
    fingerbank_device_name: Optional[str] = None
    fingerbank_device_id: Optional[int] = None
    fingerbank_parents: Optional[list[str]] = None
    fingerbank_score: Optional[int] = None
    operating_system: Optional[str] = None
    os_version: Optional[str] = None
    is_mobile: Optional[bool] = None
    is_tablet: Optional[bool] = None

    # Metadata
    source: FingerprintSource = FingerprintSource.NONE
    timestamp: datetime = field(default_factory=now_utc)
    cache_hit: bool = False

    @property
    def has_data(self) -> bool:
        """True if any identifying field is populated."""
        return any((
            self.friendly_name,
            self.manufacturer,
            self.model_name,
            self.fingerbank_device_name,
            self.operating_system,
        ))

    @property
    def best_name(self) -> Optional[str]:
        return self.fingerbank_device_name or self.friendly_name or self.model_name

    @property
    def best_manufacturer(self) -> Optional[str]:
        if self.manufacturer:
            return self.manufacturer
        if self.fingerbank_parents:
            return self.fingerbank_parents[0]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "friendly_name": self.friendly_name,
            "manufacturer": self.manufacturer,
            "manufacturer_url": self.manufacturer_url,
            "model_description": self.model_description,
            "model_name": self.model_name,
            "model_number": self.model_number,
            "serial_number": self.serial_number,
            "upnp_device_type": self.upnp_device_type,
            "upnp_services": (
                [s.to_dict() for s in self.upnp_services]
                if self.upnp_services is not None else None
            ),
            "fingerbank_device_name": self.fingerbank_device_name,
            "fingerbank_device_id": self.fingerbank_device_id,
            "fingerbank_parents": self.fingerbank_parents,
            "fingerbank_score": self.fingerbank_score,
            "operating_system": self.operating_system,
            "os_version": self.os_version,
            "is_mobile": self.is_mobile,
            "is_tablet": self.is_tablet,
            "source": self.source.value,
            "timestamp": _iso(self.timestamp),
            "cache_hit": self.cache_hit,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeviceFingerprint":
        services = data.get("upnp_services")
        return cls(
            friendly_name=data.get("friendly_name"),
            manufacturer=data.get("manufacturer"),
            manufacturer_url=data.get("manufacturer_url"),
            model_description=data.get("model_description"),
            model_name=data.get("model_name"),
            model_number=data.get("model_number"),
            serial_number=data.get("serial_number"),
            upnp_device_type=data.get("upnp_device_type"),
            upnp_services=(
                [UPnPService.from_dict(s) for s in services]
                if services is not None else None
            ),
            fingerbank_device_name=data.get("fingerbank_device_name"),
            fingerbank_device_id=data.get("fingerbank_device_id"),
            fingerbank_parents=data.get("fingerbank_parents"),
            fingerbank_score=data.get("fingerbank_score"),
            operating_system=data.get("operating_system"),
            os_version=data.get("os_version"),
            is_mobile=data.get("is_mobile"),
            is_tablet=data.get("is_tablet"),
            source=FingerprintSource(data.get("source", "none")),
            timestamp=_from_iso(data.get("timestamp")) or now_utc(),
            cache_hit=bool(data.get("cache_hit", False)),
        )


@dataclass
class Device:
    """
    A device on the local network, keyed by its MAC address.

    The MAC is uppercased on construction and never changes afterwards.
    ``user_label`` is only ever written by a human.
    """
    mac: str
    ip: str = ""
    hostname: Optional[str] = None
    vendor: Optional[str] = None
    first_seen: datetime = field(default_factory=now_utc)
    last_seen: datetime = field(default_factory=now_utc)
    is_online: bool = True

    open_ports: list[Port] = field(default_factory=list)
    services: list[DiscoveredService] = field(default_factory=list)

    smart_score: int = 0
    smart_signals: list[SmartSignal] = field(default_factory=list)
    device_type: DeviceType = DeviceType.UNKNOWN

    user_label: Optional[str] = None
    fingerprint: Optional[DeviceFingerprint] = None

    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        self.mac = self.mac.upper()

    @property
    def short_id(self) -> str:
        """Last five characters of the MAC with separators removed."""
        return self.mac.replace(":", "")[-5:]

    @property
    def display_name(self) -> str:
        if self.user_label:
            return self.user_label
        if self.hostname:
            return self.hostname
        if self.fingerprint and self.fingerprint.fingerbank_device_name:
            return f"{self.fingerprint.fingerbank_device_name} ({self.short_id})"
        if self.vendor:
            return f"{self.vendor} ({self.short_id})"
        return f"Device ({self.short_id})"

    def has_port(self, number: int, protocol: PortProtocol = PortProtocol.TCP) -> bool:
        return any(p.number == number and p.protocol == protocol for p in self.open_ports)

    def has_service(self, name: str, service_type: ServiceType) -> bool:
        return any(s.name == name and s.type == service_type for s in self.services)

    def has_smart_signal(self, signal_type: SmartSignalType, description: str) -> bool:
        return any(
            s.type == signal_type and s.description == description
            for s in self.smart_signals
        )

    def copy(self) -> "Device":
        """Deep copy, used to hand snapshots to observers."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "mac": self.mac,
            "ip": self.ip,
            "hostname": self.hostname,
            "vendor": self.vendor,
            "first_seen": _iso(self.first_seen),
            "last_seen": _iso(self.last_seen),
            "is_online": self.is_online,
            "open_ports": [p.to_dict() for p in self.open_ports],
            "services": [s.to_dict() for s in self.services],
            "smart_score": self.smart_score,
            "smart_signals": [s.to_dict() for s in self.smart_signals],
            "device_type": self.device_type.value,
            "user_label": self.user_label,
            "fingerprint": self.fingerprint.to_dict() if self.fingerprint else None,
            "display_name": self.display_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Device":
        fingerprint = data.get("fingerprint")
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            mac=data["mac"],
            ip=data.get("ip", ""),
            hostname=data.get("hostname"),
            vendor=data.get("vendor"),
            first_seen=_from_iso(data.get("first_seen")) or now_utc(),
            last_seen=_from_iso(data.get("last_seen")) or now_utc(),
            is_online=bool(data.get("is_online", False)),
            open_ports=[Port.from_dict(p) for p in data.get("open_ports", [])],
            services=[DiscoveredService.from_dict(s) for s in data.get("services", [])],
            smart_score=int(data.get("smart_score", 0)),
            smart_signals=[SmartSignal.from_dict(s) for s in data.get("smart_signals", [])],
            device_type=DeviceType(data.get("device_type", "unknown")),
            user_label=data.get("user_label"),
            fingerprint=DeviceFingerprint.from_dict(fingerprint) if fingerprint else None,
        )


@dataclass
class PresenceRecord:
    """A single timestamped online/offline observation of a device."""
    mac: str
    timestamp: datetime
    is_online: bool
    ip: Optional[str] = None
    services: list[str] = field(default_factory=list)

    @property
    def hour_of_day(self) -> int:
        return self.timestamp.hour


@dataclass
class UptimeStats:
    """Aggregate presence statistics for a device."""
    total_observations: int = 0
    online_observations: int = 0
    uptime_percent: float = 0.0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None


@dataclass
class BehaviorProfile:
    """Per-device presence accumulator used for behavior classification."""
    device_id: str
    presence_history: list[PresenceRecord] = field(default_factory=list)
    observation_count: int = 0
    uptime_percent: float = 0.0
    peak_hours: list[int] = field(default_factory=list)
    has_daily_pattern: bool = False
    classification: BehaviorClassification = BehaviorClassification.UNKNOWN
    consistent_services: list[str] = field(default_factory=list)
    is_always_on: bool = False
    is_intermittent: bool = False
    first_observed: Optional[datetime] = None
    last_observed: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "observation_count": self.observation_count,
            "uptime_percent": round(self.uptime_percent, 2),
            "peak_hours": list(self.peak_hours),
            "has_daily_pattern": self.has_daily_pattern,
            "classification": self.classification.value,
            "consistent_services": list(self.consistent_services),
            "is_always_on": self.is_always_on,
            "is_intermittent": self.is_intermittent,
            "first_observed": _iso(self.first_observed),
            "last_observed": _iso(self.last_observed),
        }


@dataclass
class ScanSummary:
    """Result of a quick or full scan across all known devices."""
    scan_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    scan_type: str = "quick"  # quick, full
    started_at: datetime = field(default_factory=now_utc)
    completed_at: Optional[datetime] = None
    devices_scanned: int = 0
    ports_found: int = 0
    errors: list[str] = field(default_factory=list)
    status: str = "running"  # running, completed, cancelled

    def to_dict(self) -> dict[str, Any]:
        return {
            "scan_id": self.scan_id,
            "scan_type": self.scan_type,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "devices_scanned": self.devices_scanned,
            "ports_found": self.ports_found,
            "errors": list(self.errors),
            "status": self.status,
        }


@dataclass
class SSHBannerInfo:
    """Parsed SSH identification line."""
    raw_banner: str
    protocol_version: Optional[str] = None
    software_version: Optional[str] = None
    os_hint: Optional[str] = None  # macOS, linux, windows, embedded, freebsd
    is_network_equipment: bool = False
    is_nas: bool = False


@dataclass
class HTTPBannerInfo:
    """Interesting headers from an HTTP HEAD response."""
    server: Optional[str] = None
    powered_by: Optional[str] = None
    authenticate: Optional[str] = None
    content_type: Optional[str] = None
    is_admin_interface: bool = False
    is_camera_interface: bool = False
    is_printer_interface: bool = False
    is_router_interface: bool = False
    is_nas_interface: bool = False


@dataclass
class RTSPBannerInfo:
    """Parsed RTSP OPTIONS response."""
    server: Optional[str] = None
    methods: list[str] = field(default_factory=list)
    requires_auth: bool = False
    camera_vendor: Optional[str] = None


@dataclass
class PortBannerData:
    """Banners grabbed from a single host."""
    ssh: Optional[SSHBannerInfo] = None
    http: Optional[HTTPBannerInfo] = None
    https: Optional[HTTPBannerInfo] = None
    rtsp: Optional[RTSPBannerInfo] = None

    @property
    def is_empty(self) -> bool:
        return not (self.ssh or self.http or self.https or self.rtsp)
