"""
Base classes for discovery sources.

Adapters only report raw observations; the discovery manager merges
them into the device registry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .._types import DeviceType, PortProtocol, ServiceType, now_utc


@dataclass
class ARPEntry:
    """One row of the system ARP table."""
    ip: str
    mac: str
    interface: Optional[str] = None
    hostname: Optional[str] = None
    seen_at: datetime = field(default_factory=now_utc)


@dataclass
class ServiceRecord:
    """
    A service announced over mDNS or SSDP.

    SSDP records carry their headers in ``txt`` (``server``, ``usn``,
    ``st``, ``location``) and use ``name`` for the search target.
    """
    name: str
    type: ServiceType
    host_ip: Optional[str] = None
    port: Optional[int] = None
    service_type: Optional[str] = None
    host_name: Optional[str] = None
    txt: dict[str, str] = field(default_factory=dict)

    @property
    def server(self) -> Optional[str]:
        return self.txt.get("server")

    @property
    def usn(self) -> Optional[str]:
        return self.txt.get("usn")

    @property
    def st(self) -> Optional[str]:
        return self.txt.get("st")

    @property
    def location(self) -> Optional[str]:
        return self.txt.get("location")


@dataclass
class PortInfo:
    """An open port reported by the port scanner."""
    port: int
    protocol: PortProtocol = PortProtocol.TCP
    service: Optional[str] = None
    version: Optional[str] = None
    is_smart_indicator: bool = False
    smart_weight: int = 0
    inferred_type: DeviceType = DeviceType.UNKNOWN


class DiscoveryMethod(ABC):
    """Base class for discovery sources."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of this discovery source."""
        pass

    @abstractmethod
    async def discover(self) -> list[Any]:
        """
        Run one discovery pass.

        Returns the raw observations produced by this source.
        """
        pass

    async def is_available(self) -> bool:
        """Check if this discovery source can run on this host."""
        return True
