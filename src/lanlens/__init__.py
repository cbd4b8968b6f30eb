"""
LanLens - LAN device discovery, fingerprinting and classification.

Devices are found passively (ARP table, SSDP, mDNS) and actively (port
scans, banner grabs), identified through UPnP descriptions and Fingerbank,
and classified by weighted signal inference.

Sovereignty:
    - All data stored locally in ~/.lanlens/lanlens.db
    - Works fully offline; Fingerbank lookups are optional
"""

__version__ = "0.1.0"

from ._types import (
    BehaviorClassification,
    BehaviorProfile,
    Device,
    DeviceFingerprint,
    DeviceType,
    DiscoveredService,
    Port,
    ScanSummary,
    Signal,
    SignalSource,
    SmartSignal,
    UpdateKind,
)

__all__ = [
    "__version__",
    "BehaviorClassification",
    "BehaviorProfile",
    "Device",
    "DeviceFingerprint",
    "DeviceType",
    "DiscoveredService",
    "Port",
    "ScanSummary",
    "Signal",
    "SignalSource",
    "SmartSignal",
    "UpdateKind",
]
