"""
MAC address analysis.

Derives what can be learned from the address alone: whether it is a
randomized (privacy) address, whether the OUI belongs to a hypervisor,
how trustworthy the vendor attribution is, roughly how old the OUI is,
and which device categories the vendor is known to make.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ._types import DeviceType, Signal, SignalSource
from .vendor import lookup_vendor, normalize_mac, oui_prefix

logger = logging.getLogger(__name__)


class VendorConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    RANDOMIZED = "randomized"
    UNKNOWN = "unknown"


class OUIAge(str, Enum):
    LEGACY = "legacy"
    ESTABLISHED = "established"
    MODERN = "modern"
    RECENT = "recent"
    UNKNOWN = "unknown"


VM_OUIS = frozenset({
    "00:0C:29",  # VMware
    "00:50:56",  # VMware
    "00:1C:42",  # Parallels
    "00:03:FF",  # Microsoft Hyper-V
    "08:00:27",  # VirtualBox
    "52:54:00",  # QEMU/KVM
    "00:16:3E",  # Xen
})

LEGACY_VENDORS = (
    "3com", "novell", "dec", "sgi", "digital", "cabletron", "compaq",
    "proteon", "ungermann-bass", "wellfleet",
)
ESTABLISHED_VENDORS = (
    "cisco", "hp", "dell", "netgear", "linksys", "d-link", "buffalo",
    "zyxel", "juniper", "aruba", "motorola",
)
MODERN_VENDORS = (
    "ubiquiti", "ring", "nest", "wemo", "belkin", "lifx", "ecobee",
    "august", "arlo", "dropcam", "canary",
)
RECENT_VENDORS = (
    "wyze", "eufy", "meross", "govee", "switchbot", "tuya", "shelly",
    "tapo", "kasa",
)

HIGH_CONFIDENCE_VENDORS = (
    "apple", "samsung", "google", "amazon", "sony", "lg", "microsoft",
    "intel", "nvidia", "amd", "dell", "hp", "lenovo", "asus", "cisco",
    "netgear", "ubiquiti",
)
MEDIUM_CONFIDENCE_VENDORS = (
    "tp-link", "d-link", "zyxel", "buffalo", "belkin", "linksys", "arris",
    "motorola", "huawei", "xiaomi", "roku", "sonos", "philips", "nest",
    "ring", "ecobee", "honeywell", "lutron", "synology", "qnap",
    "raspberry pi",
)

# Most specific names first so "philips hue" wins over "philips".
VENDOR_CATEGORIES: list[tuple[str, list[DeviceType]]] = [
    ("google nest", [DeviceType.THERMOSTAT, DeviceType.SPEAKER, DeviceType.CAMERA, DeviceType.HUB]),
    ("philips hue", [DeviceType.LIGHT, DeviceType.HUB]),
    ("tp-link kasa", [DeviceType.PLUG, DeviceType.LIGHT]),
    ("belkin wemo", [DeviceType.PLUG]),
    ("raspberry pi", [DeviceType.COMPUTER, DeviceType.HUB]),
    ("apple", [DeviceType.PHONE, DeviceType.TABLET, DeviceType.COMPUTER,
               DeviceType.SMART_TV, DeviceType.SPEAKER, DeviceType.ACCESS_POINT]),
    ("samsung", [DeviceType.PHONE, DeviceType.TABLET, DeviceType.SMART_TV, DeviceType.APPLIANCE]),
    ("google", [DeviceType.PHONE, DeviceType.SMART_TV, DeviceType.SPEAKER,
                DeviceType.THERMOSTAT, DeviceType.HUB]),
    ("amazon", [DeviceType.SPEAKER, DeviceType.SMART_TV, DeviceType.TABLET, DeviceType.HUB]),
    ("ring", [DeviceType.CAMERA]),
    ("sony", [DeviceType.SMART_TV, DeviceType.SPEAKER, DeviceType.CAMERA]),
    ("lg", [DeviceType.SMART_TV, DeviceType.APPLIANCE]),
    ("roku", [DeviceType.SMART_TV]),
    ("sonos", [DeviceType.SPEAKER]),
    ("philips", [DeviceType.SMART_TV, DeviceType.LIGHT]),
    ("nest", [DeviceType.THERMOSTAT, DeviceType.CAMERA, DeviceType.SPEAKER]),
    ("ecobee", [DeviceType.THERMOSTAT]),
    ("ubiquiti", [DeviceType.ROUTER, DeviceType.ACCESS_POINT, DeviceType.CAMERA]),
    ("cisco", [DeviceType.ROUTER, DeviceType.ACCESS_POINT, DeviceType.HUB]),
    ("netgear", [DeviceType.ROUTER, DeviceType.ACCESS_POINT, DeviceType.NAS]),
    ("tp-link", [DeviceType.ROUTER, DeviceType.ACCESS_POINT, DeviceType.PLUG]),
    ("linksys", [DeviceType.ROUTER, DeviceType.ACCESS_POINT]),
    ("asus", [DeviceType.ROUTER, DeviceType.COMPUTER]),
    ("synology", [DeviceType.NAS]),
    ("qnap", [DeviceType.NAS]),
    ("hp", [DeviceType.PRINTER, DeviceType.COMPUTER]),
    ("dell", [DeviceType.COMPUTER]),
    ("intel", [DeviceType.COMPUTER]),
    ("espressif", [DeviceType.PLUG, DeviceType.LIGHT, DeviceType.APPLIANCE]),
    ("tuya", [DeviceType.PLUG, DeviceType.LIGHT, DeviceType.APPLIANCE]),
    ("wyze", [DeviceType.CAMERA, DeviceType.PLUG, DeviceType.LIGHT]),
    ("arlo", [DeviceType.CAMERA]),
    ("logitech", [DeviceType.CAMERA, DeviceType.COMPUTER]),
    ("august", [DeviceType.APPLIANCE]),
    ("schlage", [DeviceType.APPLIANCE]),
    ("honeywell", [DeviceType.THERMOSTAT, DeviceType.APPLIANCE]),
    ("lutron", [DeviceType.LIGHT, DeviceType.HUB]),
    ("lifx", [DeviceType.LIGHT]),
    ("nanoleaf", [DeviceType.LIGHT]),
    ("yeelight", [DeviceType.LIGHT]),
    ("belkin", [DeviceType.PLUG, DeviceType.ROUTER]),
    ("simplisafe", [DeviceType.HUB, DeviceType.CAMERA]),
    ("xiaomi", [DeviceType.PHONE, DeviceType.APPLIANCE, DeviceType.CAMERA]),
]

# Vendors that essentially only make one kind of device.
VENDOR_SPECIALIZATIONS: list[tuple[str, DeviceType]] = [
    ("philips hue", DeviceType.LIGHT),
    ("sonos", DeviceType.SPEAKER),
    ("roku", DeviceType.SMART_TV),
    ("ecobee", DeviceType.THERMOSTAT),
    ("ring", DeviceType.CAMERA),
    ("arlo", DeviceType.CAMERA),
    ("synology", DeviceType.NAS),
    ("qnap", DeviceType.NAS),
    ("lifx", DeviceType.LIGHT),
    ("nanoleaf", DeviceType.LIGHT),
    ("yeelight", DeviceType.LIGHT),
    ("august", DeviceType.APPLIANCE),
    ("schlage", DeviceType.APPLIANCE),
    ("simplisafe", DeviceType.HUB),
]


@dataclass
class MACAnalysis:
    """Everything derived from a single MAC address."""
    mac: str
    oui: str
    vendor: Optional[str] = None
    is_locally_administered: bool = False
    is_randomized: bool = False
    is_virtual_machine: bool = False
    vendor_confidence: VendorConfidence = VendorConfidence.UNKNOWN
    age_estimate: OUIAge = OUIAge.UNKNOWN
    vendor_categories: list[DeviceType] = field(default_factory=list)
    vendor_specialization: Optional[DeviceType] = None


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(k in text for k in keywords)


def vendor_categories(vendor: Optional[str]) -> list[DeviceType]:
    if not vendor:
        return []
    lower = vendor.lower()
    for name, categories in VENDOR_CATEGORIES:
        if name in lower:
            return list(categories)
    return []


def vendor_specialization(vendor: Optional[str]) -> Optional[DeviceType]:
    if not vendor:
        return None
    lower = vendor.lower()
    for name, device_type in VENDOR_SPECIALIZATIONS:
        if name in lower:
            return device_type
    return None


def _vendor_confidence(vendor: Optional[str], randomized: bool) -> VendorConfidence:
    if randomized:
        return VendorConfidence.RANDOMIZED
    if not vendor:
        return VendorConfidence.UNKNOWN
    lower = vendor.lower()
    if _contains_any(lower, HIGH_CONFIDENCE_VENDORS):
        return VendorConfidence.HIGH
    if _contains_any(lower, MEDIUM_CONFIDENCE_VENDORS):
        return VendorConfidence.MEDIUM
    return VendorConfidence.LOW


def _age_estimate(vendor: Optional[str]) -> OUIAge:
    if not vendor:
        return OUIAge.UNKNOWN
    lower = vendor.lower()
    if _contains_any(lower, LEGACY_VENDORS):
        return OUIAge.LEGACY
    if _contains_any(lower, RECENT_VENDORS):
        return OUIAge.RECENT
    if _contains_any(lower, MODERN_VENDORS):
        return OUIAge.MODERN
    if _contains_any(lower, ESTABLISHED_VENDORS):
        return OUIAge.ESTABLISHED
    if _contains_any(lower, HIGH_CONFIDENCE_VENDORS):
        return OUIAge.ESTABLISHED
    return OUIAge.UNKNOWN


def analyze_mac(mac: str, vendor: Optional[str] = None) -> MACAnalysis:
    """
    Analyze a MAC address.

    Args:
        mac: MAC address in any common notation
        vendor: Known vendor; looked up from the OUI table when omitted

    Returns:
        MACAnalysis with all derived attributes
    """
    normalized = normalize_mac(mac)
    try:
        first_octet = int(normalized[:2], 16)
    except ValueError:
        first_octet = 0

    locally_administered = bool(first_octet & 0x02)
    multicast = bool(first_octet & 0x01)
    randomized = locally_administered and not multicast

    if vendor is None:
        vendor = lookup_vendor(normalized)

    oui = oui_prefix(normalized)
    analysis = MACAnalysis(
        mac=normalized,
        oui=oui,
        vendor=vendor,
        is_locally_administered=locally_administered,
        is_randomized=randomized,
        is_virtual_machine=oui in VM_OUIS,
        vendor_confidence=_vendor_confidence(vendor, randomized),
        age_estimate=_age_estimate(vendor),
        vendor_categories=vendor_categories(vendor),
        vendor_specialization=vendor_specialization(vendor),
    )
    logger.debug(
        f"MAC analysis {normalized}: vendor={vendor} randomized={randomized} "
        f"vm={analysis.is_virtual_machine} confidence={analysis.vendor_confidence.value}"
    )
    return analysis


def signals_from_mac_analysis(analysis: MACAnalysis) -> list[Signal]:
    """Translate a MAC analysis into inference signals."""
    signals: list[Signal] = []

    def add(device_type: DeviceType, confidence: float) -> None:
        signals.append(Signal(SignalSource.MAC_ANALYSIS, device_type, confidence))

    if analysis.is_randomized:
        # Privacy addresses are overwhelmingly phones and tablets
        add(DeviceType.PHONE, 0.60)

    if analysis.is_virtual_machine:
        add(DeviceType.COMPUTER, 0.85)

    if analysis.age_estimate == OUIAge.LEGACY:
        add(DeviceType.ROUTER, 0.40)

    specialization = analysis.vendor_specialization
    if specialization is not None:
        if analysis.vendor_confidence == VendorConfidence.HIGH:
            add(specialization, 0.70)
        elif analysis.vendor_confidence == VendorConfidence.MEDIUM:
            add(specialization, 0.55)

    if (
        len(analysis.vendor_categories) == 1
        and analysis.vendor_confidence == VendorConfidence.HIGH
        and analysis.vendor_categories[0] != specialization
    ):
        add(analysis.vendor_categories[0], 0.65)

    return signals
