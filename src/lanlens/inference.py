"""
Signal-based device type inference.

Every discovery source contributes ``Signal`` objects (a suggested type
plus a confidence). The engine weights each signal by how reliable its
source is and sums per type; the highest total wins.

The factory functions below turn raw per-protocol evidence into signals.
Their matching rules live in module-level tables so they can be read,
tested and extended without touching control flow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Union

from ._types import (
    BehaviorClassification,
    DeviceFingerprint,
    DeviceType,
    HTTPBannerInfo,
    PortBannerData,
    RTSPBannerInfo,
    Signal,
    SignalSource,
    SSHBannerInfo,
)

logger = logging.getLogger(__name__)


SOURCE_WEIGHTS: dict[SignalSource, float] = {
    SignalSource.FINGERPRINT: 0.9,
    SignalSource.MDNS_TXT: 0.85,
    SignalSource.UPNP: 0.8,
    SignalSource.PORT_BANNER: 0.75,
    SignalSource.MDNS: 0.7,
    SignalSource.SSDP: 0.7,
    SignalSource.DHCP_FINGERPRINT: 0.65,
    SignalSource.HOSTNAME: 0.6,
    SignalSource.MAC_ANALYSIS: 0.6,
    SignalSource.BEHAVIOR: 0.6,
    SignalSource.PORT: 0.5,
}
DEFAULT_SOURCE_WEIGHT = 0.5
MAX_SOURCE_WEIGHT = 0.9

# Tie-break order: earlier declared DeviceType wins on equal score.
_TYPE_ORDER = {t: i for i, t in enumerate(DeviceType)}


def source_weight(source: SignalSource) -> float:
    return SOURCE_WEIGHTS.get(source, DEFAULT_SOURCE_WEIGHT)


# =============================================================================
# Aggregation
# =============================================================================

def score_signals(signals: Iterable[Signal]) -> dict[DeviceType, float]:
    """Sum ``confidence * source_weight`` per suggested type, skipping unknown."""
    scores: dict[DeviceType, float] = {}
    for signal in signals:
        if signal.suggested_type == DeviceType.UNKNOWN:
            continue
        weighted = signal.confidence * source_weight(signal.source)
        scores[signal.suggested_type] = scores.get(signal.suggested_type, 0.0) + weighted
    return scores


def _best(scores: dict[DeviceType, float]) -> tuple[DeviceType, float]:
    best_type = DeviceType.UNKNOWN
    best_score = 0.0
    for device_type in sorted(scores, key=_TYPE_ORDER.__getitem__):
        if scores[device_type] > best_score:
            best_type = device_type
            best_score = scores[device_type]
    return best_type, best_score


def infer(signals: Sequence[Signal]) -> DeviceType:
    """
    Return the device type with the highest weighted score.

    Returns ``DeviceType.UNKNOWN`` when no type scores above zero.
    """
    best_type, _ = _best(score_signals(signals))
    return best_type


def infer_with_confidence(signals: Sequence[Signal]) -> tuple[DeviceType, float]:
    """
    Like ``infer`` but also return a normalized confidence in [0, 1].

    The confidence is the winning score divided by the score the same
    number of signals would reach at the maximum source weight.
    """
    if not signals:
        return DeviceType.UNKNOWN, 0.0

    best_type, best_score = _best(score_signals(signals))
    if best_type == DeviceType.UNKNOWN:
        return DeviceType.UNKNOWN, 0.0

    max_possible = len(signals) * MAX_SOURCE_WEIGHT
    confidence = max(0.0, min(1.0, best_score / max_possible))
    return best_type, confidence


# =============================================================================
# Rule tables
# =============================================================================

@dataclass(frozen=True)
class KeywordRule:
    """
    Substring rule over a lowercased text.

    Matches when every ``all_of`` keyword is present and at least one
    ``any_of`` keyword is present or the text ends with one of
    ``suffixes``. A rule with neither ``any_of`` nor ``suffixes`` only
    needs ``all_of``.
    """
    any_of: tuple[str, ...]
    device_type: DeviceType
    confidence: float
    all_of: tuple[str, ...] = ()
    suffixes: tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        if not all(k in text for k in self.all_of):
            return False
        if not self.any_of and not self.suffixes:
            return True
        return any(k in text for k in self.any_of) or any(text.endswith(s) for s in self.suffixes)


# A table entry is either a rule (always evaluated) or a tuple of rules of
# which only the first match fires.
RuleEntry = Union[KeywordRule, tuple[KeywordRule, ...]]


def _apply(text: str, table: Sequence[RuleEntry]) -> list[tuple[DeviceType, float]]:
    hits = []
    for entry in table:
        group = entry if isinstance(entry, tuple) else (entry,)
        for rule in group:
            if rule.matches(text):
                hits.append((rule.device_type, rule.confidence))
                break
    return hits


def _signals(source: SignalSource, hits: Iterable[tuple[DeviceType, float]]) -> list[Signal]:
    return [Signal(source, device_type, confidence) for device_type, confidence in hits]


T = DeviceType
R = KeywordRule

# SSDP rules: each entry is (field -> keywords) alternatives, type, confidence
SSDP_RULES: list[tuple[tuple[tuple[str, tuple[str, ...]], ...], DeviceType, float]] = [
    ((("server", ("roku",)),), T.SMART_TV, 0.95),
    ((("server", ("samsung", "lg", "sony", "vizio", "tcl", "hisense")),), T.SMART_TV, 0.85),
    ((("server", ("sonos",)), ("usn", ("sonos",))), T.SPEAKER, 0.95),
    ((("server", ("philips-hue",)), ("usn", ("hue",))), T.HUB, 0.95),
    ((("st", ("printer",)), ("server", ("printer",))), T.PRINTER, 0.90),
    ((("st", ("mediaserver", "mediarenderer")),), T.SMART_TV, 0.75),
    ((("server", ("synology", "qnap", "drobo", "netgear readynas")),), T.NAS, 0.90),
    ((("server", ("router", "gateway")), ("st", ("internetgatewaydevice",))), T.ROUTER, 0.85),
    ((("server", ("bose", "denon", "yamaha", "onkyo")),), T.SPEAKER, 0.85),
    ((("server", ("streammagic", "cambridge audio")),), T.SPEAKER, 0.90),
    ((("server", ("ring",)),), T.CAMERA, 0.85),
    ((("server", ("nest",)),), T.THERMOSTAT, 0.60),
    ((("server", ("wemo",)),), T.PLUG, 0.85),
]

MDNS_SERVICE_RULES: dict[str, tuple[DeviceType, float]] = {
    "_hap._tcp": (T.HUB, 0.80),
    "_homekit._tcp": (T.HUB, 0.80),
    "_airplay._tcp": (T.SMART_TV, 0.80),
    "_raop._tcp": (T.SMART_TV, 0.80),
    "_googlecast._tcp": (T.SMART_TV, 0.85),
    "_spotify-connect._tcp": (T.SPEAKER, 0.90),
    "_sonos._tcp": (T.SPEAKER, 0.90),
    "_printer._tcp": (T.PRINTER, 0.95),
    "_ipp._tcp": (T.PRINTER, 0.95),
    "_scanner._tcp": (T.PRINTER, 0.85),
    "_hue._tcp": (T.LIGHT, 0.95),
    "_ecobee._tcp": (T.THERMOSTAT, 0.90),
    "_nest._tcp": (T.THERMOSTAT, 0.90),
    "_amzn-wplay._tcp": (T.SPEAKER, 0.85),
    "_alexa._tcp": (T.SPEAKER, 0.85),
    "_ssh._tcp": (T.COMPUTER, 0.70),
    "_smb._tcp": (T.COMPUTER, 0.70),
    "_afpovertcp._tcp": (T.COMPUTER, 0.70),
    "_bond._tcp": (T.APPLIANCE, 0.85),
    "_leap._tcp": (T.HUB, 0.85),
    "_mqtt._tcp": (T.HUB, 0.60),
    "_dacp._tcp": (T.SMART_TV, 0.70),
    "_touch-able._tcp": (T.SMART_TV, 0.70),
    "_companion-link._tcp": (T.SMART_TV, 0.65),
}

PORT_RULES: dict[int, tuple[DeviceType, float]] = {
    554: (T.CAMERA, 0.75),
    1400: (T.SPEAKER, 0.85),
    7000: (T.SMART_TV, 0.75),
    8008: (T.SMART_TV, 0.80),
    8009: (T.SMART_TV, 0.80),
    8123: (T.HUB, 0.90),
    32400: (T.COMPUTER, 0.70),
    9100: (T.PRINTER, 0.85),
    1883: (T.HUB, 0.60),
    8883: (T.HUB, 0.60),
    5000: (T.NAS, 0.50),
    5001: (T.NAS, 0.50),
    3689: (T.COMPUTER, 0.60),
    548: (T.COMPUTER, 0.65),
}

# Matched against the fingerprint's parent hierarchy joined with spaces
FINGERPRINT_PARENT_RULES: list[RuleEntry] = [
    R(("iphone", "android", "phone"), T.PHONE, 0.95),
    R(("ipad", "tablet"), T.TABLET, 0.95),
    R(("macbook", "imac", "mac", "windows", "laptop", "desktop", "pc"), T.COMPUTER, 0.90),
    R(("roku", "chromecast", "apple tv", "fire tv", "smart tv", "androidtv"), T.SMART_TV, 0.95),
    R(("sonos", "speaker", "echo", "homepod", "soundbar"), T.SPEAKER, 0.90),
    R(("camera", "ring", "nest cam", "arlo", "wyze"), T.CAMERA, 0.90),
    R(("ecobee", "thermostat"), T.THERMOSTAT, 0.90),
    R(("hue", "light", "lifx", "nanoleaf"), T.LIGHT, 0.85),
    R(("printer", "laserjet", "inkjet"), T.PRINTER, 0.95),
    R(("synology", "qnap", "nas", "drobo"), T.NAS, 0.90),
    R(("router", "gateway", "access point", "wifi"), T.ROUTER, 0.85),
    R(("wemo", "smart plug", "kasa"), T.PLUG, 0.85),
    R(("hub", "bridge", "smartthings"), T.HUB, 0.80),
]

UPNP_DEVICE_TYPE_RULES: list[RuleEntry] = [
    R(("mediarenderer", "tv", "player"), T.SMART_TV, 0.85),
    R(("printer",), T.PRINTER, 0.90),
    R(("bridge", "hub"), T.HUB, 0.85),
    R((), T.HUB, 0.40, all_of=("basic", "device")),
]

MANUFACTURER_RULES: list[RuleEntry] = [
    R(("roku", "samsung", "lg", "sony", "vizio", "tcl", "hisense"), T.SMART_TV, 0.80),
    R(("sonos", "bose", "harman", "jbl"), T.SPEAKER, 0.85),
    R(("hp", "canon", "epson", "brother", "xerox"), T.PRINTER, 0.80),
    R(("synology", "qnap"), T.NAS, 0.90),
    R(("ubiquiti", "cisco", "netgear", "tp-link", "asus", "linksys"), T.ROUTER, 0.60),
]

# Manufacturer keyword -> model rules (first matching model rule fires)
MANUFACTURER_MODEL_RULES: list[tuple[str, tuple[KeywordRule, ...]]] = [
    ("philips", (R(("hue",), T.HUB, 0.90),)),
    ("apple", (
        R(("tv",), T.SMART_TV, 0.95),
        R(("homepod",), T.SPEAKER, 0.95),
    )),
    ("netgear", (R(("readynas",), T.NAS, 0.90),)),
]

HOSTNAME_RULES: list[RuleEntry] = [
    R(("iphone",), T.PHONE, 0.85),
    R(("ipad",), T.TABLET, 0.85),
    R(("macbook", "imac", "-mac", "macmini", "macpro"), T.COMPUTER, 0.80,
      suffixes=("s-mac", "s-mbp", "s-mba")),
    R(("apple-tv", "appletv"), T.SMART_TV, 0.90),
    R(("homepod",), T.SPEAKER, 0.90),
    R(("roku",), T.SMART_TV, 0.85),
    R(("chromecast", "google-home"), T.SMART_TV, 0.85),
    R(("sonos",), T.SPEAKER, 0.90),
    R(("echo", "alexa"), T.SPEAKER, 0.85),
    R(("hue", "philips-hue"), T.HUB, 0.85),
    R(("doorbell", "camera"), T.CAMERA, 0.85, all_of=("ring",)),
    (
        R(("cam",), T.CAMERA, 0.85, all_of=("nest",)),
        R(("thermostat",), T.THERMOSTAT, 0.85, all_of=("nest",)),
        R((), T.THERMOSTAT, 0.50, all_of=("nest",)),
    ),
    R(("printer", "laserjet", "deskjet", "officejet", "pixma"), T.PRINTER, 0.85),
    R(("nas", "synology", "diskstation", "qnap"), T.NAS, 0.85),
    R(("router", "gateway", "ap-", "accesspoint", "unifi"), T.ROUTER, 0.75),
    R(("android", "galaxy", "pixel"), T.PHONE, 0.75),
    R(("desktop", "laptop", "-pc"), T.COMPUTER, 0.70),
    R(("wemo", "kasa", "smart-plug"), T.PLUG, 0.80),
    R(("camera", "cam-", "arlo", "wyze"), T.CAMERA, 0.80),
]

# mDNS TXT: model identifiers advertised by AirPlay / RAOP records
APPLE_MODEL_RULES: tuple[KeywordRule, ...] = (
    R(("appletv",), T.SMART_TV, 0.95),
    R(("homepod", "audioaccessory"), T.SPEAKER, 0.95),
    R(("airport",), T.HUB, 0.85),
    R(("macbook", "mac", "imac"), T.COMPUTER, 0.90),
    R(("ipad",), T.TABLET, 0.90),
    R(("iphone",), T.PHONE, 0.90),
)

GOOGLE_CAST_MODEL_RULES: tuple[KeywordRule, ...] = (
    R(("chromecast",), T.SMART_TV, 0.95),
    R(("google home", "nest audio", "home mini", "home max", "nest mini"), T.SPEAKER, 0.90),
    R(("nest hub", "home hub"), T.SMART_TV, 0.85),
)

# HomeKit accessory category identifiers (``ci`` TXT key)
HOMEKIT_CATEGORIES: dict[int, tuple[DeviceType, float]] = {
    2: (T.HUB, 0.90),          # bridge
    3: (T.APPLIANCE, 0.80),    # fan
    4: (T.APPLIANCE, 0.90),    # garage door opener
    5: (T.LIGHT, 0.90),        # lightbulb
    6: (T.APPLIANCE, 0.90),    # door lock
    7: (T.LIGHT, 0.90),        # outlet
    8: (T.LIGHT, 0.90),        # switch
    9: (T.THERMOSTAT, 0.95),
    10: (T.HUB, 0.80),         # sensor
    11: (T.HUB, 0.80),         # security system
    12: (T.APPLIANCE, 0.80),   # door
    13: (T.APPLIANCE, 0.80),   # window
    14: (T.APPLIANCE, 0.80),   # window covering
    15: (T.HUB, 0.80),         # programmable switch
    16: (T.HUB, 0.80),         # range extender
    17: (T.CAMERA, 0.95),      # IP camera
    18: (T.CAMERA, 0.95),      # video doorbell
    19: (T.APPLIANCE, 0.80),   # air purifier
    20: (T.THERMOSTAT, 0.95),  # heater
    21: (T.THERMOSTAT, 0.95),  # air conditioner
    22: (T.APPLIANCE, 0.80),   # humidifier
    23: (T.APPLIANCE, 0.80),   # dehumidifier
    24: (T.SMART_TV, 0.95),    # Apple TV
    25: (T.SPEAKER, 0.95),     # HomePod
    26: (T.SPEAKER, 0.95),
    27: (T.HUB, 0.90),         # AirPort
    28: (T.APPLIANCE, 0.80),   # sprinkler
    29: (T.APPLIANCE, 0.80),   # faucet
    30: (T.APPLIANCE, 0.80),   # shower head
    31: (T.SMART_TV, 0.95),    # television
    33: (T.HUB, 0.90),         # wifi router
    34: (T.SPEAKER, 0.80),     # audio receiver
    35: (T.SMART_TV, 0.80),    # set-top box
    36: (T.SMART_TV, 0.80),    # streaming stick
}

SSH_OS_HINT_SIGNALS: dict[str, tuple[DeviceType, float]] = {
    "macOS": (T.COMPUTER, 0.80),
    "linux": (T.COMPUTER, 0.60),
    "windows": (T.COMPUTER, 0.75),
    "embedded": (T.HUB, 0.65),
    "freebsd": (T.NAS, 0.55),
}

HTTP_SERVER_RULES: list[RuleEntry] = [
    R(("synology", "qnap", "dsm"), T.NAS, 0.95),
    R(("printer", "cups"), T.PRINTER, 0.90),
    R(("hikvision", "dahua", "axis", "foscam", "amcrest", "reolink", "vivotek", "geovision"),
      T.CAMERA, 0.90),
    R(("apache", "nginx", "iis"), T.COMPUTER, 0.50),
    R(("home assistant", "openhab", "domoticz", "hubitat"), T.HUB, 0.90),
    R(("plex", "emby", "jellyfin"), T.NAS, 0.70),
]

BEHAVIOR_SIGNALS: dict[BehaviorClassification, tuple[DeviceType, float]] = {
    BehaviorClassification.INFRASTRUCTURE: (T.ROUTER, 0.40),
    BehaviorClassification.SERVER: (T.NAS, 0.35),
    BehaviorClassification.PORTABLE: (T.COMPUTER, 0.30),
    BehaviorClassification.MOBILE: (T.PHONE, 0.30),
    BehaviorClassification.GUEST: (T.PHONE, 0.25),
}

del T, R


# =============================================================================
# Factories
# =============================================================================

def signals_from_ssdp_headers(
    server: Optional[str] = None,
    usn: Optional[str] = None,
    st: Optional[str] = None,
) -> list[Signal]:
    """Signals from SSDP SERVER / USN / ST header values."""
    fields = {
        "server": (server or "").lower(),
        "usn": (usn or "").lower(),
        "st": (st or "").lower(),
    }
    signals = []
    for alternatives, device_type, confidence in SSDP_RULES:
        if any(
            any(k in fields[name] for k in keywords)
            for name, keywords in alternatives
        ):
            signals.append(Signal(SignalSource.SSDP, device_type, confidence))
    return signals


def signals_from_mdns_service_type(service_type: str) -> list[Signal]:
    """Signals from an mDNS service type such as ``_airplay._tcp``."""
    rule = MDNS_SERVICE_RULES.get(_strip_local(service_type))
    if rule is None:
        return []
    return [Signal(SignalSource.MDNS, rule[0], rule[1])]


def signals_from_port(port: int) -> list[Signal]:
    rule = PORT_RULES.get(port)
    if rule is None:
        return []
    return [Signal(SignalSource.PORT, rule[0], rule[1])]


def signals_from_fingerprint(fingerprint: DeviceFingerprint) -> list[Signal]:
    """Signals from fingerprint hierarchy, UPnP device type, manufacturer and flags."""
    signals: list[Signal] = []

    if fingerprint.fingerbank_parents:
        combined = " ".join(fingerprint.fingerbank_parents).lower()
        signals += _signals(SignalSource.FINGERPRINT, _apply(combined, FINGERPRINT_PARENT_RULES))

    if fingerprint.upnp_device_type:
        signals += _signals(
            SignalSource.UPNP,
            _apply(fingerprint.upnp_device_type.lower(), UPNP_DEVICE_TYPE_RULES),
        )

    if fingerprint.manufacturer:
        manufacturer = fingerprint.manufacturer.lower()
        signals += _signals(SignalSource.FINGERPRINT, _apply(manufacturer, MANUFACTURER_RULES))
        model = (fingerprint.model_name or "").lower()
        if model:
            for maker, model_rules in MANUFACTURER_MODEL_RULES:
                if maker in manufacturer:
                    signals += _signals(SignalSource.FINGERPRINT, _apply(model, [model_rules]))

    if fingerprint.is_mobile:
        signals.append(Signal(SignalSource.FINGERPRINT, DeviceType.PHONE, 0.90))
    if fingerprint.is_tablet:
        signals.append(Signal(SignalSource.FINGERPRINT, DeviceType.TABLET, 0.90))

    return signals


def signals_from_hostname(hostname: str) -> list[Signal]:
    return _signals(SignalSource.HOSTNAME, _apply(hostname.lower(), HOSTNAME_RULES))


def signals_from_mdns_txt(service_type: str, txt: dict[str, str]) -> list[Signal]:
    """
    Signals from the TXT record of an mDNS service.

    AirPlay and RAOP advertise an Apple model identifier, Google Cast a
    model description and a built-in flag, HomeKit an accessory category.
    """
    service_type = _strip_local(service_type)
    hits: list[tuple[DeviceType, float]] = []

    if service_type in ("_airplay._tcp", "_raop._tcp"):
        model = (txt.get("model") or txt.get("am") or "").lower()
        if model:
            hits += _apply(model, [APPLE_MODEL_RULES])
        if not hits and service_type == "_raop._tcp":
            hits.append((DeviceType.SPEAKER, 0.60))

    elif service_type == "_googlecast._tcp":
        model = (txt.get("md") or "").lower()
        built_in = (txt.get("bs") or "").lower() in ("1", "true")
        if model:
            hits += _apply(model, [GOOGLE_CAST_MODEL_RULES])
            if not hits and built_in:
                hits.append((DeviceType.SMART_TV, 0.85))
        elif built_in:
            hits.append((DeviceType.SMART_TV, 0.80))

    elif service_type in ("_hap._tcp", "_homekit._tcp"):
        try:
            category = int(txt.get("ci", ""))
        except ValueError:
            category = 0
        if category in HOMEKIT_CATEGORIES:
            hits.append(HOMEKIT_CATEGORIES[category])

    return _signals(SignalSource.MDNS_TXT, hits)


def signals_from_ssh_banner(ssh: SSHBannerInfo) -> list[Signal]:
    hits = []
    if ssh.os_hint in SSH_OS_HINT_SIGNALS:
        hits.append(SSH_OS_HINT_SIGNALS[ssh.os_hint])
    if ssh.is_network_equipment:
        hits.append((DeviceType.ROUTER, 0.80))
    if ssh.is_nas:
        hits.append((DeviceType.NAS, 0.85))
    return _signals(SignalSource.PORT_BANNER, hits)


def signals_from_http_banner(http: HTTPBannerInfo) -> list[Signal]:
    server = (http.server or "").lower()
    hits = _apply(server, HTTP_SERVER_RULES)
    found = {t for t, _ in hits}

    # Interface flags come from the whole response, not just the Server header
    if http.is_nas_interface and DeviceType.NAS not in found:
        hits.append((DeviceType.NAS, 0.95))
    if http.is_printer_interface and DeviceType.PRINTER not in found:
        hits.append((DeviceType.PRINTER, 0.90))
    if http.is_camera_interface and DeviceType.CAMERA not in found:
        hits.append((DeviceType.CAMERA, 0.90))
    if http.is_router_interface:
        hits.append((DeviceType.ROUTER, 0.80))
    return _signals(SignalSource.PORT_BANNER, hits)


def signals_from_rtsp_banner(rtsp: RTSPBannerInfo) -> list[Signal]:
    streaming = any(m.upper() in ("DESCRIBE", "PLAY", "SETUP") for m in rtsp.methods)
    hits = []
    if streaming:
        hits.append((DeviceType.CAMERA, 0.85))
    if rtsp.camera_vendor:
        hits.append((DeviceType.CAMERA, 0.95))
    if not streaming and rtsp.server:
        hits.append((DeviceType.SMART_TV, 0.50))
    return _signals(SignalSource.PORT_BANNER, hits)


def signals_from_banners(banners: PortBannerData) -> list[Signal]:
    signals: list[Signal] = []
    if banners.ssh:
        signals += signals_from_ssh_banner(banners.ssh)
    for http in (banners.http, banners.https):
        if http:
            signals += signals_from_http_banner(http)
    if banners.rtsp:
        signals += signals_from_rtsp_banner(banners.rtsp)
    return signals


def _is_business_hours_peak(peak_hours: Sequence[int]) -> bool:
    if not peak_hours:
        return False
    return len(set(peak_hours) & set(range(9, 18))) > len(peak_hours) // 2


def _is_evening_peak(peak_hours: Sequence[int]) -> bool:
    if not peak_hours:
        return False
    return len(set(peak_hours) & set(range(18, 24))) > len(peak_hours) // 2


def signals_from_behavior(
    classification: BehaviorClassification,
    peak_hours: Sequence[int] = (),
) -> list[Signal]:
    """Map a behavior classification (plus its peak hours) to signals."""
    if classification == BehaviorClassification.IOT:
        if _is_evening_peak(peak_hours):
            hit = (DeviceType.SMART_TV, 0.35)
        else:
            hit = (DeviceType.HUB, 0.30)
    elif classification == BehaviorClassification.WORKSTATION:
        if _is_business_hours_peak(peak_hours):
            hit = (DeviceType.COMPUTER, 0.35)
        elif _is_evening_peak(peak_hours):
            hit = (DeviceType.SMART_TV, 0.35)
        else:
            hit = (DeviceType.COMPUTER, 0.30)
    elif classification in BEHAVIOR_SIGNALS:
        hit = BEHAVIOR_SIGNALS[classification]
    else:
        return []
    return [Signal(SignalSource.BEHAVIOR, hit[0], hit[1])]


def _strip_local(service_type: str) -> str:
    service_type = service_type.rstrip(".")
    if service_type.endswith(".local"):
        service_type = service_type[: -len(".local")]
    return service_type


# =============================================================================
# Convenience
# =============================================================================

def collect_signals(
    ssdp_server: Optional[str] = None,
    ssdp_usn: Optional[str] = None,
    ssdp_st: Optional[str] = None,
    mdns_service_types: Optional[Iterable[str]] = None,
    open_ports: Optional[Iterable[int]] = None,
    fingerprint: Optional[DeviceFingerprint] = None,
    hostname: Optional[str] = None,
) -> list[Signal]:
    signals = signals_from_ssdp_headers(ssdp_server, ssdp_usn, ssdp_st)
    for service_type in mdns_service_types or ():
        signals += signals_from_mdns_service_type(service_type)
    for port in open_ports or ():
        signals += signals_from_port(port)
    if fingerprint is not None:
        signals += signals_from_fingerprint(fingerprint)
    if hostname:
        signals += signals_from_hostname(hostname)
    return signals


def infer_from_all_sources(
    ssdp_server: Optional[str] = None,
    ssdp_usn: Optional[str] = None,
    ssdp_st: Optional[str] = None,
    mdns_service_types: Optional[Iterable[str]] = None,
    open_ports: Optional[Iterable[int]] = None,
    fingerprint: Optional[DeviceFingerprint] = None,
    hostname: Optional[str] = None,
) -> DeviceType:
    """Infer a type from every raw evidence kind the discovery sources produce."""
    return infer(collect_signals(
        ssdp_server, ssdp_usn, ssdp_st, mdns_service_types, open_ports, fingerprint, hostname,
    ))


def infer_enhanced(
    signals: Sequence[Signal],
    mdns_txt: Optional[Iterable[tuple[str, dict[str, str]]]] = None,
    banners: Optional[PortBannerData] = None,
    mac_signals: Optional[Sequence[Signal]] = None,
) -> tuple[DeviceType, float]:
    """
    Combine discovery signals with analyzer output and infer with confidence.

    Args:
        signals: Signals already collected from discovery
        mdns_txt: (service_type, txt) pairs for each mDNS service
        banners: Grabbed port banners
        mac_signals: Output of ``mac_analysis.signals_from_mac_analysis``

    Returns:
        (device_type, confidence)
    """
    all_signals = list(signals)
    for service_type, txt in mdns_txt or ():
        all_signals += signals_from_mdns_txt(service_type, txt)
    if banners is not None:
        all_signals += signals_from_banners(banners)
    if mac_signals:
        all_signals += mac_signals

    device_type, confidence = infer_with_confidence(all_signals)
    logger.debug(
        f"Enhanced inference: {device_type.value} confidence={confidence:.2f} "
        f"from {len(all_signals)} signals"
    )
    return device_type, confidence
