"""
Discovery sources.

- ARP table reader
- Port scanner (python-nmap, TCP connect fallback)
- Banner grabber
- SSDP and mDNS listeners
"""

from .arp import ARPDiscovery, parse_arp_output
from .banner import BannerGrabber
from .base import ARPEntry, DiscoveryMethod, PortInfo, ServiceRecord
from .mdns import MDNSListener
from .port_scanner import QUICK_PORTS, SMART_DEVICE_PORTS, PortScanner
from .ssdp import SSDPListener

__all__ = [
    "ARPDiscovery",
    "parse_arp_output",
    "BannerGrabber",
    "ARPEntry",
    "DiscoveryMethod",
    "PortInfo",
    "ServiceRecord",
    "MDNSListener",
    "QUICK_PORTS",
    "SMART_DEVICE_PORTS",
    "PortScanner",
    "SSDPListener",
]
