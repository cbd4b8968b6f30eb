"""
ARP table reader.

Reads the kernel ARP cache through ``arp -an``. Passive and fast, but
only sees hosts that have talked to this machine recently.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
from typing import Optional

from ..vendor import normalize_mac
from .base import ARPEntry, DiscoveryMethod

logger = logging.getLogger(__name__)

# Linux: ? (192.168.1.1) at aa:bb:cc:dd:ee:ff [ether] on eth0
# macOS: ? (192.168.1.1) at aa:bb:cc:dd:ee:ff on en0 ifscope [ethernet]
ARP_LINE = re.compile(
    r"(?:(\S+)\s+)?\((\d+\.\d+\.\d+\.\d+)\)\s+at\s+([0-9a-fA-F:]+)(?:.*?\bon\s+(\S+))?"
)

BROADCAST_MAC = "FF:FF:FF:FF:FF:FF"


def parse_arp_line(line: str) -> Optional[ARPEntry]:
    """Parse a single ``arp -an`` output line, skipping incomplete entries."""
    if "(incomplete)" in line:
        return None

    match = ARP_LINE.search(line)
    if not match:
        return None

    hostname = match.group(1) if match.group(1) not in (None, "?") else None
    mac = normalize_mac(match.group(3))
    if mac == BROADCAST_MAC or len(mac) != 17:
        return None

    return ARPEntry(
        ip=match.group(2),
        mac=mac,
        interface=match.group(4),
        hostname=hostname,
    )


def parse_arp_output(output: str) -> list[ARPEntry]:
    entries = []
    for line in output.strip().splitlines():
        if not line:
            continue
        entry = parse_arp_line(line)
        if entry:
            entries.append(entry)
    return entries


class ARPDiscovery(DiscoveryMethod):
    """Discover devices from the ARP cache."""

    def __init__(self, interface: Optional[str] = None):
        """
        Initialize ARP discovery.

        Args:
            interface: Network interface to query (None for all)
        """
        self.interface = interface

    @property
    def name(self) -> str:
        return "arp"

    async def is_available(self) -> bool:
        return shutil.which("arp") is not None

    async def discover(self) -> list[ARPEntry]:
        """
        Read the ARP table.

        An unreadable table is logged and reported as empty.
        """
        cmd = ["arp", "-an"]
        if self.interface:
            cmd.extend(["-i", self.interface])

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
        except OSError as e:
            logger.error(f"Error reading ARP table: {e}")
            return []

        if proc.returncode != 0:
            logger.error(f"ARP command failed: {stderr.decode(errors='replace')}")
            return []

        entries = parse_arp_output(stdout.decode(errors="replace"))
        logger.info(f"ARP table lists {len(entries)} hosts")
        return entries
