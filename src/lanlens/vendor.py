"""
MAC address normalization and OUI vendor lookup.

The OUI table is a curated subset covering the consumer electronics,
networking and IoT vendors most likely to appear on a home network.
"""

from __future__ import annotations

import re
from typing import Optional

_HEX12 = re.compile(r"^[0-9A-Fa-f]{12}$")


def normalize_mac(mac: str) -> str:
    """
    Normalize a MAC address to uppercase, colon-separated, zero-padded form.

    Accepts ``-`` separators, single-digit octets (as printed by BSD
    ``arp``) and bare 12-digit hex strings. Anything else is returned
    uppercased unchanged.
    """
    mac = mac.strip()
    if _HEX12.match(mac):
        return ":".join(mac[i:i + 2] for i in range(0, 12, 2)).upper()

    parts = re.split(r"[:-]", mac)
    if len(parts) == 1:
        return mac.upper()
    return ":".join(p.zfill(2) for p in parts).upper()


def oui_prefix(mac: str) -> str:
    """First three octets of a normalized MAC, e.g. ``AA:BB:CC``."""
    return normalize_mac(mac)[:8]


def _table(vendor: str, prefixes: str) -> dict[str, str]:
    return {p: vendor for p in prefixes.split()}


OUI_TABLE: dict[str, str] = {}
for _vendor, _prefixes in (
    ("Apple", """
        00:03:93 00:0A:27 00:0A:95 00:0D:93 00:10:FA 00:11:24 00:14:51 00:16:CB
        00:17:F2 00:19:E3 00:1B:63 00:1C:B3 00:1D:4F 00:1E:52 00:1E:C2 00:1F:5B
        00:1F:F3 00:21:E9 00:22:41 00:23:12 00:23:32 00:23:6C 00:23:DF 00:24:36
        00:25:00 00:25:4B 00:25:BC 00:26:08 00:26:4A 00:26:B0 00:26:BB 04:0C:CE
        04:15:52 04:26:65 04:48:9A 04:4B:ED 04:52:F3 04:54:53 04:D3:CF 04:DB:56
        08:66:98 08:6D:41 0C:4D:E9 10:40:F3 10:9A:DD 14:10:9F 18:AF:61 1C:36:BB
        20:78:F0 24:A0:74 28:CF:DA 3C:07:54 3C:22:FB 40:33:1A 48:43:7C 4C:57:CA
        58:40:4E 5C:F9:38 60:F8:1D 68:5B:35 70:56:81 78:4F:43 7C:6D:62 80:E6:50
        88:66:A5 8C:85:90 90:B2:1F 98:01:A7 A4:83:E7 AC:BC:32 B8:09:8A BC:52:B7
        C8:69:CD D0:03:4B DC:A4:CA E0:B9:BA F0:18:98 F4:0F:24 FC:25:3F
    """),
    ("Ubiquiti", """
        00:15:6D 00:27:22 04:18:D6 18:E8:29 24:5A:4C 24:A4:3C 44:D9:E7 68:72:51
        74:83:C2 74:AC:B9 78:45:58 80:2A:A8 B4:FB:E4 DC:9F:DB E0:63:DA F0:9F:C2
        FC:EC:DA E4:38:83 AC:8B:A9 78:8A:20 28:70:4E
    """),
    ("Sonos", "00:0E:58 34:7E:5C 48:A6:B8 5C:AA:FD 78:28:CA 94:9F:3E B8:E9:37 54:2A:1B F0:F6:C1"),
    ("Google", """
        00:1A:11 1C:F2:9A 3C:5A:B4 54:60:09 94:EB:2C A4:77:33 F4:F5:D8 F4:F5:E8
        D8:6C:63 CC:F4:11 20:DF:B9 18:D6:C7
    """),
    ("Google Nest", "18:B4:30 64:16:66 F8:0F:F9"),
    ("Amazon", """
        00:FC:8B 0C:47:C9 10:CE:A9 18:74:2E 34:D2:70 40:B4:CD 44:65:0D 50:DC:E7
        68:37:E9 68:54:FD 74:C2:46 78:E1:03 84:D6:D0 A0:02:DC AC:63:BE B4:7C:9C
        F0:27:2D F0:F0:A4 FC:65:DE 4C:EF:C0 CC:F7:35
    """),
    ("Ring", "34:3E:A4 40:38:C9 6C:8B:D3 90:A2:DA"),
    ("Samsung", """
        00:00:F0 00:02:78 00:07:AB 00:09:18 00:0D:AE 00:12:47 00:12:FB 00:13:77
        00:15:99 00:15:B9 00:16:32 00:16:6B 00:16:6C 00:16:DB 00:17:C9 00:17:D5
        00:18:AF 00:1A:8A 00:1B:98 00:1C:43 00:1D:25 00:1D:F6 00:1E:7D 00:1F:CC
        00:21:19 08:08:C2 08:37:3D 0C:DF:A4 10:D5:42 14:49:E0 50:CC:F8 5C:3C:27
        78:AB:BB 8C:77:12 94:35:0A A0:07:98 BC:14:01 C8:19:F7 E4:7C:F9 F8:04:2E
    """),
    ("LG", """
        00:1C:62 00:1E:75 00:1F:6B 00:1F:E2 00:22:A9 00:24:83 00:25:E5 00:26:E2
        00:34:DA 00:AA:70 00:E0:91 10:68:3F 20:21:A5 28:A0:24 34:4D:F7 38:8C:50
        40:B0:FA 58:3F:54 64:99:5D 74:44:01 78:5D:C8 A8:23:FE C4:36:6C F8:0C:F3
    """),
    ("Sony", """
        00:01:4A 00:04:1F 00:0A:D9 00:0B:0D 00:0E:07 00:0F:DE 00:12:EE 00:13:A9
        00:15:C1 00:16:20 00:18:13 00:19:63 00:1A:80 00:1D:28 00:1E:A4 00:1F:E4
        28:0D:FC 30:39:26 40:B8:37 54:42:49 70:9E:29 AC:9B:0A D8:D4:3C FC:0F:E6
    """),
    ("Roku", """
        00:0D:4B 08:05:81 20:EF:BD AC:3A:7A B0:A7:37 B8:3E:59 C8:3A:6B D0:4D:C6
        D8:31:34 DC:3A:5E 84:EA:ED
    """),
    ("Philips Hue", "00:17:88 EC:B5:FA"),
    ("Philips", "00:24:88 AC:89:95"),
    ("Espressif", """
        18:FE:34 24:0A:C4 24:6F:28 24:B2:DE 2C:3A:E8 30:AE:A4 3C:61:05 3C:71:BF
        40:F5:20 4C:11:AE 5C:CF:7F 60:01:94 68:C6:3A 80:7D:3A 84:0D:8E 84:CC:A8
        84:F3:EB 8C:AA:B5 90:97:D5 98:F4:AB A0:20:A6 A4:7B:9D A4:CF:12 AC:67:B2
        BC:DD:C2 C4:4F:33 C8:2B:96 CC:50:E3 D8:A0:1D D8:BF:C0 DC:4F:22 E8:DB:84
        EC:FA:BC F4:CF:A2 E0:98:06 A8:03:2A FC:F5:C4 B0:B2:1C
    """),
    ("Tuya", "D8:1F:12 10:D5:61 68:57:2D"),
    ("TP-Link", """
        00:27:0E 00:31:92 10:FE:ED 14:CC:20 14:CF:92 18:A6:F7 1C:3B:F3 30:B5:C2
        50:C7:BF 54:C8:0F 60:E3:27 64:70:02 6C:5A:B0 78:44:76 90:F6:52 98:DA:C4
        A0:F3:C1 AC:84:C6 B0:4E:26 B0:BE:76 C0:06:C3 C0:25:E9 C4:6E:1F D4:6E:0E
        E8:DE:27 EC:08:6B F4:F2:6D 50:D4:F7 60:32:B1 5C:A6:E6
    """),
    ("TP-Link Kasa", "FC:9C:A7"),
    ("Intel", """
        00:02:B3 00:03:47 00:04:23 00:07:E9 00:0C:F1 00:0E:0C 00:0E:35 00:11:11
        00:12:F0 00:13:02 00:13:20 00:13:CE 00:13:E8 00:15:00 00:15:17 00:16:6F
        00:16:76 00:16:EA 00:16:EB 00:17:35 00:18:DE 00:19:D1 00:19:D2 00:1B:21
        00:1B:77 00:1C:BF 00:1C:C0 00:1D:E0 00:1D:E1 00:1E:64 00:1E:65 00:1E:67
    """),
    ("HP", """
        00:00:63 00:01:E6 00:01:E7 00:02:A5 00:04:EA 00:08:02 00:08:83 00:09:B3
        00:0A:57 00:0B:CD 00:0D:9D 00:0E:7F 00:0F:20 00:0F:61 00:10:83 00:10:E3
        18:A9:05 28:80:23 30:E1:71 3C:D9:2B 40:A8:F0 48:0F:CF 58:20:B1 64:51:06
        70:10:6F 78:48:59 80:C1:6E 84:34:97 98:4B:E1 9C:B6:54 A0:1D:48 FC:3F:DB
    """),
    ("Dell", """
        00:06:5B 00:08:74 00:0B:DB 00:0D:56 00:0F:1F 00:11:43 00:12:3F 00:13:72
        00:14:22 00:15:C5 00:16:F0 00:18:8B 14:18:77 14:9E:CF 18:03:73 18:66:DA
        24:6E:96 28:F1:0E 34:17:EB 44:A8:42 50:9A:4C 54:9F:35 5C:26:0A 74:86:7A
        84:7B:EB 90:B1:1C A4:1F:72 B0:83:FE BC:30:5B D4:81:D7 F0:1F:AF F8:B1:56
    """),
    ("Synology", "00:11:32 00:11:55"),
    ("QNAP", "00:08:9B 24:5E:BE"),
    ("Ecobee", "44:61:32 30:B4:B8"),
    ("Raspberry Pi", "B8:27:EB DC:A6:32 E4:5F:01 D8:3A:DD"),
    ("Xiaomi", """
        00:9E:C8 04:CF:8C 0C:1D:AF 10:2A:B3 14:F6:5A 18:59:36 20:34:FB 28:6C:07
        34:80:B3 38:A4:ED 3C:BD:3E 44:23:7C 48:FC:74 4C:49:E3 50:64:2B 54:48:E6
        58:44:98 5C:E2:8C 64:09:80 64:B4:73 68:28:BA 6C:5C:14 70:9F:A9 74:23:44
    """),
    ("Wyze", "2C:AA:8E D0:3F:27 78:8C:B5"),
    ("Arlo", "D0:52:A8 3C:37:86 A0:B4:39"),
    ("VMware", "00:0C:29 00:50:56"),
    ("Parallels", "00:1C:42"),
    ("Microsoft Hyper-V", "00:03:FF"),
    ("VirtualBox", "08:00:27"),
    ("QEMU", "52:54:00"),
    ("Xen", "00:16:3E"),
):
    OUI_TABLE.update(_table(_vendor, _prefixes))


def lookup_vendor(mac: str) -> Optional[str]:
    """Look up the manufacturer for a MAC address by its OUI prefix."""
    return OUI_TABLE.get(oui_prefix(mac))
