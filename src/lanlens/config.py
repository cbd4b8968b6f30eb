"""
LanLens configuration.

Settings come from environment variables or a YAML file. The Fingerbank
API key lives in a separate credentials file so the main config can be
shared without leaking it.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)


# ARP cache presets: (ttl_seconds, max_entries, auto_refresh)
ARP_CACHE_PRESETS: dict[str, tuple[float, int, bool]] = {
    "default": (30.0, 500, True),
    "aggressive": (60.0, 1000, True),
    "minimal": (10.0, 100, False),
}


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


@dataclass
class LanLensConfig:
    """LanLens runtime configuration."""

    # Storage
    db_path: Path = field(default_factory=lambda: Path.home() / ".lanlens" / "lanlens.db")
    bundled_db_path: Optional[Path] = None
    credentials_path: Path = field(
        default_factory=lambda: Path.home() / ".lanlens" / "credentials.yaml"
    )

    # Remote fingerprinting
    fingerbank_api_key: Optional[str] = None

    # ARP cache
    arp_preset: str = "default"
    arp_ttl_seconds: float = 30.0
    arp_max_entries: int = 500
    arp_auto_refresh: bool = True

    # Behavior tracking
    behavior_max_profiles: int = 1000
    behavior_persistence_interval: int = 10
    behavior_retention_days: int = 30
    hash_device_ids: bool = False

    # Scanning
    max_concurrent_scans: int = 32
    port_timeout_seconds: float = 1.0
    banner_timeout_seconds: float = 3.0
    description_timeout_seconds: float = 5.0
    debounce_seconds: float = 0.1

    # Passive discovery sources
    enable_arp: bool = True
    enable_ssdp: bool = True
    enable_mdns: bool = True

    # Management API
    api_host: str = "127.0.0.1"
    api_port: int = 8085

    # Logging
    log_level: str = "INFO"

    def apply_arp_preset(self, preset: str) -> None:
        """Set ARP cache limits from a named preset."""
        if preset not in ARP_CACHE_PRESETS:
            logger.warning(f"Unknown ARP cache preset '{preset}', keeping current values")
            return
        self.arp_preset = preset
        self.arp_ttl_seconds, self.arp_max_entries, self.arp_auto_refresh = ARP_CACHE_PRESETS[preset]

    @classmethod
    def from_env(cls) -> "LanLensConfig":
        """Load configuration from environment variables."""
        config = cls()

        if db_path := os.getenv("LANLENS_DB_PATH"):
            config.db_path = Path(db_path)
        if bundled := os.getenv("LANLENS_BUNDLED_DB"):
            config.bundled_db_path = Path(bundled)
        if creds_path := os.getenv("LANLENS_CREDENTIALS_PATH"):
            config.credentials_path = Path(creds_path)

        config.fingerbank_api_key = os.getenv("FINGERBANK_API_KEY") or None

        config.apply_arp_preset(os.getenv("LANLENS_ARP_PRESET", "default"))

        config.max_concurrent_scans = int(os.getenv("LANLENS_MAX_CONCURRENT", "32"))

        config.enable_arp = _env_bool("LANLENS_ENABLE_ARP", True)
        config.enable_ssdp = _env_bool("LANLENS_ENABLE_SSDP", True)
        config.enable_mdns = _env_bool("LANLENS_ENABLE_MDNS", True)

        config.api_host = os.getenv("LANLENS_API_HOST", "127.0.0.1")
        config.api_port = int(os.getenv("LANLENS_API_PORT", "8085"))

        config.log_level = os.getenv("LOG_LEVEL", "INFO")

        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "LanLensConfig":
        """Load configuration from YAML file."""
        if not path.exists():
            logger.warning(f"Config file not found: {path}, using defaults")
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        config = cls()

        if "paths" in data:
            p = data["paths"]
            if "db" in p:
                config.db_path = Path(p["db"])
            if "bundled_db" in p:
                config.bundled_db_path = Path(p["bundled_db"])
            if "credentials" in p:
                config.credentials_path = Path(p["credentials"])

        if "arp_cache" in data:
            a = data["arp_cache"]
            config.apply_arp_preset(a.get("preset", "default"))
            config.arp_ttl_seconds = float(a.get("ttl_seconds", config.arp_ttl_seconds))
            config.arp_max_entries = int(a.get("max_entries", config.arp_max_entries))
            config.arp_auto_refresh = bool(a.get("auto_refresh", config.arp_auto_refresh))

        if "behavior" in data:
            b = data["behavior"]
            config.behavior_max_profiles = b.get("max_profiles", 1000)
            config.behavior_persistence_interval = b.get("persistence_interval", 10)
            config.behavior_retention_days = b.get("retention_days", 30)
            config.hash_device_ids = b.get("hash_device_ids", False)

        if "scanning" in data:
            s = data["scanning"]
            config.max_concurrent_scans = s.get("max_concurrent", 32)
            config.port_timeout_seconds = s.get("port_timeout", 1.0)
            config.banner_timeout_seconds = s.get("banner_timeout", 3.0)
            config.description_timeout_seconds = s.get("description_timeout", 5.0)
            config.debounce_seconds = s.get("debounce", 0.1)

        if "discovery" in data:
            d = data["discovery"]
            config.enable_arp = d.get("arp", True)
            config.enable_ssdp = d.get("ssdp", True)
            config.enable_mdns = d.get("mdns", True)

        if "api" in data:
            a = data["api"]
            config.api_host = a.get("host", "127.0.0.1")
            config.api_port = a.get("port", 8085)

        config.log_level = data.get("log_level", "INFO")

        return config

    def load_credentials(self) -> bool:
        """Load the Fingerbank API key from the credentials file."""
        if not self.credentials_path.exists():
            logger.debug(f"Credentials file not found: {self.credentials_path}")
            return False

        try:
            with open(self.credentials_path) as f:
                creds = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load credentials: {e}")
            return False

        if "fingerbank" in creds:
            self.fingerbank_api_key = creds["fingerbank"].get("api_key", self.fingerbank_api_key)

        logger.info("Credentials loaded successfully")
        return True

    def validate(self) -> list[str]:
        """Validate configuration, returning list of errors."""
        errors = []

        if self.arp_preset not in ARP_CACHE_PRESETS:
            errors.append(f"Unknown ARP cache preset: {self.arp_preset}")

        if self.arp_ttl_seconds <= 0:
            errors.append(f"Invalid ARP cache TTL: {self.arp_ttl_seconds}")

        if self.arp_max_entries < 1:
            errors.append(f"Invalid ARP cache size: {self.arp_max_entries}")

        if self.behavior_max_profiles < 1:
            errors.append(f"Invalid behavior profile limit: {self.behavior_max_profiles}")

        if self.max_concurrent_scans < 1:
            errors.append(f"Invalid scan concurrency: {self.max_concurrent_scans}")

        if not 0 < self.api_port < 65536:
            errors.append(f"Invalid API port: {self.api_port}")

        if self.bundled_db_path and not self.bundled_db_path.exists():
            errors.append(f"Bundled fingerprint database not found: {self.bundled_db_path}")

        return errors


# Example credentials.yaml:
"""
# ~/.lanlens/credentials.yaml
fingerbank:
  api_key: "your-fingerbank-key"
"""

# Example config.yaml:
"""
paths:
  db: "/var/lib/lanlens/lanlens.db"
  bundled_db: "/usr/share/lanlens/fingerbank.db"

arp_cache:
  preset: "aggressive"

behavior:
  max_profiles: 1000
  retention_days: 30

scanning:
  max_concurrent: 32
  banner_timeout: 3.0

discovery:
  arp: true
  ssdp: true
  mdns: true

api:
  host: "127.0.0.1"
  port: 8085

log_level: "INFO"
"""
