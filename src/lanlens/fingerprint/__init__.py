"""
Device fingerprinting.

- UPnP description fetch (local, precise when available)
- Fingerbank lookups (SQLite cache, bundled offline DB, remote API)
- FingerprintManager merges both levels
"""

from .bundled import BundledDatabase, BundledEntry
from .cache import FingerbankCache, UPnPCache, compute_signal_hash
from .fingerbank import (
    FingerbankAuthError,
    FingerbankClient,
    FingerbankError,
    FingerbankRateLimitError,
    FingerbankResponseError,
    FingerbankServerError,
)
from .manager import FingerprintManager, merge_fingerprints
from .upnp import UPnPDescriptionFetcher, parse_description

__all__ = [
    "BundledDatabase",
    "BundledEntry",
    "FingerbankCache",
    "UPnPCache",
    "compute_signal_hash",
    "FingerbankAuthError",
    "FingerbankClient",
    "FingerbankError",
    "FingerbankRateLimitError",
    "FingerbankResponseError",
    "FingerbankServerError",
    "FingerprintManager",
    "merge_fingerprints",
    "UPnPDescriptionFetcher",
    "parse_description",
]
