"""
Fingerbank API client.

Queries the Fingerbank device fingerprint service with a MAC address and
optional DHCP fingerprint / HTTP user agents. Requires an API key.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

import aiohttp

from .._types import DeviceFingerprint, FingerprintSource, now_utc
from ..vendor import normalize_mac

logger = logging.getLogger(__name__)

FINGERBANK_URL = "https://api.fingerbank.org/api/v2/combinations/interrogate"
DEFAULT_TIMEOUT_SECONDS = 10.0
RATE_LIMIT_BACKOFF = timedelta(hours=1)


class FingerbankError(Exception):
    """Base class for Fingerbank failures."""


class FingerbankAuthError(FingerbankError):
    """The API key was rejected (HTTP 401)."""


class FingerbankRateLimitError(FingerbankError):
    """Too many requests (HTTP 429)."""

    def __init__(self, reset_at: datetime):
        super().__init__(f"Fingerbank rate limit exceeded, resets at {reset_at.isoformat()}")
        self.reset_at = reset_at


class FingerbankServerError(FingerbankError):
    """Server error or unexpected status."""

    def __init__(self, status: int):
        super().__init__(f"Fingerbank returned HTTP {status}")
        self.status = status


class FingerbankResponseError(FingerbankError):
    """The response body could not be interpreted."""


def parse_response(data: Any) -> DeviceFingerprint:
    """
    Convert an interrogate response into a fingerprint.

    ``version`` strings such as "iOS 17.2" are split into OS name and
    version; a single-word version is kept as both.
    """
    if not isinstance(data, dict):
        raise FingerbankResponseError(f"Expected JSON object, got {type(data).__name__}")

    device = data.get("device")
    name = device_id = parents = is_mobile = is_tablet = None
    if isinstance(device, dict):
        name = device.get("name")
        device_id = device.get("id")
        is_mobile = device.get("mobile")
        is_tablet = device.get("tablet")
        raw_parents = device.get("parents")
        if isinstance(raw_parents, list):
            parents = [p["name"] for p in raw_parents if isinstance(p, dict) and p.get("name")]

    version = data.get("version")
    os_name = os_version = None
    if isinstance(version, str) and version:
        parts = version.split(" ", 1)
        os_name = parts[0]
        os_version = parts[1] if len(parts) > 1 else version

    score = data.get("score")
    return DeviceFingerprint(
        fingerbank_device_name=name,
        fingerbank_device_id=device_id if isinstance(device_id, int) else None,
        fingerbank_parents=parents,
        fingerbank_score=score if isinstance(score, int) else None,
        operating_system=os_name,
        os_version=os_version,
        is_mobile=is_mobile if isinstance(is_mobile, bool) else None,
        is_tablet=is_tablet if isinstance(is_tablet, bool) else None,
        source=FingerprintSource.FINGERBANK,
    )


class FingerbankClient:
    """
    Async Fingerbank client.

    Raises ``FingerbankError`` subclasses; callers decide whether a failure
    is fatal. Network errors and timeouts are reported as
    ``FingerbankServerError`` with status 0.
    """

    def __init__(
        self,
        api_key: str,
        url: str = FINGERBANK_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_key = api_key
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._session = session
        self.rate_limit_reset_at: Optional[datetime] = None
        self.request_count = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    @property
    def is_rate_limited(self) -> bool:
        return self.rate_limit_reset_at is not None and now_utc() < self.rate_limit_reset_at

    def reset_rate_limit(self) -> None:
        self.rate_limit_reset_at = None
        self.request_count = 0

    async def interrogate(
        self,
        mac: str,
        dhcp_fingerprint: Optional[str] = None,
        user_agents: Optional[list[str]] = None,
    ) -> DeviceFingerprint:
        """
        Identify a device.

        Args:
            mac: Device MAC address (any notation)
            dhcp_fingerprint: DHCP option 55 parameter list, e.g. "1,3,6,15"
            user_agents: HTTP user agents observed from the device

        Returns:
            DeviceFingerprint with source=fingerbank
        """
        if self.is_rate_limited:
            raise FingerbankRateLimitError(self.rate_limit_reset_at)

        body: dict[str, Any] = {"mac": normalize_mac(mac)}
        if dhcp_fingerprint:
            body["dhcp_fingerprint"] = dhcp_fingerprint
        if user_agents:
            body["user_agents"] = user_agents

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        session = await self._get_session()
        self.request_count += 1
        logger.debug(f"Fingerbank interrogate for {body['mac']}")

        try:
            async with session.post(self.url, json=body, headers=headers) as resp:
                status = resp.status
                if 200 <= status < 300:
                    try:
                        data = await resp.json(content_type=None)
                    except ValueError as e:
                        raise FingerbankResponseError(f"Invalid JSON: {e}") from e
                    result = parse_response(data)
                    logger.info(
                        f"Fingerbank: {result.fingerbank_device_name or 'unknown'} "
                        f"(score: {result.fingerbank_score or 0})"
                    )
                    return result
        except asyncio.TimeoutError as e:
            raise FingerbankServerError(0) from e
        except aiohttp.ClientError as e:
            logger.error(f"Fingerbank network error: {e}")
            raise FingerbankServerError(0) from e

        if status == 401:
            logger.error("Fingerbank rejected the API key (401)")
            raise FingerbankAuthError("Invalid Fingerbank API key")
        if status == 429:
            self.rate_limit_reset_at = now_utc() + RATE_LIMIT_BACKOFF
            logger.warning(f"Fingerbank rate limited (429), reset at {self.rate_limit_reset_at}")
            raise FingerbankRateLimitError(self.rate_limit_reset_at)

        logger.error(f"Fingerbank unexpected status {status}")
        raise FingerbankServerError(status)
