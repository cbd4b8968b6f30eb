"""Tests for the Fingerbank client."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from lanlens._types import FingerprintSource, now_utc
from lanlens.fingerprint.fingerbank import (
    FingerbankAuthError,
    FingerbankClient,
    FingerbankRateLimitError,
    FingerbankResponseError,
    FingerbankServerError,
    parse_response,
)


IPHONE_RESPONSE = {
    "device": {
        "id": 3321,
        "name": "Apple iPhone",
        "mobile": True,
        "tablet": False,
        "parents": [{"id": 1, "name": "Apple iOS"}, {"id": 2}],
    },
    "score": 87,
    "version": "iOS 17.2",
}


def mock_session(status=200, payload=None, error=None):
    session = MagicMock()
    session.closed = False
    if error is not None:
        session.post.side_effect = error
        return session
    resp = MagicMock()
    resp.status = status
    resp.json = AsyncMock(return_value=payload)
    session.post.return_value.__aenter__.return_value = resp
    return session


class TestParseResponse:
    """Tests for parse_response."""

    def test_full_response(self):
        fp = parse_response(IPHONE_RESPONSE)

        assert fp.fingerbank_device_name == "Apple iPhone"
        assert fp.fingerbank_device_id == 3321
        assert fp.fingerbank_parents == ["Apple iOS"]
        assert fp.fingerbank_score == 87
        assert fp.operating_system == "iOS"
        assert fp.os_version == "17.2"
        assert fp.is_mobile is True
        assert fp.is_tablet is False
        assert fp.source == FingerprintSource.FINGERBANK

    def test_single_word_version(self):
        """A version with no space is kept as both name and version."""
        fp = parse_response({"version": "Linux"})
        assert fp.operating_system == "Linux"
        assert fp.os_version == "Linux"

    def test_wrong_types_ignored(self):
        fp = parse_response({
            "device": {"id": "3321", "mobile": "yes", "parents": "Apple"},
            "score": "high",
        })
        assert fp.fingerbank_device_id is None
        assert fp.is_mobile is None
        assert fp.fingerbank_parents is None
        assert fp.fingerbank_score is None

    @pytest.mark.parametrize("data", [[], "device", None, 42])
    def test_non_object_rejected(self, data):
        with pytest.raises(FingerbankResponseError):
            parse_response(data)


class TestFingerbankClient:
    """Tests for FingerbankClient.interrogate."""

    @pytest.mark.asyncio
    async def test_request_body_and_headers(self):
        """Should send the normalized MAC and optional signals."""
        session = mock_session(payload=IPHONE_RESPONSE)
        client = FingerbankClient("secret", url="https://fb.test/interrogate", session=session)

        fp = await client.interrogate("aa-bb-cc-dd-ee-01", "1,3,6,15", ["Mozilla/5.0"])

        assert fp.fingerbank_device_name == "Apple iPhone"
        assert client.request_count == 1
        args, kwargs = session.post.call_args
        assert args[0] == "https://fb.test/interrogate"
        assert kwargs["json"] == {
            "mac": "AA:BB:CC:DD:EE:01",
            "dhcp_fingerprint": "1,3,6,15",
            "user_agents": ["Mozilla/5.0"],
        }
        assert kwargs["headers"]["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_optional_signals_omitted(self):
        session = mock_session(payload={})
        client = FingerbankClient("secret", session=session)

        await client.interrogate("AA:BB:CC:DD:EE:01")

        assert session.post.call_args.kwargs["json"] == {"mac": "AA:BB:CC:DD:EE:01"}

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        client = FingerbankClient("bad", session=mock_session(status=401))
        with pytest.raises(FingerbankAuthError):
            await client.interrogate("AA:BB:CC:DD:EE:01")

    @pytest.mark.asyncio
    async def test_rate_limited_backs_off(self):
        """A 429 sets a reset time and later calls fail without a request."""
        session = mock_session(status=429)
        client = FingerbankClient("key", session=session)

        with pytest.raises(FingerbankRateLimitError) as exc_info:
            await client.interrogate("AA:BB:CC:DD:EE:01")

        assert client.is_rate_limited
        assert exc_info.value.reset_at > now_utc() + timedelta(minutes=59)

        with pytest.raises(FingerbankRateLimitError):
            await client.interrogate("AA:BB:CC:DD:EE:01")
        assert session.post.call_count == 1

        client.reset_rate_limit()
        assert not client.is_rate_limited
        assert client.request_count == 0

    @pytest.mark.asyncio
    async def test_server_error(self):
        client = FingerbankClient("key", session=mock_session(status=503))
        with pytest.raises(FingerbankServerError) as exc_info:
            await client.interrogate("AA:BB:CC:DD:EE:01")
        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        asyncio.TimeoutError(),
        aiohttp.ClientConnectionError("unreachable"),
    ])
    async def test_network_failures_are_status_zero(self, error):
        client = FingerbankClient("key", session=mock_session(error=error))
        with pytest.raises(FingerbankServerError) as exc_info:
            await client.interrogate("AA:BB:CC:DD:EE:01")
        assert exc_info.value.status == 0

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        session = mock_session()
        resp = session.post.return_value.__aenter__.return_value
        resp.json = AsyncMock(side_effect=ValueError("Expecting value"))
        client = FingerbankClient("key", session=session)

        with pytest.raises(FingerbankResponseError):
            await client.interrogate("AA:BB:CC:DD:EE:01")
