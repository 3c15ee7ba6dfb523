"""
Tests for the sensor HTTP client.

These tests verify:
- Probe treats any HTTP answer as reachable and never raises
- fetch_data maps every failure to SensorUnreachableError
- URL building accepts bare hosts
"""

import asyncio
import json

import aiohttp
import pytest

from vitalguard.ingestion.client import SensorClient, SensorUnreachableError


class TestDataUrl:

    def test_bare_host_gets_scheme(self):
        assert SensorClient.data_url("192.168.1.100") == "http://192.168.1.100/data"

    def test_host_with_port(self):
        assert SensorClient.data_url("10.0.0.5:8080") == "http://10.0.0.5:8080/data"

    def test_full_url_kept(self):
        assert SensorClient.data_url("https://sensor.local/") == "https://sensor.local/data"

    def test_whitespace_stripped(self):
        assert SensorClient.data_url("  192.168.1.100 ") == "http://192.168.1.100/data"


class TestProbe:
    """Tests for the reachability probe."""

    @pytest.mark.asyncio
    async def test_probe_ok(self, mock_aiohttp_session, make_response):
        mock_aiohttp_session.head.return_value = make_response(200)
        client = SensorClient(session=mock_aiohttp_session)

        assert await client.probe("192.168.1.100") is True
        args, _ = mock_aiohttp_session.head.call_args
        assert args[0] == "http://192.168.1.100/data"

    @pytest.mark.asyncio
    async def test_probe_any_status_is_reachable(self, mock_aiohttp_session, make_response):
        """A 405 to HEAD still proves the device is on the network."""
        mock_aiohttp_session.head.return_value = make_response(405)
        client = SensorClient(session=mock_aiohttp_session)

        assert await client.probe("192.168.1.100") is True

    @pytest.mark.asyncio
    async def test_probe_timeout_returns_false(self, mock_aiohttp_session):
        mock_aiohttp_session.head.side_effect = asyncio.TimeoutError()
        client = SensorClient(session=mock_aiohttp_session)

        assert await client.probe("192.168.1.100") is False

    @pytest.mark.asyncio
    async def test_probe_connection_error_returns_false(self, mock_aiohttp_session):
        mock_aiohttp_session.head.side_effect = aiohttp.ClientConnectionError("refused")
        client = SensorClient(session=mock_aiohttp_session)

        assert await client.probe("192.168.1.100") is False

    @pytest.mark.asyncio
    async def test_probe_propagates_cancellation(self, mock_aiohttp_session):
        mock_aiohttp_session.head.side_effect = asyncio.CancelledError()
        client = SensorClient(session=mock_aiohttp_session)

        with pytest.raises(asyncio.CancelledError):
            await client.probe("192.168.1.100")


class TestFetchData:
    """Tests for GET /data."""

    @pytest.mark.asyncio
    async def test_returns_json_object(self, mock_aiohttp_session, make_response, sample_payload):
        mock_aiohttp_session.get.return_value = make_response(200, sample_payload)
        client = SensorClient(session=mock_aiohttp_session)

        data = await client.fetch_data("192.168.1.100")

        assert data == sample_payload

    @pytest.mark.asyncio
    async def test_http_error_raises(self, mock_aiohttp_session, make_response):
        mock_aiohttp_session.get.return_value = make_response(503)
        client = SensorClient(session=mock_aiohttp_session)

        with pytest.raises(SensorUnreachableError) as exc_info:
            await client.fetch_data("192.168.1.100")

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_timeout_raises(self, mock_aiohttp_session):
        mock_aiohttp_session.get.side_effect = asyncio.TimeoutError()
        client = SensorClient(session=mock_aiohttp_session)

        with pytest.raises(SensorUnreachableError, match="timed out"):
            await client.fetch_data("192.168.1.100")

    @pytest.mark.asyncio
    async def test_connection_error_raises(self, mock_aiohttp_session):
        mock_aiohttp_session.get.side_effect = aiohttp.ClientConnectionError("refused")
        client = SensorClient(session=mock_aiohttp_session)

        with pytest.raises(SensorUnreachableError):
            await client.fetch_data("192.168.1.100")

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self, mock_aiohttp_session, make_response):
        mock_aiohttp_session.get.return_value = make_response(
            200, json_error=json.JSONDecodeError("Expecting value", "", 0)
        )
        client = SensorClient(session=mock_aiohttp_session)

        with pytest.raises(SensorUnreachableError, match="invalid JSON"):
            await client.fetch_data("192.168.1.100")

    @pytest.mark.asyncio
    async def test_non_object_body_raises(self, mock_aiohttp_session, make_response):
        mock_aiohttp_session.get.return_value = make_response(200, [1, 2, 3])
        client = SensorClient(session=mock_aiohttp_session)

        with pytest.raises(SensorUnreachableError, match="expected a JSON object"):
            await client.fetch_data("192.168.1.100")


class TestSessionOwnership:

    @pytest.mark.asyncio
    async def test_injected_session_not_closed(self, mock_aiohttp_session):
        client = SensorClient(session=mock_aiohttp_session)

        await client.close()

        mock_aiohttp_session.close.assert_not_called()
