"""
HTTP client for the sensor's local endpoint.

Provides async access to the sensor's /data resource:
    - GET /data returns the latest measurements as a JSON object
    - HEAD /data is used as a lightweight reachability probe

Both calls are bounded by a short client timeout. There are no retries here:
the poll cadence of ConnectionMonitor is the retry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp

logger = logging.getLogger(__name__)


class SensorUnreachableError(Exception):
    """Sensor timed out, refused the connection, or answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SensorClient:
    """
    Async HTTP client for the sensor.

    Usage:
        async with SensorClient(timeout=2.0) as client:
            if await client.probe("192.168.1.100"):
                data = await client.fetch_data("192.168.1.100")
    """

    DATA_PATH = "/data"

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 2.0,
    ):
        """
        Initialize the sensor client.

        Args:
            session: Optional aiohttp session (created lazily if not provided)
            timeout: Per-request timeout in seconds
        """
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __aenter__(self) -> "SensorClient":
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    @classmethod
    def data_url(cls, address: str) -> str:
        """Build the /data URL, accepting bare hosts or full base URLs."""
        base = address.strip().rstrip("/")
        if "://" not in base:
            base = f"http://{base}"
        return f"{base}{cls.DATA_PATH}"

    async def probe(self, address: str) -> bool:
        """
        Check whether the sensor answers at all.

        Any HTTP answer counts as reachable; only transport failures and
        timeouts count as unreachable. Never raises.

        Args:
            address: Sensor host (optionally with port or scheme)

        Returns:
            True if the sensor answered within the timeout
        """
        session = self._ensure_session()
        url = self.data_url(address)

        try:
            async with session.head(url, timeout=self._timeout) as response:
                logger.debug(f"Probe {url}: HTTP {response.status}")
                return True
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.info(f"Probe {url} timed out")
            return False
        except aiohttp.ClientError as e:
            logger.info(f"Probe {url} failed: {e}")
            return False
        except Exception as e:
            logger.warning(f"Unexpected probe error for {url}: {e}")
            return False

    async def fetch_data(self, address: str) -> dict[str, Any]:
        """
        Fetch the latest measurements.

        Args:
            address: Sensor host (optionally with port or scheme)

        Returns:
            Decoded JSON object (fields may be missing)

        Raises:
            SensorUnreachableError: On timeout, connection error, non-2xx
                status or a body that is not a JSON object
            asyncio.CancelledError: When task is cancelled (re-raised)
        """
        session = self._ensure_session()
        url = self.data_url(address)

        try:
            async with session.get(
                url,
                timeout=self._timeout,
                headers={"Accept": "application/json"},
            ) as response:
                if response.status >= 400:
                    raise SensorUnreachableError(
                        f"Sensor error: HTTP {response.status}",
                        status_code=response.status,
                    )
                data = await response.json(content_type=None)

        except asyncio.CancelledError:
            raise
        except SensorUnreachableError:
            raise
        except asyncio.TimeoutError:
            raise SensorUnreachableError(f"Sensor request timed out: {url}")
        except aiohttp.ClientError as e:
            raise SensorUnreachableError(f"Sensor request failed: {e}")
        except ValueError as e:
            raise SensorUnreachableError(f"Sensor sent invalid JSON: {e}")

        if not isinstance(data, dict):
            raise SensorUnreachableError(
                f"Sensor sent {type(data).__name__}, expected a JSON object"
            )

        return data
