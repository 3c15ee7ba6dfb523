"""
ConnectionMonitor - Sensor connectivity state machine and poll driver.

State machine:
    DISCONNECTED --probe ok--> AUTHENTICATING --valid PIN--> CONNECTED
    CONNECTED --4th consecutive poll failure--> DISCONNECTED

Only CONNECTED polls. Entering CONNECTED schedules the recurring poll, leaving
it cancels the poll timer. At most one poll is in flight: a poll requested
while another is pending is skipped. The failure threshold is a plain circuit breaker:
no backoff, the poll interval never changes.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from vitalguard.core.scheduler import Scheduler

from .client import SensorClient, SensorUnreachableError
from .models import ConnectionState, Reading, now_ms

logger = logging.getLogger(__name__)

ReadingHandler = Callable[[Reading], Awaitable[None]]
StateListener = Callable[[ConnectionState, ConnectionState], None]


class InvalidCredentialError(Exception):
    """PIN rejected by the client-side length check."""
    pass


class ConnectionMonitor:
    """
    Owns the connection state of one sensor.

    Usage:
        monitor = ConnectionMonitor(client, scheduler, address="192.168.1.100")
        monitor.set_reading_handler(coordinator.handle_reading)

        if await monitor.probe():
            await monitor.authenticate("1234")
        # polls every poll_interval until 4 consecutive failures
    """

    MIN_PIN_LENGTH = 4
    MAX_CONSECUTIVE_FAILURES = 3

    def __init__(
        self,
        client: SensorClient,
        scheduler: Scheduler,
        address: str = "",
        poll_interval: float = 1.0,
        name: str = "sensor",
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        """
        Initialize the connection monitor.

        Args:
            client: HTTP client for the sensor endpoint
            scheduler: Owner of the recurring poll timer
            address: Sensor host on the local network
            poll_interval: Seconds between polls while CONNECTED
            name: Timer namespace, unique per monitored device
            clock: Millisecond clock, injectable for tests
        """
        self._client = client
        self._scheduler = scheduler
        self._address = address
        self._poll_interval = poll_interval
        self._name = name
        self._clock = clock or now_ms

        self._state = ConnectionState.DISCONNECTED
        self._failure_count = 0
        self._last_reading = Reading.empty(self._clock())
        self._last_success_at: Optional[int] = None
        self._poll_lock = asyncio.Lock()

        self._reading_handler: Optional[ReadingHandler] = None
        self._state_listeners: List[StateListener] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def address(self) -> str:
        return self._address

    @address.setter
    def address(self, value: str) -> None:
        self._address = value.strip()

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_reading(self) -> Reading:
        return self._last_reading

    @property
    def last_success_at(self) -> Optional[int]:
        """Timestamp (ms) of the last successful poll."""
        return self._last_success_at

    @property
    def poll_timer_name(self) -> str:
        return f"{self._name}-poll"

    def set_reading_handler(self, handler: Optional[ReadingHandler]) -> None:
        self._reading_handler = handler

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def restore_last_reading(self, reading: Reading) -> None:
        """Seed the fallback values for partial sensor bodies."""
        self._last_reading = reading

    async def probe(self, address: Optional[str] = None) -> bool:
        """
        Check whether the sensor is reachable.

        Args:
            address: New sensor address (keeps the current one if None)

        Returns:
            True if the sensor answered. Never raises.
        """
        if address is not None:
            self.address = address

        if not self._address:
            logger.warning("Probe skipped: no sensor address configured")
            return False

        reachable = await self._client.probe(self._address)

        if reachable and self._state == ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.AUTHENTICATING)
        elif not reachable:
            logger.info(f"Sensor {self._address} is not reachable")

        return reachable

    async def authenticate(self, pin: str) -> Optional[Reading]:
        """
        Pair with the sensor using the PIN shown on its screen.

        This is a client-side length check, not a cryptographic handshake.

        Args:
            pin: Operator-provided PIN

        Returns:
            The first reading if the immediate poll succeeded, else None

        Raises:
            InvalidCredentialError: If the PIN is shorter than 4 characters
        """
        if pin is None or len(pin) < self.MIN_PIN_LENGTH:
            raise InvalidCredentialError(
                f"Invalid PIN (minimum {self.MIN_PIN_LENGTH} characters)"
            )

        self._failure_count = 0
        if self._state != ConnectionState.CONNECTED:
            self._set_state(ConnectionState.CONNECTED)

        return await self.poll()

    def disconnect(self) -> None:
        """Operator-requested disconnect."""
        if self._state != ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)

    async def poll(self) -> Optional[Reading]:
        """
        Fetch one reading.

        Returns:
            The new Reading, or None if not connected or the poll failed
            (also None when a poll is already in flight)
        """
        if self._state != ConnectionState.CONNECTED:
            return None
        if self._poll_lock.locked():
            logger.debug("Poll skipped: previous poll still in flight")
            return None

        async with self._poll_lock:
            return await self._poll_once()

    async def _poll_once(self) -> Optional[Reading]:
        try:
            data = await self._client.fetch_data(self._address)
        except asyncio.CancelledError:
            raise
        except SensorUnreachableError as e:
            self._record_failure(str(e))
            return None

        self._failure_count = 0
        reading = Reading.from_payload(
            data,
            previous=self._last_reading,
            timestamp=self._clock(),
        )
        self._last_reading = reading
        self._last_success_at = reading.timestamp

        if self._reading_handler is not None:
            await self._reading_handler(reading)

        return reading

    def _record_failure(self, reason: str) -> None:
        self._failure_count += 1
        logger.debug(
            f"Poll failed ({self._failure_count} consecutive): {reason}"
        )

        if self._failure_count > self.MAX_CONSECUTIVE_FAILURES:
            logger.warning(
                f"Sensor {self._address} lost after "
                f"{self._failure_count} consecutive failures"
            )
            self._set_state(ConnectionState.DISCONNECTED)

    def _set_state(self, new_state: ConnectionState) -> None:
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state
        logger.info(f"Sensor {self._address}: {old_state.value} -> {new_state.value}")

        if new_state == ConnectionState.CONNECTED:
            self._scheduler.call_every(
                self.poll_timer_name,
                self._poll_interval,
                self.poll,
            )
        elif old_state == ConnectionState.CONNECTED:
            self._scheduler.cancel(self.poll_timer_name)

        for listener in self._state_listeners:
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.error(f"State listener failed: {e}")
