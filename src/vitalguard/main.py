"""
VitalGuard Monitor - Main Entry Point

Runs the sensor monitor: polls the sensor, raises alerts, keeps the reading
history and pushes state to the remote collector.

Usage:
    python -m vitalguard.main [--address HOST] [--pin PIN] [--remote-url URL]
    vitalguard --no-dashboard --state-dir /var/lib/vitalguard

Configuration:
    The monitor reads configuration from:
    1. Environment variables
    2. A .env file in the working directory
    3. Command line arguments (highest precedence)

Environment Variables:
    VITALGUARD_SENSOR_ADDRESS   Sensor host on the local network (default: 192.168.1.100)
    VITALGUARD_SENSOR_PIN       Sensor PIN; pairs automatically after a successful probe
    VITALGUARD_REMOTE_URL       Remote collector URL (default: empty, sync disabled)
    VITALGUARD_POLL_INTERVAL    Seconds between sensor polls (default: 1.0)
    VITALGUARD_SENSOR_TIMEOUT   Sensor request timeout in seconds (default: 2.0)
    VITALGUARD_SYNC_INTERVAL    Seconds between periodic pushes (default: 30)
    VITALGUARD_SYNC_DELAY       Delay of the push after an alert (default: 2.0)
    VITALGUARD_SYNC_TIMEOUT     Collector request timeout in seconds (default: 10.0)
    VITALGUARD_STATE_DIR        Directory of the JSON state files (default: ~/.vitalguard)
    DATABASE_URL                PostgreSQL connection string (replaces the JSON files)
    TELEGRAM_BOT_TOKEN          Telegram bot token for alert notifications
    TELEGRAM_CHAT_ID            Telegram chat ID for alert notifications
    DASHBOARD_ENABLED           Serve the operator API (default: true)
    DASHBOARD_HOST              Operator API bind address (default: 127.0.0.1)
    DASHBOARD_PORT              Operator API port (default: 9060)
    DASHBOARD_API_KEY           Require this key on every operator API request
    LOG_LEVEL                   Logging level (DEBUG/INFO/WARNING/ERROR)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# Logging is configured before the package modules create their loggers
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@dataclass
class MonitorConfig:
    """Monitor configuration."""

    # Sensor
    sensor_address: str = "192.168.1.100"
    sensor_pin: Optional[str] = None
    # Set when the address came from the environment or the command line
    sensor_address_explicit: bool = False
    poll_interval: float = 1.0
    sensor_timeout: float = 2.0

    # Remote collector
    remote_url: str = ""
    sync_interval: float = 30.0
    sync_delay: float = 2.0
    sync_timeout: float = 10.0

    # Persistence
    state_dir: str = "~/.vitalguard"
    database_url: Optional[str] = None

    # Alerts
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    # Operator API, local only unless DASHBOARD_HOST says otherwise
    dashboard_enabled: bool = True
    dashboard_host: str = "127.0.0.1"
    dashboard_port: int = 9060

    # Health
    health_check_interval: float = 30.0

    @classmethod
    def from_env(cls) -> "MonitorConfig":
        """Build a config from VITALGUARD_* and related environment variables."""
        return cls(
            sensor_address=os.environ.get("VITALGUARD_SENSOR_ADDRESS", "192.168.1.100"),
            sensor_address_explicit="VITALGUARD_SENSOR_ADDRESS" in os.environ,
            sensor_pin=os.environ.get("VITALGUARD_SENSOR_PIN") or None,
            poll_interval=float(os.environ.get("VITALGUARD_POLL_INTERVAL", "1.0")),
            sensor_timeout=float(os.environ.get("VITALGUARD_SENSOR_TIMEOUT", "2.0")),
            remote_url=os.environ.get("VITALGUARD_REMOTE_URL", ""),
            sync_interval=float(os.environ.get("VITALGUARD_SYNC_INTERVAL", "30")),
            sync_delay=float(os.environ.get("VITALGUARD_SYNC_DELAY", "2.0")),
            sync_timeout=float(os.environ.get("VITALGUARD_SYNC_TIMEOUT", "10.0")),
            state_dir=os.environ.get("VITALGUARD_STATE_DIR", "~/.vitalguard"),
            database_url=os.environ.get("DATABASE_URL") or None,
            telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=os.environ.get("TELEGRAM_CHAT_ID"),
            dashboard_enabled=os.environ.get("DASHBOARD_ENABLED", "true").lower() == "true",
            dashboard_host=os.environ.get("DASHBOARD_HOST", "127.0.0.1"),
            dashboard_port=int(os.environ.get("DASHBOARD_PORT", "9060")),
        )

    def apply_args(self, args: argparse.Namespace) -> None:
        """Override fields with command line arguments that were given."""
        if args.address:
            self.sensor_address = args.address
            self.sensor_address_explicit = True
        if args.pin:
            self.sensor_pin = args.pin
        if args.remote_url is not None:
            self.remote_url = args.remote_url
        if args.state_dir:
            self.state_dir = args.state_dir
        if args.poll_interval:
            self.poll_interval = args.poll_interval
        if args.no_dashboard:
            self.dashboard_enabled = False
        if args.port:
            self.dashboard_port = args.port


class VitalGuardApp:
    """
    Main monitor orchestrator.

    Owns every long-lived component and tears them down in reverse order:
    - State store (JSON files or PostgreSQL)
    - Sensor client and connection monitor
    - History, alert engine and sync scheduler
    - Operator API and health checks
    """

    def __init__(self, config: MonitorConfig):
        self.config = config
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._started_at: Optional[datetime] = None

        # Built by start()
        self._store = None
        self._scheduler = None
        self._sensor_client = None
        self._monitor = None
        self._notification_sink = None
        self._sync = None
        self._coordinator = None
        self._health_checker = None
        self._dashboard = None
        self._dashboard_thread: Optional[threading.Thread] = None
        self._flask_server = None

    @property
    def coordinator(self):
        return self._coordinator

    async def start(self) -> None:
        """Start the monitor and run until a shutdown is requested."""
        logger.info("=" * 60)
        logger.info("VITALGUARD MONITOR")
        logger.info("=" * 60)
        logger.info(f"Sensor: {self.config.sensor_address}")
        logger.info(f"Remote sync: {self.config.remote_url or 'disabled'}")
        logger.info("=" * 60)

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        self._shutdown_event.clear()

        self._setup_signal_handlers()

        try:
            await self._init_storage()
            await self._init_components()

            if self._shutdown_event.is_set():
                logger.info("Stop requested before the sensor was probed")
                return

            await self._init_monitoring()
            await self._connect_sensor()

            logger.info("=" * 60)
            logger.info("Monitor started successfully")
            logger.info("Monitoring; Ctrl+C to stop")
            logger.info("=" * 60)

            await self._run_loop()

        except Exception as e:
            logger.exception(f"Fatal error: {e}")
            raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the monitor gracefully."""
        if not self._running:
            return

        logger.info("Stopping monitor...")
        self._running = False
        self._shutdown_event.set()

        if self._dashboard:
            try:
                self._stop_dashboard()
            except Exception as e:
                logger.warning(f"Error stopping operator API: {e}")

        # Cancels the poll and sync timers
        if self._scheduler:
            try:
                await self._scheduler.shutdown()
            except Exception as e:
                logger.warning(f"Error stopping timers: {e}")

        if self._sensor_client:
            try:
                await self._sensor_client.close()
            except Exception as e:
                logger.warning(f"Error closing sensor client: {e}")

        if self._notification_sink:
            self._notification_sink.close()

        if self._store:
            try:
                await self._store.close()
            except Exception as e:
                logger.warning(f"Error closing state store: {e}")

        logger.info("Monitor stopped")

    async def request_shutdown(self, reason: str = "manual") -> None:
        """Request a graceful shutdown."""
        if not self._running:
            return
        logger.warning(f"Stop requested: {reason}")
        self._shutdown_event.set()

    async def _init_storage(self) -> None:
        """Open the state store."""
        from vitalguard.storage import create_state_store

        self._store = create_state_store(
            database_url=self.config.database_url,
            state_dir=self.config.state_dir,
        )
        await self._store.initialize()

        if not await self._store.health_check():
            raise RuntimeError("State store health check failed")

        backend = "PostgreSQL" if self.config.database_url else self.config.state_dir
        logger.info(f"Storage: {backend}")

    async def _init_components(self) -> None:
        """Build the monitor components and restore persisted state."""
        from vitalguard.core import HistoryBuffer, Scheduler
        from vitalguard.core.coordinator import MonitoringCoordinator
        from vitalguard.ingestion import ConnectionMonitor, SensorClient
        from vitalguard.monitoring import AlertEngine, TelegramNotificationSink
        from vitalguard.sync import SyncScheduler

        self._scheduler = Scheduler()
        self._sensor_client = SensorClient(timeout=self.config.sensor_timeout)

        self._monitor = ConnectionMonitor(
            client=self._sensor_client,
            scheduler=self._scheduler,
            address=self.config.sensor_address,
            poll_interval=self.config.poll_interval,
        )

        self._notification_sink = TelegramNotificationSink(
            bot_token=self.config.telegram_bot_token,
            chat_id=self.config.telegram_chat_id,
        )
        if self._notification_sink.permission_granted:
            logger.info("Alerts: forwarded to Telegram")
        else:
            logger.info("Alerts: local log only (no Telegram credentials)")

        self._sync = SyncScheduler(
            scheduler=self._scheduler,
            remote_url=self.config.remote_url,
            sync_interval=self.config.sync_interval,
            sync_delay=self.config.sync_delay,
            timeout=self.config.sync_timeout,
        )

        self._coordinator = MonitoringCoordinator(
            monitor=self._monitor,
            history=HistoryBuffer(),
            alert_engine=AlertEngine(notification_sink=self._notification_sink),
            sync_scheduler=self._sync,
            store=self._store,
        )
        await self._coordinator.restore()

        # Command line and environment win over the stored values
        if self.config.remote_url:
            self._sync.set_remote_url(self.config.remote_url)
        if self.config.sensor_address_explicit or not self._monitor.address:
            self._monitor.address = self.config.sensor_address

    async def _init_monitoring(self) -> None:
        """Initialize health checks and the operator API."""
        from vitalguard.monitoring import Dashboard, HealthChecker

        self._health_checker = HealthChecker(
            monitor=self._monitor,
            sync_scheduler=self._sync,
            store=self._store,
        )

        if self.config.dashboard_enabled:
            self._dashboard = Dashboard(
                coordinator=self._coordinator,
                monitor=self._monitor,
                health_checker=self._health_checker,
                event_loop=asyncio.get_running_loop(),
                started_at=self._started_at,
            )
            self._start_dashboard()
        else:
            logger.info("Operator API disabled")

    async def _connect_sensor(self) -> None:
        """Probe the sensor and pair when a PIN is configured."""
        from vitalguard.ingestion import InvalidCredentialError

        if not await self._monitor.probe():
            logger.warning(
                f"Sensor {self._monitor.address} not reachable; "
                f"use POST /api/connect to retry"
            )
            return

        if not self.config.sensor_pin:
            logger.info("Sensor reachable; waiting for PIN via POST /api/authenticate")
            return

        try:
            await self._monitor.authenticate(self.config.sensor_pin)
        except InvalidCredentialError as e:
            logger.error(f"Configured PIN rejected: {e}")

    def _start_dashboard(self) -> None:
        """Start the operator API in a background thread.

        Uses werkzeug's threaded server so the event loop never blocks on a
        request.
        """
        from werkzeug.serving import make_server

        def run_flask():
            try:
                if not self._running:
                    logger.info("Operator API not started: monitor is stopping")
                    return

                app = self._dashboard.create_app()

                self._flask_server = make_server(
                    host=self.config.dashboard_host,
                    port=self.config.dashboard_port,
                    app=app,
                    threaded=True,
                )

                if not self._running:
                    self._flask_server.server_close()
                    logger.info("Operator API not served: monitor is stopping")
                    return

                logger.info(
                    f"Operator API listening on http://{self.config.dashboard_host}:{self.config.dashboard_port}"
                )
                self._flask_server.serve_forever()

            except Exception as e:
                logger.error(f"Operator API failed to start: {e}")

        self._dashboard_thread = threading.Thread(target=run_flask, daemon=True)
        self._dashboard_thread.start()

    def _stop_dashboard(self) -> None:
        """Stop the operator API gracefully."""
        if self._flask_server:
            logger.info("Operator API stopping")
            self._flask_server.shutdown()
            self._flask_server.server_close()
            self._flask_server = None

        if self._dashboard_thread:
            if self._dashboard_thread.is_alive():
                self._dashboard_thread.join(timeout=5)
                if self._dashboard_thread.is_alive():
                    logger.warning("Operator API thread still alive after 5s")
            self._dashboard_thread = None

    async def _run_loop(self) -> None:
        """Wait for shutdown, checking health periodically."""
        from vitalguard.monitoring import HealthStatus

        while self._running:
            try:
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self.config.health_check_interval,
                    )
                    break
                except asyncio.TimeoutError:
                    pass

                if self._health_checker:
                    health = await self._health_checker.check_all()
                    unhealthy = [
                        c for c in health.components
                        if c.status == HealthStatus.UNHEALTHY
                    ]
                    if unhealthy:
                        logger.warning(
                            f"Health check failed: {[c.component for c in unhealthy]}"
                        )

                stats = self._coordinator.stats
                logger.info(
                    f"Stats: readings={stats.readings_received}, "
                    f"alerts={stats.alerts_raised}, "
                    f"sync_requests={stats.sync_requests}, "
                    f"state={self._monitor.state.value}"
                )

            except Exception as e:
                logger.error(f"Health loop error: {e}")
                await asyncio.sleep(5)

    def _setup_signal_handlers(self) -> None:
        """Turn SIGINT and SIGTERM into a shutdown request."""
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Not available on Windows event loops
            pass


def load_env_file(path: str = ".env") -> None:
    """Export KEY=VALUE lines from a .env file without overriding the environment."""
    env_path = Path(path)
    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    value = value.strip().strip('"').strip("'")
                    os.environ.setdefault(key.strip(), value)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Command line overrides for the environment configuration."""
    parser = argparse.ArgumentParser(
        description="VitalGuard Monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--address",
        type=str,
        help="Sensor host on the local network",
    )
    parser.add_argument(
        "--pin",
        type=str,
        help="Sensor PIN (pairs automatically after a successful probe)",
    )
    parser.add_argument(
        "--remote-url",
        type=str,
        default=None,
        help="Remote collector URL (empty string disables sync)",
    )
    parser.add_argument(
        "--state-dir",
        type=str,
        help="Directory of the JSON state files",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        help="Seconds between sensor polls",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Operator API port",
    )
    parser.add_argument(
        "--no-dashboard",
        action="store_true",
        help="Do not serve the operator API",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    config = MonitorConfig.from_env()
    config.apply_args(args)

    if config.poll_interval <= 0:
        logger.error("Poll interval must be positive")
        return 1

    app = VitalGuardApp(config)

    try:
        await app.start()
        return 0
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main() -> int:
    """Main entry point."""
    load_env_file()

    args = parse_args()

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
