"""
Operator API for the monitor.

Provides a Flask application with JSON endpoints to inspect vitals, history
and alerts, and to drive the sensor connection and the remote sync.

SECURITY:
- Optional API key authentication via DASHBOARD_API_KEY env var
- Bind to localhost by default
"""
from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import os
from datetime import datetime, timezone
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Optional

from flask import Flask, Response, abort, jsonify, request

from vitalguard.ingestion.connection import InvalidCredentialError
from vitalguard.ingestion.models import PatientProfile

if TYPE_CHECKING:
    from vitalguard.core.coordinator import MonitoringCoordinator
    from vitalguard.ingestion.connection import ConnectionMonitor

    from .health_checker import HealthChecker

logger = logging.getLogger(__name__)

# Operator API key; no auth when unset
DASHBOARD_API_KEY = os.environ.get("DASHBOARD_API_KEY")


def require_api_key(f: Callable) -> Callable:
    """
    Reject requests without the operator API key (when one is configured).

    If DASHBOARD_API_KEY is set, requests must include either the X-API-Key
    header or the api_key query parameter. Otherwise authentication is
    disabled.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if not DASHBOARD_API_KEY:
            return f(*args, **kwargs)

        provided_key = request.headers.get("X-API-Key") or request.args.get("api_key")

        if not provided_key or provided_key != DASHBOARD_API_KEY:
            logger.warning(f"Unauthorized API access attempt from {request.remote_addr}")
            abort(401)

        return f(*args, **kwargs)

    return decorated


class Dashboard:
    """
    Operator API web application.

    Endpoints:
        GET  /health                  - Component health
        GET  /api/status              - Connection, sync and buffer summary
        GET  /api/vitals              - Latest reading
        GET  /api/history             - Buffered readings, oldest first
        GET  /api/alerts              - Alert log (?type=spo2, ?unread=1)
        POST /api/alerts/clear        - Drop all alerts
        POST /api/alerts/<id>/read    - Mark one alert as read
        POST /api/history/clear       - Drop the history
        POST /api/reset               - Drop history, alerts and last sync time
        POST /api/connect             - Probe the sensor ({"address": ...})
        POST /api/authenticate        - Pair with the sensor ({"pin": ...})
        POST /api/disconnect          - Stop polling
        GET/POST /api/settings        - Sensor address, remote URL, advisor key
        GET/PUT  /api/profile         - Patient profile
        POST /api/setup               - Finish onboarding with a profile
        POST /api/sync                - Push to the collector now
        POST /api/network             - Report connectivity ({"online": ...})

    Usage:
        dashboard = Dashboard(coordinator, monitor, health_checker, event_loop=loop)
        app = dashboard.create_app()
    """

    def __init__(
        self,
        coordinator: "MonitoringCoordinator",
        monitor: "ConnectionMonitor",
        health_checker: Optional["HealthChecker"] = None,
        event_loop: Optional[asyncio.AbstractEventLoop] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        """
        Initialize the dashboard.

        Args:
            coordinator: Monitoring coordinator (state and operator actions)
            monitor: Sensor connection monitor
            health_checker: HealthChecker instance
            event_loop: Main asyncio event loop. Flask runs in a separate
                       thread, so every coroutine is dispatched with
                       run_coroutine_threadsafe() onto the loop that owns
                       the timers and the HTTP sessions.
            started_at: Process start time, for uptime reporting
        """
        self._coordinator = coordinator
        self._monitor = monitor
        self._health_checker = health_checker
        self._event_loop = event_loop
        self._started_at = started_at or datetime.now(timezone.utc)

    def _run_async(self, coro, timeout: float = 10.0) -> Any:
        """
        Run coro on the monitor loop and wait for its result.

        Args:
            coro: Coroutine to execute
            timeout: Timeout in seconds

        Returns:
            Result of the coroutine

        Raises:
            RuntimeError: If event loop is not running (shutdown in progress)
            TimeoutError: If operation times out
        """
        if self._event_loop is None:
            # No monitor loop (Flask test client): run to completion on a private loop
            loop = asyncio.new_event_loop()
            try:
                return loop.run_until_complete(coro)
            finally:
                loop.close()

        if self._event_loop.is_closed() or not self._event_loop.is_running():
            coro.close()
            raise RuntimeError("Event loop is not running (shutdown in progress)")

        future = asyncio.run_coroutine_threadsafe(coro, self._event_loop)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.error(f"Async operation timed out after {timeout}s")
            raise TimeoutError(f"Operation timed out after {timeout}s")

    # =========================================================================
    # Coroutines dispatched onto the main loop
    # =========================================================================

    async def _disconnect(self) -> None:
        # Cancels the poll timer, which must happen on the loop that owns it
        self._monitor.disconnect()

    async def _connect(self, address: Optional[str]) -> bool:
        return await self._monitor.probe(address)

    async def _authenticate(self, pin: str) -> Optional[dict]:
        reading = await self._monitor.authenticate(pin)
        return reading.to_dict() if reading is not None else None

    def _settings(self) -> dict:
        status = self._coordinator.status()
        return {
            "sensor_address": status["sensor_address"],
            "remote_url": status["remote_url"],
            "advisor_api_key_set": bool(self._coordinator.advisor_api_key),
        }

    def create_app(self, testing: bool = False) -> Flask:
        """
        Create the Flask application.

        Args:
            testing: Whether to enable testing mode

        Returns:
            Flask application instance
        """
        app = Flask(__name__)
        app.config["TESTING"] = testing

        app.dashboard = self  # type: ignore

        self._register_routes(app)

        return app

    def _register_routes(self, app: Flask) -> None:
        """Attach the operator endpoints to app."""

        @app.route("/health")
        @require_api_key
        def health() -> Response:
            """Aggregate component health."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if not dashboard._health_checker:
                return jsonify({
                    "status": "unknown",
                    "message": "Health checker not configured",
                })

            try:
                health_result = dashboard._run_async(
                    dashboard._health_checker.check_all()
                )
            except Exception as e:
                logger.error(f"Health check failed: {e}")
                return jsonify({"status": "error", "error": str(e)}), 500

            return jsonify({
                "status": health_result.status.value,
                "components": [
                    {
                        "component": c.component,
                        "status": c.status.value,
                        "message": c.message,
                        "latency_ms": c.latency_ms,
                    }
                    for c in health_result.components
                ],
                "checked_at": health_result.checked_at.isoformat(),
            })

        @app.route("/api/status")
        @require_api_key
        def status() -> Response:
            """Get connection, sync and buffer summary."""
            dashboard: Dashboard = app.dashboard  # type: ignore
            now = datetime.now(timezone.utc)

            result = dashboard._coordinator.status()
            result["started_at"] = dashboard._started_at.isoformat()
            result["uptime_seconds"] = int((now - dashboard._started_at).total_seconds())
            return jsonify(result)

        @app.route("/api/vitals")
        @require_api_key
        def vitals() -> Response:
            """Get the latest reading."""
            dashboard: Dashboard = app.dashboard  # type: ignore
            coordinator = dashboard._coordinator

            return jsonify({
                "connection_state": coordinator.connection_state.value,
                "reading": coordinator.current_reading.to_dict(),
            })

        @app.route("/api/history")
        @require_api_key
        def history() -> Response:
            """Get buffered readings, oldest first."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            readings = [r.to_dict() for r in dashboard._coordinator.history]
            limit = request.args.get("limit", type=int)
            if limit is not None and limit > 0:
                readings = readings[-limit:]

            return jsonify({"history": readings, "count": len(readings)})

        @app.route("/api/alerts")
        @require_api_key
        def alerts() -> Response:
            """Get the alert log, newest first."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            kind = request.args.get("type")
            unread_only = request.args.get("unread") in ("1", "true", "yes")

            items = [
                a for a in dashboard._coordinator.alerts
                if (kind is None or a.kind.value == kind)
                and not (unread_only and a.read)
            ]
            return jsonify({
                "alerts": [a.to_dict() for a in items],
                "count": len(items),
                "unread": sum(1 for a in dashboard._coordinator.alerts if not a.read),
            })

        @app.route("/api/alerts/clear", methods=["POST"])
        @require_api_key
        def clear_alerts() -> Response:
            """Drop all alerts."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            try:
                dashboard._run_async(dashboard._coordinator.clear_alerts())
            except Exception as e:
                logger.error(f"Failed to clear alerts: {e}")
                return jsonify({"error": str(e)}), 500
            return jsonify({"status": "cleared"})

        @app.route("/api/alerts/<alert_id>/read", methods=["POST"])
        @require_api_key
        def mark_alert_read(alert_id: str) -> Response:
            """Mark one alert as read."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            try:
                changed = dashboard._run_async(
                    dashboard._coordinator.mark_alert_read(alert_id)
                )
            except Exception as e:
                logger.error(f"Failed to mark alert {alert_id} read: {e}")
                return jsonify({"error": str(e)}), 500

            if not changed:
                return jsonify({"error": f"No unread alert {alert_id}"}), 404
            return jsonify({"status": "read", "id": alert_id})

        @app.route("/api/history/clear", methods=["POST"])
        @require_api_key
        def clear_history() -> Response:
            """Drop the reading history."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            try:
                dashboard._run_async(dashboard._coordinator.clear_history())
            except Exception as e:
                logger.error(f"Failed to clear history: {e}")
                return jsonify({"error": str(e)}), 500
            return jsonify({"status": "cleared"})

        @app.route("/api/reset", methods=["POST"])
        @require_api_key
        def reset() -> Response:
            """Drop history, alerts and the last sync time."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            try:
                dashboard._run_async(dashboard._coordinator.reset_local_data())
            except Exception as e:
                logger.error(f"Failed to reset local data: {e}")
                return jsonify({"error": str(e)}), 500
            return jsonify({"status": "reset"})

        @app.route("/api/connect", methods=["POST"])
        @require_api_key
        def connect() -> Response:
            """Probe the sensor, optionally at a new address."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            address = (request.get_json(silent=True) or {}).get("address")
            try:
                reachable = dashboard._run_async(dashboard._connect(address))
            except Exception as e:
                logger.error(f"Sensor probe failed: {e}")
                return jsonify({"error": str(e)}), 500

            return jsonify({
                "reachable": reachable,
                "address": dashboard._monitor.address,
                "connection_state": dashboard._monitor.state.value,
            })

        @app.route("/api/authenticate", methods=["POST"])
        @require_api_key
        def authenticate() -> Response:
            """Pair with the sensor using its PIN."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            pin = str((request.get_json(silent=True) or {}).get("pin") or "")
            try:
                reading = dashboard._run_async(dashboard._authenticate(pin))
            except InvalidCredentialError as e:
                return jsonify({"error": str(e)}), 400
            except Exception as e:
                logger.error(f"Authentication failed: {e}")
                return jsonify({"error": str(e)}), 500

            return jsonify({
                "connection_state": dashboard._monitor.state.value,
                "reading": reading,
            })

        @app.route("/api/disconnect", methods=["POST"])
        @require_api_key
        def disconnect() -> Response:
            """Stop polling the sensor."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            try:
                dashboard._run_async(dashboard._disconnect())
            except Exception as e:
                logger.error(f"Disconnect failed: {e}")
                return jsonify({"error": str(e)}), 500
            return jsonify({"connection_state": dashboard._monitor.state.value})

        @app.route("/api/settings", methods=["GET", "POST"])
        @require_api_key
        def settings() -> Response:
            """Get or update sensor address, remote URL and advisor key."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if request.method == "GET":
                return jsonify(dashboard._settings())

            payload = request.get_json(silent=True)
            if not isinstance(payload, dict):
                return jsonify({"error": "Expected a JSON object"}), 400

            try:
                dashboard._run_async(dashboard._coordinator.update_settings(
                    sensor_address=payload.get("sensor_address"),
                    remote_url=payload.get("remote_url"),
                    advisor_api_key=payload.get("advisor_api_key"),
                ))
            except Exception as e:
                logger.error(f"Failed to update settings: {e}")
                return jsonify({"error": str(e)}), 500
            return jsonify(dashboard._settings())

        @app.route("/api/profile", methods=["GET", "PUT"])
        @require_api_key
        def profile() -> Response:
            """Get or replace the patient profile."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            if request.method == "GET":
                return jsonify(dashboard._coordinator.profile.to_dict())

            payload = request.get_json(silent=True)
            if not isinstance(payload, dict):
                return jsonify({"error": "Expected a JSON object"}), 400

            try:
                new_profile = PatientProfile.from_dict(payload)
            except ValueError as e:
                return jsonify({"error": str(e)}), 400

            try:
                dashboard._run_async(dashboard._coordinator.update_profile(new_profile))
            except Exception as e:
                logger.error(f"Failed to update profile: {e}")
                return jsonify({"error": str(e)}), 500
            return jsonify(new_profile.to_dict())

        @app.route("/api/setup", methods=["POST"])
        @require_api_key
        def setup() -> Response:
            """Finish onboarding with a profile."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            payload = request.get_json(silent=True)
            if not isinstance(payload, dict):
                return jsonify({"error": "Expected a JSON object"}), 400

            try:
                new_profile = PatientProfile.from_dict(payload)
            except ValueError as e:
                return jsonify({"error": str(e)}), 400

            try:
                completed = dashboard._run_async(
                    dashboard._coordinator.complete_setup(new_profile)
                )
            except Exception as e:
                logger.error(f"Setup failed: {e}")
                return jsonify({"error": str(e)}), 500

            if not completed:
                return jsonify({"error": "Profile needs a name and an age"}), 400
            return jsonify({"setup_complete": True, "profile": new_profile.to_dict()})

        @app.route("/api/sync", methods=["POST"])
        @require_api_key
        def sync() -> Response:
            """Push to the remote collector now."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            try:
                success = dashboard._run_async(dashboard._coordinator.sync_now(), timeout=30.0)
            except Exception as e:
                logger.error(f"Manual sync failed: {e}")
                return jsonify({"error": str(e)}), 500

            status = dashboard._coordinator.status()
            return jsonify({"success": success, "last_sync_at": status["last_sync_at"]})

        @app.route("/api/network", methods=["POST"])
        @require_api_key
        def network() -> Response:
            """Report network connectivity."""
            dashboard: Dashboard = app.dashboard  # type: ignore

            online = (request.get_json(silent=True) or {}).get("online")
            if not isinstance(online, bool):
                return jsonify({"error": "'online' must be true or false"}), 400

            try:
                dashboard._run_async(dashboard._coordinator.set_network_online(online))
            except Exception as e:
                logger.error(f"Failed to update network state: {e}")
                return jsonify({"error": str(e)}), 500
            return jsonify({"online": online})


def create_app(
    coordinator: "MonitoringCoordinator",
    monitor: "ConnectionMonitor",
    health_checker: Optional["HealthChecker"] = None,
    event_loop: Optional[asyncio.AbstractEventLoop] = None,
    started_at: Optional[datetime] = None,
    testing: bool = False,
) -> Flask:
    """
    Factory function to create the operator API app.

    Args:
        coordinator: Monitoring coordinator
        monitor: Sensor connection monitor
        health_checker: HealthChecker instance
        event_loop: Main asyncio event loop
        started_at: Process start time
        testing: Enable testing mode

    Returns:
        Flask application
    """
    dashboard = Dashboard(
        coordinator=coordinator,
        monitor=monitor,
        health_checker=health_checker,
        event_loop=event_loop,
        started_at=started_at,
    )
    return dashboard.create_app(testing=testing)
