"""
Notification sinks for fired alerts.

Notifications are best effort: a sink without permission (no credentials)
is a silent no-op, and delivery errors are logged, never raised.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional, Protocol, runtime_checkable

import requests

logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationSink(Protocol):
    """Local notification channel."""

    @property
    def permission_granted(self) -> bool:
        ...

    def notify(self, title: str, body: str, tag: str) -> bool:
        ...


class TelegramNotificationSink:
    """
    Sends alert notifications via the Telegram Bot API.

    Permission is granted when both a bot token and a chat id are configured.
    Requests run on a single worker thread so the event loop never waits on
    Telegram.

    Usage:
        sink = TelegramNotificationSink(
            bot_token="...",
            chat_id="...",
        )
        sink.notify("VitalGuard Alert", "Low oxygen saturation: 90%", tag="spo2")
    """

    API_BASE = "https://api.telegram.org"

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_id: Optional[str] = None,
        timeout: float = 10.0,
        _telegram_api: Optional[Any] = None,  # For testing
    ) -> None:
        """
        Initialize the sink.

        Args:
            bot_token: Bot token from @BotFather
            chat_id: Chat ID to send messages to
            timeout: HTTP timeout for the Bot API call
            _telegram_api: Injected API client for testing (called inline)
        """
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._timeout = timeout
        self._telegram_api = _telegram_api
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def permission_granted(self) -> bool:
        if self._telegram_api is not None:
            return True
        return bool(self._bot_token and self._chat_id)

    def notify(self, title: str, body: str, tag: str) -> bool:
        """
        Queue a notification.

        Returns:
            True if the message was sent (test API) or queued for sending
        """
        if not self.permission_granted:
            return False

        text = self._format_message(title, body, tag)

        if self._telegram_api is not None:
            return self._send_via_api(text)

        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="telegram"
            )
        self._executor.submit(self._send_telegram, text)
        return True

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def _format_message(self, title: str, body: str, tag: str) -> str:
        return f"*{title}*\n\n{body.strip()}\n#{tag}"

    def _send_via_api(self, text: str) -> bool:
        try:
            self._telegram_api.send_message(
                chat_id=self._chat_id,
                text=text,
                parse_mode="Markdown",
            )
            return True
        except Exception as e:
            logger.error(f"Telegram API error: {e}")
            return False

    def _send_telegram(self, text: str) -> bool:
        """Send message via Telegram API (worker thread)."""
        url = f"{self.API_BASE}/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": self._chat_id,
            "text": text,
            "parse_mode": "Markdown",
        }

        try:
            response = requests.post(url, json=payload, timeout=self._timeout)
            response.raise_for_status()
            logger.info(f"Sent Telegram notification: {text[:50]}...")
            return True
        except requests.RequestException as e:
            logger.warning(f"Failed to send Telegram notification: {e}")
            return False
