"""
Notifier Module: Multi-Channel Notification Dispatch
Delivers rule notifications fire-and-forget on a small worker pool.
"""
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Dict, List, Optional

import requests
from rich.console import Console

from config import DeskPilotConfig
from exceptions import NotificationDispatchFailure
from resilience import exponential_backoff


logger = logging.getLogger("DeskPilotNotifier")


class NotificationChannel:
    """Base class for notification channels."""

    name = "base"

    def __init__(self, config: DeskPilotConfig):
        self.config = config
        self.enabled = False

    def send(self, target: str, message: str) -> bool:
        """
        Send notification through this channel.

        Args:
            target: Recipient (agent, team or channel name)
            message: Formatted message

        Returns:
            bool: True if sent successfully

        Raises:
            NotificationDispatchFailure: If sending fails
        """
        raise NotImplementedError


class ConsoleChannel(NotificationChannel):
    """Console output channel."""

    name = "console"

    def __init__(self, config: DeskPilotConfig, console: Optional[Console] = None):
        super().__init__(config)
        self.enabled = "console" in config.notification.channels
        self.console = console or Console()

    def send(self, target: str, message: str) -> bool:
        """Print to console."""
        if not self.enabled:
            return False

        self.console.print(f"[bold cyan]@{target}[/bold cyan] {message}", markup=True, highlight=False)
        return True


class SlackChannel(NotificationChannel):
    """Slack incoming-webhook channel."""

    name = "slack"

    def __init__(self, config: DeskPilotConfig):
        super().__init__(config)
        self.webhook_url = config.notification.slack_webhook_url
        self.enabled = bool("slack" in config.notification.channels and self.webhook_url)

    @exponential_backoff(max_retries=2, base_delay=1.0, exceptions=(requests.RequestException,))
    def _post(self, payload: Dict) -> requests.Response:
        return requests.post(self.webhook_url, json=payload, timeout=10)

    def send(self, target: str, message: str) -> bool:
        """Send to Slack via webhook."""
        if not self.enabled:
            return False

        payload = {
            "text": f"*{target}*: {message}",
            "attachments": [{
                "color": "warning",
                "footer": "DeskPilot Automation",
                "ts": int(datetime.now().timestamp())
            }]
        }

        try:
            response = self._post(payload)
        except requests.RequestException as e:
            raise NotificationDispatchFailure(
                f"Slack notification failed: {e}",
                component="SlackChannel",
                context={"target": target}
            )

        if response.status_code != 200:
            raise NotificationDispatchFailure(
                f"Slack webhook returned {response.status_code}",
                component="SlackChannel",
                context={"target": target}
            )

        logger.info(f"[SLACK] Notification sent to {target}")
        return True


class Notifier:
    """
    Default notification dispatcher.

    ``send`` returns immediately with a Future; delivery happens on a
    bounded thread pool and failures surface only through the Future and
    the log.
    """

    def __init__(self, config: DeskPilotConfig, channels: Optional[List[NotificationChannel]] = None):
        self.config = config
        self.enabled = config.notification.enabled
        self.channels = channels if channels is not None else [
            ConsoleChannel(config),
            SlackChannel(config),
        ]
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, config.notification.max_workers),
            thread_name_prefix="deskpilot-notify"
        )

        active = [c.name for c in self.channels if c.enabled]
        logger.info(f"Notifier initialized: enabled={self.enabled}, channels={active}")

    def send(self, target: str, message: str) -> Optional[Future]:
        """
        Queue a notification for delivery.

        Returns:
            Future resolving to the per-channel results, or None when
            notifications are disabled
        """
        if not self.enabled:
            logger.debug(f"Notifications disabled, dropping message for {target}")
            return None

        future = self._executor.submit(self.deliver, target, message)
        future.add_done_callback(self._log_failure)
        return future

    def deliver(self, target: str, message: str) -> Dict[str, bool]:
        """
        Deliver synchronously through every enabled channel.

        Raises:
            NotificationDispatchFailure: If every enabled channel failed
        """
        results: Dict[str, bool] = {}
        errors: List[str] = []

        for channel in self.channels:
            if not channel.enabled:
                continue
            try:
                results[channel.name] = channel.send(target, message)
            except NotificationDispatchFailure as e:
                results[channel.name] = False
                errors.append(f"{channel.name}: {e.message}")

        if errors and not any(results.values()):
            raise NotificationDispatchFailure(
                f"All notification channels failed: {'; '.join(errors)}",
                component="Notifier",
                context={"target": target}
            )

        for error in errors:
            logger.warning(f"Notification channel error: {error}")

        return results

    @staticmethod
    def _log_failure(future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Notification dispatch failed: {error}")

    def close(self) -> None:
        """Wait for queued notifications and stop the worker pool."""
        self._executor.shutdown(wait=True)
