"""Notification Manager: central dispatcher for all notification channels.

Delivery is fire-and-forget: ``dispatch`` schedules the send as a background
task and returns immediately, so a slow webhook never holds up a run.
``drain`` waits for outstanding deliveries (used at shutdown and in tests).
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Union

import httpx

from notifications.channels import (
    BaseChannel,
    DeliveryResult,
    DesktopChannel,
    DiscordChannel,
    Notification,
    NotificationChannel,
    SlackChannel,
    WebhookChannel,
)

logger = logging.getLogger(__name__)

ChannelSpec = Union[str, dict[str, str]]


class NotificationManager:
    """Central notification dispatcher.

    Owns channel registration and the set of in-flight deliveries. One
    instance per orchestrator.
    """

    def __init__(self):
        self._channels: dict[NotificationChannel, BaseChannel] = {}
        self._pending: set[asyncio.Task] = set()

    def register_channel(self, channel: BaseChannel) -> None:
        """Register a notification channel."""
        self._channels[channel.channel_type] = channel
        logger.debug(f"Notification channel registered: {channel.channel_type.value}")

    def configure_channels(
        self,
        emit: Callable[[str, dict], None],
        webhook_timeout: float = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Register the desktop channel and the webhook family."""
        self.register_channel(DesktopChannel(emit))
        self.register_channel(DiscordChannel(timeout=webhook_timeout, transport=transport))
        self.register_channel(SlackChannel(timeout=webhook_timeout, transport=transport))
        self.register_channel(WebhookChannel(timeout=webhook_timeout, transport=transport))

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels.keys())

    async def send(self, notification: Notification) -> DeliveryResult:
        """Send a notification through its channel and wait for the result."""
        channel = self._channels.get(notification.channel)
        if not channel:
            return DeliveryResult(
                success=False,
                channel=notification.channel,
                recipient=notification.recipient,
                error=f"Channel not configured: {notification.channel.value}",
            )

        result = await channel.send(notification)
        if result.success:
            logger.debug(f"Notification sent via {notification.channel.value}")
        else:
            logger.warning(f"Notification failed via {notification.channel.value}: {result.error}")
        return result

    def dispatch(self, notification: Notification) -> asyncio.Task:
        """Send in the background."""
        task = asyncio.ensure_future(self.send(notification))
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Notification delivery crashed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for every in-flight delivery."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ─── Step-facing helpers ───────────────────────────────────

    @staticmethod
    def build(title: str, message: str, spec: ChannelSpec) -> list[Notification]:
        """Notifications for one entry of a notify step's ``channels`` list.

        ``"desktop"`` or ``{"discord"|"slack"|<other>: url}``. URLs that still
        start with ``$`` are unresolved secrets and are skipped.
        """
        if isinstance(spec, str):
            if spec == NotificationChannel.DESKTOP.value:
                return [Notification(title=title, message=message, channel=NotificationChannel.DESKTOP)]
            logger.warning(f"Unknown notification channel: {spec}")
            return []

        notifications = []
        for kind, url in spec.items():
            if not url or not isinstance(url, str) or url.startswith("$"):
                continue
            try:
                channel = NotificationChannel(kind)
            except ValueError:
                channel = NotificationChannel.WEBHOOK
            if channel is NotificationChannel.DESKTOP:
                channel = NotificationChannel.WEBHOOK
            notifications.append(Notification(title=title, message=message, channel=channel, recipient=url))
        return notifications

    # ─── Convenience methods for common events ─────────────────

    def notify_workflow_failed(self, workflow_name: str, run_id: str, error: Optional[str]) -> None:
        """Desktop alert for a failed run."""
        self.dispatch(Notification(
            title=f"Workflow failed: {workflow_name}",
            message=error or "Unknown error",
            channel=NotificationChannel.DESKTOP,
            type="error",
            metadata={"run_id": run_id},
        ))

    def get_status(self) -> dict[str, Any]:
        return {
            "channels": [ch.value for ch in self._channels.keys()],
            "pending": len(self._pending),
        }
