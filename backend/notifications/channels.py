"""Notification channel implementations.

Each channel handles delivery for one transport (desktop event, Discord,
Slack, generic webhook). The NotificationManager dispatches to the
appropriate channel.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

import httpx

from workflow.events import NOTIFY_DESKTOP

logger = logging.getLogger(__name__)


# ─── Data Types ────────────────────────────────────────────────

class NotificationChannel(str, Enum):
    DESKTOP = "desktop"
    DISCORD = "discord"
    SLACK = "slack"
    WEBHOOK = "webhook"


@dataclass
class Notification:
    """A notification to be delivered."""
    title: str
    message: str
    channel: NotificationChannel
    recipient: str = ""  # webhook URL for the HTTP channels
    type: str = "info"  # info | success | error, shown by the desktop client
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass
class DeliveryResult:
    """Result of a notification delivery attempt."""
    success: bool
    channel: NotificationChannel
    recipient: str
    message: str = ""
    error: Optional[str] = None
    delivered_at: Optional[str] = None


# ─── Base Channel ──────────────────────────────────────────────

class BaseChannel(ABC):
    """Abstract base for notification channels."""

    channel_type: NotificationChannel

    @abstractmethod
    async def send(self, notification: Notification) -> DeliveryResult:
        """Send a notification through this channel."""
        ...


# ─── Desktop Channel ───────────────────────────────────────────

class DesktopChannel(BaseChannel):
    """Emit a ``notify-desktop`` event for the host to display."""

    channel_type = NotificationChannel.DESKTOP

    def __init__(self, emit: Callable[[str, dict], None]):
        self._emit = emit

    async def send(self, notification: Notification) -> DeliveryResult:
        self._emit(NOTIFY_DESKTOP, {
            "title": notification.title,
            "message": notification.message,
            "type": notification.type,
        })
        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient="desktop",
            message="Desktop notification emitted",
            delivered_at=datetime.now(timezone.utc).isoformat(),
        )


# ─── Webhook Channels ──────────────────────────────────────────

class WebhookChannel(BaseChannel):
    """POST a JSON body to an arbitrary HTTP endpoint.

    The body shape depends on the receiving service; subclasses override
    build_payload().
    """

    channel_type = NotificationChannel.WEBHOOK

    def __init__(self, timeout: float = 10, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._timeout = timeout
        self._transport = transport

    def build_payload(self, notification: Notification) -> dict[str, Any]:
        return {"message": notification.message}

    async def send(self, notification: Notification) -> DeliveryResult:
        url = notification.recipient
        if not url:
            return DeliveryResult(
                success=False,
                channel=self.channel_type,
                recipient="",
                error="No webhook URL",
            )

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json=self.build_payload(notification))
                response.raise_for_status()

            return DeliveryResult(
                success=True,
                channel=self.channel_type,
                recipient=url,
                message=f"Webhook delivered (HTTP {response.status_code})",
                delivered_at=datetime.now(timezone.utc).isoformat(),
            )

        except httpx.HTTPError as e:
            logger.warning(f"Notify {self.channel_type.value} failed: {e}")
            return DeliveryResult(
                success=False,
                channel=self.channel_type,
                recipient=url,
                error=str(e),
            )


class DiscordChannel(WebhookChannel):
    channel_type = NotificationChannel.DISCORD

    def build_payload(self, notification: Notification) -> dict[str, Any]:
        return {"content": notification.message}


class SlackChannel(WebhookChannel):
    channel_type = NotificationChannel.SLACK

    def build_payload(self, notification: Notification) -> dict[str, Any]:
        return {"text": notification.message}
