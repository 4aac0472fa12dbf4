"""Outbound engine events.

The engine never talks to a transport directly. It emits named events on an
``EventBus``; the host layer subscribes (WebSocket broadcast, desktop
notifications, tests recording events).
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

logger = structlog.get_logger(__name__)

RUN_START = "run-start"
RUN_END = "run-end"
RUN_QUEUED = "run-queued"
STEP_UPDATE = "step-update"
AGENT_MESSAGE = "agent-message"
NOTIFY_DESKTOP = "notify-desktop"
WORKFLOW_LOG = "workflow-log"

ALL_EVENTS = (RUN_START, RUN_END, RUN_QUEUED, STEP_UPDATE, AGENT_MESSAGE, NOTIFY_DESKTOP, WORKFLOW_LOG)

Subscriber = Callable[[str, dict[str, Any]], Union[None, Awaitable[None]]]


class EventBus:
    """Fan-out of engine events to subscribers.

    Subscribers may be plain or async callables. Async subscribers are
    scheduled as tasks so a slow consumer never blocks a run. Subscriber
    errors are logged and dropped.
    """

    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, callback: Subscriber) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(self, event: str, payload: Optional[dict[str, Any]] = None) -> None:
        payload = payload or {}
        for callback in list(self._subscribers):
            try:
                result = callback(event, payload)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_done)
            except Exception as exc:
                logger.warning("Event subscriber failed", event_name=event, error=str(exc))

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Async event subscriber failed", error=str(task.exception()))

    async def drain(self) -> None:
        """Wait for in-flight async subscribers."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class EventRecorder:
    """Subscriber that keeps every event in memory. Used by ``test_node`` and tests."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def of(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]
