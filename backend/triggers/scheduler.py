"""
Workflow Scheduler: turns cron ticks, hook events and workflow completions
into trigger requests.

The scheduler never starts runs itself. Every match calls
``dispatch(workflow_id, trigger_data)``, which the orchestrator wires to its
own ``trigger``.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

import structlog

from triggers.base import HookEvent, TriggerSource, TriggerTypeEnum
from triggers.cron import CronSchedule
from workflow.expressions import ExpressionEvaluator

logger = structlog.get_logger(__name__)

Dispatch = Callable[[str, dict[str, Any]], Any]

TICK_SECONDS = 60


class WorkflowScheduler:
    """Cron, hook and on_workflow trigger matching for the loaded workflows."""

    def __init__(self, dispatch: Optional[Dispatch] = None, clock: Callable[[], datetime] = datetime.now):
        self.dispatch = dispatch
        self._clock = clock
        self._workflows: list[Any] = []
        self._cron_jobs: dict[str, CronSchedule] = {}
        self._timer: Optional[asyncio.Task] = None
        self._last_tick: Optional[tuple] = None

    # ─── Public API ────────────────────────────────────────────

    @property
    def cron_jobs(self) -> dict[str, CronSchedule]:
        return dict(self._cron_jobs)

    def reload(self, workflows: list[Any]) -> None:
        """Replace the known workflows and rebuild cron matchers."""
        self._workflows = list(workflows or [])
        self._rebuild_cron_jobs()
        self._ensure_timer()

    def on_hook_event(self, event: Union[HookEvent, dict[str, Any]]) -> list[str]:
        """Dispatch every enabled hook workflow matching the event. Returns their ids."""
        if isinstance(event, dict):
            event = HookEvent.from_dict(event)
        event_data = event.to_dict()

        fired = []
        for workflow in self._enabled(TriggerTypeEnum.HOOK):
            trigger = workflow.trigger
            if trigger.hook_type and trigger.hook_type != event.type:
                continue
            if not ExpressionEvaluator.evaluate_condition(trigger.condition, {"trigger": event_data}, missing=""):
                continue
            self._dispatch(workflow.id, {
                "source": TriggerSource.HOOK.value,
                "hookType": event.type,
                "hookEvent": event_data,
            })
            fired.append(workflow.id)
        return fired

    def on_workflow_complete(self, workflow_name: str, result: dict[str, Any]) -> list[str]:
        """Dispatch every enabled on_workflow workflow chained on ``workflow_name``."""
        fired = []
        for workflow in self._enabled(TriggerTypeEnum.ON_WORKFLOW):
            trigger = workflow.trigger
            if trigger.value != workflow_name:
                continue
            if not ExpressionEvaluator.evaluate_condition(trigger.condition, {"trigger": result}, missing=""):
                continue
            self._dispatch(workflow.id, {
                "source": TriggerSource.ON_WORKFLOW.value,
                "workflow": workflow_name,
                "trigger": result,
            })
            fired.append(workflow.id)
        return fired

    def tick(self, now: Optional[datetime] = None) -> list[str]:
        """Fire cron workflows matching ``now``. At most once per calendar minute."""
        now = now or self._clock()
        minute_key = (now.year, now.month, now.day, now.hour, now.minute)
        if minute_key == self._last_tick:
            return []
        self._last_tick = minute_key

        fired_at = (now if now.tzinfo else now.astimezone()).astimezone(timezone.utc).isoformat()
        fired = []
        for workflow_id, schedule in self._cron_jobs.items():
            if schedule.matches(now):
                self._dispatch(workflow_id, {"source": TriggerSource.CRON.value, "firedAt": fired_at})
                fired.append(workflow_id)
        return fired

    def destroy(self) -> None:
        """Stop the cron timer and forget all workflows."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._cron_jobs.clear()
        self._workflows = []
        self._last_tick = None

    # ─── Internals ─────────────────────────────────────────────

    def _enabled(self, trigger_type: TriggerTypeEnum) -> list[Any]:
        return [wf for wf in self._workflows if wf.enabled and wf.trigger.type == trigger_type]

    def _rebuild_cron_jobs(self) -> None:
        self._cron_jobs.clear()
        for workflow in self._enabled(TriggerTypeEnum.CRON):
            if not workflow.trigger.value:
                continue
            try:
                self._cron_jobs[workflow.id] = CronSchedule(workflow.trigger.value)
            except ValueError as e:
                logger.warning("Bad cron expression", workflow_id=workflow.id, workflow=workflow.name, error=str(e))

    def _dispatch(self, workflow_id: str, trigger_data: dict[str, Any]) -> None:
        if self.dispatch is None:
            logger.debug("No dispatch callback set", workflow_id=workflow_id)
            return
        try:
            self.dispatch(workflow_id, trigger_data)
        except Exception as e:
            logger.error("Trigger dispatch failed", workflow_id=workflow_id, error=str(e))

    def _ensure_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            return
        if not self._cron_jobs:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, cron timer not started")
            return
        self._timer = loop.create_task(self._run_timer())

    async def _run_timer(self) -> None:
        """Align to the next minute boundary, then tick every 60 seconds."""
        now = self._clock()
        await asyncio.sleep(TICK_SECONDS - (now.second + now.microsecond / 1_000_000))
        while True:
            try:
                self.tick()
            except Exception as e:
                logger.error("Cron tick failed", error=str(e))
            await asyncio.sleep(TICK_SECONDS)
