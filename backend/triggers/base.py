"""Trigger types and the payloads they hand to the orchestrator."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TriggerTypeEnum(str, Enum):
    """All supported trigger types."""

    MANUAL = "manual"
    CRON = "cron"
    HOOK = "hook"
    ON_WORKFLOW = "on_workflow"


class TriggerSource(str, Enum):
    """Where a run came from. Recorded on the run as ``trigger``."""

    MANUAL = "manual"
    CRON = "cron"
    HOOK = "hook"
    ON_WORKFLOW = "on_workflow"
    DEPENDS_ON = "depends_on"
    SUBWORKFLOW = "subworkflow"


@dataclass
class HookEvent:
    """An inbound lifecycle event forwarded by the host (e.g. a tool hook).

    ``type`` is matched against a workflow's ``trigger.hookType``; the whole
    event is exposed to trigger conditions as ``$trigger``.
    """

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "HookEvent":
        payload = dict(payload or {})
        hook_type = str(payload.pop("type", "") or payload.pop("hookType", "") or "")
        data = payload.pop("data", None) or {}
        return cls(type=hook_type, data=data, extra=payload)

    def to_dict(self) -> dict[str, Any]:
        return {**self.extra, "type": self.type, "data": self.data}

