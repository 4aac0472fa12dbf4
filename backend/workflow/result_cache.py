"""Outputs of the most recent successful run per workflow, for dependsOn lookups."""

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass
class CachedResult:
    completed_at: float
    outputs: dict[str, Any]


class ResultCache:
    """Bounded cache keyed by workflow id. The oldest entry is evicted first."""

    def __init__(self, max_entries: int = 200, clock: Callable[[], float] = time.monotonic):
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CachedResult] = {}

    def put(self, workflow_id: str, outputs: dict[str, Any]) -> None:
        self._entries.pop(workflow_id, None)
        self._entries[workflow_id] = CachedResult(completed_at=self._clock(), outputs=outputs or {})
        while len(self._entries) > self._max_entries:
            oldest = min(self._entries, key=lambda key: self._entries[key].completed_at)
            del self._entries[oldest]

    def get(self, workflow_id: str) -> Optional[CachedResult]:
        return self._entries.get(workflow_id)

    def get_fresh(self, workflow_id: str, max_age: Optional[float]) -> Optional[dict[str, Any]]:
        """Cached outputs if younger than ``max_age`` seconds (any age when ``None``)."""
        entry = self._entries.get(workflow_id)
        if entry is None:
            return None
        if max_age is not None and self._clock() - entry.completed_at >= max_age:
            return None
        return entry.outputs

    def discard(self, workflow_id: str) -> None:
        self._entries.pop(workflow_id, None)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, workflow_id: str) -> bool:
        return workflow_id in self._entries
