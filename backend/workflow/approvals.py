"""Pending approval registry for ``wait`` steps.

A waiting step registers a future under ``"{run_id}::{step_id}"``; the host
resolves it through ``approve_wait``.
"""

import asyncio
from typing import Any, Optional

from core.exceptions import RunNotFoundError


def wait_key(run_id: str, step_id: str) -> str:
    return f"{run_id}::{step_id}"


class WaitRegistry:
    def __init__(self):
        self._waiters: dict[str, asyncio.Future] = {}

    def register(self, run_id: str, step_id: str) -> asyncio.Future:
        key = wait_key(run_id, step_id)
        future = asyncio.get_running_loop().create_future()
        self._waiters[key] = future
        return future

    def resolve(self, run_id: str, step_id: str, data: Optional[dict[str, Any]] = None) -> None:
        key = wait_key(run_id, step_id)
        future = self._waiters.pop(key, None)
        if future is None or future.done():
            raise RunNotFoundError(f"Wait step not found: {key}")
        future.set_result({"approved": True, "data": data or {}})

    def discard(self, run_id: str, step_id: str) -> None:
        future = self._waiters.pop(wait_key(run_id, step_id), None)
        if future is not None and not future.done():
            future.cancel()

    def pending(self) -> list[str]:
        return [key for key, future in self._waiters.items() if not future.done()]

    def __contains__(self, key: str) -> bool:
        return key in self._waiters
