"""Structured cancellation scopes.

A run owns one root ``CancelScope``. Every per-step timeout derives a child
scope from it, so cancelling the run cancels every in-flight child. A child
that expires on its own timer cancels only itself; its parent and siblings
keep running.

Usage::

    scope = CancelScope()
    step_scope = scope.child(timeout=30)
    try:
        output = await step_scope.guard(do_work())
    finally:
        step_scope.close()
"""

import asyncio
from typing import Any, Awaitable, Optional

from core.exceptions import ExecutionCancelledError, StepTimeoutError


class CancelScope:
    """Cooperative cancellation signal with parent -> child propagation."""

    def __init__(self, parent: Optional["CancelScope"] = None, timeout: Optional[float] = None):
        self._parent = parent
        self._children: set["CancelScope"] = set()
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._timed_out = False
        self._timeout = timeout
        self._timer: Optional[asyncio.TimerHandle] = None

        if parent is not None:
            parent._children.add(self)
            if parent.cancelled:
                self.cancel(parent.reason)
        if timeout is not None and not self.cancelled:
            self._timer = asyncio.get_running_loop().call_later(timeout, self._expire)

    # ─── State ───────────────────────────────────────────────────

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    @property
    def timed_out(self) -> bool:
        """True only when this scope's own timer fired."""
        return self._timed_out

    def _origin(self) -> "CancelScope":
        """Topmost cancelled scope on the path to the root: where the cancellation started."""
        origin = self
        node = self._parent
        while node is not None:
            if node.cancelled:
                origin = node
            node = node._parent
        return origin

    # ─── Control ─────────────────────────────────────────────────

    def child(self, timeout: Optional[float] = None) -> "CancelScope":
        """Derive a child scope, optionally bounded by its own timeout (seconds)."""
        return CancelScope(parent=self, timeout=timeout)

    def cancel(self, reason: str = "Cancelled") -> None:
        """Cancel this scope and every scope derived from it."""
        if self.cancelled:
            return
        self._reason = reason
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for child in list(self._children):
            child.cancel(reason)

    def _expire(self) -> None:
        self._timer = None
        if self.cancelled:
            return
        self._timed_out = True
        self.cancel(f"Step timed out after {self._timeout:g}s")

    def close(self) -> None:
        """Stop the timer and detach from the parent."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._parent is not None:
            self._parent._children.discard(self)

    # ─── Awaiting ────────────────────────────────────────────────

    def error(self) -> Exception:
        """The exception describing why this scope was cancelled.

        A timeout anywhere below the root surfaces as ``StepTimeoutError``;
        anything cancelled from above it is ``ExecutionCancelledError``.
        """
        origin = self._origin()
        if origin.timed_out:
            return StepTimeoutError(origin.reason or "Step timed out")
        return ExecutionCancelledError()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise self.error()

    async def wait(self) -> None:
        """Block until this scope is cancelled."""
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[Any]) -> Any:
        """Await ``awaitable`` unless this scope is cancelled first.

        On cancellation the inner task is cancelled and awaited, then the
        scope's error is raised.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise self.error()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise self.error()

    async def sleep(self, seconds: float) -> None:
        """Cancellable sleep."""
        await self.guard(asyncio.sleep(max(seconds, 0)))
