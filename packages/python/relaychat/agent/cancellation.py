"""
Cooperative cancellation for agent turns.

A CancellationScope is fired once; firing runs its callbacks and fires every
linked child scope. Work observes cancellation at suspension points through
race(). A CancellationBridge additionally fires when its turn's stored status
becomes "aborted".
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from bson import ObjectId

import relaychat as rc

logger = logging.getLogger(__name__)


class OperationCancelled(Exception):
    """Raised when awaited work is abandoned because its scope fired."""

    def __init__(self, reason: str | None = None):
        super().__init__(reason or "cancelled")
        self.reason = reason


class CancellationScope:
    def __init__(self, parent: CancellationScope | None = None):
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], Any]] = []
        self._children: list[CancellationScope] = []
        self._timer: asyncio.TimerHandle | None = None
        self.reason: str | None = None
        self.parent = parent
        if parent is not None:
            parent._link(self)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def _link(self, child: CancellationScope) -> None:
        if self.cancelled:
            child.cancel(self.reason)
        else:
            self._children.append(child)

    def _unlink(self, child: CancellationScope) -> None:
        if child in self._children:
            self._children.remove(child)

    def add_callback(self, callback: Callable[[], Any]) -> None:
        if self.cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def cancel(self, reason: str | None = "cancelled") -> None:
        if self.cancelled:
            return
        self.reason = reason
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for callback in self._callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")
        self._callbacks.clear()
        for child in self._children:
            child.cancel(reason)
        self._children.clear()

    def cancel_after(self, delay_secs: float) -> None:
        """Fire with reason "timeout" after delay_secs unless fired earlier."""
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(delay_secs, self.cancel, "timeout")

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled(self.reason)

    async def race(self, awaitable: Awaitable) -> Any:
        """
        Await awaitable unless the scope fires first. On firing the awaitable's
        task is cancelled and OperationCancelled is raised.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled(self.reason)
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
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise OperationCancelled(self.reason)

    def close(self) -> None:
        """Detach from the parent and stop any pending timeout."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self.parent is not None:
            self.parent._unlink(self)


class CancellationBridge(CancellationScope):
    """
    Scope tied to a stored turn. Fires when the turn's status becomes "aborted";
    on firing, schedules the purge of the turn's token rows.
    """

    def __init__(self, client, turn_id: str, parent: CancellationScope | None = None):
        super().__init__(parent)
        self.client = client
        self.turn_id = turn_id
        self._watch_task: asyncio.Task | None = None
        self.add_callback(self._purge_tokens)

    def _purge_tokens(self) -> None:
        rc.agent.chats.schedule_token_purge(self.client, self.turn_id)

    def start(self) -> CancellationBridge:
        if self._watch_task is None and not self.cancelled:
            self._watch_task = asyncio.create_task(self._watch_status(), name=f"turn-status-{self.turn_id}")
        return self

    async def _watch_status(self) -> None:
        rows_iter = rc.live.watch_rows(
            self.client,
            "messages",
            {"_id": ObjectId(self.turn_id)},
            projection={"status": 1},
        )
        try:
            async for rows in rows_iter:
                if rows and rows[0].get("status") == "aborted":
                    logger.info(f"Turn {self.turn_id} aborted")
                    self.cancel("aborted")
                    return
        except Exception:
            logger.exception(f"Status watch for turn {self.turn_id} failed")
        finally:
            await rows_iter.aclose()

    async def aclose(self) -> None:
        """Stop watching the turn and detach from the parent scope."""
        self.close()
        if self._watch_task is not None:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None
