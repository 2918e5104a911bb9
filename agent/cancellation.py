"""Run-scoped cooperative cancellation."""

from __future__ import annotations

import asyncio
import threading
from typing import Awaitable, TypeVar

from agent.exceptions import ChatCancelled

T = TypeVar("T")


class CancellationToken:
    """
    Cancellation shared by everything a single agent run awaits.

    Two views of the same request:
    - a latch (`cancelled`) polled at the loop's checkpoints;
    - an abort signal (an asyncio.Event) that interrupts whatever is
      currently being awaited through `run()` or `wait()`.

    `cancel()` may be called from any thread.
    """

    def __init__(self):
        self._latch = threading.Event()
        self._abort: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def cancelled(self) -> bool:
        return self._latch.is_set()

    def cancel(self) -> None:
        self._latch.set()
        loop, abort = self._loop, self._abort
        if loop is None or abort is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            abort.set()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(abort.set)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ChatCancelled("Run cancelled")

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._signal().wait()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.
        On cancellation the in-flight work is cancelled and discarded.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ChatCancelled("Run cancelled")
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._signal().wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task.done() and not task.cancelled():
            return task.result()

        try:
            await task
        except asyncio.CancelledError:
            pass
        raise ChatCancelled("Run cancelled")

    def _signal(self) -> asyncio.Event:
        if self._abort is None:
            self._loop = asyncio.get_running_loop()
            self._abort = asyncio.Event()
            if self._latch.is_set():
                self._abort.set()
        return self._abort
