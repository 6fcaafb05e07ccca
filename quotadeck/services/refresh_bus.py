"""Refresh requests between view models.

A successful account link must reload the credential list wherever it is
shown. Publishers and subscribers only share the bus, not references to each
other.
"""

import asyncio
import inspect
import traceback
from typing import Awaitable, Callable, List, Optional, Union

from ..utils.log import log_with_timestamp

RefreshCallback = Callable[[str], Union[None, Awaitable[None]]]


class RefreshBus:
    """Observer registry for "reload your data" requests."""

    def __init__(self):
        self._callbacks: List[RefreshCallback] = []
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, callback: RefreshCallback):
        """Register a callback; coroutine functions are scheduled as tasks."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unsubscribe(self, callback: RefreshCallback):
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def publish(self, reason: str = "refresh"):
        """Notify every subscriber. A failing subscriber does not stop the others."""
        log_with_timestamp(f"Refresh requested ({reason}), {len(self._callbacks)} subscriber(s)", "[RefreshBus]")
        for callback in list(self._callbacks):
            try:
                result = callback(reason)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._on_task_done)
            except Exception as e:
                log_with_timestamp(f"Subscriber failed: {e}", "[RefreshBus]")
                traceback.print_exc()

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log_with_timestamp(f"Subscriber failed: {error}", "[RefreshBus]")
            traceback.print_exception(type(error), error, error.__traceback__)

    async def wait_for_pending(self, timeout: Optional[float] = None):
        """Wait for subscriber coroutines started by publish()."""
        if self._tasks:
            await asyncio.wait(list(self._tasks), timeout=timeout)
