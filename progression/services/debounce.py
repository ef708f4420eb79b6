from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class Debouncer:
    """Groups a burst of triggers into one run of an async action.

    The first ``trigger()`` arms a timer; triggers that arrive while it is
    pending join the same window, so the action runs ``delay`` seconds
    after the first trigger of a burst however long the burst lasts.  A
    trigger after the timer fired opens a new window.  Must be used from
    inside a running event loop.
    """

    def __init__(self, delay: float, action: Callable[[], Awaitable[None]]) -> None:
        self._delay = delay
        self._action = action
        self._timer: asyncio.TimerHandle | None = None
        self._running: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def trigger(self) -> None:
        if self._timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        """Drop the pending timer and cancel actions that already started."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for task in self._running:
            task.cancel()

    async def wait_idle(self) -> None:
        """Wait until no timer is pending and every fired action finished."""
        while self._timer is not None or self._running:
            if self._running:
                await asyncio.gather(*self._running, return_exceptions=True)
            else:
                await asyncio.sleep(self._delay / 2 or 0)

    def _fire(self) -> None:
        self._timer = None
        task = asyncio.ensure_future(self._action())
        self._running.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task[None]) -> None:
        self._running.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Debounced action failed", exc_info=task.exception())
