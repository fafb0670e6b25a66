"""Async debouncing: coalesce bursts of calls into the last one."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class Debouncer:
    """Run ``callback`` once ``delay`` seconds after the most recent ``trigger``.

    A trigger only restarts the timer; a callback that has already started
    runs to completion. Must be triggered from inside a running event loop.

    Usage::

        debouncer = Debouncer(0.3, reload)
        debouncer.trigger()   # keystroke
        debouncer.trigger()   # keystroke: restarts the timer
        await debouncer.wait()
    """

    def __init__(self, delay: float, callback: Callable[..., Awaitable[None]]) -> None:
        self._delay = delay
        self._callback = callback
        self._pending: asyncio.Task | None = None
        self._running: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def trigger(self, *args: object) -> None:
        """Restart the timer with new arguments."""
        self.cancel()
        self._pending = asyncio.get_running_loop().create_task(self._fire(args))

    def cancel(self) -> None:
        """Drop the call waiting on the timer, if any."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    def shutdown(self) -> None:
        """Drop the waiting call and cancel callbacks already running."""
        self.cancel()
        for task in list(self._running):
            task.cancel()

    async def wait(self) -> None:
        """Wait until nothing is pending or running, following any re-triggers."""
        while True:
            tasks = set(self._running)
            if self._pending is not None:
                tasks.add(self._pending)
            tasks = {t for t in tasks if not t.done()}
            if not tasks:
                return
            await asyncio.wait(tasks)

    async def _fire(self, args: tuple) -> None:
        await asyncio.sleep(self._delay)
        task = asyncio.current_task()
        if self._pending is task:
            self._pending = None
        self._running.add(task)
        try:
            await self._callback(*args)
        except Exception:
            logger.exception("Debounced callback %r failed", self._callback)
        finally:
            self._running.discard(task)
