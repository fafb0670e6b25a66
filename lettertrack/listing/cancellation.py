"""Cancellation tokens for superseding in-flight requests.

Each logical request stream (the letters list, the search suggestions) owns a
CancellationScope. Starting a new operation issues a fresh token and cancels
the previous one; a completion only commits state if its token is still the
scope's current one. Request ids increase monotonically per scope.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class CancellationToken:
    """Marks one operation in a stream. Optionally owns the asyncio task doing the I/O."""

    def __init__(self, request_id: int) -> None:
        self.request_id = request_id
        self._cancelled = False
        self._task: asyncio.Future | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, task: asyncio.Future) -> None:
        """Tie a task to this token so cancelling the token cancels the task."""
        self._task = task
        if self._cancelled:
            task.cancel()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"CancellationToken(request_id={self.request_id}, {state})"


class CancellationScope:
    """Issues tokens for one stream; at most one token is live at a time.

    Usage::

        scope = CancellationScope("letters")
        token = scope.issue()          # cancels whatever was in flight
        ...
        if scope.is_current(token):
            commit(result)
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._last_id = 0
        self._current: CancellationToken | None = None

    @property
    def current_id(self) -> int:
        return self._last_id

    def issue(self) -> CancellationToken:
        """Supersede the current token and return a new one."""
        if self._current is not None and not self._current.cancelled:
            logger.debug("%s: request %d superseded", self.name, self._current.request_id)
            self._current.cancel()
        self._last_id += 1
        self._current = CancellationToken(self._last_id)
        return self._current

    def is_current(self, token: CancellationToken) -> bool:
        return token is self._current and not token.cancelled

    def cancel(self) -> None:
        """Cancel the live token without issuing a new one."""
        if self._current is not None:
            self._current.cancel()
