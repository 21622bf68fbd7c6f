"""
Cancellation - Cooperative cancellation token and inactivity timeout

One token is created per user-initiated generation and passed explicitly
through every suspending call. An InactivityTimer cancels the same token
with a timeout reason when no progress is reported in time.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from .errors import AgentCancelledError, AgentTimeoutError
from .log import log

T = TypeVar("T")


class CancellationToken:
    """Shared abort signal for a single agent run or chat generation"""

    def __init__(self):
        self._event = asyncio.Event()
        self._error_type: type[Exception] = AgentCancelledError
        self._message = "Generation cancelled."

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def timed_out(self) -> bool:
        return self.cancelled and self._error_type is AgentTimeoutError

    def cancel(self, message: str = "Generation cancelled."):
        """User-initiated cancellation; the first reason wins"""
        self._set(AgentCancelledError, message)

    def expire(self, message: str = "Inactivity timeout reached."):
        """Cancellation caused by the inactivity timer"""
        self._set(AgentTimeoutError, message)

    def _set(self, error_type: type[Exception], message: str):
        if self._event.is_set():
            return
        self._error_type = error_type
        self._message = message
        self._event.set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise self._error_type(self._message)

    async def wait(self):
        await self._event.wait()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await something, abandoning it as soon as the token fires"""
        task = asyncio.ensure_future(awaitable)
        if self.cancelled:
            task.cancel()
            self.raise_if_cancelled()

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return task.result()

        await asyncio.gather(task, return_exceptions=True)
        self.raise_if_cancelled()
        raise AgentCancelledError(self._message)


class InactivityTimer:
    """Fires token.expire() when refresh() is not called within timeout_s"""

    def __init__(self, token: CancellationToken, timeout_s: float):
        self.token = token
        self.timeout_s = timeout_s
        self._handle: asyncio.TimerHandle | None = None

    def refresh(self):
        """Re-arm the timer; call on every received chunk or step"""
        if self.timeout_s <= 0 or self.token.cancelled:
            return
        if self._handle:
            self._handle.cancel()
        self._handle = asyncio.get_running_loop().call_later(self.timeout_s, self._expire)

    def _expire(self):
        timeout_ms = int(self.timeout_s * 1000)
        log("Cancellation", f"Inactivity timeout ({timeout_ms}ms) reached.")
        self.token.expire(f"Inactivity timeout ({timeout_ms}ms) reached.")

    def dispose(self):
        if self._handle:
            self._handle.cancel()
            self._handle = None


class GenerationRegistry:
    """At most one active generation per session: starting one cancels the previous"""

    def __init__(self):
        self._active: dict[str, CancellationToken] = {}

    def start(self, session_id: str) -> CancellationToken:
        previous = self._active.get(session_id)
        if previous:
            previous.cancel("Superseded by a new generation.")
        token = CancellationToken()
        self._active[session_id] = token
        return token

    def cancel(self, session_id: str) -> bool:
        token = self._active.pop(session_id, None)
        if token is None:
            return False
        token.cancel()
        return True

    def finish(self, session_id: str, token: CancellationToken):
        if self._active.get(session_id) is token:
            del self._active[session_id]

    def is_active(self, session_id: str) -> bool:
        return session_id in self._active
