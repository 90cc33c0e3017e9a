"""
Rate-limited dispatcher for ledger node requests.

At most ``max_concurrent`` calls run at once and every call waits ``delay``
seconds after acquiring its slot. Waiters are served strictly in arrival
order: a released slot is handed to the oldest waiter instead of being put
back up for grabs.
"""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimitedDispatcher:
    """FIFO-fair concurrency bound with a minimum per-call delay."""

    def __init__(self, max_concurrent: int = 3, delay: float = 0.2, timeout: Optional[float] = None):
        """
        Args:
            max_concurrent: Number of calls allowed in flight
            delay: Seconds slept after acquiring a slot, before the call
            timeout: Default per-call timeout in seconds (None for no limit)
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got: {max_concurrent}")
        self.max_concurrent = max_concurrent
        self.delay = delay
        self.timeout = timeout
        self._active = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def active(self) -> int:
        """Calls currently holding a slot."""
        return self._active

    @property
    def waiting(self) -> int:
        """Callers queued for a slot."""
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def _acquire(self) -> None:
        if self._active < self.max_concurrent and not self.waiting:
            self._active += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # slot was handed over before the cancellation landed
                self._release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # slot passes straight to the waiter, _active unchanged
                waiter.set_result(None)
                return
        self._active -= 1

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> T:
        """
        Run ``fn(*args, **kwargs)`` once a slot is free.

        Args:
            fn: Coroutine function to call
            timeout: Per-call timeout overriding the default

        Returns:
            Whatever ``fn`` returns

        Raises:
            asyncio.TimeoutError: If the call exceeds its timeout
        """
        await self._acquire()
        try:
            if self.delay > 0:
                await asyncio.sleep(self.delay)
            limit = timeout if timeout is not None else self.timeout
            if limit is None:
                return await fn(*args, **kwargs)
            return await asyncio.wait_for(fn(*args, **kwargs), timeout=limit)
        finally:
            self._release()

    def __repr__(self) -> str:
        return (
            f"RateLimitedDispatcher(max_concurrent={self.max_concurrent}, "
            f"active={self.active}, waiting={self.waiting})"
        )
