from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from chain_sync_engine.app.domain.errors import ThrottleTimeoutError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

_THROTTLED_ATTR = "__throttled__"


def throttled(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Mark an async handler as RPC-heavy; AdmissionThrottle.run gates marked handlers only."""

    @wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        return await func(*args, **kwargs)

    setattr(wrapper, _THROTTLED_ATTR, True)
    return wrapper


def is_throttled(handler: Callable[..., Any]) -> bool:
    return bool(getattr(handler, _THROTTLED_ATTR, False))


class AdmissionThrottle:
    """
    Process-wide counting gate for RPC-heavy work.

    At most `capacity` callers are inside at once; the rest queue in FIFO
    order on an asyncio.Semaphore. With `timeout` set, a caller that waited
    that long gives up with ThrottleTimeoutError instead of queueing forever.
    """

    def __init__(self, capacity: int = 3, *, timeout: float | None = None) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive when provided")
        self._capacity = capacity
        self._timeout = timeout
        self._semaphore = asyncio.Semaphore(capacity)
        self._active = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def active(self) -> int:
        return self._active

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        if self._timeout is None:
            await self._semaphore.acquire()
        else:
            try:
                await asyncio.wait_for(self._semaphore.acquire(), timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                raise ThrottleTimeoutError(
                    f"No admission slot freed within {self._timeout}s (capacity={self._capacity})"
                ) from exc

        self._active += 1
        logger.debug("Admission slot taken (%s/%s)", self._active, self._capacity)
        try:
            yield
        finally:
            self._active -= 1
            self._semaphore.release()

    async def run(
        self,
        handler: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        if not is_throttled(handler):
            return await handler(*args, **kwargs)

        async with self.slot():
            return await handler(*args, **kwargs)
