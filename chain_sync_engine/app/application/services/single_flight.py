from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class SingleFlight:
    """
    One in-flight execution per key.

    The leader registers a one-shot completion signal; followers wait on it
    and then retry from scratch. The signal is set and removed when the
    leader finishes, whether it succeeded or failed.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Event] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def wait(self, key: str) -> None:
        signal = self._inflight.get(key)
        if signal is not None:
            await signal.wait()

    @asynccontextmanager
    async def lead(self, key: str) -> AsyncIterator[None]:
        if key in self._inflight:
            raise RuntimeError(f"{key!r} already has a leader")
        signal = asyncio.Event()
        self._inflight[key] = signal
        try:
            yield
        finally:
            del self._inflight[key]
            signal.set()
