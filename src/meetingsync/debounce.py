from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional


class Debouncer:
    """Coalesces bursts of signals into at most one emission per quiet period.

    ``signal()`` (re)arms a single pending timer; when it fires, one item is
    put on the channel that ``wait()`` / ``async for`` consume.
    """

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self._pending: Optional[asyncio.TimerHandle] = None
        self._channel: "asyncio.Queue[None]" = asyncio.Queue()

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def signal(self) -> None:
        loop = asyncio.get_running_loop()
        if self._pending is not None:
            self._pending.cancel()
        self._pending = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    async def wait(self) -> None:
        await self._channel.get()

    async def __aiter__(self) -> AsyncIterator[None]:
        while True:
            await self.wait()
            yield None

    def _fire(self) -> None:
        self._pending = None
        self._channel.put_nowait(None)
