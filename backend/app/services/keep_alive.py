"""Keep-alive timer for an open reservation.

A KeepAliveTask renews one reservation every `interval` seconds for as long
as it is running. It is bound to a scope:

    async with KeepAliveTask(lambda: client.keep_alive(key)) as task:
        ...  # reservation-bound work
    # timer cancelled here

Each tick is fire-and-forget: a failed renewal is logged and reflected in
`status`, and the loop simply waits for the next tick. There is no retry in
between, so a run of failures can let the reservation lapse; that is only
noticed the next time the company record is read.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from app.config import settings

logger = logging.getLogger("atomity.keep_alive")

STATUS_ACTIVE = "Reservation active (auto keep-alive running)"
STATUS_FAILED = "Keep-alive failed; the reservation may lapse"


class KeepAliveTask:
    def __init__(
        self,
        renew: Callable[[], Awaitable[object]],
        interval: Optional[float] = None,
        name: str = "reservation",
    ):
        self.renew = renew
        self.interval = interval if interval is not None else settings.keep_alive_interval_seconds
        self.name = name
        self.status: Optional[str] = None
        self.ticks = 0
        self.failures = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"keep-alive:{self.name}")
        logger.info("Keep-alive started for %s (every %.0fs)", self.name, self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Keep-alive stopped for %s", self.name)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.ticks += 1
            try:
                await self.renew()
            except Exception:
                self.failures += 1
                self.status = STATUS_FAILED
                logger.exception("Keep-alive failed for %s", self.name)
            else:
                self.status = STATUS_ACTIVE

    async def __aenter__(self) -> "KeepAliveTask":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
