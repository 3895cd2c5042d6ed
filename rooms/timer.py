from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Hashable, Optional

LOGGER = logging.getLogger("holdem_rooms.timer")

Expiry = Callable[[], Awaitable[None]]


class TurnTimer:
    """A single cancellable countdown. Starting a new one cancels the old.

    ``key`` identifies what is being timed (seat and turn token) so callers can
    tell whether the running countdown already covers the current turn.
    """

    def __init__(self) -> None:
        self.key: Optional[Hashable] = None
        self.deadline: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, key: Hashable, seconds: float, on_expire: Expiry) -> None:
        self.cancel()
        self.key = key
        self.deadline = time.monotonic() + seconds
        self._task = asyncio.create_task(self._run(seconds, on_expire))

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.key = None
        self.deadline = None

    def remaining(self) -> float:
        if self.deadline is None:
            return 0.0
        return max(self.deadline - time.monotonic(), 0.0)

    async def _run(self, seconds: float, on_expire: Expiry) -> None:
        await asyncio.sleep(seconds)
        # Clear our own handle first so on_expire may start the next countdown.
        self._task = None
        self.key = None
        self.deadline = None
        try:
            await on_expire()
        except Exception:
            LOGGER.exception("Turn timer callback failed")
