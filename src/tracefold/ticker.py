from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

import anyio

from .logging import get_logger

logger = get_logger(__name__)


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class LiveTicker:
    """Calls ``on_tick(now_ms)`` every ``interval_s`` while ``is_active()`` holds.

    ``run`` returns as soon as the predicate turns false, so nothing stays
    scheduled once every timer has paused.
    """

    def __init__(
        self,
        *,
        is_active: Callable[[], bool],
        on_tick: Callable[[int], None],
        interval_s: float = 1.0,
        clock: Callable[[], int] = wall_clock_ms,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self._is_active = is_active
        self._on_tick = on_tick
        self._interval_s = interval_s
        self._clock = clock
        self._sleep = sleep
        self._stopped = False
        self.ticks = 0

    def stop(self) -> None:
        self._stopped = True

    async def run(self) -> int:
        """Tick until inactive or stopped; returns the number of ticks fired."""
        self._stopped = False
        fired = 0
        while not self._stopped and self._is_active():
            self._on_tick(self._clock())
            fired += 1
            self.ticks += 1
            await self._sleep(self._interval_s)
        logger.debug("ticker.idle", ticks=fired)
        return fired
