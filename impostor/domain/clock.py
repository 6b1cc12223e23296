from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

ExpireCallback = Callable[[int], Awaitable[None]]


class Clock:
    """
    One countdown for one purpose (turn, voting, ...).

    - start()/resume() replace any running countdown without firing it
    - pause() halts ticking and returns what was left
    - on_expire(generation) fires once per start/resume cycle; callers compare
      the generation against `clock.generation` to drop stale expiries that were
      already queued behind a room lock when the clock was restarted
    Ticks are scheduled against the loop's monotonic time, not chained sleeps,
    so a 60s countdown ends within one tick of 60s wall time.
    """

    def __init__(self, on_expire: ExpireCallback, *, tick_interval: float = 1.0) -> None:
        self.on_expire = on_expire
        self.tick_interval = tick_interval
        self._remaining = 0
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self, duration: int) -> None:
        self._launch(duration)

    def resume(self, remaining: int) -> None:
        self._launch(remaining)

    def pause(self) -> int:
        self._stop()
        return self._remaining

    def cancel(self) -> None:
        self._stop()
        self._remaining = 0

    def _stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._generation += 1

    def _launch(self, seconds: int) -> None:
        self._stop()
        self._remaining = max(0, int(seconds))
        gen = self._generation
        self._task = asyncio.get_running_loop().create_task(self._run(gen))

    async def _run(self, gen: int) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        initial = self._remaining
        ticks = 0
        while ticks < initial:
            ticks += 1
            await asyncio.sleep(max(0.0, started + ticks * self.tick_interval - loop.time()))
            self._remaining = initial - ticks

        # Detach before the callback so a restart from inside it does not cancel us.
        self._task = None
        try:
            await self.on_expire(gen)
        except Exception:
            logger.exception("[clock-expire-failed] generation=%s", gen)
