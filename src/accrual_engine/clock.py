"""Time sources for recurring ticks.

``SystemClock`` follows the wall clock. ``VirtualClock`` only moves when told
to, which lets tests step a whole set of tick loops deterministically.
"""

import asyncio
import heapq
import itertools
import time
from typing import Protocol


class Clock(Protocol):
    """Anything that can report the current time and sleep against it."""

    def now(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall-clock time and ``asyncio.sleep``."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


async def _settle(rounds: int = 20) -> None:
    """Yield to the loop until woken tasks have run to their next await."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class VirtualClock:
    """Manually advanced clock for deterministic tests.

    Usage:
        clock = VirtualClock(start=1_700_000_000.0)
        scheduler = TickScheduler(clock=clock)
        ...
        await clock.advance(10)  # runs every tick due in the next 10 seconds
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        deadline = self._now + max(seconds, 0.0)
        heapq.heappush(self._sleepers, (deadline, next(self._counter), future))
        await future

    @property
    def pending_sleepers(self) -> int:
        """Number of sleepers still waiting to be woken."""
        return sum(1 for _, _, future in self._sleepers if not future.done())

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers in deadline order.

        Sleepers registered while advancing are woken too if their deadline
        falls inside the window.
        """
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        target = self._now + seconds
        await _settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            if future.done():
                continue
            self._now = max(self._now, deadline)
            future.set_result(None)
            await _settle()
        self._now = target
        await _settle()
