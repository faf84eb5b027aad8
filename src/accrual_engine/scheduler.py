"""Scheduler for recurring per-agreement ticks.

Every agreement on display owns a group of recurring tasks. Groups are keyed
by agreement id and are started and cancelled as a unit, so tearing a view
down is a lookup and a cancel rather than cleanup scattered across callbacks.
"""

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from accrual_engine.clock import Clock, SystemClock

logger = structlog.get_logger(__name__)


@dataclass
class RecurringTask:
    """A handler run every ``interval`` seconds until cancelled."""

    name: str
    interval: float
    handler: Callable[[], Any]

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError(f"Interval must be positive, got {self.interval}")


@dataclass
class _RunningTask:
    recurring: RecurringTask
    task: asyncio.Task[None] | None = None
    runs: int = 0


class TickScheduler:
    """Runs groups of independent recurring tasks on the event loop.

    Each recurring task is its own ``asyncio.Task`` that sleeps for its interval
    and then runs its handler, so a slow async handler delays only itself.
    Handlers may be plain functions or coroutine functions. An exception from
    a handler ends that task and is logged; the rest of the group keeps going.
    """

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()
        self._groups: dict[str, list[_RunningTask]] = {}
        self._logger = logger.bind(component="scheduler")

    @property
    def clock(self) -> Clock:
        """The time source ticks sleep against."""
        return self._clock

    @property
    def group_ids(self) -> list[str]:
        """Ids of all scheduled groups."""
        return list(self._groups)

    def is_scheduled(self, group_id: str) -> bool:
        """Check whether a group is currently scheduled."""
        return group_id in self._groups

    def schedule_group(self, group_id: str, tasks: list[RecurringTask]) -> None:
        """Start a group of recurring tasks.

        Args:
            group_id: Key the group is cancelled by (the agreement id).
            tasks: Recurring tasks belonging to the group.

        Raises:
            ValueError: If the group is already scheduled.
        """
        if group_id in self._groups:
            raise ValueError(f"Group already scheduled: {group_id}")

        running: list[_RunningTask] = []
        for recurring in tasks:
            entry = _RunningTask(recurring=recurring)
            entry.task = asyncio.create_task(
                self._run_forever(entry), name=f"{group_id}:{recurring.name}"
            )
            entry.task.add_done_callback(self._on_task_done)
            running.append(entry)

        self._groups[group_id] = running
        self._logger.debug(
            "tick_group_scheduled",
            group_id=group_id,
            tasks=[t.name for t in tasks],
        )

    async def _run_forever(self, entry: _RunningTask) -> None:
        recurring = entry.recurring
        while True:
            await self._clock.sleep(recurring.interval)
            result = recurring.handler()
            if inspect.isawaitable(result):
                await result
            entry.runs += 1

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._logger.error(
                "tick_task_crashed",
                task=task.get_name(),
                error=str(error),
                exc_info=error,
            )

    async def cancel_group(self, group_id: str) -> bool:
        """Cancel every task in a group and wait for them to finish.

        No handler of the group runs after this returns.

        Returns:
            True if the group was found and cancelled.
        """
        running = self._groups.pop(group_id, None)
        if running is None:
            return False

        current = asyncio.current_task()
        tasks = [entry.task for entry in running if entry.task is not None]
        for task in tasks:
            task.cancel()
        others = [task for task in tasks if task is not current]
        if others:
            await asyncio.gather(*others, return_exceptions=True)

        self._logger.debug("tick_group_cancelled", group_id=group_id)
        return True

    async def cancel_all(self) -> None:
        """Cancel every scheduled group."""
        for group_id in list(self._groups):
            await self.cancel_group(group_id)

    def get_status(self) -> dict[str, Any]:
        """Get current scheduler status.

        Returns:
            Status dictionary.
        """
        return {
            "groups": len(self._groups),
            "tasks": {
                group_id: {
                    entry.recurring.name: {
                        "interval": entry.recurring.interval,
                        "runs": entry.runs,
                        "done": entry.task is None or entry.task.done(),
                    }
                    for entry in running
                }
                for group_id, running in self._groups.items()
            },
        }
