"""Interest ticker: publishes projected debt between polls, never writes state."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from .scheduler import PositionSyncScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InterestTick:
    timestamp: int
    principal: int
    pending_interest: int

    @property
    def total_debt(self) -> int:
        return self.principal + self.pending_interest


class InterestTicker:
    def __init__(
        self,
        scheduler: PositionSyncScheduler,
        callback: Callable[[InterestTick], None],
        interval: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._scheduler = scheduler
        self._callback = callback
        self._interval = interval
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    def tick(self) -> InterestTick | None:
        snapshot = self._scheduler.current_snapshot()
        if snapshot.position is None:
            return None
        now = int(self._clock())
        reading = InterestTick(
            timestamp=now,
            principal=snapshot.position.principal_debt,
            pending_interest=snapshot.projected_interest(now),
        )
        self._callback(reading)
        return reading

    async def run(self) -> None:
        while True:
            try:
                self.tick()
            except Exception:
                logger.exception("Interest ticker callback failed")
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
