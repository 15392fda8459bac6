"""Periodic hold-expiry and overdue sweeps.

Both jobs run on one interval, independently of any client. A failing run
is logged and the loop carries on at the next tick.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from verticals.circulation.engine import CirculationEngine, OperationResult

logger = logging.getLogger(__name__)


@dataclass
class SweepRun:
    holds: OperationResult
    overdue: OperationResult


class SweepScheduler:

    def __init__(
        self,
        engine: CirculationEngine,
        interval_seconds: Optional[float] = None,
        overdue_minimum_days: Optional[int] = None,
        retry_dead_letters: bool = True,
    ):
        sweeps = engine.config.sweeps
        self.engine = engine
        self.interval_seconds = interval_seconds if interval_seconds is not None else sweeps.interval_seconds
        self.overdue_minimum_days = (
            overdue_minimum_days if overdue_minimum_days is not None else sweeps.overdue_minimum_days
        )
        self.retry_dead_letters = retry_dead_letters
        self.runs = 0
        self._task: asyncio.Task | None = None

    async def run_once(self) -> SweepRun:
        holds = await self.engine.expire_sweep()
        overdue = await self.engine.overdue_sweep(
            dry_run=False,
            minimum_days=self.overdue_minimum_days,
        )
        if self.retry_dead_letters:
            await self.engine.dispatcher.retry_dead_letters()
        self.runs += 1
        return SweepRun(holds=holds, overdue=overdue)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._loop(), name="circulation-sweeps")
            logger.info("sweep scheduler started, every %.0fs", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("sweep scheduler stopped after %d runs", self.runs)

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("sweep run failed")
            await asyncio.sleep(self.interval_seconds)
