"""
In-process sweep scheduler.

Runs :func:`app.services.enforcement.run_sweep` as a single APScheduler
interval job every ``SWEEP_INTERVAL_SECONDS``.  Transient database
trouble reschedules the job with a doubled interval (capped at
``SWEEP_MAX_BACKOFF_SECONDS``) until a run succeeds again.
Deployments that trigger the sweep from an external cron leave this off.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import TransientIO, is_transient
from app.services.enforcement import SweepReport, run_sweep

logger = logging.getLogger(__name__)

JOB_ID = "enforcement-sweep"

SweepFn = Callable[[AsyncSession], Awaitable[SweepReport]]


class SweepScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval: float,
        max_backoff: float,
        sweep: SweepFn = run_sweep,
    ) -> None:
        self._session_factory = session_factory
        self.interval = interval
        self.max_backoff = max(max_backoff, interval)
        self._sweep = sweep
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self.current_delay = interval
        self.ticks = 0
        self.failures = 0
        self._consecutive = 0

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if self.running:
            return
        self._scheduler.add_job(
            self.run_once,
            IntervalTrigger(seconds=self.interval),
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Sweep scheduler started (every %.0fs)", self.interval)

    def stop(self) -> None:
        if not self.running:
            return
        self._scheduler.shutdown(wait=False)
        logger.info("Sweep scheduler stopped after %d tick(s)", self.ticks)

    async def tick(self) -> SweepReport:
        """One sweep in its own session.  Transient errors surface as TransientIO."""
        async with self._session_factory() as db:
            try:
                return await self._sweep(db)
            except TransientIO:
                raise
            except Exception as exc:
                if is_transient(exc):
                    raise TransientIO(str(exc)) from exc
                raise

    def next_delay(self, consecutive_failures: int) -> float:
        if consecutive_failures == 0:
            return self.interval
        return min(self.interval * (2 ** consecutive_failures), self.max_backoff)

    async def run_once(self) -> None:
        """The scheduled job: one tick, then adjust the job's interval."""
        self.ticks += 1
        try:
            await self.tick()
            self._consecutive = 0
        except TransientIO as exc:
            self._consecutive += 1
            self.failures += 1
            logger.warning(
                "Sweep hit transient error (%d in a row): %s", self._consecutive, exc.message
            )
        except Exception:
            # Anything else is a bug; keep the job at the normal cadence.
            self.failures += 1
            self._consecutive = 0
            logger.exception("Sweep tick failed")
        self._reschedule(self.next_delay(self._consecutive))

    def _reschedule(self, delay: float) -> None:
        if delay == self.current_delay:
            return
        self.current_delay = delay
        if self._scheduler.get_job(JOB_ID) is not None:
            self._scheduler.reschedule_job(JOB_ID, trigger=IntervalTrigger(seconds=delay))
        logger.info("Next sweep in %.0fs", delay)
