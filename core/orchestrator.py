"""Batch scheduler for cron-driven fetch tasks.

This module implements the loop that drives all fetch activity.  Each
iteration it:

* finds the earliest pending occurrence across all entries,
* groups every entry due at exactly that instant into one batch,
* sleeps until the batch is due (interruptible only by :meth:`BatchScheduler.stop`),
* runs the batch concurrently through the :class:`TaskRunner`,
* advances each batch member's schedule, whether its fetch worked or not.

The loop ends when no entry has a future occurrence or when stopped.

Classes:
    BatchScheduler: Main scheduling engine.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from core.runner import FetchResult, TaskRunner
from core.schedule import ScheduleEntry, utc_now

logger = logging.getLogger(__name__)


class BatchScheduler:
    """
    Central scheduling engine.

    Owns the schedule entries for the lifetime of a run and dispatches due
    batches to the task runner.  The entry set is fixed once :meth:`run`
    starts.
    """

    def __init__(self, runner: TaskRunner, clock: Callable[[], datetime] = utc_now):
        """
        Initialize the scheduler.

        Args:
            runner: Executes individual fetches; must not raise.
            clock: Returns the current UTC time.
        """
        self.runner = runner
        self.clock = clock
        self.entries: List[ScheduleEntry] = []
        self.batches_run = 0
        self._stop_event = asyncio.Event()

    @staticmethod
    def next_batch(entries: Sequence[ScheduleEntry]) -> tuple[Optional[datetime], List[ScheduleEntry]]:
        """Return the earliest pending occurrence and every entry due then."""
        pending = [e.next_occurrence for e in entries if e.next_occurrence is not None]
        if not pending:
            return None, []
        t_min = min(pending)
        return t_min, [e for e in entries if e.next_occurrence == t_min]

    async def _wait(self, delay: float) -> bool:
        """Sleep for *delay* seconds; return ``True`` if stopped meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    async def run_batch(self, batch: Sequence[ScheduleEntry]) -> List[FetchResult]:
        results = await asyncio.gather(
            *(self.runner.execute(entry) for entry in batch),
            return_exceptions=True,
        )
        outcomes: List[FetchResult] = []
        for entry, result in zip(batch, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                # The runner is supposed to swallow everything; keep going anyway.
                logger.error(f"Task for {entry.url} raised unexpectedly: {result!r}")
                continue
            outcomes.append(result)
        return outcomes

    async def run(self, entries: Sequence[ScheduleEntry]) -> int:
        """Drive the schedule until it is exhausted or :meth:`stop` is called.

        Returns:
            The number of batches dispatched.

        Raises:
            ValueError: If an entry's cron expression is invalid.
        """
        self.entries = list(entries)
        now = self.clock()
        for entry in self.entries:
            entry.initialize(now)
        logger.info(f"Scheduler started with {len(self.entries)} task(s).")

        while not self._stop_event.is_set():
            t_min, batch = self.next_batch(self.entries)
            if t_min is None:
                logger.info("No more scheduled tasks. Exiting...")
                break

            delay = (t_min - self.clock()).total_seconds()
            if delay > 0:
                logger.info(
                    f"Next scheduled tasks at {t_min:%Y-%m-%d %H:%M:%S} UTC. "
                    f"Waiting {delay:.1f} seconds..."
                )
                if await self._wait(delay):
                    logger.info("Stop requested while waiting; leaving scheduler loop.")
                    break

            logger.info(f"Running batch of {len(batch)} task(s) due at {t_min.isoformat()}")
            outcomes = await self.run_batch(batch)
            self.batches_run += 1

            failed = sum(1 for r in outcomes if not r.success)
            if failed:
                logger.warning(f"{failed} of {len(batch)} task(s) in batch failed")

            now = self.clock()
            for entry in batch:
                entry.update_next_occurrence(now)

        return self.batches_run

    def stop(self) -> None:
        """Signal the loop to exit at its next suspension point."""
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()
