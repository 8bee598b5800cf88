"""Cron bookkeeping for scheduled fetch tasks."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from croniter import croniter, CroniterBadDateError

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_occurrence_after(cron_expression: str, reference: datetime) -> Optional[datetime]:
    """Earliest instant strictly after *reference* matching *cron_expression*.

    Returns ``None`` when the expression has no further occurrence (for
    example ``0 0 30 2 *``, which croniter gives up on).
    """
    try:
        return croniter(cron_expression, reference).get_next(datetime)
    except CroniterBadDateError:
        return None


@dataclass
class ScheduleEntry:
    """A single cron-governed fetch task.

    Attributes:
        url: Page to fetch; also the session-affinity key.
        file_name: Destination name hint for saved HTML.
        cron_expression: Cron spec, evaluated in UTC.
        next_occurrence: Next due instant, or ``None`` once exhausted.
    """

    url: str
    file_name: str
    cron_expression: str
    next_occurrence: Optional[datetime] = field(default=None, compare=False)
    _initialized: bool = field(default=False, init=False, repr=False, compare=False)

    @classmethod
    def from_config(cls, task) -> "ScheduleEntry":
        return cls(url=task.url, file_name=task.file_name, cron_expression=task.cron_expression)

    def initialize(self, now: datetime) -> None:
        """Validate the cron expression and compute the first occurrence.

        Raises:
            ValueError: If the expression cannot be parsed.
        """
        if not croniter.is_valid(self.cron_expression):
            raise ValueError(f"Invalid cron expression for {self.url}: {self.cron_expression}")
        self._initialized = True
        self.next_occurrence = next_occurrence_after(self.cron_expression, now)
        if self.next_occurrence is None:
            logger.warning(f"Cron expression '{self.cron_expression}' for {self.url} never fires")

    def update_next_occurrence(self, now: datetime) -> None:
        if not self._initialized:
            self.next_occurrence = None
            return
        self.next_occurrence = next_occurrence_after(self.cron_expression, now)
        if self.next_occurrence is None:
            logger.info(f"No further occurrences for {self.url}; dropping it from the schedule")

    @property
    def is_active(self) -> bool:
        return self.next_occurrence is not None
