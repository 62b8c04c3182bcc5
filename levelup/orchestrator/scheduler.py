"""Recurrence policy and blocking trigger loop for the daily run.

Triggers fall on ``run_at`` (UTC) plus whole multiples of ``interval_hours``.
The scheduler only decides *when*; what runs is a plain ``run_once`` callable.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Optional

from levelup.core.config import ScheduleConfig
from levelup.core.exceptions import ConnectionError
from levelup.core.models import utc_now

logger = logging.getLogger("levelup.orchestrator.scheduler")


class Scheduler:
    """Calls ``run_once`` at every trigger until stopped.

    Injected dependencies:
        config: run_at / interval_hours.
        run_once: the job; its exceptions are logged, not propagated.
        clock: returns the current UTC time.
        sleep: blocks for a number of seconds; defaults to an interruptible wait.
    """

    def __init__(
        self,
        config: ScheduleConfig,
        run_once: Callable[[], Any],
        clock: Callable[[], datetime] = utc_now,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.config = config
        self.run_once = run_once
        self.clock = clock
        self._stop_event = threading.Event()
        self._sleep = sleep or self._stop_event.wait
        self.runs = 0

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.config.interval_hours)

    def next_run_after(self, moment: datetime) -> datetime:
        """First trigger strictly after ``moment``."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        moment = moment.astimezone(UTC)
        anchor = datetime.combine(moment.date(), datetime.min.time(), tzinfo=UTC).replace(
            hour=self.config.hour, minute=self.config.minute
        )
        elapsed = (moment - anchor) / self.interval
        return anchor + self.interval * (math.floor(elapsed) + 1)

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run_forever(self, max_runs: Optional[int] = None) -> int:
        """Block, running the job at each trigger. Returns the number of runs made.

        A failed run is logged and the loop continues, except when storage is
        unreachable, which propagates.
        """
        while not self.stopped and (max_runs is None or self.runs < max_runs):
            next_run = self.next_run_after(self.clock())
            wait = (next_run - self.clock()).total_seconds()
            logger.info("Next daily run at %s (in %.0fs)", next_run.isoformat(), max(wait, 0))
            if wait > 0:
                self._sleep(wait)
            if self.stopped:
                break

            self.runs += 1
            try:
                self.run_once()
            except ConnectionError:
                raise
            except Exception as e:
                logger.error("Scheduled run %d failed: %s", self.runs, e, exc_info=True)

        logger.info("Scheduler stopped after %d run(s)", self.runs)
        return self.runs
