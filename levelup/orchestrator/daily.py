"""Daily orchestrator.

Runs the per-subject pipeline once over every subject:

    auto-resolve -> decay -> mark missed -> miss penalty -> generate task

Each subject runs inside its own transaction. A failure rolls back that
subject only, is logged, and the run moves on. Storage unreachability is the
one failure that aborts the whole run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from levelup.core.exceptions import ConnectionError
from levelup.core.models import DailyRunReport, Subject, SubjectRunResult, utc_now
from levelup.db.repository import BaseRepository
from levelup.engine.attributes import AttributeEngine
from levelup.engine.penalties import PenaltyEngine
from levelup.engine.tasks import TaskManager

logger = logging.getLogger("levelup.orchestrator.daily")


class DailyOrchestrator:
    """Sequences the engines for every subject with partial-failure isolation.

    Injected dependencies:
        repository: storage backend (transactions, subject listing).
        tasks / attributes / penalties: the engines driven by each step.
        auto_resolve_window: how close to its deadline a pending submission
            must be to get judged before the missed sweep.
        cleanup_expired_sanctions: drop expired sanctions after the sweep.
        clock: returns the current UTC time.
    """

    def __init__(
        self,
        repository: BaseRepository,
        tasks: TaskManager,
        attributes: AttributeEngine,
        penalties: PenaltyEngine,
        auto_resolve_window: timedelta = timedelta(minutes=60),
        cleanup_expired_sanctions: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.tasks = tasks
        self.attributes = attributes
        self.penalties = penalties
        self.auto_resolve_window = auto_resolve_window
        self.cleanup_expired_sanctions = cleanup_expired_sanctions
        self.clock = clock

    def run_once(self) -> DailyRunReport:
        """Process every subject once and return the run report.

        Raises:
            ConnectionError: the storage backend is unreachable.
        """
        report = DailyRunReport(started_at=self.clock())
        subjects = self.repository.list_subjects()
        logger.info("Daily run started for %d subject(s)", len(subjects))

        for subject in subjects:
            report.results.append(self._run_subject(subject))

        if self.cleanup_expired_sanctions:
            report.sanctions_cleaned = self.penalties.cleanup_expired_sanctions()

        report.finished_at = self.clock()
        logger.info(
            "Daily run finished: %d ok, %d failed, %d sanction(s) cleaned in %.1fs",
            report.success_count, report.error_count,
            report.sanctions_cleaned, report.duration_seconds,
        )
        return report

    def _run_subject(self, subject: Subject) -> SubjectRunResult:
        result = SubjectRunResult(subject_id=subject.id)
        try:
            with self.repository.transaction():
                result.auto_resolved = self._auto_resolve(subject)

                result.decay_applied = self.attributes.apply_daily_decay(subject.id) is not None

                missed = self.tasks.check_and_mark_missed(subject.id)
                result.missed = len(missed)

                if missed:
                    result.penalty = self.penalties.apply_miss_penalty(subject.id)

                result.generated_task_id = self.tasks.generate(subject.id).id
        except ConnectionError:
            logger.error("Storage unreachable while processing subject %s; aborting run", subject.id)
            raise
        except Exception as e:
            logger.error("Daily pipeline failed for subject %s: %s", subject.id, e, exc_info=True)
            return SubjectRunResult(subject_id=subject.id, success=False, error=str(e))

        logger.info(
            "Subject %s: resolved=%d decay=%s missed=%d penalty=%s task=%s",
            subject.id, result.auto_resolved, result.decay_applied, result.missed,
            result.penalty.penalty_kind.value if result.penalty else "-",
            result.generated_task_id,
        )
        return result

    def _auto_resolve(self, subject: Subject) -> int:
        """Judge pending submissions with evidence whose deadline is close."""
        resolved = 0
        near = self.tasks.find_pending_near_deadline(subject.id, self.auto_resolve_window)
        for submission in near:
            if not submission.evidence:
                continue
            try:
                with self.repository.transaction():
                    self.tasks.judge_and_resolve(submission.id)
                resolved += 1
            except ConnectionError:
                raise
            except Exception as e:
                logger.warning("Auto-resolve failed for submission %s: %s", submission.id, e)
        return resolved
