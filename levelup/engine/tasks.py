"""Task lifecycle manager.

Generates tasks aimed at a subject's weakest attribute, collects evidence,
and resolves submissions through the judge contract. It is the only caller
of the attribute engine and experience resolver on the reward path.

Submission state machine::

    pending --> completed | failed | missed     (terminal, no way back)
"""

from __future__ import annotations

import logging
import random
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from levelup.core.exceptions import InvalidStateError, NotFoundError, OracleError
from levelup.core.models import (
    Attribute,
    Difficulty,
    JudgeRequest,
    QuestRequest,
    QuestSuggestion,
    Rank,
    Submission,
    SubmissionStatus,
    Task,
    TaskCounts,
    TaskKind,
    TaskStats,
    Verdict,
    end_of_day,
    round_half_up,
    utc_now,
)
from levelup.db.repository import BaseRepository
from levelup.engine.attributes import AttributeEngine, weakest_attribute
from levelup.engine.experience import ExperienceResolver
from levelup.oracle.judge import Judge
from levelup.oracle.quest_generator import QuestGenerator

logger = logging.getLogger("levelup.engine.tasks")

FAILURE_WINDOW_DAYS = 21

# Base XP drawn uniformly from these inclusive ranges, then scaled.
XP_BASE_RANGES: dict[Difficulty, tuple[int, int]] = {
    Difficulty.EASY: (20, 30),
    Difficulty.MEDIUM: (31, 35),
    Difficulty.HARD: (36, 40),
    Difficulty.EXTREME: (50, 60),
}

XP_MULTIPLIERS: dict[Difficulty, float] = {
    Difficulty.EASY: 1.0,
    Difficulty.MEDIUM: 1.5,
    Difficulty.HARD: 2.5,
    Difficulty.EXTREME: 4.0,
}

SUCCESS_COMMENT = "Task completed successfully"
FAILURE_COMMENT = "Task requirements not met"

FALLBACK_DESCRIPTIONS: dict[Attribute, tuple[str, ...]] = {
    Attribute.PHYSICAL: (
        "Complete a 30-minute workout or exercise routine",
        "Take a 45-minute walk or run",
        "Do 50 push-ups or an equivalent bodyweight set",
    ),
    Attribute.INTELLIGENCE: (
        "Read for 45 minutes on a challenging topic",
        "Work through one tutorial, course module or book chapter",
        "Solve 5 to 10 logic puzzles",
    ),
    Attribute.DISCIPLINE: (
        "Keep to a planned routine for 2 uninterrupted hours",
        "Finish every task planned for today",
        "Follow through on one commitment you made",
    ),
    Attribute.CHARISMA: (
        "Have a meaningful conversation with someone new",
        "Practice public speaking or a presentation for 20 minutes",
        "Help someone with a problem they are facing",
    ),
    Attribute.CONFIDENCE: (
        "Do one thing outside your comfort zone",
        "Speak up in a meeting or group setting",
        "Take initiative on a task without being asked",
    ),
    Attribute.CREATIVITY: (
        "Create something new: art, music, writing or code",
        "Brainstorm ten solutions to a current problem",
        "Practice a new creative technique for 30 minutes",
    ),
}


def calculate_difficulty(recent_failures: int, rank: Rank) -> Difficulty:
    """Difficulty policy: fewer recent failures and higher rank mean harder tasks."""
    if recent_failures == 0:
        if rank in (Rank.E, Rank.D):
            return Difficulty.EASY
        if rank in (Rank.C, Rank.B):
            return Difficulty.MEDIUM
        if rank in (Rank.A, Rank.S):
            return Difficulty.HARD
        return Difficulty.EXTREME
    if recent_failures <= 2:
        return Difficulty.EASY if rank in (Rank.E, Rank.D) else Difficulty.MEDIUM
    return Difficulty.EASY


def calculate_xp_reward(difficulty: Difficulty, base_xp: int) -> int:
    return round_half_up(base_xp * XP_MULTIPLIERS[difficulty])


class TaskManager:
    """Generates, accepts and resolves tasks for a subject.

    Injected dependencies:
        repository: storage backend.
        attribute_engine / experience: the only state writers on the reward path.
        judge: judge response contract (always returns a trusted verdict).
        quest_generator: optional description source; None means phrase list only.
        clock: returns the current UTC time.
        rng: randomness for rewards and fallback phrases.
    """

    def __init__(
        self,
        repository: BaseRepository,
        attribute_engine: AttributeEngine,
        experience: ExperienceResolver,
        judge: Judge,
        quest_generator: Optional[QuestGenerator] = None,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
        failure_window_days: int = FAILURE_WINDOW_DAYS,
    ):
        self.repository = repository
        self.attribute_engine = attribute_engine
        self.experience = experience
        self.judge = judge
        self.quest_generator = quest_generator
        self.clock = clock
        self.rng = rng or random.Random()
        self.failure_window_days = failure_window_days

    # -------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------

    def count_recent_failures(self, subject_id: uuid.UUID) -> int:
        since = self.clock() - timedelta(days=self.failure_window_days)
        rows = self.repository.list_submissions_with_tasks(
            subject_id,
            statuses=(SubmissionStatus.FAILED, SubmissionStatus.MISSED),
            since=since,
        )
        return len(rows)

    def generate(self, subject_id: uuid.UUID) -> Task:
        """Create a task aimed at the weakest attribute plus its pending submission.

        Raises:
            NotFoundError: unknown subject or missing AttributeSet.
        """
        subject = self.repository.get_subject(subject_id)
        if subject is None:
            raise NotFoundError("Subject", subject_id)
        attributes = self.attribute_engine.get_attributes(subject_id)

        target = weakest_attribute(attributes)
        recent_failures = self.count_recent_failures(subject_id)
        difficulty = calculate_difficulty(recent_failures, subject.rank)

        suggestion = self._suggest(
            QuestRequest(
                attributes=attributes,
                recent_failure_count=recent_failures,
                rank=subject.rank,
                target_attribute=target,
                desired_difficulty=difficulty,
            )
        )

        low, high = XP_BASE_RANGES[difficulty]
        xp_reward = calculate_xp_reward(difficulty, self.rng.randint(low, high))
        now = self.clock()

        task = Task(
            kind=suggestion.kind,
            difficulty=difficulty,
            description=suggestion.description,
            target_attribute=target,
            xp_reward=xp_reward,
            deadline=end_of_day(now),
            created_at=now,
        )
        with self.repository.subject_scope(subject_id):
            self.repository.create_task(task)
            self.repository.create_submission(
                Submission(task_id=task.id, subject_id=subject_id, created_at=now, updated_at=now)
            )

        logger.info(
            "Generated %s %s task %s for subject %s (target=%s, xp=%d, recent_failures=%d)",
            difficulty.value, task.kind.value, task.id, subject_id,
            target.value, xp_reward, recent_failures,
        )
        return task

    def _suggest(self, request: QuestRequest) -> QuestSuggestion:
        if self.quest_generator is not None:
            try:
                suggestion = self.quest_generator.suggest(request)
                return suggestion.model_copy(update={"target_attribute": request.target_attribute})
            except OracleError as e:
                logger.warning("Quest generator failed, using fallback description: %s", e)
        return QuestSuggestion(
            kind=TaskKind.DAILY,
            description=self.rng.choice(FALLBACK_DESCRIPTIONS[request.target_attribute]),
            difficulty=request.desired_difficulty,
            target_attribute=request.target_attribute,
        )

    # -------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------

    def submit(self, task_id: uuid.UUID, subject_id: uuid.UUID, evidence: str) -> Submission:
        """Attach evidence to the pending submission for (task, subject), creating one if needed.

        Raises:
            NotFoundError: unknown task or subject.
            InvalidStateError: the task deadline has passed.
        """
        task = self.repository.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        if self.repository.get_subject(subject_id) is None:
            raise NotFoundError("Subject", subject_id)

        now = self.clock()
        if now > task.deadline:
            raise InvalidStateError("deadline passed")

        with self.repository.subject_scope(subject_id):
            existing = self.repository.find_pending_submission(task_id, subject_id)
            if existing is not None:
                if not existing.evidence:
                    existing = existing.model_copy(update={"evidence": evidence, "updated_at": now})
                    self.repository.update_submission(existing)
                return existing

            submission = Submission(
                task_id=task_id,
                subject_id=subject_id,
                evidence=evidence,
                created_at=now,
                updated_at=now,
            )
            self.repository.create_submission(submission)

        logger.info("Subject %s submitted evidence for task %s", subject_id, task_id)
        return submission

    # -------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------

    def resolve_with_verdict(self, submission: Submission, verdict: Verdict) -> Submission:
        """Move a pending submission to completed/failed and apply rewards on success.

        Raises:
            InvalidStateError: submission is already terminal.
        """
        with self.repository.subject_scope(submission.subject_id):
            current = self.repository.get_submission(submission.id) or submission
            if current.status.is_terminal:
                raise InvalidStateError(
                    f"Submission {submission.id} is not pending (current status: {current.status.value})"
                )

            now = self.clock()
            default_comment = SUCCESS_COMMENT if verdict.succeeded else FAILURE_COMMENT
            resolved = current.model_copy(
                update={
                    "status": SubmissionStatus.COMPLETED if verdict.succeeded else SubmissionStatus.FAILED,
                    "verdict_comment": verdict.comment or default_comment,
                    "updated_at": now,
                    "resolved_at": now,
                }
            )
            self.repository.update_submission(resolved)

            if verdict.succeeded:
                self.experience.add_xp(submission.subject_id, verdict.xp)
                if verdict.attribute_deltas:
                    self.attribute_engine.apply_delta(submission.subject_id, verdict.attribute_deltas)

        logger.info("Submission %s resolved as %s (+%d xp%s)",
                    submission.id, resolved.status.value, verdict.xp,
                    ", fallback" if verdict.fallback else "")
        return resolved

    def judge_and_resolve(self, submission_id: uuid.UUID) -> Submission:
        """Judge a pending submission's evidence and resolve it with the verdict.

        Raises:
            NotFoundError: unknown submission or task.
            InvalidStateError: not pending, or no evidence to judge.
        """
        submission = self.repository.get_submission(submission_id)
        if submission is None:
            raise NotFoundError("Submission", submission_id)
        if submission.status != SubmissionStatus.PENDING:
            raise InvalidStateError(
                f"Submission {submission_id} is not pending (current status: {submission.status.value})"
            )
        if not submission.evidence:
            raise InvalidStateError(f"Submission {submission_id} has no evidence to judge")

        task = self.repository.get_task(submission.task_id)
        if task is None:
            raise NotFoundError("Task", submission.task_id)
        attributes = self.attribute_engine.get_attributes(submission.subject_id)

        verdict = self.judge.judge(
            JudgeRequest(task=task, attributes=attributes, evidence=submission.evidence)
        )
        return self.resolve_with_verdict(submission, verdict)

    def check_and_mark_missed(self, subject_id: uuid.UUID) -> list[Submission]:
        """Mark every pending submission whose task deadline has passed as missed."""
        now = self.clock()
        with self.repository.subject_scope(subject_id):
            overdue = [
                submission
                for submission, task in self.repository.list_submissions_with_tasks(
                    subject_id, statuses=(SubmissionStatus.PENDING,)
                )
                if task.deadline < now
            ]
            if not overdue:
                return []
            self.repository.mark_submissions_missed([s.id for s in overdue], at=now)

        logger.info("Marked %d submission(s) missed for subject %s", len(overdue), subject_id)
        return [
            s.model_copy(update={"status": SubmissionStatus.MISSED, "updated_at": now, "resolved_at": now})
            for s in overdue
        ]

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    def find_pending_near_deadline(
        self, subject_id: uuid.UUID, within: timedelta
    ) -> list[Submission]:
        """Pending submissions whose task deadline falls in [now, now + within]."""
        now = self.clock()
        return [
            submission
            for submission, task in self.repository.list_submissions_with_tasks(
                subject_id, statuses=(SubmissionStatus.PENDING,)
            )
            if now <= task.deadline <= now + within
        ]

    def get_active_tasks(self, subject_id: uuid.UUID) -> list[Task]:
        """Tasks the subject still has a pending submission for, deadline in the future."""
        now = self.clock()
        return [
            task
            for _, task in self.repository.list_submissions_with_tasks(
                subject_id, statuses=(SubmissionStatus.PENDING,)
            )
            if task.deadline > now
        ]

    def get_task_history(self, subject_id: uuid.UUID) -> list[tuple[Submission, Task]]:
        """All submissions with their tasks, newest first."""
        return self.repository.list_submissions_with_tasks(subject_id)

    def get_task_stats(self, subject_id: uuid.UUID) -> TaskStats:
        """Overall and trailing-window counts per status."""
        cutoff = self.clock() - timedelta(days=self.failure_window_days)
        overall, recent = TaskCounts(), TaskCounts()
        for submission, _ in self.repository.list_submissions_with_tasks(subject_id):
            buckets = [overall] + ([recent] if submission.created_at >= cutoff else [])
            for counts in buckets:
                counts.total += 1
                field = submission.status.value
                setattr(counts, field, getattr(counts, field) + 1)
        return TaskStats(overall=overall, recent=recent)
