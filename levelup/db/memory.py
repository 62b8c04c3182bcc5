"""In-process storage backend (``database.backend: memory``).

Implements the BaseRepository contract over plain dicts. Stored models are
never handed out directly, callers always receive copies, so a rollback only
has to restore the table dicts captured when the transaction began.
"""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, Optional, TypeVar

from pydantic import BaseModel

from levelup.core.models import (
    AttributeSet,
    Rank,
    Sanction,
    SanctionReason,
    Subject,
    Submission,
    SubmissionStatus,
    Task,
    TaskKind,
)
from levelup.db.repository import BaseRepository

logger = logging.getLogger("levelup.db.memory")

M = TypeVar("M", bound=BaseModel)

_TABLES = ("subjects", "attributes", "tasks", "submissions", "sanctions")


def _copy(model: M) -> M:
    return model.model_copy(deep=True)


class InMemoryRepository(BaseRepository):
    """Dict-backed repository with savepoint-style nested transactions.

    A single re-entrant lock serializes every transaction, which also gives
    single-writer-per-subject semantics for ``subject_scope``.
    """

    def __init__(self) -> None:
        self.subjects: dict[uuid.UUID, Subject] = {}
        self.attributes: dict[uuid.UUID, AttributeSet] = {}
        self.tasks: dict[uuid.UUID, Task] = {}
        self.submissions: dict[uuid.UUID, Submission] = {}
        self.sanctions: dict[uuid.UUID, Sanction] = {}
        self._lock = threading.RLock()

    # -------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            savepoint = {name: dict(getattr(self, name)) for name in _TABLES}
            try:
                yield
            except BaseException:
                for name, table in savepoint.items():
                    setattr(self, name, table)
                logger.debug("Rolled back in-memory transaction")
                raise

    @contextmanager
    def subject_scope(self, subject_id: uuid.UUID) -> Iterator[None]:
        with self.transaction():
            yield

    # -------------------------------------------------------------------
    # Subjects & attributes
    # -------------------------------------------------------------------

    def create_subject(self, subject: Subject, attributes: AttributeSet) -> Subject:
        with self.transaction():
            self.subjects[subject.id] = _copy(subject)
            self.attributes[subject.id] = _copy(attributes)
        return subject

    def get_subject(self, subject_id: uuid.UUID) -> Optional[Subject]:
        subject = self.subjects.get(subject_id)
        return _copy(subject) if subject else None

    def list_subjects(self) -> list[Subject]:
        return [_copy(s) for s in sorted(self.subjects.values(), key=lambda s: s.created_at)]

    def update_subject_progress(
        self,
        subject_id: uuid.UUID,
        total_xp: int,
        level: int,
        rank: Rank,
        updated_at: datetime,
    ) -> Optional[Subject]:
        current = self.subjects.get(subject_id)
        if current is None:
            return None
        updated = current.model_copy(
            update={"total_xp": total_xp, "level": level, "rank": rank, "updated_at": updated_at}
        )
        self.subjects[subject_id] = updated
        return _copy(updated)

    def get_attributes(self, subject_id: uuid.UUID) -> Optional[AttributeSet]:
        attrs = self.attributes.get(subject_id)
        return _copy(attrs) if attrs else None

    def save_attributes(self, attributes: AttributeSet) -> AttributeSet:
        if attributes.subject_id in self.attributes:
            self.attributes[attributes.subject_id] = _copy(attributes)
        return attributes

    # -------------------------------------------------------------------
    # Tasks & submissions
    # -------------------------------------------------------------------

    def create_task(self, task: Task) -> Task:
        self.tasks[task.id] = _copy(task)
        return task

    def get_task(self, task_id: uuid.UUID) -> Optional[Task]:
        task = self.tasks.get(task_id)
        return _copy(task) if task else None

    def create_submission(self, submission: Submission) -> Submission:
        if submission.status == SubmissionStatus.PENDING and self.find_pending_submission(
            submission.task_id, submission.subject_id
        ):
            raise ValueError(
                f"Pending submission already exists for task {submission.task_id} "
                f"and subject {submission.subject_id}"
            )
        self.submissions[submission.id] = _copy(submission)
        return submission

    def get_submission(self, submission_id: uuid.UUID) -> Optional[Submission]:
        submission = self.submissions.get(submission_id)
        return _copy(submission) if submission else None

    def find_pending_submission(
        self, task_id: uuid.UUID, subject_id: uuid.UUID
    ) -> Optional[Submission]:
        for submission in self.submissions.values():
            if (
                submission.task_id == task_id
                and submission.subject_id == subject_id
                and submission.status == SubmissionStatus.PENDING
            ):
                return _copy(submission)
        return None

    def update_submission(self, submission: Submission) -> Submission:
        if submission.id in self.submissions:
            self.submissions[submission.id] = _copy(submission)
        return submission

    def list_submissions_with_tasks(
        self,
        subject_id: uuid.UUID,
        statuses: Optional[Iterable[SubmissionStatus]] = None,
        since: Optional[datetime] = None,
    ) -> list[tuple[Submission, Task]]:
        wanted = set(statuses) if statuses is not None else None
        rows = []
        for submission in self.submissions.values():
            if submission.subject_id != subject_id:
                continue
            if wanted is not None and submission.status not in wanted:
                continue
            if since is not None and submission.created_at < since:
                continue
            task = self.tasks.get(submission.task_id)
            if task is None:
                continue
            rows.append((_copy(submission), _copy(task)))
        rows.sort(key=lambda pair: pair[0].created_at, reverse=True)
        return rows

    def mark_submissions_missed(
        self, submission_ids: list[uuid.UUID], at: datetime
    ) -> int:
        changed = 0
        for submission_id in submission_ids:
            current = self.submissions.get(submission_id)
            if current is None or current.status != SubmissionStatus.PENDING:
                continue
            self.submissions[submission_id] = current.model_copy(
                update={"status": SubmissionStatus.MISSED, "updated_at": at, "resolved_at": at}
            )
            changed += 1
        return changed

    def has_resolved_submission(
        self,
        subject_id: uuid.UUID,
        status: SubmissionStatus,
        kind: TaskKind,
        start: datetime,
        end: datetime,
    ) -> bool:
        for submission in self.submissions.values():
            if submission.subject_id != subject_id or submission.status != status:
                continue
            if submission.resolved_at is None or not (start <= submission.resolved_at <= end):
                continue
            task = self.tasks.get(submission.task_id)
            if task is not None and task.kind == kind:
                return True
        return False

    # -------------------------------------------------------------------
    # Sanctions
    # -------------------------------------------------------------------

    def create_sanction(self, sanction: Sanction) -> Sanction:
        self.sanctions[sanction.id] = _copy(sanction)
        return sanction

    def list_sanctions(
        self,
        subject_id: uuid.UUID,
        reason: Optional[SanctionReason] = None,
        active_at: Optional[datetime] = None,
    ) -> list[Sanction]:
        rows = [
            _copy(s)
            for s in self.sanctions.values()
            if s.subject_id == subject_id
            and (reason is None or s.reason == reason)
            and (active_at is None or s.is_active(active_at))
        ]
        rows.sort(key=lambda s: s.created_at, reverse=True)
        return rows

    def delete_expired_sanctions(self, now: datetime) -> int:
        expired = [
            sid for sid, s in self.sanctions.items()
            if s.expires_at is not None and s.expires_at < now
        ]
        for sid in expired:
            del self.sanctions[sid]
        return len(expired)
