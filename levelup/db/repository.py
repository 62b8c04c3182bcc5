"""Data access layer for LevelUp.

All SQL queries live here. Engines never write raw SQL: they call Repository
methods that return Pydantic models. ``BaseRepository`` is the storage
contract; ``Repository`` implements it on PostgreSQL and
``levelup.db.memory.InMemoryRepository`` implements it in process.

Every read-modify-write of subject state runs inside ``subject_scope()``,
which opens a transaction (a savepoint when nested) and serializes writers
for that subject.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, Optional

from levelup.core.models import (
    AttributeSet,
    Attribute,
    Difficulty,
    Rank,
    Sanction,
    SanctionReason,
    Subject,
    Submission,
    SubmissionStatus,
    Task,
    TaskKind,
)
from levelup.db.engine import DatabaseEngine


class BaseRepository(ABC):
    """Storage contract shared by all backends."""

    # -------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[None]:
        """All-or-nothing block. Nested blocks behave as savepoints."""

    @abstractmethod
    @contextmanager
    def subject_scope(self, subject_id: uuid.UUID) -> Iterator[None]:
        """Transaction holding the per-subject write lock."""

    # -------------------------------------------------------------------
    # Subjects & attributes
    # -------------------------------------------------------------------

    @abstractmethod
    def create_subject(self, subject: Subject, attributes: AttributeSet) -> Subject: ...

    @abstractmethod
    def get_subject(self, subject_id: uuid.UUID) -> Optional[Subject]: ...

    @abstractmethod
    def list_subjects(self) -> list[Subject]: ...

    @abstractmethod
    def update_subject_progress(
        self,
        subject_id: uuid.UUID,
        total_xp: int,
        level: int,
        rank: Rank,
        updated_at: datetime,
    ) -> Optional[Subject]: ...

    @abstractmethod
    def get_attributes(self, subject_id: uuid.UUID) -> Optional[AttributeSet]: ...

    @abstractmethod
    def save_attributes(self, attributes: AttributeSet) -> AttributeSet: ...

    # -------------------------------------------------------------------
    # Tasks & submissions
    # -------------------------------------------------------------------

    @abstractmethod
    def create_task(self, task: Task) -> Task: ...

    @abstractmethod
    def get_task(self, task_id: uuid.UUID) -> Optional[Task]: ...

    @abstractmethod
    def create_submission(self, submission: Submission) -> Submission: ...

    @abstractmethod
    def get_submission(self, submission_id: uuid.UUID) -> Optional[Submission]: ...

    @abstractmethod
    def find_pending_submission(
        self, task_id: uuid.UUID, subject_id: uuid.UUID
    ) -> Optional[Submission]: ...

    @abstractmethod
    def update_submission(self, submission: Submission) -> Submission:
        """Persist status, evidence, verdict comment and timestamps."""

    @abstractmethod
    def list_submissions_with_tasks(
        self,
        subject_id: uuid.UUID,
        statuses: Optional[Iterable[SubmissionStatus]] = None,
        since: Optional[datetime] = None,
    ) -> list[tuple[Submission, Task]]:
        """Submissions (newest first) joined to their task, optionally filtered
        by status and by ``created_at >= since``."""

    @abstractmethod
    def mark_submissions_missed(
        self, submission_ids: list[uuid.UUID], at: datetime
    ) -> int:
        """Bulk pending -> missed. Returns number of rows changed."""

    @abstractmethod
    def has_resolved_submission(
        self,
        subject_id: uuid.UUID,
        status: SubmissionStatus,
        kind: TaskKind,
        start: datetime,
        end: datetime,
    ) -> bool:
        """True if a submission of the given status and task kind was resolved in [start, end]."""

    # -------------------------------------------------------------------
    # Sanctions
    # -------------------------------------------------------------------

    @abstractmethod
    def create_sanction(self, sanction: Sanction) -> Sanction: ...

    @abstractmethod
    def list_sanctions(
        self,
        subject_id: uuid.UUID,
        reason: Optional[SanctionReason] = None,
        active_at: Optional[datetime] = None,
    ) -> list[Sanction]:
        """Sanctions newest first; with ``active_at`` only unexpired or permanent ones."""

    @abstractmethod
    def delete_expired_sanctions(self, now: datetime) -> int: ...


class Repository(BaseRepository):
    """PostgreSQL repository wrapping DatabaseEngine with typed methods."""

    def __init__(self, engine: DatabaseEngine):
        self.engine = engine

    # -------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self.engine.transaction():
            yield

    @contextmanager
    def subject_scope(self, subject_id: uuid.UUID) -> Iterator[None]:
        with self.engine.transaction():
            # Row lock held until the outermost transaction ends.
            self.engine.fetch_one(
                "SELECT id FROM subjects WHERE id = %s FOR UPDATE", [str(subject_id)]
            )
            yield

    # -------------------------------------------------------------------
    # Subjects & attributes
    # -------------------------------------------------------------------

    def create_subject(self, subject: Subject, attributes: AttributeSet) -> Subject:
        with self.engine.transaction():
            self.engine.execute(
                """INSERT INTO subjects (id, name, rank, level, total_xp, created_at, updated_at)
                   VALUES (%s, %s, %s, %s, %s, %s, %s)""",
                [
                    str(subject.id),
                    subject.name,
                    subject.rank.value,
                    subject.level,
                    subject.total_xp,
                    subject.created_at,
                    subject.updated_at,
                ],
            )
            self.engine.execute(
                """INSERT INTO attribute_sets
                   (subject_id, physical, intelligence, discipline, charisma,
                    confidence, creativity, updated_at)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s)""",
                [
                    str(subject.id),
                    attributes.physical,
                    attributes.intelligence,
                    attributes.discipline,
                    attributes.charisma,
                    attributes.confidence,
                    attributes.creativity,
                    attributes.updated_at,
                ],
            )
        return subject

    def get_subject(self, subject_id: uuid.UUID) -> Optional[Subject]:
        row = self.engine.fetch_one("SELECT * FROM subjects WHERE id = %s", [str(subject_id)])
        if row is None:
            return None
        return _row_to_subject(row)

    def list_subjects(self) -> list[Subject]:
        rows = self.engine.fetch_all("SELECT * FROM subjects ORDER BY created_at ASC")
        return [_row_to_subject(r) for r in rows]

    def update_subject_progress(
        self,
        subject_id: uuid.UUID,
        total_xp: int,
        level: int,
        rank: Rank,
        updated_at: datetime,
    ) -> Optional[Subject]:
        row = self.engine.fetch_one(
            """UPDATE subjects
               SET total_xp = %s, level = %s, rank = %s, updated_at = %s
               WHERE id = %s
               RETURNING *""",
            [total_xp, level, rank.value, updated_at, str(subject_id)],
        )
        if row is None:
            return None
        return _row_to_subject(row)

    def get_attributes(self, subject_id: uuid.UUID) -> Optional[AttributeSet]:
        row = self.engine.fetch_one(
            "SELECT * FROM attribute_sets WHERE subject_id = %s", [str(subject_id)]
        )
        if row is None:
            return None
        return _row_to_attributes(row)

    def save_attributes(self, attributes: AttributeSet) -> AttributeSet:
        self.engine.execute(
            """UPDATE attribute_sets
               SET physical = %s, intelligence = %s, discipline = %s, charisma = %s,
                   confidence = %s, creativity = %s, updated_at = %s
               WHERE subject_id = %s""",
            [
                attributes.physical,
                attributes.intelligence,
                attributes.discipline,
                attributes.charisma,
                attributes.confidence,
                attributes.creativity,
                attributes.updated_at,
                str(attributes.subject_id),
            ],
        )
        return attributes

    # -------------------------------------------------------------------
    # Tasks & submissions
    # -------------------------------------------------------------------

    def create_task(self, task: Task) -> Task:
        self.engine.execute(
            """INSERT INTO tasks
               (id, kind, difficulty, description, target_attribute, xp_reward, deadline, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s)""",
            [
                str(task.id),
                task.kind.value,
                task.difficulty.value,
                task.description,
                task.target_attribute.value,
                task.xp_reward,
                task.deadline,
                task.created_at,
            ],
        )
        return task

    def get_task(self, task_id: uuid.UUID) -> Optional[Task]:
        row = self.engine.fetch_one("SELECT * FROM tasks WHERE id = %s", [str(task_id)])
        if row is None:
            return None
        return _row_to_task(row)

    def create_submission(self, submission: Submission) -> Submission:
        self.engine.execute(
            """INSERT INTO submissions
               (id, task_id, subject_id, status, evidence, verdict_comment,
                created_at, updated_at, resolved_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            [
                str(submission.id),
                str(submission.task_id),
                str(submission.subject_id),
                submission.status.value,
                submission.evidence,
                submission.verdict_comment,
                submission.created_at,
                submission.updated_at,
                submission.resolved_at,
            ],
        )
        return submission

    def get_submission(self, submission_id: uuid.UUID) -> Optional[Submission]:
        row = self.engine.fetch_one(
            "SELECT * FROM submissions WHERE id = %s", [str(submission_id)]
        )
        if row is None:
            return None
        return _row_to_submission(row)

    def find_pending_submission(
        self, task_id: uuid.UUID, subject_id: uuid.UUID
    ) -> Optional[Submission]:
        row = self.engine.fetch_one(
            """SELECT * FROM submissions
               WHERE task_id = %s AND subject_id = %s AND status = 'pending'
               LIMIT 1""",
            [str(task_id), str(subject_id)],
        )
        if row is None:
            return None
        return _row_to_submission(row)

    def update_submission(self, submission: Submission) -> Submission:
        self.engine.execute(
            """UPDATE submissions
               SET status = %s, evidence = %s, verdict_comment = %s,
                   updated_at = %s, resolved_at = %s
               WHERE id = %s""",
            [
                submission.status.value,
                submission.evidence,
                submission.verdict_comment,
                submission.updated_at,
                submission.resolved_at,
                str(submission.id),
            ],
        )
        return submission

    def list_submissions_with_tasks(
        self,
        subject_id: uuid.UUID,
        statuses: Optional[Iterable[SubmissionStatus]] = None,
        since: Optional[datetime] = None,
    ) -> list[tuple[Submission, Task]]:
        clauses = ["s.subject_id = %s"]
        params: list[object] = [str(subject_id)]
        if statuses is not None:
            clauses.append("s.status = ANY(%s)")
            params.append([st.value for st in statuses])
        if since is not None:
            clauses.append("s.created_at >= %s")
            params.append(since)

        rows = self.engine.fetch_all(
            f"""SELECT s.*,
                       t.kind AS t_kind, t.difficulty AS t_difficulty,
                       t.description AS t_description,
                       t.target_attribute AS t_target_attribute,
                       t.xp_reward AS t_xp_reward, t.deadline AS t_deadline,
                       t.created_at AS t_created_at
                FROM submissions s
                JOIN tasks t ON t.id = s.task_id
                WHERE {' AND '.join(clauses)}
                ORDER BY s.created_at DESC""",
            params,
        )
        return [(_row_to_submission(r), _joined_row_to_task(r)) for r in rows]

    def mark_submissions_missed(
        self, submission_ids: list[uuid.UUID], at: datetime
    ) -> int:
        if not submission_ids:
            return 0
        return self.engine.execute(
            """UPDATE submissions
               SET status = 'missed', updated_at = %s, resolved_at = %s
               WHERE id = ANY(%s) AND status = 'pending'""",
            [at, at, [str(i) for i in submission_ids]],
        )

    def has_resolved_submission(
        self,
        subject_id: uuid.UUID,
        status: SubmissionStatus,
        kind: TaskKind,
        start: datetime,
        end: datetime,
    ) -> bool:
        row = self.engine.fetch_one(
            """SELECT COUNT(*) AS cnt
               FROM submissions s
               JOIN tasks t ON t.id = s.task_id
               WHERE s.subject_id = %s AND s.status = %s AND t.kind = %s
                 AND s.resolved_at BETWEEN %s AND %s""",
            [str(subject_id), status.value, kind.value, start, end],
        )
        return (row["cnt"] if row else 0) > 0

    # -------------------------------------------------------------------
    # Sanctions
    # -------------------------------------------------------------------

    def create_sanction(self, sanction: Sanction) -> Sanction:
        self.engine.execute(
            """INSERT INTO sanctions (id, subject_id, reason, severity, expires_at, created_at)
               VALUES (%s, %s, %s, %s, %s, %s)""",
            [
                str(sanction.id),
                str(sanction.subject_id),
                sanction.reason.value,
                sanction.severity,
                sanction.expires_at,
                sanction.created_at,
            ],
        )
        return sanction

    def list_sanctions(
        self,
        subject_id: uuid.UUID,
        reason: Optional[SanctionReason] = None,
        active_at: Optional[datetime] = None,
    ) -> list[Sanction]:
        clauses = ["subject_id = %s"]
        params: list[object] = [str(subject_id)]
        if reason is not None:
            clauses.append("reason = %s")
            params.append(reason.value)
        if active_at is not None:
            clauses.append("(expires_at IS NULL OR expires_at > %s)")
            params.append(active_at)
        rows = self.engine.fetch_all(
            f"SELECT * FROM sanctions WHERE {' AND '.join(clauses)} ORDER BY created_at DESC",
            params,
        )
        return [_row_to_sanction(r) for r in rows]

    def delete_expired_sanctions(self, now: datetime) -> int:
        return self.engine.execute(
            "DELETE FROM sanctions WHERE expires_at IS NOT NULL AND expires_at < %s",
            [now],
        )


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------

def _row_to_subject(row: dict) -> Subject:
    return Subject(
        id=uuid.UUID(str(row["id"])),
        name=row.get("name", "subject"),
        rank=Rank(row["rank"]),
        level=row["level"],
        total_xp=row["total_xp"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_attributes(row: dict) -> AttributeSet:
    return AttributeSet(
        subject_id=uuid.UUID(str(row["subject_id"])),
        physical=row["physical"],
        intelligence=row["intelligence"],
        discipline=row["discipline"],
        charisma=row["charisma"],
        confidence=row["confidence"],
        creativity=row["creativity"],
        updated_at=row["updated_at"],
    )


def _row_to_task(row: dict) -> Task:
    return Task(
        id=uuid.UUID(str(row["id"])),
        kind=TaskKind(row["kind"]),
        difficulty=Difficulty(row["difficulty"]),
        description=row["description"],
        target_attribute=Attribute(row["target_attribute"]),
        xp_reward=row["xp_reward"],
        deadline=row["deadline"],
        created_at=row["created_at"],
    )


def _joined_row_to_task(row: dict) -> Task:
    return Task(
        id=uuid.UUID(str(row["task_id"])),
        kind=TaskKind(row["t_kind"]),
        difficulty=Difficulty(row["t_difficulty"]),
        description=row["t_description"],
        target_attribute=Attribute(row["t_target_attribute"]),
        xp_reward=row["t_xp_reward"],
        deadline=row["t_deadline"],
        created_at=row["t_created_at"],
    )


def _row_to_submission(row: dict) -> Submission:
    return Submission(
        id=uuid.UUID(str(row["id"])),
        task_id=uuid.UUID(str(row["task_id"])),
        subject_id=uuid.UUID(str(row["subject_id"])),
        status=SubmissionStatus(row["status"]),
        evidence=row.get("evidence"),
        verdict_comment=row.get("verdict_comment"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        resolved_at=row.get("resolved_at"),
    )


def _row_to_sanction(row: dict) -> Sanction:
    return Sanction(
        id=uuid.UUID(str(row["id"])),
        subject_id=uuid.UUID(str(row["subject_id"])),
        reason=SanctionReason(row["reason"]),
        severity=row["severity"],
        expires_at=row.get("expires_at"),
        created_at=row["created_at"],
    )
