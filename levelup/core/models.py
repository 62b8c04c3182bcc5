"""All Pydantic data models for LevelUp.

Defines the data contracts used across the engines, the repository and the
orchestrator. Every table row and every oracle message has a model here.
"""

from __future__ import annotations

import enum
import math
import uuid
from datetime import UTC, datetime, time
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


def _new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def utc_now() -> datetime:
    return datetime.now(UTC)


def round_half_up(value: float) -> int:
    """Round halves toward +inf (49.5 -> 50, -0.5 -> 0)."""
    return int(math.floor(value + 0.5))


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min, tzinfo=moment.tzinfo or UTC)


def end_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.max, tzinfo=moment.tzinfo or UTC)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Rank(str, enum.Enum):
    E = "E"
    D = "D"
    C = "C"
    B = "B"
    A = "A"
    S = "S"
    SS = "SS"


class Attribute(str, enum.Enum):
    # Declaration order is the tie-break order for weakest-attribute targeting.
    PHYSICAL = "physical"
    INTELLIGENCE = "intelligence"
    DISCIPLINE = "discipline"
    CHARISMA = "charisma"
    CONFIDENCE = "confidence"
    CREATIVITY = "creativity"


ATTRIBUTE_NAMES: tuple[str, ...] = tuple(a.value for a in Attribute)


class Difficulty(str, enum.Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXTREME = "extreme"


class TaskKind(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    DUNGEON = "dungeon"
    BOSS = "boss"


class SubmissionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    MISSED = "missed"

    @property
    def is_terminal(self) -> bool:
        return self is not SubmissionStatus.PENDING


class SanctionReason(str, enum.Enum):
    MISSED_TASK = "missed_task"
    XP_LOSS = "xp_loss"
    RANK_LOCK = "rank_lock"


class PenaltyKind(str, enum.Enum):
    NONE = "none"
    WARNING = "warning"
    STAT_DECAY = "stat_decay"
    XP_LOSS = "xp_loss"
    RANK_LOCK = "rank_lock"


class VerdictOutcome(str, enum.Enum):
    SUCCESS = "success"
    FAIL = "fail"


# ---------------------------------------------------------------------------
# Database row models
# ---------------------------------------------------------------------------

class Subject(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    name: str = "subject"
    rank: Rank = Rank.E
    level: int = 1
    total_xp: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class AttributeSet(BaseModel):
    subject_id: uuid.UUID
    physical: int = Field(default=50, ge=0, le=100)
    intelligence: int = Field(default=50, ge=0, le=100)
    discipline: int = Field(default=50, ge=0, le=100)
    charisma: int = Field(default=50, ge=0, le=100)
    confidence: int = Field(default=50, ge=0, le=100)
    creativity: int = Field(default=50, ge=0, le=100)
    updated_at: datetime = Field(default_factory=utc_now)

    def get(self, attribute: Attribute | str) -> int:
        return getattr(self, Attribute(attribute).value)

    def as_dict(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in ATTRIBUTE_NAMES}


class Task(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    kind: TaskKind = TaskKind.DAILY
    difficulty: Difficulty
    description: str
    target_attribute: Attribute
    xp_reward: int = Field(ge=0)
    deadline: datetime
    created_at: datetime = Field(default_factory=utc_now)

    def to_wire(self) -> dict[str, object]:
        """Task descriptor as sent to the oracles."""
        return {
            "kind": self.kind.value,
            "difficulty": self.difficulty.value,
            "description": self.description,
            "targetAttribute": self.target_attribute.value,
            "xpReward": self.xp_reward,
            "deadline": self.deadline.isoformat(),
        }


class Submission(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    task_id: uuid.UUID
    subject_id: uuid.UUID
    status: SubmissionStatus = SubmissionStatus.PENDING
    evidence: Optional[str] = None
    verdict_comment: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    resolved_at: Optional[datetime] = None


class Sanction(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    subject_id: uuid.UUID
    reason: SanctionReason
    severity: int = 1
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)

    def is_active(self, at: datetime) -> bool:
        return self.expires_at is None or self.expires_at > at


# ---------------------------------------------------------------------------
# Verdicts (judge contract)
# ---------------------------------------------------------------------------

class Verdict(BaseModel):
    """Validated or fallback outcome of judging a submission. Never persisted."""
    outcome: VerdictOutcome
    xp: int = Field(ge=0)
    attribute_deltas: dict[Attribute, int] = Field(default_factory=dict)
    comment: str = ""
    fallback: bool = False

    @model_validator(mode="after")
    def _check_outcome_invariants(self) -> "Verdict":
        if self.outcome == VerdictOutcome.FAIL:
            if self.xp != 0 or self.attribute_deltas:
                raise ValueError("a fail verdict carries no xp and no attribute deltas")
        elif self.xp <= 0:
            raise ValueError("a success verdict must award xp > 0")
        return self

    @property
    def succeeded(self) -> bool:
        return self.outcome == VerdictOutcome.SUCCESS


class ValidVerdict(BaseModel):
    kind: Literal["valid"] = "valid"
    verdict: Verdict


class InvalidVerdict(BaseModel):
    kind: Literal["invalid"] = "invalid"
    reason: str


VerdictValidation = Union[ValidVerdict, InvalidVerdict]


# ---------------------------------------------------------------------------
# Oracle messages
# ---------------------------------------------------------------------------

class JudgeRequest(BaseModel):
    task: Task
    attributes: AttributeSet
    evidence: str

    def to_wire(self) -> dict[str, object]:
        return {
            "task": self.task.to_wire(),
            "attributes": self.attributes.as_dict(),
            "evidence": self.evidence,
        }


class QuestRequest(BaseModel):
    attributes: AttributeSet
    recent_failure_count: int
    rank: Rank
    target_attribute: Attribute
    desired_difficulty: Difficulty

    def to_wire(self) -> dict[str, object]:
        return {
            "attributes": self.attributes.as_dict(),
            "recentFailureCount": self.recent_failure_count,
            "rank": self.rank.value,
            "targetAttribute": self.target_attribute.value,
            "desiredDifficulty": self.desired_difficulty.value,
        }


class QuestSuggestion(BaseModel):
    kind: TaskKind = TaskKind.DAILY
    description: str
    difficulty: Difficulty
    target_attribute: Attribute  # advisory only, always overridden


# ---------------------------------------------------------------------------
# Engine / orchestrator results
# ---------------------------------------------------------------------------

class PenaltyResult(BaseModel):
    psi: int
    penalty_kind: PenaltyKind
    details: str


class TaskCounts(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0
    missed: int = 0
    pending: int = 0

    @property
    def success_rate(self) -> float:
        return (self.completed / self.total) * 100 if self.total > 0 else 0.0


class TaskStats(BaseModel):
    overall: TaskCounts = Field(default_factory=TaskCounts)
    recent: TaskCounts = Field(default_factory=TaskCounts)


class SubjectStatus(BaseModel):
    subject: Subject
    attributes: Optional[AttributeSet] = None
    rank_progress: int = 0
    xp_for_next_level: int = 0
    rank_locked: bool = False
    active_sanctions: list[Sanction] = Field(default_factory=list)


class SubjectRunResult(BaseModel):
    subject_id: uuid.UUID
    success: bool = True
    auto_resolved: int = 0
    decay_applied: bool = False
    missed: int = 0
    penalty: Optional[PenaltyResult] = None
    generated_task_id: Optional[uuid.UUID] = None
    error: Optional[str] = None


class DailyRunReport(BaseModel):
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    results: list[SubjectRunResult] = Field(default_factory=list)
    sanctions_cleaned: int = 0

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()


