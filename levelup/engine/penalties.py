"""Penalty engine.

Scores recent neglect as a Penalty Severity Index (PSI) and applies one rung
of an escalating sanction ladder:

    PSI [0, 5)    warning      record only
    PSI [5, 10)   stat_decay   discipline -1, confidence -0.5
    PSI [10, 20)  xp_loss      lose round(psi * 2) XP, expires in 24h
    PSI [20, inf) rank_lock    locked for min(floor(psi / 5), 30) days
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import Callable

from levelup.core.models import (
    Attribute,
    Difficulty,
    PenaltyKind,
    PenaltyResult,
    Sanction,
    SanctionReason,
    SubmissionStatus,
    round_half_up,
    utc_now,
)
from levelup.db.repository import BaseRepository
from levelup.engine.attributes import AttributeEngine
from levelup.engine.experience import ExperienceResolver

logger = logging.getLogger("levelup.engine.penalties")

PSI_WINDOW_DAYS = 7

PSI_DIFFICULTY_WEIGHTS: dict[Difficulty, int] = {
    Difficulty.EASY: 1,
    Difficulty.MEDIUM: 2,
    Difficulty.HARD: 3,
    Difficulty.EXTREME: 4,
}

STAT_DECAY_DELTAS: dict[Attribute, float] = {
    Attribute.DISCIPLINE: -1,
    Attribute.CONFIDENCE: -0.5,
}

XP_LOSS_DURATION = timedelta(hours=24)
MAX_RANK_LOCK_DAYS = 30

PENALTY_DETAILS: dict[PenaltyKind, str] = {
    PenaltyKind.NONE: "No penalty applied.",
    PenaltyKind.WARNING: "Warning issued for missed tasks.",
    PenaltyKind.STAT_DECAY: "Stats reduced due to missed tasks.",
    PenaltyKind.XP_LOSS: "Lost XP due to missed tasks. Penalty expires in 24 hours.",
    PenaltyKind.RANK_LOCK: "Rank progression locked due to severe penalties.",
}


def streak_factor(missed_count: int) -> float:
    return min(missed_count * 0.1 + 1, 2.0)


def compute_psi(difficulties: list[Difficulty]) -> int:
    """floor(sum of difficulty weights * streak factor); 0 for no misses."""
    if not difficulties:
        return 0
    base = sum(PSI_DIFFICULTY_WEIGHTS[d] for d in difficulties)
    return math.floor(base * streak_factor(len(difficulties)))


def rank_lock_days(psi: int) -> int:
    return min(psi // 5, MAX_RANK_LOCK_DAYS)


class PenaltyEngine:
    """Computes PSI and applies sanctions.

    Injected dependencies:
        repository: storage backend.
        attribute_engine: applies stat_decay deltas.
        experience: debits XP for xp_loss.
        clock: returns the current UTC time.
    """

    def __init__(
        self,
        repository: BaseRepository,
        attribute_engine: AttributeEngine,
        experience: ExperienceResolver,
        clock: Callable[[], datetime] = utc_now,
        window_days: int = PSI_WINDOW_DAYS,
    ):
        self.repository = repository
        self.attribute_engine = attribute_engine
        self.experience = experience
        self.clock = clock
        self.window_days = window_days

    def calculate_psi(self, subject_id: uuid.UUID) -> int:
        """PSI over missed submissions created in the trailing window."""
        since = self.clock() - timedelta(days=self.window_days)
        missed = self.repository.list_submissions_with_tasks(
            subject_id, statuses=(SubmissionStatus.MISSED,), since=since
        )
        return compute_psi([task.difficulty for _, task in missed])

    def apply_penalty(self, subject_id: uuid.UUID, psi: int) -> PenaltyKind:
        """Apply the ladder rung for ``psi`` and record a sanction with severity ``psi``."""
        now = self.clock()
        with self.repository.subject_scope(subject_id):
            if psi < 5:
                kind = PenaltyKind.WARNING
                sanction = Sanction(subject_id=subject_id, reason=SanctionReason.MISSED_TASK,
                                    severity=psi, created_at=now)
            elif psi < 10:
                kind = PenaltyKind.STAT_DECAY
                self.attribute_engine.apply_delta(subject_id, STAT_DECAY_DELTAS)
                sanction = Sanction(subject_id=subject_id, reason=SanctionReason.MISSED_TASK,
                                    severity=psi, created_at=now)
            elif psi < 20:
                kind = PenaltyKind.XP_LOSS
                self.experience.add_xp(subject_id, -round_half_up(psi * 2))
                sanction = Sanction(subject_id=subject_id, reason=SanctionReason.XP_LOSS,
                                    severity=psi, expires_at=now + XP_LOSS_DURATION, created_at=now)
            else:
                kind = PenaltyKind.RANK_LOCK
                sanction = Sanction(subject_id=subject_id, reason=SanctionReason.RANK_LOCK,
                                    severity=psi, expires_at=now + timedelta(days=rank_lock_days(psi)),
                                    created_at=now)
            self.repository.create_sanction(sanction)

        logger.info("Subject %s penalized: %s (psi=%d)", subject_id, kind.value, psi)
        return kind

    def apply_miss_penalty(self, subject_id: uuid.UUID) -> PenaltyResult:
        psi = self.calculate_psi(subject_id)
        if psi == 0:
            return PenaltyResult(psi=0, penalty_kind=PenaltyKind.NONE,
                                 details=PENALTY_DETAILS[PenaltyKind.NONE])
        kind = self.apply_penalty(subject_id, psi)
        return PenaltyResult(psi=psi, penalty_kind=kind, details=PENALTY_DETAILS[kind])

    def is_rank_locked(self, subject_id: uuid.UUID) -> bool:
        """True iff an unexpired rank_lock sanction exists."""
        return bool(
            self.repository.list_sanctions(
                subject_id, reason=SanctionReason.RANK_LOCK, active_at=self.clock()
            )
        )

    def get_active_sanctions(self, subject_id: uuid.UUID) -> list[Sanction]:
        return self.repository.list_sanctions(subject_id, active_at=self.clock())

    def cleanup_expired_sanctions(self) -> int:
        """Delete sanctions whose expiry has passed. Returns the number removed."""
        removed = self.repository.delete_expired_sanctions(self.clock())
        if removed:
            logger.info("Removed %d expired sanction(s)", removed)
        return removed
