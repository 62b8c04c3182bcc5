"""Experience and rank resolution.

Level and rank are pure functions of a subject's lifetime XP. ``add_xp`` is
the only writer of ``total_xp``/``level``/``rank`` after creation.

Ranks:   E [0, 999]  D [1000, 4999]  C [5000, 14999]  B [15000, 39999]
         A [40000, 99999]  S [100000, 249999]  SS [250000, inf)
Levels:  xp_required(level) = round(100 * level ** 1.5), 1-indexed, never
         reset across rank boundaries.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from levelup.core.exceptions import NotFoundError
from levelup.core.models import Rank, Subject, round_half_up, utc_now
from levelup.db.repository import BaseRepository

logger = logging.getLogger("levelup.engine.experience")

# (rank, min_xp, max_xp inclusive); None means unbounded.
RANK_XP_THRESHOLDS: tuple[tuple[Rank, int, Optional[int]], ...] = (
    (Rank.E, 0, 999),
    (Rank.D, 1000, 4999),
    (Rank.C, 5000, 14999),
    (Rank.B, 15000, 39999),
    (Rank.A, 40000, 99999),
    (Rank.S, 100000, 249999),
    (Rank.SS, 250000, None),
)


def calculate_xp_required(level: int) -> int:
    """XP needed to reach ``level`` (1-based)."""
    if level < 1:
        raise ValueError("Level must be >= 1")
    return round_half_up(100 * level ** 1.5)


def calculate_level(total_xp: int) -> int:
    """Largest level >= 1 whose requirement is covered by ``total_xp``.

    Starts from the inverse of the requirement curve, then corrects for
    rounding.
    """
    if total_xp < calculate_xp_required(2):
        return 1
    level = max(1, int((total_xp / 100) ** (2 / 3)))
    while level > 1 and calculate_xp_required(level) > total_xp:
        level -= 1
    while calculate_xp_required(level + 1) <= total_xp:
        level += 1
    return level


def calculate_rank(total_xp: int) -> Rank:
    """Rank for a lifetime XP total. Negative XP (after penalties) is rank E."""
    if total_xp < 0:
        return Rank.E
    for rank, low, high in RANK_XP_THRESHOLDS:
        if total_xp >= low and (high is None or total_xp <= high):
            return rank
    return Rank.E


def _rank_bounds(rank: Rank) -> tuple[int, Optional[int]]:
    for candidate, low, high in RANK_XP_THRESHOLDS:
        if candidate == rank:
            return low, high
    raise ValueError(f"Unknown rank: {rank}")


def get_rank_progress(total_xp: int) -> int:
    """Percentage (0-100) of the way through the current rank. SS is always 100."""
    low, high = _rank_bounds(calculate_rank(total_xp))
    if high is None:
        return 100
    progress = max(total_xp, low) - low
    return round_half_up(progress / (high - low) * 100)


def get_xp_for_next_level(current_level: int) -> int:
    return calculate_xp_required(current_level + 1)


class ExperienceResolver:
    """Owns the lifetime XP counter and the derived level/rank.

    Injected dependencies:
        repository: storage backend.
        clock: returns the current UTC time.
    """

    def __init__(
        self,
        repository: BaseRepository,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.clock = clock

    def add_xp(self, subject_id: uuid.UUID, amount: int) -> Subject:
        """Add (or, with a negative amount, debit) XP and recompute level and rank.

        Raises:
            NotFoundError: unknown subject.
        """
        with self.repository.subject_scope(subject_id):
            subject = self.repository.get_subject(subject_id)
            if subject is None:
                raise NotFoundError("Subject", subject_id)
            if amount == 0:
                return subject

            total_xp = subject.total_xp + amount
            level = calculate_level(total_xp)
            rank = calculate_rank(total_xp)
            updated = self.repository.update_subject_progress(
                subject_id, total_xp=total_xp, level=level, rank=rank, updated_at=self.clock()
            )
            if updated is None:
                raise NotFoundError("Subject", subject_id)

        if rank != subject.rank:
            logger.info("Subject %s rank %s -> %s (%d xp)",
                        subject_id, subject.rank.value, rank.value, total_xp)
        logger.debug("Subject %s xp %+d -> %d (level %d)", subject_id, amount, total_xp, level)
        return updated
