"""Attribute engine.

Six integer attributes per subject, each clamped to [0, 100]. Changes are
always relative deltas; the stored value is ``round(clamp(old + delta))``,
so fractional deltas (daily decay, stat penalties) only show once they cross
a rounding boundary in a single application.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Mapping, Optional

from levelup.core.exceptions import NotFoundError
from levelup.core.models import (
    ATTRIBUTE_NAMES,
    Attribute,
    AttributeSet,
    SubmissionStatus,
    TaskKind,
    end_of_day,
    round_half_up,
    start_of_day,
    utc_now,
)
from levelup.db.repository import BaseRepository

logger = logging.getLogger("levelup.engine.attributes")

ATTRIBUTE_MIN = 0
ATTRIBUTE_MAX = 100

DAILY_DECAY_RATES: dict[Attribute, float] = {
    Attribute.DISCIPLINE: -0.2,
    Attribute.PHYSICAL: -0.1,
    Attribute.INTELLIGENCE: -0.05,
    Attribute.CONFIDENCE: -0.1,
    Attribute.CHARISMA: -0.05,
    Attribute.CREATIVITY: -0.05,
}


def clamp_attribute(value: float) -> int:
    return round_half_up(max(ATTRIBUTE_MIN, min(ATTRIBUTE_MAX, value)))


def weakest_attribute(attributes: AttributeSet) -> Attribute:
    """Attribute with the strictly lowest value; ties go to the earliest in Attribute order."""
    weakest = Attribute.PHYSICAL
    lowest = attributes.get(weakest)
    for attribute in Attribute:
        value = attributes.get(attribute)
        if value < lowest:
            weakest, lowest = attribute, value
    return weakest


def _normalize_deltas(deltas: Mapping[Attribute | str, float]) -> dict[str, float]:
    normalized: dict[str, float] = {}
    for key, delta in deltas.items():
        name = key.value if isinstance(key, Attribute) else str(key)
        if name not in ATTRIBUTE_NAMES:
            raise ValueError(f"Unknown attribute: {name}")
        normalized[name] = normalized.get(name, 0) + delta
    return normalized


class AttributeEngine:
    """Applies deltas and daily decay to a subject's AttributeSet.

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

    def get_attributes(self, subject_id: uuid.UUID) -> AttributeSet:
        attributes = self.repository.get_attributes(subject_id)
        if attributes is None:
            raise NotFoundError("AttributeSet", subject_id)
        return attributes

    def apply_delta(
        self, subject_id: uuid.UUID, deltas: Mapping[Attribute | str, float]
    ) -> AttributeSet:
        """Apply relative changes, clamping each touched attribute to [0, 100].

        Args:
            subject_id: Subject whose attributes change.
            deltas: e.g. {"discipline": -1, "confidence": -0.5}. Attributes
                not named are left alone.

        Raises:
            NotFoundError: subject has no AttributeSet.
            ValueError: a key is not one of the six attribute names.
        """
        changes = _normalize_deltas(deltas)
        with self.repository.subject_scope(subject_id):
            current = self.get_attributes(subject_id)
            updates: dict[str, object] = {
                name: clamp_attribute(getattr(current, name) + delta)
                for name, delta in changes.items()
            }
            updates["updated_at"] = self.clock()
            updated = current.model_copy(update=updates)
            self.repository.save_attributes(updated)

        logger.debug("Subject %s attributes %s -> %s", subject_id, changes, updated.as_dict())
        return updated

    def has_completed_daily_today(self, subject_id: uuid.UUID) -> bool:
        """True if a daily task submission was completed during the current UTC day."""
        now = self.clock()
        return self.repository.has_resolved_submission(
            subject_id,
            status=SubmissionStatus.COMPLETED,
            kind=TaskKind.DAILY,
            start=start_of_day(now),
            end=end_of_day(now),
        )

    def apply_daily_decay(self, subject_id: uuid.UUID) -> Optional[AttributeSet]:
        """Apply the fixed daily decay rates.

        Returns None, and changes nothing, when the subject completed a daily
        task today.
        """
        if self.has_completed_daily_today(subject_id):
            logger.info("Subject %s completed a daily task today; decay skipped", subject_id)
            return None
        return self.apply_delta(subject_id, DAILY_DECAY_RATES)
