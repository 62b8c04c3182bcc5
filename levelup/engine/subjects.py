"""Subject creation and status views."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable

from levelup.core.exceptions import NotFoundError
from levelup.core.models import AttributeSet, Subject, SubjectStatus, utc_now
from levelup.db.repository import BaseRepository
from levelup.engine.experience import get_rank_progress, get_xp_for_next_level
from levelup.engine.penalties import PenaltyEngine

logger = logging.getLogger("levelup.engine.subjects")


class SubjectService:
    def __init__(
        self,
        repository: BaseRepository,
        penalties: PenaltyEngine,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.penalties = penalties
        self.clock = clock

    def create_subject(self, name: str) -> Subject:
        """Create a rank E, level 1 subject with every attribute at 50."""
        now = self.clock()
        subject = Subject(name=name, created_at=now, updated_at=now)
        attributes = AttributeSet(subject_id=subject.id, updated_at=now)
        self.repository.create_subject(subject, attributes)
        logger.info("Created subject %s (%s)", subject.id, name)
        return subject

    def get_status(self, subject_id: uuid.UUID) -> SubjectStatus:
        subject = self.repository.get_subject(subject_id)
        if subject is None:
            raise NotFoundError("Subject", subject_id)
        sanctions = self.penalties.get_active_sanctions(subject_id)
        return SubjectStatus(
            subject=subject,
            attributes=self.repository.get_attributes(subject_id),
            rank_progress=get_rank_progress(subject.total_xp),
            xp_for_next_level=get_xp_for_next_level(subject.level),
            rank_locked=self.penalties.is_rank_locked(subject_id),
            active_sanctions=sanctions,
        )
