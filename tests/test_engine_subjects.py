"""Tests for levelup/engine/subjects.py: subject creation and status."""

import uuid

import pytest

from levelup.core.exceptions import NotFoundError
from levelup.core.models import Rank


class TestSubjectService:
    def test_create_defaults(self, subjects, repository, clock):
        subject = subjects.create_subject("alex")
        stored = repository.get_subject(subject.id)
        assert stored.name == "alex"
        assert (stored.rank, stored.level, stored.total_xp) == (Rank.E, 1, 0)
        assert stored.created_at == clock()
        assert set(repository.get_attributes(subject.id).as_dict().values()) == {50}

    def test_status(self, subjects, subject, experience, penalties):
        experience.add_xp(subject.id, 3000)
        penalties.apply_penalty(subject.id, 21)

        status = subjects.get_status(subject.id)
        assert status.subject.total_xp == 3000
        assert status.subject.rank == Rank.D
        assert status.rank_progress == 50
        assert status.xp_for_next_level == 3162
        assert status.rank_locked is True
        assert len(status.active_sanctions) == 1
        assert status.attributes.physical == 50

    def test_status_unknown_subject(self, subjects):
        with pytest.raises(NotFoundError):
            subjects.get_status(uuid.uuid4())
