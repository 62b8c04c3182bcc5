"""Tests for levelup/engine/attributes.py: clamped deltas and daily decay."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from levelup.core.exceptions import NotFoundError
from levelup.core.models import (
    Attribute,
    AttributeSet,
    Difficulty,
    Submission,
    SubmissionStatus,
    Task,
    TaskKind,
)
from levelup.engine.attributes import DAILY_DECAY_RATES, clamp_attribute, weakest_attribute


class TestClamp:
    @pytest.mark.parametrize(
        "value, expected",
        [(-5, 0), (0, 0), (49.5, 50), (49.4, 49), (100.4, 100), (250, 100)],
    )
    def test_clamp_attribute(self, value, expected):
        assert clamp_attribute(value) == expected


class TestWeakestAttribute:
    def test_strict_lowest(self):
        attrs = AttributeSet(subject_id=uuid.uuid4(), creativity=10, discipline=20)
        assert weakest_attribute(attrs) == Attribute.CREATIVITY

    def test_ties_go_to_declaration_order(self):
        attrs = AttributeSet(subject_id=uuid.uuid4(), charisma=10, confidence=10)
        assert weakest_attribute(attrs) == Attribute.CHARISMA

    def test_all_equal_is_physical(self):
        assert weakest_attribute(AttributeSet(subject_id=uuid.uuid4())) == Attribute.PHYSICAL


class TestApplyDelta:
    def test_only_named_attributes_change(self, attributes, subject):
        updated = attributes.apply_delta(subject.id, {"physical": 3, Attribute.DISCIPLINE: -2})
        assert updated.physical == 53
        assert updated.discipline == 48
        assert updated.charisma == 50

    def test_clamps_at_bounds(self, attributes, subject):
        assert attributes.apply_delta(subject.id, {"physical": 500}).physical == 100
        assert attributes.apply_delta(subject.id, {"physical": -500}).physical == 0

    def test_half_rounds_up(self, attributes, subject):
        assert attributes.apply_delta(subject.id, {"confidence": -0.5}).confidence == 50
        assert attributes.apply_delta(subject.id, {"confidence": -0.6}).confidence == 49

    def test_persists(self, attributes, subject, repository):
        attributes.apply_delta(subject.id, {"creativity": 7})
        assert repository.get_attributes(subject.id).creativity == 57

    def test_unknown_attribute_rejected(self, attributes, subject, repository):
        with pytest.raises(ValueError):
            attributes.apply_delta(subject.id, {"luck": 1})
        assert repository.get_attributes(subject.id).as_dict() == AttributeSet(
            subject_id=subject.id
        ).as_dict()

    def test_missing_subject(self, attributes):
        with pytest.raises(NotFoundError):
            attributes.apply_delta(uuid.uuid4(), {"physical": 1})


def _completed_daily(repository, subject_id, resolved_at: datetime) -> None:
    task = Task(
        kind=TaskKind.DAILY,
        difficulty=Difficulty.EASY,
        description="Stretch",
        target_attribute=Attribute.PHYSICAL,
        xp_reward=20,
        deadline=resolved_at + timedelta(hours=1),
        created_at=resolved_at - timedelta(hours=1),
    )
    repository.create_task(task)
    repository.create_submission(
        Submission(
            task_id=task.id,
            subject_id=subject_id,
            status=SubmissionStatus.COMPLETED,
            evidence="done",
            created_at=task.created_at,
            resolved_at=resolved_at,
        )
    )


class TestDailyDecay:
    def test_decay_rates(self):
        assert DAILY_DECAY_RATES[Attribute.DISCIPLINE] == -0.2
        assert DAILY_DECAY_RATES[Attribute.PHYSICAL] == -0.1
        assert DAILY_DECAY_RATES[Attribute.CREATIVITY] == -0.05

    def test_small_rates_absorbed_by_rounding(self, attributes, subject):
        updated = attributes.apply_daily_decay(subject.id)
        assert updated is not None
        assert updated.as_dict() == AttributeSet(subject_id=subject.id).as_dict()

    def test_small_rate_never_crosses_boundary_on_integers(self, attributes, subject, repository):
        current = repository.get_attributes(subject.id)
        repository.save_attributes(current.model_copy(update={"discipline": 10}))
        # 10 - 0.2 = 9.8 -> 10, no visible loss even at low values
        assert attributes.apply_daily_decay(subject.id).discipline == 10

    def test_skipped_when_daily_completed_today(self, attributes, subject, repository, clock):
        _completed_daily(repository, subject.id, resolved_at=clock() - timedelta(hours=2))
        assert attributes.has_completed_daily_today(subject.id)
        assert attributes.apply_daily_decay(subject.id) is None

    def test_applies_when_completed_yesterday(self, attributes, subject, repository, clock):
        _completed_daily(repository, subject.id, resolved_at=clock() - timedelta(days=1))
        assert not attributes.has_completed_daily_today(subject.id)
        assert attributes.apply_daily_decay(subject.id) is not None

    def test_non_daily_kind_does_not_count(self, attributes, subject, repository, clock):
        task = Task(
            kind=TaskKind.WEEKLY,
            difficulty=Difficulty.MEDIUM,
            description="Long run",
            target_attribute=Attribute.PHYSICAL,
            xp_reward=50,
            deadline=clock() + timedelta(days=3),
        )
        repository.create_task(task)
        repository.create_submission(
            Submission(task_id=task.id, subject_id=subject.id,
                       status=SubmissionStatus.COMPLETED, resolved_at=clock())
        )
        assert not attributes.has_completed_daily_today(subject.id)

    def test_day_boundary_is_utc(self, attributes, subject, repository, clock):
        clock.set(datetime(2025, 6, 16, 0, 30, tzinfo=UTC))
        _completed_daily(repository, subject.id, resolved_at=datetime(2025, 6, 15, 23, 50, tzinfo=UTC))
        assert not attributes.has_completed_daily_today(subject.id)
