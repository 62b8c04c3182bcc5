"""Tests for levelup/engine/penalties.py: PSI and the sanction ladder."""

from datetime import timedelta

import pytest

from levelup.core.models import (
    Attribute,
    Difficulty,
    PenaltyKind,
    SanctionReason,
    Submission,
    SubmissionStatus,
    Task,
)
from levelup.engine.penalties import compute_psi, rank_lock_days, streak_factor


def _add_missed(repository, subject_id, difficulty, created_at):
    task = Task(
        difficulty=difficulty,
        description="Missed task",
        target_attribute=Attribute.DISCIPLINE,
        xp_reward=20,
        deadline=created_at + timedelta(hours=12),
        created_at=created_at,
    )
    repository.create_task(task)
    repository.create_submission(
        Submission(
            task_id=task.id,
            subject_id=subject_id,
            status=SubmissionStatus.MISSED,
            created_at=created_at,
            resolved_at=created_at + timedelta(hours=12),
        )
    )


class TestPsiFormula:
    def test_streak_factor_caps(self):
        assert streak_factor(1) == pytest.approx(1.1)
        assert streak_factor(5) == pytest.approx(1.5)
        assert streak_factor(10) == 2.0
        assert streak_factor(40) == 2.0

    @pytest.mark.parametrize(
        "difficulties, psi",
        [
            ([], 0),
            ([Difficulty.EASY], 1),
            ([Difficulty.EASY] * 2, 2),
            ([Difficulty.HARD] * 3, 11),
            ([Difficulty.EXTREME] * 10, 80),
            ([Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD, Difficulty.EXTREME], 14),
        ],
    )
    def test_compute_psi(self, difficulties, psi):
        assert compute_psi(difficulties) == psi

    def test_monotonic_in_count_and_difficulty(self):
        history = []
        previous = 0
        for difficulty in [Difficulty.EASY, Difficulty.HARD, Difficulty.MEDIUM, Difficulty.EXTREME] * 4:
            history.append(difficulty)
            psi = compute_psi(history)
            assert psi >= previous
            previous = psi
        harder = [Difficulty.EXTREME if d == Difficulty.EASY else d for d in history]
        assert compute_psi(harder) >= compute_psi(history)

    def test_rank_lock_days(self):
        assert rank_lock_days(20) == 4
        assert rank_lock_days(25) == 5
        assert rank_lock_days(1000) == 30


class TestCalculatePsi:
    def test_no_misses(self, penalties, subject):
        assert penalties.calculate_psi(subject.id) == 0

    def test_counts_trailing_seven_days(self, penalties, subject, repository, clock):
        _add_missed(repository, subject.id, Difficulty.MEDIUM, clock() - timedelta(days=1))
        _add_missed(repository, subject.id, Difficulty.HARD, clock() - timedelta(days=6))
        _add_missed(repository, subject.id, Difficulty.EXTREME, clock() - timedelta(days=8))
        # (2 + 3) * 1.2
        assert penalties.calculate_psi(subject.id) == 6

    def test_ignores_other_statuses(self, penalties, subject, repository, clock):
        _add_missed(repository, subject.id, Difficulty.EASY, clock() - timedelta(days=1))
        task = Task(difficulty=Difficulty.EXTREME, description="x",
                    target_attribute=Attribute.PHYSICAL, xp_reward=200, deadline=clock())
        repository.create_task(task)
        repository.create_submission(Submission(task_id=task.id, subject_id=subject.id,
                                                status=SubmissionStatus.FAILED, created_at=clock()))
        assert penalties.calculate_psi(subject.id) == 1


class TestLadder:
    def test_warning(self, penalties, subject, repository):
        assert penalties.apply_penalty(subject.id, 4) == PenaltyKind.WARNING
        sanctions = repository.list_sanctions(subject.id)
        assert len(sanctions) == 1
        assert sanctions[0].reason == SanctionReason.MISSED_TASK
        assert sanctions[0].severity == 4
        assert sanctions[0].expires_at is None
        assert repository.get_attributes(subject.id).discipline == 50

    def test_stat_decay(self, penalties, subject, repository):
        assert penalties.apply_penalty(subject.id, 7) == PenaltyKind.STAT_DECAY
        attrs = repository.get_attributes(subject.id)
        assert attrs.discipline == 49
        assert attrs.confidence == 50
        assert repository.list_sanctions(subject.id)[0].reason == SanctionReason.MISSED_TASK

    def test_xp_loss(self, penalties, subject, repository, experience, clock):
        experience.add_xp(subject.id, 1010)
        assert penalties.apply_penalty(subject.id, 15) == PenaltyKind.XP_LOSS
        stored = repository.get_subject(subject.id)
        assert stored.total_xp == 980
        assert stored.rank.value == "E"
        sanction = repository.list_sanctions(subject.id)[0]
        assert sanction.reason == SanctionReason.XP_LOSS
        assert sanction.expires_at == clock() + timedelta(hours=24)

    def test_xp_loss_can_go_negative(self, penalties, subject, repository):
        penalties.apply_penalty(subject.id, 10)
        assert repository.get_subject(subject.id).total_xp == -20

    def test_rank_lock(self, penalties, subject, repository, clock):
        assert penalties.apply_penalty(subject.id, 25) == PenaltyKind.RANK_LOCK
        assert penalties.is_rank_locked(subject.id)
        sanction = repository.list_sanctions(subject.id)[0]
        assert sanction.reason == SanctionReason.RANK_LOCK
        assert sanction.expires_at == clock() + timedelta(days=5)

        clock.advance(days=5, seconds=1)
        assert not penalties.is_rank_locked(subject.id)

    @pytest.mark.parametrize(
        "psi, kind",
        [(0, PenaltyKind.WARNING), (5, PenaltyKind.STAT_DECAY), (9, PenaltyKind.STAT_DECAY),
         (10, PenaltyKind.XP_LOSS), (19, PenaltyKind.XP_LOSS), (20, PenaltyKind.RANK_LOCK)],
    )
    def test_band_edges(self, penalties, subject, psi, kind):
        assert penalties.apply_penalty(subject.id, psi) == kind


class TestMissPenalty:
    def test_no_misses_means_no_penalty(self, penalties, subject, repository):
        result = penalties.apply_miss_penalty(subject.id)
        assert result.psi == 0
        assert result.penalty_kind == PenaltyKind.NONE
        assert result.details == "No penalty applied."
        assert repository.list_sanctions(subject.id) == []

    def test_applies_ladder(self, penalties, subject, repository, clock):
        for days in (1, 2, 3):
            _add_missed(repository, subject.id, Difficulty.MEDIUM, clock() - timedelta(days=days))
        result = penalties.apply_miss_penalty(subject.id)
        # 6 * 1.3 = 7.8
        assert result.psi == 7
        assert result.penalty_kind == PenaltyKind.STAT_DECAY
        assert result.details == "Stats reduced due to missed tasks."


class TestSanctionQueries:
    def test_active_and_cleanup(self, penalties, subject, repository, clock):
        penalties.apply_penalty(subject.id, 3)
        penalties.apply_penalty(subject.id, 12)
        penalties.apply_penalty(subject.id, 22)
        assert len(penalties.get_active_sanctions(subject.id)) == 3

        clock.advance(days=2)
        active = penalties.get_active_sanctions(subject.id)
        assert {s.reason for s in active} == {SanctionReason.MISSED_TASK, SanctionReason.RANK_LOCK}
        assert penalties.cleanup_expired_sanctions() == 1
        assert len(repository.list_sanctions(subject.id)) == 2

        clock.advance(days=30)
        assert penalties.cleanup_expired_sanctions() == 1
        assert [s.reason for s in repository.list_sanctions(subject.id)] == [SanctionReason.MISSED_TASK]
