"""Judge response contract.

The judge oracle suggests ``{outcome, xp, attributeDeltas, comment}`` for a
submission. ``validate_judge_response`` checks every field before any value
is trusted and returns a tagged result. ``Judge.judge`` always returns a
usable Verdict: the validated suggestion, or the deterministic fallback when
the oracle is missing, unreachable, slow, or wrong.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from levelup.core.exceptions import JudgeValidationError, OracleError
from levelup.core.models import (
    ATTRIBUTE_NAMES,
    Attribute,
    Difficulty,
    InvalidVerdict,
    JudgeRequest,
    Task,
    ValidVerdict,
    Verdict,
    VerdictOutcome,
    VerdictValidation,
)
from levelup.oracle.base import BaseOracle

logger = logging.getLogger("levelup.oracle.judge")

FALLBACK_XP_BY_DIFFICULTY: dict[Difficulty, int] = {
    Difficulty.EASY: 20,
    Difficulty.MEDIUM: 50,
    Difficulty.HARD: 100,
    Difficulty.EXTREME: 200,
}

DEFAULT_FALLBACK_COMMENT = "Task evaluated using system fallback."

# A suggestion may award at most this many times the task's reward.
DEFAULT_XP_CEILING_MULTIPLIER = 5

JUDGE_SYSTEM_PROMPT = """\
You are an automated judge for a real-life progression system.

Decide whether a real-world task was completed, based ONLY on the evidence.

Principles:
- Be strict and objective. Do not reward intentions, excuses or partial work.
- Text-only evidence passes only if it is specific or quantified.
- Vague evidence, or evidence below the stated difficulty, fails.
- When uncertain, fail.

Rules:
- outcome "fail": xp MUST be 0 and attributeDeltas MUST be {}.
- outcome "success": xp > 0 and in line with the task difficulty; attributeDeltas
  small integers keyed by: physical, intelligence, discipline, charisma,
  confidence, creativity.

Reply with a single JSON object and nothing else:
{"outcome": "success" | "fail", "xp": int, "attributeDeltas": {"<attribute>": int}, "comment": string}

The comment is short, neutral and system-like."""


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def validate_judge_response(data: Any, max_xp: Optional[int] = None) -> VerdictValidation:
    """Check an oracle suggestion against the judge contract.

    Returns ValidVerdict on success, InvalidVerdict(reason) on the first
    violated rule. Never raises for bad input. ``max_xp`` caps the award;
    None leaves it uncapped.
    """
    try:
        return ValidVerdict(verdict=_validated_verdict(data, max_xp))
    except JudgeValidationError as e:
        return InvalidVerdict(reason=e.reason)


def _validated_verdict(data: Any, max_xp: Optional[int] = None) -> Verdict:
    if not isinstance(data, dict):
        raise JudgeValidationError("response must be a JSON object")

    outcome_raw = data.get("outcome")
    if outcome_raw not in ("success", "fail"):
        raise JudgeValidationError('outcome must be exactly "success" or "fail"')
    outcome = VerdictOutcome(outcome_raw)

    xp_raw = data.get("xp")
    if not _is_integer(xp_raw) or xp_raw < 0:
        raise JudgeValidationError("xp must be a non-negative integer")
    xp = int(xp_raw)
    if max_xp is not None and xp > max_xp:
        raise JudgeValidationError(f"xp {xp} exceeds the ceiling of {max_xp}")

    if "attributeDeltas" not in data:
        raise JudgeValidationError("attributeDeltas is required")
    deltas_raw = data["attributeDeltas"]
    if not isinstance(deltas_raw, dict):
        raise JudgeValidationError("attributeDeltas must be an object")

    deltas: dict[Attribute, int] = {}
    if outcome == VerdictOutcome.FAIL:
        if xp != 0:
            raise JudgeValidationError("a fail outcome must award 0 xp")
        if deltas_raw:
            raise JudgeValidationError("a fail outcome must not change attributes")
    else:
        if xp <= 0:
            raise JudgeValidationError("a success outcome must award xp > 0")
        for name, value in deltas_raw.items():
            if name not in ATTRIBUTE_NAMES:
                raise JudgeValidationError(
                    f"unknown attribute {name!r}; expected one of {', '.join(ATTRIBUTE_NAMES)}"
                )
            if not _is_integer(value):
                raise JudgeValidationError(f"delta for {name} must be an integer")
            deltas[Attribute(name)] = int(value)

    comment = data.get("comment")
    if not isinstance(comment, str) or not comment.strip():
        raise JudgeValidationError("comment must be a non-empty string")

    return Verdict(outcome=outcome, xp=xp, attribute_deltas=deltas, comment=comment.strip())


def xp_ceiling(task: Task, multiplier: int = DEFAULT_XP_CEILING_MULTIPLIER) -> int:
    """Largest award a suggestion may grant for ``task``."""
    return multiplier * max(task.xp_reward, FALLBACK_XP_BY_DIFFICULTY[task.difficulty])


def fallback_verdict(task: Task, comment: str = DEFAULT_FALLBACK_COMMENT) -> Verdict:
    """Lenient deterministic verdict used whenever the oracle can't be trusted."""
    return Verdict(
        outcome=VerdictOutcome.SUCCESS,
        xp=FALLBACK_XP_BY_DIFFICULTY[task.difficulty],
        attribute_deltas={task.target_attribute: 1},
        comment=comment,
        fallback=True,
    )


class Judge:
    """Judge response contract: ask the oracle, validate, or fall back.

    Injected dependencies:
        oracle: Judge oracle; None means always use the fallback.
        fallback_comment: Comment stored on fallback verdicts.
        xp_ceiling_multiplier: Suggestions above this multiple of the task
            reward are rejected.
    """

    def __init__(
        self,
        oracle: Optional[BaseOracle] = None,
        fallback_comment: str = DEFAULT_FALLBACK_COMMENT,
        xp_ceiling_multiplier: int = DEFAULT_XP_CEILING_MULTIPLIER,
    ):
        self.oracle = oracle
        self.fallback_comment = fallback_comment
        self.xp_ceiling_multiplier = xp_ceiling_multiplier

    def judge(self, request: JudgeRequest) -> Verdict:
        """Return a trusted verdict for the request. Never raises oracle errors."""
        task = request.task
        if self.oracle is None:
            logger.info("No judge oracle configured; fallback verdict for task %s", task.id)
            return fallback_verdict(task, self.fallback_comment)

        try:
            suggestion = self.oracle.ask(request.to_wire())
        except OracleError as e:
            logger.warning("Judge oracle unavailable for task %s, using fallback: %s", task.id, e)
            return fallback_verdict(task, self.fallback_comment)

        max_xp = xp_ceiling(task, self.xp_ceiling_multiplier)
        result = validate_judge_response(suggestion, max_xp=max_xp)
        if isinstance(result, InvalidVerdict):
            logger.warning("Judge response rejected for task %s (%s), using fallback",
                           task.id, result.reason)
            return fallback_verdict(task, self.fallback_comment)

        logger.info("Judge verdict for task %s: %s (+%d xp)",
                    task.id, result.verdict.outcome.value, result.verdict.xp)
        return result.verdict
