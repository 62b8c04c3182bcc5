"""Quest-suggestion collaborator.

Asks the quest oracle for a task description. The suggestion is validated
here; the target attribute it names is advisory and always replaced by the
one the caller computed. Failures surface as ExternalServiceError so the
task manager can fall back to its own phrase list.
"""

from __future__ import annotations

import logging
from typing import Any

from levelup.core.exceptions import ExternalServiceError
from levelup.core.models import (
    ATTRIBUTE_NAMES,
    Difficulty,
    QuestRequest,
    QuestSuggestion,
    TaskKind,
)
from levelup.oracle.base import BaseOracle

logger = logging.getLogger("levelup.oracle.quest_generator")

QUEST_SYSTEM_PROMPT = """\
You are the quest generator of a real-life progression system.

Suggest one task for the subject given their attributes (0-100), recent
failure count, rank (E|D|C|B|A|S|SS), target attribute and desired difficulty.

- Realistic, specific and actionable; a daily task must fit in one day.
- Aim at the target attribute.
- More recent failures means an easier task.
- Neutral, system-like wording. No motivation, no advice.

Reply with a single JSON object and nothing else:
{"kind": "daily" | "weekly" | "dungeon" | "boss",
 "description": string,
 "difficulty": "easy" | "medium" | "hard" | "extreme",
 "targetAttribute": "physical" | "intelligence" | "discipline" | "charisma" | "confidence" | "creativity"}"""

_KINDS = tuple(k.value for k in TaskKind)
_DIFFICULTIES = tuple(d.value for d in Difficulty)


def validate_quest_suggestion(data: Any, request: QuestRequest) -> QuestSuggestion:
    """Validate a quest oracle reply. Raises ExternalServiceError on any violation."""
    if not isinstance(data, dict):
        raise ExternalServiceError("quest suggestion must be a JSON object")

    kind = data.get("kind")
    if kind not in _KINDS:
        raise ExternalServiceError(f"invalid or missing kind: {kind!r}")

    description = data.get("description")
    if not isinstance(description, str) or not description.strip():
        raise ExternalServiceError("invalid or missing description")

    difficulty = data.get("difficulty")
    if difficulty not in _DIFFICULTIES:
        raise ExternalServiceError(f"invalid or missing difficulty: {difficulty!r}")

    target = data.get("targetAttribute")
    if target not in ATTRIBUTE_NAMES:
        raise ExternalServiceError(f"invalid or missing targetAttribute: {target!r}")
    if target != request.target_attribute.value:
        logger.warning("Quest oracle suggested %s but %s is required, overriding",
                       target, request.target_attribute.value)

    return QuestSuggestion(
        kind=TaskKind(kind),
        description=description.strip(),
        difficulty=Difficulty(difficulty),
        target_attribute=request.target_attribute,
    )


class QuestGenerator:
    """Wraps the quest oracle with validation."""

    def __init__(self, oracle: BaseOracle):
        self.oracle = oracle

    def suggest(self, request: QuestRequest) -> QuestSuggestion:
        """Return a validated suggestion or raise ExternalServiceError."""
        data = self.oracle.ask(request.to_wire())
        return validate_quest_suggestion(data, request)
