"""Oracle role routing.

Each oracle (judge, quest) is bound to a role in config/models.yaml. A role
resolves to an ordered chain: its primary model, then its fallbacks.
"""

from __future__ import annotations

import logging

from levelup.core.config import ModelRegistry

logger = logging.getLogger("levelup.llm.router")

JUDGE_ROLE = "judge"
QUEST_ROLE = "quest"
ORACLE_ROLES = (JUDGE_ROLE, QUEST_ROLE)


class ModelRouter:
    """Resolves oracle roles to OpenRouter model chains."""

    def __init__(self, registry: ModelRegistry):
        self.registry = registry
        unmapped = [role for role in ORACLE_ROLES if role not in registry.roles]
        if unmapped:
            logger.info("No model configured for oracle role(s) %s; they will use fallbacks",
                        ", ".join(unmapped))

    def primary(self, role: str) -> str:
        """Primary model for ``role``; ConfigError when the role is unmapped."""
        return self.registry.get_model(role)

    def chain(self, role: str) -> list[str]:
        """Primary model first, then fallbacks in file order, without repeats."""
        candidates = [self.primary(role), *self.registry.get_fallback_models(role)]
        resolved = list(dict.fromkeys(m for m in candidates if m))
        logger.debug("Role '%s' -> %s", role, resolved)
        return resolved

    def oracle_roles(self) -> dict[str, str]:
        """Configured oracle roles and their primary models."""
        return {role: model for role, model in self.registry.roles.items() if role in ORACLE_ROLES}
