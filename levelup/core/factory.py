"""Component factory for LevelUp.

Creates and wires storage, the OpenRouter client, the oracles and the
engines so the CLI and the scheduler receive fully-initialized dependencies.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from levelup.core.config import (
    AppConfig,
    ModelRegistry,
    PromptLoader,
    load_config,
    load_model_registry,
)
from levelup.core.exceptions import ConfigError
from levelup.core.models import utc_now
from levelup.db.engine import DatabaseEngine
from levelup.db.memory import InMemoryRepository
from levelup.db.repository import BaseRepository, Repository
from levelup.engine.attributes import AttributeEngine
from levelup.engine.experience import ExperienceResolver
from levelup.engine.penalties import PenaltyEngine
from levelup.engine.subjects import SubjectService
from levelup.engine.tasks import TaskManager
from levelup.llm.client import OpenRouterClient
from levelup.llm.router import JUDGE_ROLE, QUEST_ROLE, ModelRouter
from levelup.oracle.base import LLMOracle
from levelup.oracle.judge import JUDGE_SYSTEM_PROMPT, Judge
from levelup.oracle.quest_generator import QUEST_SYSTEM_PROMPT, QuestGenerator
from levelup.orchestrator.daily import DailyOrchestrator

logger = logging.getLogger("levelup.factory")


@dataclass
class ComponentBundle:
    """Container for all initialized components.

    The factory builds the bundle once; the CLI and scheduler pick the
    pieces they need.
    """

    config: AppConfig
    model_registry: ModelRegistry
    repository: BaseRepository
    llm_client: OpenRouterClient
    model_router: ModelRouter
    judge: Judge
    attributes: AttributeEngine
    experience: ExperienceResolver
    penalties: PenaltyEngine
    tasks: TaskManager
    subjects: SubjectService
    orchestrator: DailyOrchestrator
    db_engine: Optional[DatabaseEngine] = None
    quest_generator: Optional[QuestGenerator] = None


class ComponentFactory:
    """Factory for creating and wiring all LevelUp components.

    Usage:
        bundle = ComponentFactory.create(config_dir=Path("config"))
        bundle.orchestrator.run_once()
    """

    @staticmethod
    def create(
        config_dir: Optional[Path] = None,
        env: Optional[str] = None,
        api_key: Optional[str] = None,
        initialize_schema: bool = True,
        config: Optional[AppConfig] = None,
        repository: Optional[BaseRepository] = None,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
    ) -> ComponentBundle:
        """Create and wire all components.

        Args:
            config_dir: Path to config/ directory. Default: project root/config.
            env: Environment name for config overlay (e.g., "test").
            api_key: OpenRouter API key. Falls back to OPENROUTER_API_KEY env var.
            initialize_schema: Whether to run schema.sql on startup (PostgreSQL only).
            config: Pre-built config; skips the YAML cascade when given.
            repository: Pre-built storage backend; skips backend selection when given.
            clock: Time source shared by every engine.
            rng: Randomness for task rewards and fallback descriptions.

        Returns:
            ComponentBundle with all components ready to use.
        """
        logger.info("Initializing components...")

        # --- Config ---
        config = config or load_config(config_dir=config_dir, env=env)
        model_registry = load_model_registry(config_dir=config_dir)
        logger.info("Config loaded (%d model roles)", len(model_registry.roles))

        # --- Storage ---
        db_engine: Optional[DatabaseEngine] = None
        if repository is None:
            backend = config.database.backend.lower()
            if backend == "memory":
                repository = InMemoryRepository()
                logger.info("Using in-memory storage")
            elif backend in ("postgresql", "postgres"):
                db_engine = DatabaseEngine(config.database)
                if initialize_schema:
                    db_engine.initialize_schema()
                    logger.info("Database schema initialized")
                repository = Repository(db_engine)
            else:
                raise ConfigError(f"Unknown database backend: {config.database.backend}")

        # --- LLM + oracles ---
        llm_client = OpenRouterClient(config=config.llm, api_key=api_key)
        model_router = ModelRouter(model_registry)
        oracle_models = model_router.oracle_roles()
        logger.info("Oracle models: %s", oracle_models or "none configured")
        prompts = PromptLoader(
            (config_dir / "prompts") if config_dir is not None else None
        )

        judge_oracle = None
        if config.judge.enabled and JUDGE_ROLE in oracle_models and llm_client.api_key:
            judge_oracle = LLMOracle(
                name="Judge",
                llm_client=llm_client,
                model_router=model_router,
                role=JUDGE_ROLE,
                system_prompt=prompts.load("judge_system.txt", JUDGE_SYSTEM_PROMPT),
                temperature=config.judge.temperature,
                timeout_seconds=config.judge.timeout_seconds,
            )
        else:
            logger.info("Judge oracle disabled; every verdict uses the fallback")
        judge = Judge(
            oracle=judge_oracle,
            fallback_comment=config.judge.fallback_comment,
            xp_ceiling_multiplier=config.judge.xp_ceiling_multiplier,
        )

        quest_generator = None
        if config.quest.enabled and QUEST_ROLE in oracle_models and llm_client.api_key:
            quest_generator = QuestGenerator(
                LLMOracle(
                    name="Quest",
                    llm_client=llm_client,
                    model_router=model_router,
                    role=QUEST_ROLE,
                    system_prompt=prompts.load("quest_system.txt", QUEST_SYSTEM_PROMPT),
                    temperature=config.quest.temperature,
                    timeout_seconds=config.quest.timeout_seconds,
                )
            )

        # --- Engines ---
        attributes = AttributeEngine(repository, clock=clock)
        experience = ExperienceResolver(repository, clock=clock)
        penalties = PenaltyEngine(repository, attributes, experience, clock=clock)
        tasks = TaskManager(
            repository,
            attributes,
            experience,
            judge,
            quest_generator=quest_generator,
            clock=clock,
            rng=rng,
            failure_window_days=config.quest.failure_window_days,
        )
        subjects = SubjectService(repository, penalties, clock=clock)
        orchestrator = DailyOrchestrator(
            repository,
            tasks,
            attributes,
            penalties,
            auto_resolve_window=timedelta(minutes=config.orchestrator.auto_resolve_window_minutes),
            cleanup_expired_sanctions=config.orchestrator.cleanup_expired_sanctions,
            clock=clock,
        )

        logger.info("All components initialized")
        return ComponentBundle(
            config=config,
            model_registry=model_registry,
            repository=repository,
            llm_client=llm_client,
            model_router=model_router,
            judge=judge,
            attributes=attributes,
            experience=experience,
            penalties=penalties,
            tasks=tasks,
            subjects=subjects,
            orchestrator=orchestrator,
            db_engine=db_engine,
            quest_generator=quest_generator,
        )

    @staticmethod
    def close(bundle: ComponentBundle) -> None:
        """Clean up all resources in the bundle."""
        bundle.llm_client.close()
        if bundle.db_engine is not None:
            bundle.db_engine.close()
        logger.info("All components closed")
