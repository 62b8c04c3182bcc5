"""Shared fixtures for LevelUp tests.

Engine tests run against the in-memory backend with a frozen clock and a
seeded random generator. PostgreSQL tests carry ``requires_postgres`` and
are skipped when no server answers at the configured address.
"""

from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Optional

import psycopg
import pytest
from dotenv import load_dotenv

# DATABASE_URL and OPENROUTER_API_KEY may live in the project .env
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from levelup.core.config import (
    AppConfig,
    DatabaseConfig,
    ModelRegistry,
    load_config,
    load_model_registry,
)
from levelup.core.models import Subject
from levelup.db.memory import InMemoryRepository
from levelup.engine.attributes import AttributeEngine
from levelup.engine.experience import ExperienceResolver
from levelup.engine.penalties import PenaltyEngine
from levelup.engine.subjects import SubjectService
from levelup.engine.tasks import TaskManager
from levelup.oracle.base import BaseOracle
from levelup.oracle.judge import Judge

CONFIG_DIR = Path(__file__).parent.parent / "config"


def _pg_settings() -> DatabaseConfig:
    """Database section as the loader resolves it, DATABASE_URL included."""
    return load_config(config_dir=CONFIG_DIR).database


def _pg_reachable() -> bool:
    try:
        with psycopg.connect(_pg_settings().connection_string, connect_timeout=3):
            return True
    except psycopg.Error:
        return False


requires_postgres = pytest.mark.skipif(not _pg_reachable(), reason="PostgreSQL not reachable")


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


class StubOracle(BaseOracle):
    """Oracle returning a canned reply, or raising a canned error."""

    def __init__(self, reply: Any = None, error: Optional[Exception] = None, name: str = "Stub"):
        super().__init__(name)
        self.reply = reply
        self.error = error
        self.payloads: list[dict[str, Any]] = []

    def request(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return self.reply


# ---------------------------------------------------------------------------
# Config and storage
# ---------------------------------------------------------------------------

@pytest.fixture
def config_dir() -> Path:
    return CONFIG_DIR


@pytest.fixture
def app_config(config_dir: Path) -> AppConfig:
    return load_config(config_dir=config_dir)


@pytest.fixture
def model_registry(config_dir: Path) -> ModelRegistry:
    return load_model_registry(config_dir=config_dir)


@pytest.fixture
def db_config() -> DatabaseConfig:
    return _pg_settings()


@pytest.fixture
def db_engine(db_config):
    """Schema-initialised engine on the configured server."""
    from levelup.db.engine import DatabaseEngine
    engine = DatabaseEngine(db_config)
    engine.initialize_schema()
    try:
        yield engine
    finally:
        engine.close()


@pytest.fixture
def pg_repository(db_engine):
    from levelup.db.repository import Repository
    return Repository(db_engine)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2025, 6, 15, 12, 0, tzinfo=UTC))


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)


@pytest.fixture
def attributes(repository, clock) -> AttributeEngine:
    return AttributeEngine(repository, clock=clock)


@pytest.fixture
def experience(repository, clock) -> ExperienceResolver:
    return ExperienceResolver(repository, clock=clock)


@pytest.fixture
def penalties(repository, attributes, experience, clock) -> PenaltyEngine:
    return PenaltyEngine(repository, attributes, experience, clock=clock)


@pytest.fixture
def judge() -> Judge:
    """Judge with no oracle: every verdict is the deterministic fallback."""
    return Judge(oracle=None)


@pytest.fixture
def task_manager(repository, attributes, experience, judge, clock, rng) -> TaskManager:
    return TaskManager(repository, attributes, experience, judge, clock=clock, rng=rng)


@pytest.fixture
def subjects(repository, penalties, clock) -> SubjectService:
    return SubjectService(repository, penalties, clock=clock)


@pytest.fixture
def subject(subjects) -> Subject:
    return subjects.create_subject("tester")
