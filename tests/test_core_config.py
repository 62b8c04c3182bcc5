"""Tests for levelup/core/config.py: YAML cascade config loader."""

from pathlib import Path

import pytest
import yaml

from levelup.core.config import (
    AppConfig,
    DatabaseConfig,
    JudgeConfig,
    LLMConfig,
    ModelRegistry,
    OrchestratorConfig,
    PromptLoader,
    QuestConfig,
    ScheduleConfig,
    _deep_merge,
    load_config,
    load_model_registry,
)
from levelup.core.exceptions import ConfigError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("DATABASE_URL", "LEVELUP_DB_BACKEND", "LEVELUP_SCHEDULE"):
        monkeypatch.delenv(name, raising=False)


class TestDatabaseConfig:
    def test_defaults(self):
        c = DatabaseConfig()
        assert c.backend == "postgresql"
        assert c.host == "localhost"
        assert c.port == 5432
        assert c.dbname == "levelup"

    def test_connection_string(self):
        c = DatabaseConfig(user="test", password="pw", host="db.local", port=5433, dbname="mydb")
        assert c.connection_string == "postgresql://test:pw@db.local:5433/mydb"


class TestLLMConfig:
    def test_defaults(self):
        c = LLMConfig()
        assert c.provider == "openrouter"
        assert "openrouter.ai" in c.base_url
        assert c.timeout_seconds == 30
        assert c.provider_retries == 1
        assert c.fallback_models == []


class TestOracleConfigs:
    def test_judge_defaults(self):
        c = JudgeConfig()
        assert c.enabled is True
        assert c.timeout_seconds == 20
        assert c.fallback_comment == "Task evaluated using system fallback."

    def test_quest_defaults(self):
        c = QuestConfig()
        assert c.temperature == 0.7
        assert c.failure_window_days == 21

    def test_orchestrator_defaults(self):
        c = OrchestratorConfig()
        assert c.auto_resolve_window_minutes == 60
        assert c.cleanup_expired_sanctions is True


class TestScheduleConfig:
    def test_defaults(self):
        c = ScheduleConfig()
        assert c.run_at == "00:00"
        assert c.interval_hours == 24
        assert (c.hour, c.minute) == (0, 0)

    def test_parses_hour_and_minute(self):
        c = ScheduleConfig(run_at="06:30")
        assert c.hour == 6
        assert c.minute == 30

    @pytest.mark.parametrize("bad", ["24:00", "7am", "12:60", ""])
    def test_rejects_bad_run_at(self, bad):
        with pytest.raises(ValueError):
            ScheduleConfig(run_at=bad)

    def test_rejects_zero_interval(self):
        with pytest.raises(ValueError):
            ScheduleConfig(interval_hours=0)


class TestDeepMerge:
    def test_nested_override(self):
        base = {"a": {"b": 1, "c": 2}, "d": 3}
        merged = _deep_merge(base, {"a": {"c": 20}})
        assert merged == {"a": {"b": 1, "c": 20}, "d": 3}
        assert base["a"]["c"] == 2

    def test_non_dict_replaces(self):
        assert _deep_merge({"a": {"b": 1}}, {"a": 5}) == {"a": 5}


class TestLoadConfig:
    def test_loads_project_defaults(self, config_dir):
        config = load_config(config_dir=config_dir)
        assert isinstance(config, AppConfig)
        assert config.schedule.run_at == "00:00"
        assert config.judge.timeout_seconds == 20

    def test_env_overlay(self, config_dir):
        config = load_config(config_dir=config_dir, env="test")
        assert config.database.backend == "memory"
        assert config.judge.enabled is False

    def test_missing_dir_gives_defaults(self, tmp_path):
        config = load_config(config_dir=tmp_path)
        assert config == AppConfig()

    def test_database_url_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db.example:6543/prog")
        config = load_config(config_dir=tmp_path)
        assert config.database.host == "db.example"
        assert config.database.port == 6543
        assert config.database.user == "u"
        assert config.database.password == "p"
        assert config.database.dbname == "prog"

    def test_backend_and_schedule_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LEVELUP_DB_BACKEND", "memory")
        monkeypatch.setenv("LEVELUP_SCHEDULE", "05:15")
        config = load_config(config_dir=tmp_path)
        assert config.database.backend == "memory"
        assert config.schedule.run_at == "05:15"

    def test_invalid_values_raise_config_error(self, tmp_path):
        (tmp_path / "default.yaml").write_text(yaml.safe_dump({"schedule": {"run_at": "99:99"}}))
        with pytest.raises(ConfigError):
            load_config(config_dir=tmp_path)

    def test_unreadable_yaml_raises_config_error(self, tmp_path):
        (tmp_path / "default.yaml").write_text("schedule: [unclosed\n")
        with pytest.raises(ConfigError, match="Unreadable YAML"):
            load_config(config_dir=tmp_path)


class TestModelRegistry:
    def test_project_registry_has_oracle_roles(self, model_registry):
        assert model_registry.get_model("judge")
        assert model_registry.get_model("quest")

    def test_unknown_role_raises(self):
        with pytest.raises(ConfigError):
            ModelRegistry().get_model("judge")

    def test_fallbacks(self, tmp_path):
        (tmp_path / "models.yaml").write_text(
            yaml.safe_dump({"roles": {"judge": "a/b"}, "fallbacks": {"judge": ["c/d"]}})
        )
        registry = load_model_registry(config_dir=tmp_path)
        assert registry.get_fallback_models("judge") == ["c/d"]
        assert registry.get_fallback_models("quest") == []

    def test_malformed_registry_raises(self, tmp_path):
        (tmp_path / "models.yaml").write_text(yaml.safe_dump({"roles": ["judge"]}))
        with pytest.raises(ConfigError):
            load_model_registry(config_dir=tmp_path)


class TestPromptLoader:
    def test_reads_file(self, tmp_path):
        (tmp_path / "judge_system.txt").write_text("  be strict  \n")
        assert PromptLoader(tmp_path).load("judge_system.txt", "default") == "be strict"

    def test_falls_back_to_default(self, tmp_path: Path):
        assert PromptLoader(tmp_path).load("missing.txt", " builtin ") == "builtin"

    def test_project_prompts_exist(self, config_dir):
        loader = PromptLoader(config_dir / "prompts")
        assert "attributeDeltas" in loader.load("judge_system.txt")
        assert "targetAttribute" in loader.load("quest_system.txt")
