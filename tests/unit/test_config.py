"""Tests for orchestrator settings - env-driven via pydantic-settings."""

from __future__ import annotations

from pathlib import Path

from stagecraft.config import StagecraftSettings


class TestStagecraftSettings:
    def test_defaults(self):
        config = StagecraftSettings()
        assert config.log_level == "INFO"
        assert config.max_parallel_actions == 4
        assert config.strict_branches is False
        assert config.environment == "dev"

    def test_default_paths(self):
        config = StagecraftSettings()
        assert config.ledger_path == Path(".stagecraft/ledger.db")
        assert config.artifact_store_path == Path(".stagecraft/artifacts")
        assert config.migration_lock_path == Path(".stagecraft/locks.db")

    def test_rollout_defaults(self):
        config = StagecraftSettings()
        assert config.health_check_grace_seconds == 60.0
        assert config.minimum_healthy_percent == 100
        assert config.rollback_attempts == 3

    def test_scale_down_waits_longer_than_scale_up(self):
        config = StagecraftSettings()
        assert config.scale_down_cooldown_seconds > config.scale_up_cooldown_seconds

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("STAGECRAFT_STRICT_BRANCHES", "true")
        monkeypatch.setenv("STAGECRAFT_ENVIRONMENT", "prod")
        monkeypatch.setenv("STAGECRAFT_HEALTH_CHECK_GRACE_SECONDS", "120")
        config = StagecraftSettings()
        assert config.strict_branches is True
        assert config.environment == "prod"
        assert config.health_check_grace_seconds == 120.0

    def test_explicit_values_win(self):
        config = StagecraftSettings(max_parallel_actions=1)
        assert config.max_parallel_actions == 1
