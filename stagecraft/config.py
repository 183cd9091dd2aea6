"""Runtime settings - env-driven via pydantic-settings.

Reads from a .env file and STAGECRAFT_* environment variables.  Every
tunable the orchestrator consults at run time lives here; pipeline
topology does not (see ``stagecraft.models.config``).
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class StagecraftSettings(BaseSettings):
    """Orchestrator settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export STAGECRAFT_ENVIRONMENT=prod
        export STAGECRAFT_LOG_LEVEL=DEBUG
        export STAGECRAFT_HEALTH_CHECK_GRACE_SECONDS=120
        export STAGECRAFT_STRICT_BRANCHES=true
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="STAGECRAFT_",
        env_file_encoding="utf-8",
    )

    # Runtime
    log_level: str = "INFO"
    debug: bool = False

    # Environment deployed when none is named on the command line
    environment: str = "dev"

    # Storage paths
    ledger_path: Path = Path(".stagecraft/ledger.db")
    artifact_store_path: Path = Path(".stagecraft/artifacts")
    migration_lock_path: Path = Path(".stagecraft/locks.db")

    # Sequencer
    max_parallel_actions: int = 4

    # Environment -> branch resolution.  When False, an environment that
    # is missing from the table deploys the branch of the same name.
    strict_branches: bool = False

    # Rollout / circuit breaker
    health_check_grace_seconds: float = 60.0
    health_poll_interval_seconds: float = 5.0
    minimum_healthy_percent: int = 100
    rollback_attempts: int = 3

    # Autoscaling
    autoscaling_window: int = 5
    scale_up_cooldown_seconds: float = 60.0
    scale_down_cooldown_seconds: float = 300.0


# Module-level singleton - import as `from stagecraft.config import settings`
settings = StagecraftSettings()
