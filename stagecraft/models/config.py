"""Pipeline and environment configuration models.

The environment table is immutable configuration handed to pipeline
construction.  Branch selection happens once, when a pipeline is
created, and is frozen into the resulting ``Pipeline``.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stagecraft.core.errors import UnmappedEnvironmentError
from stagecraft.models.runtime import AutoscalingConfig

logger = logging.getLogger(__name__)


class EnvironmentSpec(BaseModel):
    """A named deployment target: one source branch, one set of runtime params."""

    model_config = ConfigDict(frozen=True)

    name: str
    branch: str
    autoscaling: AutoscalingConfig = AutoscalingConfig()
    health_check_grace_seconds: float | None = None


DEFAULT_ENVIRONMENTS: tuple[EnvironmentSpec, ...] = (
    EnvironmentSpec(name="dev", branch="dev"),
    EnvironmentSpec(name="test", branch="test"),
    EnvironmentSpec(name="prod", branch="main"),
)


class EnvironmentTable:
    """Read-only environment -> branch / runtime parameter lookup.

    Parameters
    ----------
    environments:
        The known environments.  Names must be unique.
    strict:
        When True, resolving an unknown environment raises
        ``UnmappedEnvironmentError``.  When False, the environment name is
        used as the branch name and default runtime parameters apply.
    """

    def __init__(
        self,
        environments: tuple[EnvironmentSpec, ...] | list[EnvironmentSpec] = DEFAULT_ENVIRONMENTS,
        *,
        strict: bool = False,
    ) -> None:
        table: dict[str, EnvironmentSpec] = {}
        for env in environments:
            if env.name in table:
                raise ValueError(f"Duplicate environment {env.name!r}")
            table[env.name] = env
        self._table: Mapping[str, EnvironmentSpec] = MappingProxyType(table)
        self.strict = strict

    def __contains__(self, name: object) -> bool:
        return name in self._table

    def __iter__(self):
        return iter(self._table.values())

    def __len__(self) -> int:
        return len(self._table)

    def resolve(self, name: str) -> EnvironmentSpec:
        """Return the environment spec for *name*, applying the fallback rule."""
        if not name:
            raise UnmappedEnvironmentError("Environment name must not be empty")
        env = self._table.get(name)
        if env is not None:
            return env
        if self.strict:
            raise UnmappedEnvironmentError(
                f"Environment {name!r} has no branch mapping. "
                f"Known: {sorted(self._table)}"
            )
        logger.warning(
            "Environment %r is not mapped; deploying branch %r of the same name",
            name,
            name,
        )
        return EnvironmentSpec(name=name, branch=name)

    def branch_for(self, name: str) -> str:
        return self.resolve(name).branch


class PipelineConfig(BaseModel):
    """Project-level configuration for building a deployment pipeline."""

    model_config = ConfigDict(frozen=True)

    project_name: str = "quickstart"
    repository: str = "quickstart-boilerplate"
    repository_owner: str = ""
    service_name: str = "quickstart"
    source_path: str = "./api"
    registry_uri: str = "registry/quickstart"
    database_id: str = "quickstart-db"
    database_name: str = "quickstart"
    environments: tuple[EnvironmentSpec, ...] = Field(default=DEFAULT_ENVIRONMENTS)

    @field_validator("registry_uri")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")
