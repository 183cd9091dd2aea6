"""Service runtime models - capacity, autoscaling targets, rollout states."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator


class AutoscalingConfig(BaseModel):
    """Capacity bounds and per-dimension utilization targets (percent)."""

    model_config = ConfigDict(frozen=True)

    min_capacity: int = 1
    max_capacity: int = 4
    cpu_target_percent: float = 50.0
    memory_target_percent: float = 50.0

    @model_validator(mode="after")
    def _check_bounds(self) -> AutoscalingConfig:
        if self.min_capacity < 0:
            raise ValueError("min_capacity must be >= 0")
        if self.max_capacity < max(self.min_capacity, 1):
            raise ValueError(
                f"max_capacity ({self.max_capacity}) must be >= "
                f"min_capacity ({self.min_capacity}) and >= 1"
            )
        for name in ("cpu_target_percent", "memory_target_percent"):
            value = getattr(self, name)
            if not 0 < value <= 100:
                raise ValueError(f"{name} must be in (0, 100], got {value}")
        return self

    def clamp(self, count: int) -> int:
        return max(self.min_capacity, min(self.max_capacity, count))


class RuntimeConfig(BaseModel):
    """Bootstrap configuration handed to the provisioning layer."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    cluster_name: str = ""
    initial_image_ref: str | None = None
    container_port: int = 4000
    autoscaling: AutoscalingConfig = AutoscalingConfig()


class RuntimeSnapshot(BaseModel):
    """Point-in-time copy of a ServiceRuntime's state."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    desired_count: int
    min_capacity: int
    max_capacity: int
    cpu_target: float
    mem_target: float
    current_image_ref: str | None
    generation: int
    running_images: dict[str, int] = {}


class RolloutState(str, Enum):
    """Circuit-breaker state machine for a single deploy."""

    PENDING = "pending"
    ROLLING_OUT = "rolling_out"
    HEALTHY = "healthy"
    ROLLING_BACK = "rolling_back"
    STABLE = "stable"
    FAILED = "failed"
    SUPERSEDED = "superseded"


ROLLOUT_TRANSITIONS: dict[RolloutState, set[RolloutState]] = {
    RolloutState.PENDING: {RolloutState.ROLLING_OUT, RolloutState.HEALTHY},
    RolloutState.ROLLING_OUT: {
        RolloutState.HEALTHY, RolloutState.ROLLING_BACK, RolloutState.SUPERSEDED,
    },
    RolloutState.ROLLING_BACK: {RolloutState.STABLE, RolloutState.FAILED},
    RolloutState.HEALTHY: set(),
    RolloutState.STABLE: set(),
    RolloutState.FAILED: set(),
    RolloutState.SUPERSEDED: set(),
}


class DeployResult(BaseModel):
    """Outcome of a deploy: which image runs now and how we got there."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    requested_image_ref: str
    previous_image_ref: str | None
    current_image_ref: str | None
    state: RolloutState
    history: list[RolloutState] = []
    healthy_tasks: int = 0
    no_op: bool = False
