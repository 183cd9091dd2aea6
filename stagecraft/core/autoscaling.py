"""Target-tracking autoscaling for a ServiceRuntime.

Two independent control loops, one per resource dimension (CPU and
memory).  Each keeps a sliding window of utilization samples, each
stamped with the desired count it was measured at, and recommends
``ceil(mean(count * utilization) / target)`` tasks.  The loops may
disagree; the effective desired count is the maximum of their
recommendations, clamped into the runtime's capacity bounds.

Scale-up and scale-down are damped by separate cooldowns.  Scale-down
waits longer, which keeps the service from oscillating.  Writes go
through ``ServiceRuntime.compare_and_set_desired_count`` and retry on
conflict with a concurrent rollback or scaling decision.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from stagecraft.core.clock import Clock, SystemClock
from stagecraft.core.runtime import ServiceRuntime

logger = logging.getLogger(__name__)

_MAX_CAS_RETRIES = 5


class MetricDimension(str, Enum):
    CPU = "cpu"
    MEMORY = "memory"


class MetricSample(BaseModel):
    """One utilization observation, in percent of reserved capacity."""

    model_config = ConfigDict(frozen=True)

    dimension: MetricDimension
    utilization_percent: float = Field(ge=0.0)


class ScalingLoop:
    """Windowed target-tracking loop for one dimension."""

    def __init__(self, dimension: MetricDimension, window: int) -> None:
        if window < 1:
            raise ValueError("window must be at least 1")
        self.dimension = dimension
        self.window = window
        self._samples: deque[tuple[int, float]] = deque(maxlen=window)

    def record(self, utilization_percent: float, task_count: int) -> None:
        """Add a sample taken while *task_count* tasks were desired."""
        self._samples.append((max(task_count, 1), utilization_percent))

    @property
    def average(self) -> float | None:
        if not self._samples:
            return None
        return sum(util for _, util in self._samples) / len(self._samples)

    @property
    def load(self) -> float | None:
        """Mean demand in task-percent: ``count * utilization`` per sample."""
        if not self._samples:
            return None
        return sum(count * util for count, util in self._samples) / len(self._samples)

    def recommend(self, target_percent: float) -> int | None:
        """Task count that would bring the load back to target, or None without data."""
        load = self.load
        if load is None:
            return None
        return math.ceil(round(load / target_percent, 6))


class AutoscalingPolicy:
    """Attached to a runtime; converts metrics into desired-count changes.

    Parameters
    ----------
    runtime:
        The runtime whose desired count this policy owns.
    window:
        Samples per dimension in the sliding average.
    scale_up_cooldown / scale_down_cooldown:
        Minimum seconds since the last scaling event before scaling in
        that direction again.  Scale-down should be the longer of the two.
    clock:
        Time source; defaults to the system clock.
    """

    def __init__(
        self,
        runtime: ServiceRuntime,
        *,
        window: int = 5,
        scale_up_cooldown: float = 60.0,
        scale_down_cooldown: float = 300.0,
        clock: Clock | None = None,
    ) -> None:
        if scale_up_cooldown < 0 or scale_down_cooldown < 0:
            raise ValueError("cooldowns must be non-negative")
        self.runtime = runtime
        self.scale_up_cooldown = scale_up_cooldown
        self.scale_down_cooldown = scale_down_cooldown
        self.clock = clock or SystemClock()
        self.loops: dict[MetricDimension, ScalingLoop] = {
            dim: ScalingLoop(dim, window) for dim in MetricDimension
        }
        self._last_scaled_at: float | None = None

    def observe(self, metric: MetricSample) -> None:
        """Record a sample and, if warranted, adjust the runtime's desired count."""
        self.loops[metric.dimension].record(metric.utilization_percent, self.runtime.desired_count)
        self._evaluate()

    def recommendation(self) -> int | None:
        """Effective desired count: max across loops, clamped to bounds."""
        bounds = self.runtime.autoscaling
        targets = {
            MetricDimension.CPU: bounds.cpu_target_percent,
            MetricDimension.MEMORY: bounds.memory_target_percent,
        }
        recommendations = [
            r for r in (
                loop.recommend(targets[dim]) for dim, loop in self.loops.items()
            )
            if r is not None
        ]
        if not recommendations:
            return None
        return bounds.clamp(max(recommendations))

    def _cooled_down(self, scaling_up: bool) -> bool:
        if self._last_scaled_at is None:
            return True
        cooldown = self.scale_up_cooldown if scaling_up else self.scale_down_cooldown
        return self.clock.now() - self._last_scaled_at >= cooldown

    def _evaluate(self) -> None:
        for _ in range(_MAX_CAS_RETRIES):
            current = self.runtime.desired_count
            target = self.recommendation()
            if target is None or target == current:
                return
            scaling_up = target > current
            if not self._cooled_down(scaling_up):
                logger.debug(
                    "%s: scale %s to %d suppressed by cooldown",
                    self.runtime.service_name, "up" if scaling_up else "down", target,
                )
                return
            if self.runtime.compare_and_set_desired_count(current, target):
                self._last_scaled_at = self.clock.now()
                logger.info(
                    "%s scaled %s %d -> %d",
                    self.runtime.service_name, "up" if scaling_up else "down", current, target,
                )
                return
        logger.warning(
            "%s: desired count kept changing underneath the autoscaler; will retry on next sample",
            self.runtime.service_name,
        )
