"""Rolling update with an automatic rollback circuit breaker.

State machine::

    pending -> rolling_out -> healthy
                          \\-> rolling_back -> stable   (previous image restored)
                                           \\-> failed   (rollback did not converge)
    rolling_out -> superseded                         (another writer changed the image)
    pending -> healthy                                 (image already current: no-op)

New tasks are launched next to the old ones.  Old tasks are drained
only once ``minimum_healthy`` new tasks pass their health check.  If that
threshold is not reached within the grace window the new tasks are
stopped and the previous image is restored.  Rollback is retried until
the runtime converges or the attempt budget is exhausted, at which
point the deploy escalates with ``RollbackFailure``.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, NoReturn

from stagecraft.collaborators import HealthProbe
from stagecraft.core.clock import Clock, SystemClock
from stagecraft.core.errors import DeployHealthCheckTimeout, RollbackFailure, RolloutSuperseded
from stagecraft.core.runtime import ServiceRuntime
from stagecraft.models.runtime import ROLLOUT_TRANSITIONS, DeployResult, RolloutState

logger = logging.getLogger(__name__)


class RolloutController:
    """Drives one ServiceRuntime through deploys.

    Parameters
    ----------
    runtime:
        The service to update.
    probe:
        Health signal for individual tasks.
    grace_seconds:
        How long new tasks have to become healthy.
    poll_interval:
        Seconds between health polls.
    minimum_healthy_percent:
        Share of the desired count that must be healthy on the new image
        before old tasks are drained.  At least one task is always required.
    rollback_attempts:
        Rollback tries before escalating.
    clock:
        Time source; defaults to the system clock.
    """

    def __init__(
        self,
        runtime: ServiceRuntime,
        probe: HealthProbe,
        *,
        grace_seconds: float = 60.0,
        poll_interval: float = 5.0,
        minimum_healthy_percent: int = 100,
        rollback_attempts: int = 3,
        clock: Clock | None = None,
    ) -> None:
        if grace_seconds <= 0:
            raise ValueError("grace_seconds must be positive")
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if rollback_attempts < 1:
            raise ValueError("rollback_attempts must be at least 1")
        self.runtime = runtime
        self.probe = probe
        self.grace_seconds = grace_seconds
        self.poll_interval = poll_interval
        self.minimum_healthy_percent = minimum_healthy_percent
        self.rollback_attempts = rollback_attempts
        self.clock = clock or SystemClock()

    def _minimum_healthy(self, desired: int) -> int:
        return max(1, math.ceil(desired * self.minimum_healthy_percent / 100))

    def deploy(self, image_ref: str) -> DeployResult:
        """Roll *image_ref* out.  Returns on success; raises on rollback.

        Raises
        ------
        DeployHealthCheckTimeout
            Health never reached the threshold; the previous image is
            running again.
        RollbackFailure
            Health never reached the threshold and the previous image
            could not be restored.
        RolloutSuperseded
            The runtime's image was changed by another writer during the
            rollout; this rollout's tasks are stopped and that image is kept.
        """
        history = [RolloutState.PENDING]

        def advance(target: RolloutState) -> None:
            current = history[-1]
            if target not in ROLLOUT_TRANSITIONS[current]:
                raise RuntimeError(f"Illegal rollout transition {current.value}->{target.value}")
            history.append(target)
            logger.info("%s rollout %s: %s -> %s",
                        self.runtime.service_name, image_ref, current.value, target.value)

        snapshot = self.runtime.snapshot()
        previous = snapshot.current_image_ref

        if previous == image_ref and self.runtime.has_converged_to(image_ref):
            advance(RolloutState.HEALTHY)
            return DeployResult(
                service_name=self.runtime.service_name,
                requested_image_ref=image_ref,
                previous_image_ref=previous,
                current_image_ref=image_ref,
                state=RolloutState.HEALTHY,
                history=history,
                healthy_tasks=len(self.runtime.tasks(image_ref)),
                no_op=True,
            )

        advance(RolloutState.ROLLING_OUT)
        desired = max(snapshot.desired_count, 1)
        required = self._minimum_healthy(desired)
        new_tasks = self.runtime.launch_tasks(image_ref, desired)
        new_ids = [t.task_id for t in new_tasks]

        started = self.clock.now()
        deadline = started + self.grace_seconds
        healthy = 0
        while True:
            healthy = sum(1 for tid in new_ids if self.probe.is_healthy(tid, image_ref))
            if healthy >= required:
                break
            if self.clock.now() >= deadline:
                break
            self.clock.sleep(min(self.poll_interval, max(deadline - self.clock.now(), 0.0)))

        if healthy >= required:
            if not self.runtime.promote(image_ref, expected_previous=previous):
                self._abandon(image_ref, previous, new_ids, advance)
            advance(RolloutState.HEALTHY)
            return DeployResult(
                service_name=self.runtime.service_name,
                requested_image_ref=image_ref,
                previous_image_ref=previous,
                current_image_ref=image_ref,
                state=RolloutState.HEALTHY,
                history=history,
                healthy_tasks=healthy,
            )

        if self.runtime.current_image_ref != previous:
            self._abandon(image_ref, previous, new_ids, advance)

        waited = self.clock.now() - started
        logger.warning(
            "%s: %d/%d tasks of %s healthy after %.1fs; rolling back to %s",
            self.runtime.service_name, healthy, required, image_ref, waited, previous,
        )
        advance(RolloutState.ROLLING_BACK)
        self.runtime.stop_tasks(new_ids)

        if self._rollback(previous):
            advance(RolloutState.STABLE)
            raise DeployHealthCheckTimeout(image_ref, previous, waited)

        advance(RolloutState.FAILED)
        raise RollbackFailure(
            f"{self.runtime.service_name}: rollback to {previous!r} did not converge "
            f"after {self.rollback_attempts} attempts; operator intervention required"
        )

    def _abandon(
        self,
        image_ref: str,
        previous: str | None,
        new_ids: list[str],
        advance: Callable[[RolloutState], None],
    ) -> NoReturn:
        found = self.runtime.current_image_ref
        logger.warning(
            "%s: image changed from %s to %s during rollout of %s; stopping %d new tasks",
            self.runtime.service_name, previous, found, image_ref, len(new_ids),
        )
        if found != image_ref:
            self.runtime.stop_tasks(new_ids)
        advance(RolloutState.SUPERSEDED)
        raise RolloutSuperseded(image_ref, previous, found)

    def _rollback(self, previous: str | None) -> bool:
        for attempt in range(1, self.rollback_attempts + 1):
            known_desired = self.runtime.desired_count
            try:
                applied = self.runtime.rollback_to(previous, expected_desired=known_desired)
            except Exception as exc:
                logger.error(
                    "%s rollback attempt %d/%d raised: %s",
                    self.runtime.service_name, attempt, self.rollback_attempts, exc,
                )
                applied = False
            if applied and self.runtime.has_converged_to(previous):
                return True
            logger.warning(
                "%s rollback attempt %d/%d did not converge",
                self.runtime.service_name, attempt, self.rollback_attempts,
            )
            self.clock.sleep(self.poll_interval)
        return False
