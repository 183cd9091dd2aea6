"""ServiceRuntime - the long-lived, autoscaled compute target deploys apply to.

The runtime holds desired state (image, desired task count, capacity
bounds) and the set of tasks currently running.  It is shared between
the deploy path and the autoscaling loops, so every mutation happens
under one lock and the contended counter, ``desired_count``, is only
ever written through compare-and-set against the caller's last-known
value.

Ownership rules:
- ``current_image_ref`` changes only via ``promote`` (a successful
  deploy) or ``rollback_to``.
- Capacity bounds change only via ``configure_autoscaling``.
- ``desired_count`` is always clamped into ``[min_capacity, max_capacity]``.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import Counter

from pydantic import BaseModel, ConfigDict

from stagecraft.models.runtime import AutoscalingConfig, RuntimeConfig, RuntimeSnapshot

logger = logging.getLogger(__name__)


class Task(BaseModel):
    """One running instance of the service."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    image_ref: str


class ServiceRuntime:
    """In-process model of a clustered, load-balanced service.

    Parameters
    ----------
    config:
        Bootstrap configuration.  The runtime starts with
        ``min_capacity`` tasks of ``initial_image_ref`` (if any).
    """

    def __init__(self, config: RuntimeConfig) -> None:
        self.service_name = config.service_name
        self._lock = threading.RLock()
        self._autoscaling = config.autoscaling
        self._desired_count = max(config.autoscaling.min_capacity, 1)
        self._desired_count = config.autoscaling.clamp(self._desired_count)
        self._current_image_ref: str | None = config.initial_image_ref
        self._generation = 0
        self._task_seq = itertools.count(1)
        self._tasks: dict[str, Task] = {}
        if self._current_image_ref:
            self._launch(self._current_image_ref, self._desired_count)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    @property
    def current_image_ref(self) -> str | None:
        with self._lock:
            return self._current_image_ref

    @property
    def desired_count(self) -> int:
        with self._lock:
            return self._desired_count

    @property
    def autoscaling(self) -> AutoscalingConfig:
        with self._lock:
            return self._autoscaling

    def snapshot(self) -> RuntimeSnapshot:
        with self._lock:
            running = Counter(
                t.image_ref for t in self._tasks.values()
            )
            return RuntimeSnapshot(
                service_name=self.service_name,
                desired_count=self._desired_count,
                min_capacity=self._autoscaling.min_capacity,
                max_capacity=self._autoscaling.max_capacity,
                cpu_target=self._autoscaling.cpu_target_percent,
                mem_target=self._autoscaling.memory_target_percent,
                current_image_ref=self._current_image_ref,
                generation=self._generation,
                running_images=dict(running),
            )

    def tasks(self, image_ref: str | None = None) -> list[Task]:
        """Running tasks, optionally only those of *image_ref*."""
        with self._lock:
            return [
                t for t in self._tasks.values()
                if image_ref is None or t.image_ref == image_ref
            ]

    # ------------------------------------------------------------------
    # Capacity
    # ------------------------------------------------------------------

    def configure_autoscaling(self, config: AutoscalingConfig) -> None:
        """Replace capacity bounds and targets; re-clamps the desired count."""
        with self._lock:
            self._autoscaling = config
            clamped = config.clamp(self._desired_count)
            if clamped != self._desired_count:
                self._set_desired(clamped)
            self._generation += 1

    def compare_and_set_desired_count(self, expected: int, new_count: int) -> bool:
        """Set the desired count only if it still equals *expected*.

        *new_count* is clamped into the capacity bounds.  Returns False
        (and changes nothing) when another writer got there first.
        """
        with self._lock:
            if self._desired_count != expected:
                return False
            clamped = self._autoscaling.clamp(new_count)
            if clamped != self._desired_count:
                logger.info(
                    "%s desired count %d -> %d", self.service_name, self._desired_count, clamped
                )
                self._set_desired(clamped)
            self._generation += 1
            return True

    def _set_desired(self, count: int) -> None:
        self._desired_count = count
        if self._current_image_ref is None:
            return
        current = self.tasks(self._current_image_ref)
        if len(current) < count:
            self._launch(self._current_image_ref, count - len(current))
        elif len(current) > count:
            self._stop([t.task_id for t in current[count:]])

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def launch_tasks(self, image_ref: str, count: int) -> list[Task]:
        """Start *count* tasks of *image_ref* alongside whatever is running."""
        with self._lock:
            return self._launch(image_ref, count)

    def stop_tasks(self, task_ids: list[str]) -> None:
        with self._lock:
            self._stop(task_ids)

    def _launch(self, image_ref: str, count: int) -> list[Task]:
        launched = []
        for _ in range(count):
            task = Task(task_id=f"{self.service_name}-task-{next(self._task_seq)}", image_ref=image_ref)
            self._tasks[task.task_id] = task
            launched.append(task)
        return launched

    def _stop(self, task_ids: list[str]) -> None:
        for task_id in task_ids:
            task = self._tasks.pop(task_id, None)
            if task is not None:
                logger.debug("Stopped task %s (%s)", task_id, task.image_ref)

    # ------------------------------------------------------------------
    # Image
    # ------------------------------------------------------------------

    def promote(self, image_ref: str, expected_previous: str | None) -> bool:
        """Make *image_ref* current and drain every task of other images.

        Compare-and-set on the image: fails if the current image is no
        longer *expected_previous*.  Task count is reconciled to the
        desired count.
        """
        with self._lock:
            if self._current_image_ref != expected_previous:
                return False
            self._current_image_ref = image_ref
            self._stop([t.task_id for t in self._tasks.values() if t.image_ref != image_ref])
            self._set_desired(self._desired_count)
            self._generation += 1
            logger.info("%s now running %s", self.service_name, image_ref)
            return True

    def rollback_to(self, previous_ref: str | None, expected_desired: int) -> bool:
        """Restore *previous_ref* as the only running image.

        Compare-and-set against the last-known desired count: if an
        autoscaling decision moved it since the caller read it, nothing
        changes and False is returned so the caller can re-read and retry.
        """
        with self._lock:
            if self._desired_count != expected_desired:
                return False
            self._stop([t.task_id for t in self._tasks.values() if t.image_ref != previous_ref])
            self._current_image_ref = previous_ref
            if previous_ref is not None:
                self._set_desired(expected_desired)
            self._generation += 1
            logger.info("%s rolled back to %s", self.service_name, previous_ref)
            return True

    def has_converged_to(self, image_ref: str | None) -> bool:
        """True when *image_ref* is current and no other image has running tasks."""
        with self._lock:
            if self._current_image_ref != image_ref:
                return False
            return all(t.image_ref == image_ref for t in self.tasks())
