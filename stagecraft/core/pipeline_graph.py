"""Static validation of pipeline topology.

The graph checks, once, at construction time:
- Stage ordinals form the contiguous sequence 0, 1, 2, ... in list order.
- Stage names and action ids are unique, and no stage is empty.
- Every output an action declares belongs to the action's own stage and
  is written by exactly one action.
- Every input an action consumes is produced by an action in a strictly
  earlier stage, or is the source artifact written before stage 0.

Nothing here runs at execution time; a pipeline that constructs is a
pipeline whose ordering invariants hold.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from stagecraft.core.errors import PipelineValidationError
from stagecraft.models.artifacts import SOURCE_REF, SOURCE_STAGE_ID, ArtifactRef

if TYPE_CHECKING:
    from stagecraft.models.pipeline import Stage


class PipelineGraph:
    """Producer/consumer index over a validated list of stages."""

    def __init__(self, stages: Sequence[Stage]) -> None:
        self._stages = list(stages)
        # artifact key -> (stage ordinal, action id)
        self._producers: dict[str, tuple[int, str]] = {}
        # artifact key -> [(stage ordinal, action id)]
        self._consumers: dict[str, list[tuple[int, str]]] = {}
        self._validate()

    def _validate(self) -> None:
        if not self._stages:
            raise PipelineValidationError("A pipeline needs at least one stage")

        seen_names: set[str] = set()
        seen_actions: set[str] = set()
        for index, stage in enumerate(self._stages):
            if stage.ordinal != index:
                raise PipelineValidationError(
                    f"Stage {stage.name!r} has ordinal {stage.ordinal}; expected {index} "
                    "(ordinals must be contiguous from 0 in list order)"
                )
            if stage.name == SOURCE_STAGE_ID:
                raise PipelineValidationError(
                    f"Stage name {SOURCE_STAGE_ID!r} is reserved for source retrieval"
                )
            if stage.name in seen_names:
                raise PipelineValidationError(f"Duplicate stage name {stage.name!r}")
            seen_names.add(stage.name)
            if not stage.actions:
                raise PipelineValidationError(f"Stage {stage.name!r} has no actions")

            for action in stage.actions:
                if action.id in seen_actions:
                    raise PipelineValidationError(f"Duplicate action id {action.id!r}")
                seen_actions.add(action.id)
                for ref in action.spec.outputs:
                    if ref.stage_id != stage.name:
                        raise PipelineValidationError(
                            f"Action {action.id!r} in stage {stage.name!r} declares output "
                            f"{ref.key}, which belongs to another stage"
                        )
                    if ref.key in self._producers:
                        raise PipelineValidationError(
                            f"Artifact {ref.key} is written by both "
                            f"{self._producers[ref.key][1]!r} and {action.id!r}"
                        )
                    self._producers[ref.key] = (index, action.id)

        # Consumers are checked after every producer is known so the error
        # can say whether a reference points forward or nowhere.
        for index, stage in enumerate(self._stages):
            for action in stage.actions:
                for ref in action.spec.inputs:
                    self._check_input(index, stage.name, action.id, ref)
                    self._consumers.setdefault(ref.key, []).append((index, action.id))

    def _check_input(self, index: int, stage_name: str, action_id: str, ref: ArtifactRef) -> None:
        if ref == SOURCE_REF:
            return
        producer = self._producers.get(ref.key)
        if producer is None:
            raise PipelineValidationError(
                f"Action {action_id!r} consumes {ref.key}, which no action produces"
            )
        producer_index, producer_id = producer
        if producer_index >= index:
            where = "the same stage" if producer_index == index else "a later stage"
            raise PipelineValidationError(
                f"Action {action_id!r} in stage {stage_name!r} consumes {ref.key}, "
                f"produced by {producer_id!r} in {where}; inputs must come from earlier stages"
            )

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def producer_of(self, ref: ArtifactRef) -> str | None:
        """Action id that writes *ref*, or None for the source artifact."""
        producer = self._producers.get(ref.key)
        return producer[1] if producer else None

    def consumers_of(self, ref: ArtifactRef) -> list[str]:
        return [action_id for _, action_id in self._consumers.get(ref.key, [])]

    @property
    def stage_names(self) -> list[str]:
        return [stage.name for stage in self._stages]
