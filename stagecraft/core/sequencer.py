"""Pipeline sequencer - executes a validated Pipeline.

Execution rules:
- Source retrieval runs first.  If it fails the run aborts with
  ``SourceUnavailable`` before any stage starts.
- Stages run strictly in ordinal order.  A stage is complete only when
  every action in it is terminal.
- Actions in a stage run concurrently on a thread pool.
- Any action failure fails its stage and aborts the run.  Siblings that
  have not started are skipped; siblings already running finish.
- An action's outputs are published before it is marked succeeded, so a
  later stage never reads an artifact from an unfinished or failed action.
- The first failing action's error becomes the run's cause.
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from stagecraft.actions.base import ActionContext, BaseAction
from stagecraft.collaborators import SourceProvider
from stagecraft.core.artifact_store import ArtifactStore
from stagecraft.core.errors import SourceUnavailable
from stagecraft.core.run_ledger import RunLedger
from stagecraft.core.stage_machine import StageMachine
from stagecraft.models.actions import ActionKind
from stagecraft.models.artifacts import SOURCE_REF, ArtifactKind, SourceRevision
from stagecraft.models.ledger import RUN_SCOPE, LedgerEntry
from stagecraft.models.pipeline import Pipeline, PipelineResult, PipelineStatus, Stage
from stagecraft.models.stages import ActionResult, StageResult, StageState

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"sc-{ts}-{uuid.uuid4().hex[:6]}"


class _FirstFailure:
    """Remembers the first action failure of a run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.action_id: str | None = None
        self.error: BaseException | None = None

    def offer(self, action_id: str, error: BaseException) -> None:
        with self._lock:
            if self.error is None:
                self.action_id = action_id
                self.error = error


class Sequencer:
    """Runs pipelines against an artifact store, recording into a ledger.

    Parameters
    ----------
    store:
        Artifact store shared by every action of a run.
    ledger:
        Run ledger receiving the status trail.
    source_provider:
        Collaborator used for source retrieval.
    max_parallel_actions:
        Upper bound on concurrently running actions within one stage.
    """

    def __init__(
        self,
        store: ArtifactStore,
        ledger: RunLedger,
        source_provider: SourceProvider,
        *,
        max_parallel_actions: int = 4,
    ) -> None:
        if max_parallel_actions < 1:
            raise ValueError("max_parallel_actions must be at least 1")
        self.store = store
        self.ledger = ledger
        self.source_provider = source_provider
        self.max_parallel_actions = max_parallel_actions
        self.stage_machine = StageMachine(ledger)
        # Per-action execution slots, shared by every run on this sequencer.
        # Migrations are excluded: their lock rejects instead of queueing.
        self._slots: dict[str, threading.BoundedSemaphore] = {}
        self._slots_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def run(self, pipeline: Pipeline, *, run_id: str | None = None) -> PipelineResult:
        """Execute *pipeline* and return its result.  Never raises for action failures."""
        run_id = run_id or new_run_id()
        started_at = datetime.now(timezone.utc)
        self.stage_machine.initialize_run(
            run_id, [(stage.name, stage.action_ids) for stage in pipeline.stages]
        )
        self._record_run(run_id, "pending->running", {
            "pipeline": pipeline.name,
            "environment": pipeline.environment,
            "branch": pipeline.branch,
            "stages": ",".join(stage.name for stage in pipeline.stages),
        })
        logger.info(
            "[%s] pipeline %s starting (environment=%s, branch=%s)",
            run_id, pipeline.name, pipeline.environment, pipeline.branch,
        )

        try:
            source = self._retrieve_source(run_id, pipeline)
        except SourceUnavailable as exc:
            logger.error("[%s] source unavailable: %s", run_id, exc)
            stage_results = self._skip_stages(run_id, pipeline.stages)
            return self._finish(
                run_id, pipeline, started_at, PipelineStatus.FAILED, stage_results,
                error=exc, failed_action=None, source=None,
            )

        stage_results: list[StageResult] = []
        failure = _FirstFailure()
        for index, stage in enumerate(pipeline.stages):
            result = self._run_stage(run_id, pipeline, stage, failure)
            stage_results.append(result)
            if result.state == StageState.FAILED:
                stage_results.extend(self._skip_stages(run_id, pipeline.stages[index + 1:]))
                return self._finish(
                    run_id, pipeline, started_at, PipelineStatus.FAILED, stage_results,
                    error=failure.error, failed_action=failure.action_id, source=source,
                )

        return self._finish(
            run_id, pipeline, started_at, PipelineStatus.SUCCEEDED, stage_results,
            error=None, failed_action=None, source=source,
        )

    def _retrieve_source(self, run_id: str, pipeline: Pipeline) -> SourceRevision:
        try:
            source = self.source_provider.fetch(pipeline.repository, pipeline.branch)
        except SourceUnavailable:
            raise
        except Exception as exc:
            raise SourceUnavailable(
                f"Could not fetch {pipeline.repository}@{pipeline.branch}: {exc}"
            ) from exc

        artifact = BaseAction.make_artifact(
            SOURCE_REF,
            ArtifactKind.SOURCE,
            version=source.revision,
            payload=source.model_dump(),
            payload_ref=source.bundle_path,
        )
        self.store.write(artifact)
        self._record_run(run_id, "source->fetched", {
            "repository": source.repository,
            "branch": source.branch,
            "revision": source.revision,
        }, artifacts=[SOURCE_REF.key])
        return source

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    def _run_stage(
        self, run_id: str, pipeline: Pipeline, stage: Stage, failure: _FirstFailure
    ) -> StageResult:
        self.stage_machine.transition(run_id, stage.name, StageState.RUNNING)
        logger.info("[%s] stage %d %s running %d action(s)",
                    run_id, stage.ordinal, stage.name, len(stage.actions))

        context = ActionContext(
            run_id=run_id,
            stage_id=stage.name,
            environment=pipeline.environment,
            branch=pipeline.branch,
            store=self.store,
        )
        abort = threading.Event()
        start_lock = threading.Lock()
        workers = min(self.max_parallel_actions, len(stage.actions))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=stage.name) as pool:
            futures = [
                pool.submit(
                    self._run_action, run_id, stage, action, context, abort, start_lock, failure
                )
                for action in stage.actions
            ]
            # Leaving the block waits for every submitted action: the stage barrier.
        action_results = [f.result() for f in futures]

        failed = any(r.state == StageState.FAILED for r in action_results)
        state = StageState.FAILED if failed else StageState.SUCCEEDED
        self.stage_machine.transition(run_id, stage.name, state)
        logger.info("[%s] stage %s %s", run_id, stage.name, state.value)
        return StageResult(name=stage.name, ordinal=stage.ordinal, state=state, actions=action_results)

    def _run_action(
        self,
        run_id: str,
        stage: Stage,
        action: BaseAction,
        context: ActionContext,
        abort: threading.Event,
        start_lock: threading.Lock,
        failure: _FirstFailure,
    ) -> ActionResult:
        with start_lock:
            if abort.is_set():
                self.stage_machine.transition(
                    run_id, stage.name, StageState.SKIPPED, action_id=action.id,
                    detail={"reason": "sibling failed"},
                )
                logger.info("[%s] %s skipped: a sibling failed", run_id, action.id)
                return ActionResult(
                    action_id=action.id, kind=action.kind.value, state=StageState.SKIPPED
                )
            self.stage_machine.transition(
                run_id, stage.name, StageState.RUNNING, action_id=action.id
            )

        started_at = datetime.now(timezone.utc)
        slot = self._slot_for(action)
        try:
            if slot is not None:
                with slot:
                    outcome = action.run_action(context)
            else:
                outcome = action.run_action(context)
        except Exception as exc:
            failure.offer(action.id, exc)
            with start_lock:
                abort.set()
            error_type = type(exc).__name__
            logger.error("[%s] %s failed (%s): %s", run_id, action.id, error_type, exc)
            self.stage_machine.transition(
                run_id, stage.name, StageState.FAILED, action_id=action.id,
                detail={"error_type": error_type, "error": str(exc)},
            )
            return ActionResult(
                action_id=action.id,
                kind=action.kind.value,
                state=StageState.FAILED,
                error=str(exc),
                error_type=error_type,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
            )

        outputs = [a.ref.key for a in outcome.artifacts]
        self.stage_machine.transition(
            run_id, stage.name, StageState.SUCCEEDED, action_id=action.id,
            artifact_references=outputs, detail=outcome.detail,
        )
        return ActionResult(
            action_id=action.id,
            kind=action.kind.value,
            state=StageState.SUCCEEDED,
            outputs=outputs,
            detail=outcome.detail,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )

    def _slot_for(self, action: BaseAction) -> threading.BoundedSemaphore | None:
        limit = action.spec.concurrency_limit
        if limit is None or action.kind == ActionKind.MIGRATE:
            return None
        with self._slots_lock:
            slot = self._slots.get(action.id)
            if slot is None:
                slot = self._slots[action.id] = threading.BoundedSemaphore(limit)
            return slot

    def _skip_stages(self, run_id: str, stages: tuple[Stage, ...]) -> list[StageResult]:
        results = []
        for stage in stages:
            actions = []
            for action in stage.actions:
                self.stage_machine.transition(
                    run_id, stage.name, StageState.SKIPPED, action_id=action.id
                )
                actions.append(ActionResult(
                    action_id=action.id, kind=action.kind.value, state=StageState.SKIPPED
                ))
            self.stage_machine.transition(run_id, stage.name, StageState.SKIPPED)
            results.append(StageResult(
                name=stage.name, ordinal=stage.ordinal, state=StageState.SKIPPED, actions=actions
            ))
        return results

    # ------------------------------------------------------------------
    # Ledger helpers
    # ------------------------------------------------------------------

    def _record_run(
        self,
        run_id: str,
        transition: str,
        detail: dict[str, str],
        *,
        artifacts: list[str] | None = None,
    ) -> None:
        self.ledger.append(LedgerEntry(
            run_id=run_id,
            stage_id=RUN_SCOPE,
            state_transition=transition,
            detail=detail,
            artifact_references=artifacts or [],
        ))

    def _finish(
        self,
        run_id: str,
        pipeline: Pipeline,
        started_at: datetime,
        status: PipelineStatus,
        stage_results: list[StageResult],
        *,
        error: BaseException | None,
        failed_action: str | None,
        source: SourceRevision | None,
    ) -> PipelineResult:
        cause = str(error) if error is not None else None
        cause_type = type(error).__name__ if error is not None else None
        detail = {"status": status.value}
        if cause_type:
            detail["cause_type"] = cause_type
            detail["cause"] = cause or ""
        if failed_action:
            detail["failed_action"] = failed_action
        self._record_run(run_id, f"running->{status.value}", detail)

        if status == PipelineStatus.SUCCEEDED:
            logger.info("[%s] pipeline %s succeeded", run_id, pipeline.name)
        else:
            logger.error("[%s] pipeline %s failed: %s: %s", run_id, pipeline.name, cause_type, cause)

        return PipelineResult(
            run_id=run_id,
            pipeline_name=pipeline.name,
            environment=pipeline.environment,
            branch=pipeline.branch,
            status=status,
            source_revision=source.revision if source else None,
            stages=stage_results,
            cause=cause,
            cause_type=cause_type,
            failed_action=failed_action,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )

