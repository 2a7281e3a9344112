"""Durable ticket-to-merge workflow engine.

The engine sequences a delivery run through its stages::

    SYNC -> SPEC -> CODE -> PR -> CI -> QA -> MERGE -> NOTIFY
                                  ^     |
                                  +- FIX (bounded by max_fix_attempts)

Every side effect goes through the run's ``WorkflowRuntime``, so the same
``_run`` coroutine serves both fresh starts and resumption: on resume the
journal answers every step that already happened and execution continues
live from the first step it does not hold.

Failure Handling:
    Errors never escape ``start()`` or ``resume()``. A fatal error moves the
    run to FAILED or BLOCKED, triggers compensation (the ticket is marked
    blocked and a ``workflow_failed`` notification is sent) and is reported
    as a ``WorkflowResult`` carrying the stage, the error kind, its
    structured details and the partial progress (branch, pull request,
    counters). A cancelled run only gets the compensating status update.

Example:
    >>> engine = WorkflowEngine(settings, activities, StateManager(settings.state_dir))
    >>> result = await engine.start("PROJ-42", "shop")
    >>> result.success, result.data["fix_attempts"]
    (True, 1)
"""

from __future__ import annotations

import re
from typing import Any
from uuid import uuid4

import structlog

from devflow.config.settings import DevflowSettings
from devflow.engine.activities import DeliveryActivities
from devflow.engine.context import RunContext
from devflow.engine.fix_loop import FixLoopController
from devflow.engine.runtime import Clock, WorkflowRuntime
from devflow.engine.state_manager import StateManager
from devflow.engine.types import WorkflowRun
from devflow.enums import ArtifactKind, NotificationEvent, RunStatus, Stage
from devflow.exceptions import DevflowError, NondeterminismError, TestFailure, WorkflowCancelled
from devflow.models.domain import Branch, CodeChange, CommitResult, PullRequest, Task, TestRun, WorkflowResult
from devflow.models.generation import SynthesisResult
from devflow.utils.retry import RetryPolicy

log = structlog.get_logger(__name__)

TRANSITIONS: dict[Stage | None, frozenset[Stage]] = {
    None: frozenset({Stage.SYNC}),
    Stage.SYNC: frozenset({Stage.SPEC}),
    Stage.SPEC: frozenset({Stage.CODE}),
    Stage.CODE: frozenset({Stage.PR}),
    Stage.PR: frozenset({Stage.CI}),
    Stage.CI: frozenset({Stage.QA}),
    Stage.QA: frozenset({Stage.FIX, Stage.CI, Stage.MERGE}),
    Stage.FIX: frozenset({Stage.CI}),
    Stage.MERGE: frozenset({Stage.NOTIFY}),
    Stage.NOTIFY: frozenset(),
    Stage.FAILED: frozenset(),
    Stage.BLOCKED: frozenset(),
}

# Errors that need a human before the ticket can move again.
BLOCKING_ERROR_KINDS = frozenset({"AuthenticationError", "AllBackendsFailed", "WorkflowCancelled"})

INTERNAL_ERROR_KIND = "InternalError"
BRANCH_SLUG_LIMIT = 40


def branch_name_for(task: Task, prefix: str) -> str:
    """Deterministic feature branch name for a ticket."""
    slug = re.sub(r"[^a-z0-9]+", "-", task.title.lower()).strip("-")[:BRANCH_SLUG_LIMIT].rstrip("-")
    return f"{prefix}{task.id}-{slug}" if slug else f"{prefix}{task.id}"


class WorkflowEngine:
    """Run, resume and cancel delivery runs.

    Attributes:
        settings: Workflow, retry and status configuration
        activities: Collaborator-bound activities
        state: Run persistence
        clock: Time source for durable timers
    """

    def __init__(
        self,
        settings: DevflowSettings,
        activities: DeliveryActivities,
        state: StateManager,
        clock: Clock | None = None,
        retry_overrides: dict[str, RetryPolicy] | None = None,
    ) -> None:
        self.settings = settings
        self.activities = activities
        self.state = state
        self.clock = clock or Clock()
        self.retry_overrides = dict(retry_overrides or {})
        self._runtimes: dict[str, WorkflowRuntime] = {}

    async def start(self, task_id: str, project_id: str, run_id: str | None = None) -> WorkflowResult:
        """Start a new run for a ticket.

        Raises:
            ValidationError: If the ticket already has an active run
        """
        run_id = run_id or f"{task_id}-{uuid4().hex[:8]}"
        await self.state.create_run(run_id, task_id, project_id)
        return await self._execute(run_id)

    async def resume(self, run_id: str) -> WorkflowResult:
        """Continue a run from its journal.

        Finished runs return their recorded result without doing anything.
        """
        run = await self.state.load_run(run_id)
        if run["status"] != RunStatus.RUNNING.value and run["result"] is not None:
            return WorkflowResult.model_validate(run["result"])
        return await self._execute(run_id)

    def cancel(self, run_id: str) -> bool:
        """Request cooperative cancellation of an executing run.

        Returns:
            True if the run is executing in this engine.
        """
        runtime = self._runtimes.get(run_id)
        if runtime is None:
            return False
        runtime.cancel()
        return True

    async def get_run(self, run_id: str) -> WorkflowRun:
        return await self.state.load_run(run_id)

    async def _execute(self, run_id: str) -> WorkflowResult:
        run = await self.state.load_run(run_id)
        runtime = WorkflowRuntime(
            run_id,
            self.state,
            run["history"],
            self.clock,
            self.settings.retry.to_policy(),
            self.retry_overrides,
        )
        ctx = RunContext.open(run_id, run["task_id"], run["project_id"])
        if runtime.replaying:
            ctx.log.info("run_resuming", journal_entries=len(run["history"]))

        self._runtimes[run_id] = runtime
        try:
            try:
                result = await self._run(ctx, runtime)
            except DevflowError as e:
                if isinstance(e, NondeterminismError):
                    runtime.stop_replay()
                result = await self._fail(ctx, runtime, e.kind, e.message, e.details)
            except Exception as e:
                ctx.log.error("run_internal_error", error=str(e), exc_info=True)
                runtime.stop_replay()
                result = await self._fail(ctx, runtime, INTERNAL_ERROR_KIND, str(e), {"type": type(e).__name__})
        except Exception as e:
            # Compensation itself broke; the run still has to reach a terminal state.
            ctx.log.error("run_failure_handling_error", error=str(e), exc_info=True)
            result = WorkflowResult(
                success=False,
                run_id=run_id,
                stage=ctx.stage if ctx.stage and not ctx.stage.is_terminal else Stage.SYNC,
                status=RunStatus.FAILED,
                error_kind=getattr(e, "kind", INTERNAL_ERROR_KIND),
                error=str(e),
                data=dict(ctx.progress()),
            )
            ctx.stage = Stage.FAILED
        finally:
            self._runtimes.pop(run_id, None)

        await ctx.close(self.state)
        await self.state.finish_run(run_id, result.status, str(ctx.stage), result.model_dump(mode="json"))
        return result

    async def _run(self, ctx: RunContext, runtime: WorkflowRuntime) -> WorkflowResult:
        acts = self.activities
        statuses = self.settings.task_statuses
        config = self.settings.workflow

        await self._transition(ctx, Stage.SYNC)
        ctx.task = await runtime.execute(acts.sync_task, ctx.task_id, result_type=Task)
        await self._notify(ctx, NotificationEvent.WORKFLOW_STARTED, {"title": ctx.task.title}, runtime)
        await runtime.execute(acts.update_task_status, ctx.task_id, statuses.specification)

        await self._transition(ctx, Stage.SPEC)
        previous: dict[str, Any] = {}
        for kind in config.artifacts_for(ctx.task.status):
            synthesis = await runtime.execute(
                acts.generate_artifact, kind, ctx.task, dict(previous), result_type=SynthesisResult
            )
            ctx.artifacts[kind.value] = synthesis
            previous[kind.value] = synthesis.winner.artifact.model_dump(mode="json")
            ctx.audit(
                "artifact_selected",
                kind=kind.value,
                backend=synthesis.winner.backend_id,
                score=synthesis.weighted_scores.get(synthesis.winner.backend_id),
                agreement=round(synthesis.agreement_score, 3),
            )
            await runtime.execute(acts.add_comment, ctx.task_id, self._synthesis_comment(kind, synthesis))
        await runtime.execute(acts.update_task_status, ctx.task_id, statuses.in_progress)
        await self._notify(
            ctx,
            NotificationEvent.SPEC_GENERATED,
            {
                "artifacts": {kind: s.winner.backend_id for kind, s in ctx.artifacts.items()},
                "agreement": {kind: round(s.agreement_score, 3) for kind, s in ctx.artifacts.items()},
            },
            runtime,
        )

        await self._transition(ctx, Stage.CODE)
        ctx.branch_name = branch_name_for(ctx.task, config.branch_prefix)
        ctx.code = await runtime.execute(
            acts.generate_code,
            ctx.task,
            previous,
            ctx.branch_name,
            self._code_backend_order(ctx),
            result_type=CodeChange,
        )

        await self._transition(ctx, Stage.PR)
        await runtime.execute(acts.create_branch, ctx.branch_name, result_type=Branch)
        files = ctx.code.all_files()
        commit = await runtime.execute(
            acts.commit_files, ctx.branch_name, files, ctx.code.commit_message, result_type=CommitResult
        )
        ctx.head_sha = commit.sha
        ctx.record_files(files)
        ctx.pull_request = await runtime.execute(
            acts.create_pull_request,
            ctx.branch_name,
            ctx.code.pr_title,
            self._pr_body(ctx),
            result_type=PullRequest,
        )
        await self._checkpoint(ctx)
        await self._notify(
            ctx,
            NotificationEvent.PR_CREATED,
            {"pr_number": ctx.pull_request.number, "pr_url": ctx.pull_request.url, "branch": ctx.branch_name},
            runtime,
        )
        await runtime.execute(acts.update_task_status, ctx.task_id, statuses.in_review)

        fix_loop = FixLoopController(
            runtime,
            acts,
            config,
            transition=self._transition,
            notify=lambda c, event, data: self._notify(c, event, data, runtime),
            checkpoint=self._checkpoint,
        )
        await fix_loop.run(ctx)

        await self._transition(ctx, Stage.QA)
        final = await runtime.execute(acts.run_tests, ctx.project_id, ctx.branch_name, result_type=TestRun)
        if not final.success:
            await self._notify(
                ctx,
                NotificationEvent.TESTS_FAILED,
                {"failed": final.failed, "passed": final.passed, "pr_number": ctx.pull_request.number},
                runtime,
            )
            raise TestFailure(
                f"{final.failed} tests failing in final validation",
                [f.model_dump(mode="json") for f in final.failures],
            )
        await self._notify(
            ctx,
            NotificationEvent.QA_COMPLETED,
            {"passed": final.passed, "coverage": final.coverage},
            runtime,
        )

        await self._transition(ctx, Stage.MERGE)
        if config.auto_merge:
            await runtime.execute(acts.merge_pull_request, ctx.pull_request.number)
        await runtime.execute(acts.update_task_status, ctx.task_id, statuses.done)

        await self._transition(ctx, Stage.NOTIFY)
        data = {**ctx.progress(), "merged": config.auto_merge}
        await self._notify(ctx, NotificationEvent.WORKFLOW_COMPLETED, data, runtime)
        ctx.audit("workflow_completed", **data)

        return WorkflowResult(
            success=True,
            run_id=ctx.run_id,
            stage=Stage.NOTIFY,
            status=RunStatus.SUCCEEDED,
            data=data,
        )

    async def _fail(
        self,
        ctx: RunContext,
        runtime: WorkflowRuntime,
        kind: str,
        message: str,
        details: dict[str, Any],
    ) -> WorkflowResult:
        failed_stage = ctx.stage or Stage.SYNC
        blocked = kind in BLOCKING_ERROR_KINDS
        progress = dict(ctx.progress())
        ctx.audit("workflow_failed", stage=str(failed_stage), error_kind=kind, error=message)

        if kind != WorkflowCancelled.kind:
            await self._notify(
                ctx,
                NotificationEvent.WORKFLOW_FAILED,
                {"stage": str(failed_stage), "error": message, "error_kind": kind, "details": details, **progress},
                runtime,
            )
        await self._compensate(ctx, runtime)

        await self._transition(ctx, Stage.BLOCKED if blocked else Stage.FAILED)
        return WorkflowResult(
            success=False,
            run_id=ctx.run_id,
            stage=failed_stage,
            status=RunStatus.BLOCKED if blocked else RunStatus.FAILED,
            error_kind=kind,
            error=message,
            details=details,
            data=progress,
        )

    async def _compensate(self, ctx: RunContext, runtime: WorkflowRuntime) -> None:
        """Mark the ticket blocked; committed side effects are left in place."""
        try:
            await runtime.execute(
                self.activities.update_task_status, ctx.task_id, self.settings.task_statuses.blocked
            )
        except DevflowError as e:
            ctx.log.error("compensation_failed", error=e.message, error_kind=e.kind)

    async def _transition(self, ctx: RunContext, stage: Stage) -> None:
        if not stage.is_terminal and stage not in TRANSITIONS[ctx.stage]:
            raise RuntimeError(f"Illegal stage transition {ctx.stage} -> {stage}")
        previous, ctx.stage = ctx.stage, stage
        ctx.log.info("stage_entered", stage=str(stage), previous=str(previous) if previous else None)
        await self._checkpoint(ctx)

    async def _checkpoint(self, ctx: RunContext) -> None:
        await self.state.update_run(
            ctx.run_id,
            current_stage=str(ctx.stage) if ctx.stage else None,
            fix_attempts=ctx.fix_attempts,
            test_fix_attempts=ctx.test_fix_attempts,
            progress=ctx.progress(),
        )

    async def _notify(
        self,
        ctx: RunContext,
        event: NotificationEvent,
        data: dict[str, Any],
        runtime: WorkflowRuntime,
    ) -> None:
        payload = {"run_id": ctx.run_id, "task_id": ctx.task_id, **data}
        await runtime.execute(self.activities.notify, event.value, payload)

    def _code_backend_order(self, ctx: RunContext) -> list[str]:
        order = list(self.settings.generation.backend_ids or self.activities.backends)
        last = list(ctx.artifacts.values())[-1].winner.backend_id if ctx.artifacts else None
        if last is not None:
            order = [last, *(b for b in order if b != last)]
        return order

    @staticmethod
    def _synthesis_comment(kind: ArtifactKind, synthesis: SynthesisResult) -> str:
        title = kind.value.replace("_", " ").title()
        return f"## {title}\n\n{synthesis.explanation}"

    @staticmethod
    def _pr_body(ctx: RunContext) -> str:
        lines = [ctx.code.pr_description if ctx.code else "", "", f"Ticket: {ctx.task_id}"]
        if ctx.task and ctx.task.url:
            lines.append(ctx.task.url)
        return "\n".join(lines).strip()
