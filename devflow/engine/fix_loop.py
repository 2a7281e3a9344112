"""Bounded CI repair loop.

After the pull request is opened the run alternates between CI and repair:

    CI -> success -> done
    CI -> failure -> QA (local tests) -> FIX (analyze, commit) -> cooldown -> CI

Two counters are kept. ``fix_attempts`` counts CI failure cycles and bounds
the loop: once it reaches ``max_fix_attempts``, the next CI failure raises
``CIFailure`` with that check's logs. ``test_fix_attempts`` counts cycles
that actually produced a fix commit. A cycle where local tests pass (the
failure is environmental) or where the analysis proposes no files still
consumes a fix attempt, so a run performs at most ``max_fix_attempts + 1``
CI checks.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from devflow.config.settings import WorkflowConfig
from devflow.engine.activities import DeliveryActivities
from devflow.engine.context import RunContext
from devflow.engine.runtime import WorkflowRuntime
from devflow.enums import NotificationEvent, PipelineStatus, Stage
from devflow.exceptions import CIFailure, ValidationError
from devflow.models.artifacts import FailureAnalysis
from devflow.models.domain import CIResult, CommitResult, Pipeline, TestRun
from devflow.models.generation import SynthesisResult

# Logs attached to notifications are cut to keep chat messages readable.
NOTIFICATION_LOG_LIMIT = 2000
COMMIT_SUMMARY_LIMIT = 50

Transition = Callable[[RunContext, Stage], Awaitable[None]]
Notify = Callable[[RunContext, NotificationEvent, dict], Awaitable[None]]


class FixLoopController:
    """Drive a pull request through CI, repairing failures within bounds.

    Attributes:
        runtime: Journal-backed dispatcher of the run
        activities: Collaborator-bound activities
        config: Workflow limits (attempts, cooldown, CI polling)
    """

    def __init__(
        self,
        runtime: WorkflowRuntime,
        activities: DeliveryActivities,
        config: WorkflowConfig,
        transition: Transition,
        notify: Notify,
        checkpoint: Callable[[RunContext], Awaitable[None]],
    ) -> None:
        self.runtime = runtime
        self.activities = activities
        self.config = config
        self._transition = transition
        self._notify = notify
        self._checkpoint = checkpoint

    async def run(self, ctx: RunContext) -> CIResult:
        """Loop until CI passes.

        Returns:
            The successful CI result.

        Raises:
            CIFailure: If CI still fails after ``max_fix_attempts`` repairs,
                or never finishes within the polling budget
        """
        while True:
            await self._transition(ctx, Stage.CI)
            result = await self.wait_for_ci(ctx)

            if result.success:
                await self._notify(
                    ctx,
                    NotificationEvent.CI_PASSED,
                    {"pr_number": self._pr_number(ctx), "fix_attempts": ctx.fix_attempts},
                )
                return result

            await self._notify(
                ctx,
                NotificationEvent.CI_FAILED,
                {
                    "pr_number": self._pr_number(ctx),
                    "attempt": ctx.fix_attempts + 1,
                    "max_attempts": self.config.max_fix_attempts,
                    "logs": result.logs[:NOTIFICATION_LOG_LIMIT],
                },
            )
            if ctx.fix_attempts >= self.config.max_fix_attempts:
                raise CIFailure(
                    f"CI still failing after {ctx.fix_attempts} fix attempts",
                    logs=result.logs,
                    attempts=ctx.fix_attempts,
                )

            await self._transition(ctx, Stage.QA)
            test_run: TestRun = await self.runtime.execute(
                self.activities.run_tests, ctx.project_id, ctx.branch_name, result_type=TestRun
            )
            if not test_run.success and test_run.failures:
                await self._transition(ctx, Stage.FIX)
                await self.apply_fix(ctx, test_run, result.logs)
            elif test_run.success:
                ctx.log.info("ci_failure_not_reproduced_locally", attempt=ctx.fix_attempts + 1)

            ctx.fix_attempts += 1
            await self._checkpoint(ctx)
            await self.runtime.sleep(self.config.fix_cooldown_seconds, "fix_cooldown")

    async def wait_for_ci(self, ctx: RunContext) -> CIResult:
        """Poll CI for the branch head until it finishes.

        Raises:
            CIFailure: With ``timed_out`` set if polling runs out first
        """
        polls = self.config.ci_max_polls
        for poll in range(1, polls + 1):
            pipeline: Pipeline | None = await self.runtime.execute(
                self.activities.get_pipeline, ctx.head_sha, result_type=Pipeline | None
            )
            if pipeline is not None and pipeline.status == PipelineStatus.SUCCESS:
                return CIResult(success=True, duration=pipeline.duration, head_sha=ctx.head_sha)
            if pipeline is not None and pipeline.status == PipelineStatus.FAILURE:
                logs = await self.runtime.execute(self.activities.get_failed_job_logs, pipeline, result_type=str)
                return CIResult(success=False, logs=logs, duration=pipeline.duration, head_sha=ctx.head_sha)
            if poll < polls:
                await self.runtime.sleep(self.config.ci_poll_interval_seconds, "ci_poll")

        raise CIFailure(
            f"CI did not finish after {polls} polls",
            attempts=ctx.fix_attempts,
            timed_out=True,
        )

    async def apply_fix(self, ctx: RunContext, test_run: TestRun, ci_logs: str) -> None:
        """Analyze failing tests and commit the winning patch, if any."""
        synthesis: SynthesisResult = await self.runtime.execute(
            self.activities.analyze_failures,
            test_run,
            list(ctx.files.values()),
            ci_logs,
            ctx.test_fix_attempts,
            ctx.branch_name,
            result_type=SynthesisResult,
        )
        analysis = synthesis.winner.artifact
        if not isinstance(analysis, FailureAnalysis):
            raise ValidationError(f"Expected a failure analysis, got {type(analysis).__name__}")

        patch = analysis.files_to_patch()
        ctx.audit(
            "failure_analyzed",
            backend=synthesis.winner.backend_id,
            strategy=analysis.plan.strategy,
            confidence=str(analysis.confidence),
            files=[f.path for f in patch],
            agreement=round(synthesis.agreement_score, 3),
        )
        if not patch:
            ctx.log.warning("no_fix_proposed", attempt=ctx.fix_attempts + 1)
            return

        message = f"fix: {analysis.plan.strategy} - {analysis.analysis[:COMMIT_SUMMARY_LIMIT]}..."
        commit: CommitResult = await self.runtime.execute(
            self.activities.commit_files, ctx.branch_name, patch, message, result_type=CommitResult
        )
        ctx.head_sha = commit.sha
        ctx.record_files(patch)
        ctx.test_fix_attempts += 1

    @staticmethod
    def _pr_number(ctx: RunContext) -> int | None:
        return ctx.pull_request.number if ctx.pull_request else None
