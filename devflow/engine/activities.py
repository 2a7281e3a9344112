"""Activities: every side effect a delivery run performs.

Each method wraps one collaborator call (or one generation request) and is
marked with ``@activity`` so the runtime can journal its outcome and retry
it. Collaborators are injected at construction; nothing here reads global
state.

Notifications are best-effort: ``notify`` is never retried and swallows
sink failures after logging them, so a broken chat integration never
blocks a delivery.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from devflow.config.settings import DevflowSettings
from devflow.engine.runtime import activity
from devflow.enums import ArtifactKind
from devflow.exceptions import AllBackendsFailed, AuthenticationError
from devflow.generation.agreement import AgreementEvaluator
from devflow.generation.candidates import CandidateGenerator
from devflow.generation.parsing import parse_code_change
from devflow.generation.prompts import PromptRenderer
from devflow.generation.synthesizer import Synthesizer
from devflow.models.domain import (
    Branch,
    CodeChange,
    CommitResult,
    FileChange,
    Pipeline,
    PullRequest,
    Task,
    TestRun,
)
from devflow.models.generation import GenerationRequest, ScoringContext, SynthesisResult
from devflow.providers.base import (
    CIProvider,
    CodeHost,
    GeneratorBackend,
    NotificationSink,
    TaskSource,
    TestRunner,
)
from devflow.utils.retry import NO_RETRY

log = structlog.get_logger(__name__)


class DeliveryActivities:
    """Collaborator-bound activities used by the workflow engine.

    Attributes:
        settings: Repository, project and generation settings
        generator: Candidate fan-out over the configured backends
        synthesizer: Winner selection with weights and priority
    """

    def __init__(
        self,
        settings: DevflowSettings,
        task_source: TaskSource,
        code_host: CodeHost,
        ci: CIProvider,
        test_runner: TestRunner,
        notifier: NotificationSink,
        backends: Mapping[str, GeneratorBackend],
        renderer: PromptRenderer | None = None,
    ) -> None:
        self.settings = settings
        self.task_source = task_source
        self.code_host = code_host
        self.ci = ci
        self.test_runner = test_runner
        self.notifier = notifier
        self.backends = dict(backends)
        self.renderer = renderer or PromptRenderer()

        generation = settings.generation
        self.generator = CandidateGenerator(self.backends, timeout=generation.timeout_seconds)
        self.synthesizer = Synthesizer(
            weights=generation.weights,
            priority=self._priority(),
            evaluator=AgreementEvaluator(generation.agreement_normalizer),
        )

    def _priority(self) -> list[str]:
        configured = self.settings.generation.backend_ids
        return configured or list(self.backends)

    @property
    def _owner(self) -> str:
        return self.settings.repository.owner

    @property
    def _repo(self) -> str:
        return self.settings.repository.name

    def scoring_context(self) -> ScoringContext:
        project = self.settings.project
        return ScoringContext(language=project.language, framework=project.framework, known_paths=project.known_paths)

    # Task source

    @activity()
    async def sync_task(self, task_id: str) -> Task:
        return await self.task_source.sync_task(task_id)

    @activity()
    async def update_task_status(self, task_id: str, status: str) -> None:
        await self.task_source.update_task_status(task_id, status)

    @activity()
    async def add_comment(self, task_id: str, body: str) -> None:
        await self.task_source.add_comment(task_id, body)

    @activity(retry=NO_RETRY)
    async def notify(self, event: str, data: dict[str, Any]) -> bool:
        """Publish an event; returns False when the sink failed."""
        try:
            await self.notifier.notify(event, data)
        except Exception as e:
            log.warning("notification_failed", notification_event=event, error=str(e))
            return False
        return True

    # Generation

    @activity()
    async def generate_artifact(
        self,
        kind: ArtifactKind,
        task: Task,
        previous: dict[str, Any],
    ) -> SynthesisResult:
        """Fan out one artifact request and synthesize the winner.

        Args:
            kind: Artifact to generate
            task: Ticket being delivered
            previous: Winning artifacts of earlier spec steps, by kind
        """
        prompt = self.renderer.render_artifact(kind, task=task, project=self.settings.project, previous=previous)
        request = GenerationRequest(
            kind=kind,
            prompt=prompt,
            context={"task_id": task.id, "previous": previous},
            backend_ids=self._priority(),
        )
        candidates = await self.generator.generate(request, self.scoring_context())
        return self.synthesizer.synthesize(candidates, kind)

    @activity()
    async def generate_code(
        self,
        task: Task,
        previous: dict[str, Any],
        branch_name: str,
        backend_order: list[str],
    ) -> CodeChange:
        """Generate the implementation with the first backend that succeeds.

        Backends are tried in ``backend_order``, normally the winner of the
        last spec artifact followed by the priority list.

        Raises:
            AuthenticationError: If a backend rejects its credentials
            AllBackendsFailed: If no backend produced usable code
        """
        prompt = self.renderer.render_code(
            task=task,
            project=self.settings.project,
            previous=previous,
            branch=branch_name,
        )
        reasons: dict[str, str] = {}
        for backend_id in backend_order:
            backend = self.backends.get(backend_id)
            if backend is None:
                reasons[backend_id] = "unknown backend"
                continue
            try:
                generated = await backend.generate(prompt, {"task_id": task.id})
                change = parse_code_change(generated.content, branch_name)
            except AuthenticationError:
                raise
            except Exception as e:
                log.warning("code_generation_failed", backend_id=backend_id, error=str(e))
                reasons[backend_id] = str(e) or type(e).__name__
                continue
            # The workflow owns the branch name.
            return change.model_copy(update={"branch_name": branch_name})

        raise AllBackendsFailed(f"No backend generated usable code for {task.id}", reasons)

    @activity()
    async def analyze_failures(
        self,
        test_run: TestRun,
        files: list[FileChange],
        ci_logs: str,
        previous_attempts: int,
        branch_name: str,
    ) -> SynthesisResult:
        """Generate and synthesize a failure analysis for failing tests."""
        kind = ArtifactKind.FAILURE_ANALYSIS
        prompt = self.renderer.render_artifact(
            kind,
            branch=branch_name,
            previous_attempts=previous_attempts,
            failures=test_run.failures,
            ci_logs=ci_logs,
            implementation_files=[f for f in files if not f.is_test],
            test_files=[f for f in files if f.is_test],
        )
        request = GenerationRequest(
            kind=kind,
            prompt=prompt,
            context={"branch": branch_name, "previous_attempts": previous_attempts},
            backend_ids=self._priority(),
        )
        context = self.scoring_context()
        context.known_paths = [*context.known_paths, *(f.path for f in files)]
        candidates = await self.generator.generate(request, context)
        return self.synthesizer.synthesize(candidates, kind)

    # Code host

    @activity()
    async def create_branch(self, branch_name: str) -> Branch:
        return await self.code_host.create_branch(
            self._owner, self._repo, branch_name, self.settings.repository.default_branch
        )

    @activity()
    async def commit_files(self, branch_name: str, files: list[FileChange], message: str) -> CommitResult:
        return await self.code_host.commit_files(self._owner, self._repo, branch_name, files, message)

    @activity()
    async def create_pull_request(self, branch_name: str, title: str, body: str) -> PullRequest:
        return await self.code_host.create_pull_request(
            self._owner,
            self._repo,
            branch_name,
            self.settings.repository.default_branch,
            title,
            body,
        )

    @activity()
    async def merge_pull_request(self, number: int) -> None:
        await self.code_host.merge_pull_request(self._owner, self._repo, number)

    # CI and tests

    @activity()
    async def get_pipeline(self, sha: str) -> Pipeline | None:
        return await self.ci.get_pipeline_for_commit(self._owner, self._repo, sha)

    @activity()
    async def get_failed_job_logs(self, pipeline: Pipeline) -> str:
        logs = []
        for job in pipeline.failed_jobs:
            output = await self.ci.get_job_logs(self._owner, self._repo, job.id)
            logs.append(f"=== {job.name} ===\n{output}")
        return "\n\n".join(logs)

    @activity()
    async def run_tests(self, project_id: str, branch_name: str) -> TestRun:
        return await self.test_runner.run_tests(project_id, branch_name)
