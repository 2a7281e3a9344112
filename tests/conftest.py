"""Pytest configuration and shared fixtures."""

import asyncio
import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from devflow.config.settings import DevflowSettings
from devflow.engine.activities import DeliveryActivities
from devflow.engine.state_manager import StateManager
from devflow.engine.workflow import WorkflowEngine
from devflow.enums import PipelineStatus
from devflow.models.domain import (
    Branch,
    CommitResult,
    GeneratedContent,
    Pipeline,
    PipelineJob,
    PullRequest,
    Task,
    TestFailureDetail,
    TestRun,
)
from devflow.providers.base import GeneratorBackend

# ==============================================================================
# Generator payloads
# ==============================================================================


def fenced(data: dict[str, Any]) -> str:
    return f"Here you go:\n```json\n{json.dumps(data)}\n```\n"


def user_story_payload() -> dict[str, Any]:
    return {
        "title": "Email login",
        "actor": "registered customer",
        "goal": "log in with my email and password",
        "benefit": "I can see my saved orders",
        "acceptanceCriteria": [
            "Given valid credentials when I log in then I see my dashboard",
            "Given a wrong password when I log in then I see an error",
            "Given five failures when I log in then my account is locked",
            "Given a locked account when I reset my password then it unlocks",
        ],
        "definitionOfDone": ["Code reviewed", "Tests pass", "Docs updated"],
        "businessValue": "Fewer support tickets about lost account access",
        "storyPoints": 5,
    }


def plan_payload(steps: int = 5, **overrides: Any) -> dict[str, Any]:
    payload = {
        "architecture": ["AuthService in app/auth.py", "Session middleware"],
        "implementationSteps": [f"Step {n}: implement part {n} in python" for n in range(1, steps + 1)],
        "testingStrategy": "pytest unit tests for AuthService",
        "risks": ["Password hashing cost"],
        "estimatedTime": 240,
        "dependencies": ["passlib"],
        "technicalDecisions": ["bcrypt for hashing"],
        "filesAffected": ["app/auth.py", "tests/test_auth.py"],
    }
    payload.update(overrides)
    return payload


def code_payload() -> dict[str, Any]:
    return {
        "files": [{"path": "app/auth.py", "content": "def login():\n    return True\n", "action": "create"}],
        "tests": [
            {"path": "tests/test_auth.py", "content": "def test_login():\n    assert login()\n", "action": "create"}
        ],
        "commitMessage": "feat: add email login",
        "prTitle": "Add email login",
        "prDescription": "Implements email login.",
    }


def failure_payload(strategy: str = "fix_implementation", with_files: bool = True) -> dict[str, Any]:
    fixes = [{"path": "app/auth.py", "content": "def login():\n    return 1\n", "reason": "Wrong return"}]
    return {
        "fixStrategy": strategy,
        "implementationFixes": fixes if with_files and strategy != "fix_tests" else [],
        "testFixes": fixes if with_files and strategy == "fix_tests" else [],
        "analysis": "login() returned the wrong value for a locked account, which the new test asserts",
        "confidence": "high",
    }


# Each prompt template opens with a distinct sentence.
PROMPT_MARKERS = {
    "formal user story": "user_story",
    "technical plan": "technical_plan",
    "implementation specification": "specification",
    "refining a backlog item": "refinement",
    "Implement the ticket": "code",
    "Tests are failing": "failure_analysis",
}


class ScriptedBackend(GeneratorBackend):
    """Generator backend answering from canned payloads by prompt type."""

    def __init__(self, backend_id: str, responses: dict[str, Any], delay: float = 0.0) -> None:
        self._backend_id = backend_id
        self.responses = responses
        self.delay = delay
        self.prompts: list[str] = []

    @property
    def backend_id(self) -> str:
        return self._backend_id

    async def generate(self, prompt: str, context: dict[str, Any] | None = None) -> GeneratedContent:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)

        key = next(value for marker, value in PROMPT_MARKERS.items() if marker in prompt[:80])
        response = self.responses[key]
        if isinstance(response, Exception):
            raise response
        content = response if isinstance(response, str) else fenced(response)
        return GeneratedContent(content=content, model_id=f"{self._backend_id}-model")


def default_responses() -> dict[str, Any]:
    return {
        "user_story": user_story_payload(),
        "technical_plan": plan_payload(),
        "specification": plan_payload(),
        "refinement": {"businessContext": "Customers cannot log in", "objectives": ["Login"]},
        "code": code_payload(),
        "failure_analysis": failure_payload(),
    }


# ==============================================================================
# Clocks
# ==============================================================================


class FakeClock:
    """Virtual clock: sleeping advances time instantly."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += seconds
        await asyncio.sleep(0)


class BlockingClock(FakeClock):
    """Clock whose sleeps never finish; ``entered`` is set on the first one."""

    def __init__(self, start: float = 1_000.0) -> None:
        super().__init__(start)
        self.entered = asyncio.Event()

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.entered.set()
        await asyncio.Event().wait()


# ==============================================================================
# Domain builders
# ==============================================================================


def pipeline(status: PipelineStatus, job_status: PipelineStatus | None = None) -> Pipeline:
    return Pipeline(
        id="pipe-1",
        status=status,
        jobs=[PipelineJob(id="job-1", name="tests", status=job_status or status)],
        duration=42.0,
    )


def failing_tests() -> TestRun:
    return TestRun(
        success=False,
        passed=10,
        failed=1,
        failures=[TestFailureDetail(test="test_login", file="tests/test_auth.py", message="assert 1 == True")],
    )


def passing_tests() -> TestRun:
    return TestRun(success=True, passed=11, failed=0, coverage=87.5)


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def temp_state_dir(tmp_path: Path) -> Path:
    """Temporary state directory."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def state_manager(temp_state_dir: Path) -> StateManager:
    """StateManager instance with temp directory."""
    return StateManager(str(temp_state_dir))


@pytest.fixture
def settings(temp_state_dir: Path) -> DevflowSettings:
    """Settings with two backends and fast CI polling."""
    return DevflowSettings(
        repository={"owner": "acme", "name": "shop", "default_branch": "main"},
        project={"language": "python", "framework": None, "known_paths": ["app/auth.py"]},
        generation={
            "backends": [
                {"id": "claude", "model": "claude-sonnet-4", "weight": 1.0},
                {"id": "gpt", "model": "gpt-4o", "weight": 0.9},
            ],
            "timeout_seconds": 5.0,
        },
        workflow={
            "state_directory": str(temp_state_dir),
            "max_fix_attempts": 3,
            "fix_cooldown_seconds": 30,
            "ci_poll_interval_seconds": 30,
            "ci_max_polls": 5,
        },
    )


@pytest.fixture
def sample_task() -> Task:
    return Task(
        id="PROJ-42",
        title="Add email login",
        description="Customers should log in with email and password.",
        labels=["auth"],
        url="https://tracker.example.com/PROJ-42",
    )


@pytest.fixture
def task_source(sample_task: Task) -> AsyncMock:
    mock = AsyncMock()
    mock.sync_task.return_value = sample_task
    mock.update_task_status.return_value = None
    mock.add_comment.return_value = None
    return mock


@pytest.fixture
def code_host() -> AsyncMock:
    mock = AsyncMock()
    mock.create_branch.side_effect = lambda owner, repo, branch, base: Branch(name=branch, sha="base-sha")

    commits: list[str] = []

    def commit(owner, repo, branch, files, message):
        commits.append(message)
        return CommitResult(sha=f"sha-{len(commits)}", branch=branch)

    mock.commit_files.side_effect = commit
    mock.create_pull_request.side_effect = lambda owner, repo, head, base, title, body: PullRequest(
        number=17, url="https://git.example.com/acme/shop/pulls/17", head=head, base=base
    )
    mock.merge_pull_request.return_value = None
    return mock


@pytest.fixture
def ci() -> AsyncMock:
    mock = AsyncMock()
    mock.get_pipeline_for_commit.return_value = pipeline(PipelineStatus.SUCCESS)
    mock.get_job_logs.return_value = "AssertionError: assert 1 == True"
    return mock


@pytest.fixture
def test_runner() -> AsyncMock:
    mock = AsyncMock()
    mock.run_tests.return_value = passing_tests()
    return mock


@pytest.fixture
def notifier() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def backends() -> dict[str, ScriptedBackend]:
    return {
        "claude": ScriptedBackend("claude", default_responses()),
        "gpt": ScriptedBackend("gpt", {**default_responses(), "technical_plan": plan_payload(steps=3)}),
    }


@pytest.fixture
def activities(settings, task_source, code_host, ci, test_runner, notifier, backends) -> DeliveryActivities:
    return DeliveryActivities(
        settings,
        task_source=task_source,
        code_host=code_host,
        ci=ci,
        test_runner=test_runner,
        notifier=notifier,
        backends=backends,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(settings, activities, state_manager, clock) -> WorkflowEngine:
    return WorkflowEngine(settings, activities, state_manager, clock=clock)
