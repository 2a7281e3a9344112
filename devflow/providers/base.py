"""
Abstract base classes for external collaborators.

The workflow engine never talks to a ticket tracker, code host, CI system,
test runner, model API or chat tool directly. It receives one
implementation of each interface below at construction time, so tests can
pass in-memory fakes and deployments can pass real clients.

Errors:
    Implementations should raise ``AuthenticationError`` for rejected
    credentials, ``ValidationError`` for requests that can never succeed,
    and ``TransientIntegrationError`` for failures worth retrying. Anything
    else they raise is wrapped as transient by the workflow runtime.
"""

from abc import ABC, abstractmethod
from typing import Any

from devflow.models.domain import (
    Branch,
    CommitResult,
    FileChange,
    GeneratedContent,
    Pipeline,
    PullRequest,
    Task,
    TestRun,
)


class TaskSource(ABC):
    """Ticket tracker holding the work items that trigger runs."""

    @abstractmethod
    async def sync_task(self, task_id: str) -> Task:
        """Fetch the current state of a ticket.

        Raises:
            ValidationError: If the ticket does not exist
        """

    @abstractmethod
    async def update_task_status(self, task_id: str, status: str) -> None:
        """Move a ticket to the named status column."""

    @abstractmethod
    async def add_comment(self, task_id: str, body: str) -> None:
        """Append a comment to a ticket."""


class CodeHost(ABC):
    """Git hosting service where branches and pull requests live.

    All write operations must be idempotent: the runtime delivers them at
    least once.
    """

    @abstractmethod
    async def create_branch(self, owner: str, repo: str, branch: str, base: str) -> Branch:
        """Create ``branch`` from ``base``; succeed if it already exists."""

    @abstractmethod
    async def commit_files(
        self,
        owner: str,
        repo: str,
        branch: str,
        files: list[FileChange],
        message: str,
    ) -> CommitResult:
        """Commit whole-file changes to ``branch`` in one commit."""

    @abstractmethod
    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        head: str,
        base: str,
        title: str,
        body: str,
    ) -> PullRequest:
        """Open a pull request, or return the open one for ``head``."""

    @abstractmethod
    async def merge_pull_request(self, owner: str, repo: str, number: int) -> None:
        """Merge a pull request; succeed if it is already merged."""


class CIProvider(ABC):
    """Continuous integration service reporting on commits."""

    @abstractmethod
    async def get_pipeline_for_commit(self, owner: str, repo: str, sha: str) -> Pipeline | None:
        """Latest pipeline for a commit, or None if none has started yet."""

    @abstractmethod
    async def get_job_logs(self, owner: str, repo: str, job_id: str) -> str:
        """Raw log output of one CI job."""


class TestRunner(ABC):
    """Runs the project's test suite against a branch."""

    __test__ = False

    @abstractmethod
    async def run_tests(self, project_id: str, branch: str, test_type: str = "all") -> TestRun:
        """Run tests and report the outcome; failing tests are not an error."""


class GeneratorBackend(ABC):
    """A model API able to answer generation prompts."""

    @property
    @abstractmethod
    def backend_id(self) -> str:
        """Stable identifier used for weights and tie-breaking."""

    @abstractmethod
    async def generate(self, prompt: str, context: dict[str, Any] | None = None) -> GeneratedContent:
        """Answer a prompt.

        Raises:
            AuthenticationError: If the API rejects the credentials
            TransientIntegrationError: If the call failed but may succeed later
        """

    async def close(self) -> None:
        """Release client resources. Backends without any keep this default."""
        return None


class NotificationSink(ABC):
    """Destination for run events (chat channel, log, webhook)."""

    @abstractmethod
    async def notify(self, event: str, data: dict[str, Any]) -> None:
        """Publish one event. Failures are logged by the caller and ignored."""
