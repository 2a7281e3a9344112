"""Domain models exchanged with external collaborators.

Everything here crosses the activity boundary, so the models are Pydantic
classes that serialize cleanly into a run's journal and validate back on
replay.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from devflow.enums import PipelineStatus, RunStatus, Stage


class Task(BaseModel):
    """A tracked work item pulled from the task source."""

    id: str
    title: str
    description: str = ""
    status: str | None = None
    priority: str | None = None
    labels: list[str] = Field(default_factory=list)
    acceptance_criteria: list[str] = Field(default_factory=list)
    url: str | None = None


class FileChange(BaseModel):
    """A whole-file write to commit on a branch."""

    path: str
    content: str
    action: Literal["create", "update", "delete"] = "update"
    reason: str = ""

    @property
    def is_test(self) -> bool:
        lowered = self.path.lower()
        return "test" in lowered or "spec" in lowered


class CodeChange(BaseModel):
    """Generated implementation ready to be committed."""

    branch_name: str
    files: list[FileChange] = Field(default_factory=list)
    tests: list[FileChange] = Field(default_factory=list)
    commit_message: str
    pr_title: str
    pr_description: str = ""

    def all_files(self) -> list[FileChange]:
        return [*self.files, *self.tests]


class CommitResult(BaseModel):
    sha: str
    branch: str


class Branch(BaseModel):
    name: str
    sha: str | None = None


class PullRequest(BaseModel):
    number: int
    url: str
    head: str
    base: str
    head_sha: str | None = None


class PipelineJob(BaseModel):
    id: str
    name: str
    status: PipelineStatus


class Pipeline(BaseModel):
    """CI pipeline run for a commit."""

    id: str
    status: PipelineStatus
    jobs: list[PipelineJob] = Field(default_factory=list)
    duration: float | None = None

    @property
    def failed_jobs(self) -> list[PipelineJob]:
        return [job for job in self.jobs if job.status == PipelineStatus.FAILURE]


class CIResult(BaseModel):
    """Outcome of waiting for CI on one commit."""

    success: bool
    logs: str = ""
    duration: float | None = None
    head_sha: str | None = None


class TestFailureDetail(BaseModel):
    __test__ = False

    test: str
    file: str | None = None
    message: str = ""
    stack: str | None = None


class TestRun(BaseModel):
    """Result of a local test run on a branch."""

    __test__ = False

    success: bool
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration: float = 0.0
    failures: list[TestFailureDetail] = Field(default_factory=list)
    coverage: float | None = None


class GeneratedContent(BaseModel):
    """Raw output of a generator backend."""

    content: str
    model_id: str


class WorkflowResult(BaseModel):
    """Structured outcome of a delivery run.

    Failures never escape the engine as exceptions; they are reported here
    with the stage they happened in, the error kind and partial progress.
    """

    success: bool
    run_id: str
    stage: Stage
    status: RunStatus
    error_kind: str | None = None
    error: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    data: dict[str, Any] = Field(default_factory=dict)
