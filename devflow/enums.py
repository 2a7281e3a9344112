"""Enumerations for devflow stages, statuses and generated artifacts."""

from enum import Enum


class Stage(str, Enum):
    """Stages of a delivery run, in pipeline order.

    FAILED and BLOCKED are terminal. CI, QA and FIX form the only cycle.
    """

    SYNC = "sync"
    SPEC = "spec"
    CODE = "code"
    PR = "pr"
    CI = "ci"
    QA = "qa"
    FIX = "fix"
    MERGE = "merge"
    NOTIFY = "notify"
    FAILED = "failed"
    BLOCKED = "blocked"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in (Stage.FAILED, Stage.BLOCKED)


class RunStatus(str, Enum):
    """Lifecycle status of a persisted run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BLOCKED = "blocked"

    def __str__(self) -> str:
        return self.value


class ArtifactKind(str, Enum):
    """Kinds of artifacts produced by multi-backend generation.

    - refinement: business context, objectives and open questions
    - user_story: actor/goal/benefit story with acceptance criteria
    - specification: architecture and implementation steps
    - technical_plan: specification plus decisions and affected files
    - failure_analysis: diagnosis of failing tests with files to patch
    """

    REFINEMENT = "refinement"
    USER_STORY = "user_story"
    SPECIFICATION = "specification"
    TECHNICAL_PLAN = "technical_plan"
    FAILURE_ANALYSIS = "failure_analysis"

    def __str__(self) -> str:
        return self.value


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    def __str__(self) -> str:
        return self.value


class AgreementBand(str, Enum):
    """Qualitative reading of an agreement score."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    def __str__(self) -> str:
        return self.value


class NotificationEvent(str, Enum):
    """Events published to the notification sink during a run."""

    WORKFLOW_STARTED = "workflow_started"
    SPEC_GENERATED = "spec_generated"
    PR_CREATED = "pr_created"
    CI_PASSED = "ci_passed"
    CI_FAILED = "ci_failed"
    TESTS_FAILED = "tests_failed"
    QA_COMPLETED = "qa_completed"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_FAILED = "workflow_failed"

    def __str__(self) -> str:
        return self.value


class PipelineStatus(str, Enum):
    """CI pipeline states as reported by a CIProvider."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"

    def __str__(self) -> str:
        return self.value
