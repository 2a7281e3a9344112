"""Type definitions for persisted run state.

A run is stored as one JSON document in the state directory. Besides the
current stage and fix counters it holds the activity journal (``history``)
used to replay the run after a restart, and the audit trail flushed by the
run context when the run finishes.

Example:
    A run suspended while waiting for CI::

        run: WorkflowRun = {
            "run_id": "PROJ-42-1a2b3c4d",
            "task_id": "PROJ-42",
            "project_id": "shop",
            "status": "running",
            "current_stage": "ci",
            "fix_attempts": 1,
            "test_fix_attempts": 1,
            "created_at": "2024-01-15T10:30:00+00:00",
            "updated_at": "2024-01-15T11:02:13+00:00",
            "progress": {"branch": "feature/PROJ-42-login", "pr_number": 17},
            "history": [
                {"seq": 0, "type": "activity", "name": "sync_task", "status": "completed", ...},
                ...
                {"seq": 31, "type": "timer", "name": "ci_poll", "status": "scheduled", "fire_at": 1705316563.0},
            ],
            "audit": [],
            "result": None,
        }
"""

from typing import Any, NotRequired, TypedDict


class JournalEntry(TypedDict):
    """One recorded step of a run.

    Activity entries carry either ``result`` (JSON form of the return
    value) or ``error`` (payload of the raised DevflowError). Timer entries
    carry ``fire_at``, an epoch timestamp on the runtime clock.
    """

    seq: int
    type: str
    """Either "activity" or "timer"."""

    name: str
    status: str
    """"completed" or "failed" for activities, "scheduled" for timers."""

    recorded_at: str
    result: NotRequired[Any]
    error: NotRequired[dict[str, Any]]
    fire_at: NotRequired[float]


class AuditEntry(TypedDict):
    event: str
    at: str
    data: dict[str, Any]


class RunProgress(TypedDict, total=False):
    """Partial progress kept for failure reports and resumption."""

    branch: str | None
    pr_number: int | None
    pr_url: str | None
    head_sha: str | None
    fix_attempts: int
    test_fix_attempts: int


class WorkflowRun(TypedDict):
    """Complete persisted state of one delivery run."""

    run_id: str
    task_id: str
    project_id: str
    status: str
    """One of "running", "succeeded", "failed", "blocked"."""

    current_stage: str | None
    fix_attempts: int
    test_fix_attempts: int
    created_at: str
    updated_at: str
    progress: RunProgress
    history: list[JournalEntry]
    audit: list[AuditEntry]
    result: dict[str, Any] | None
