"""Per-run context passed through the workflow engine.

The RunContext replaces process-wide state: it carries the run's bound
logger, its audit trail and everything later stages need from earlier
ones (ticket, branch, pull request, current files, counters). It is
opened when a run starts or resumes and closed when the run ends, which
flushes the audit trail into the persisted run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from devflow.engine.state_manager import StateManager
from devflow.engine.types import AuditEntry, RunProgress
from devflow.enums import Stage
from devflow.models.domain import CodeChange, FileChange, PullRequest, Task
from devflow.models.generation import SynthesisResult
from devflow.utils.logging_config import get_logger


@dataclass
class RunContext:
    """Context of one delivery run.

    Attributes:
        run_id: Run identifier
        task_id: Ticket being delivered
        project_id: Project the ticket belongs to
        log: structlog logger bound to the run identifiers
        stage: Current stage, None before the run enters SYNC
        task: Ticket as synced at the start of the run
        artifacts: Synthesis results of the spec stage, by artifact kind
        code: Generated implementation
        branch_name: Feature branch
        pull_request: Pull request opened for the branch
        head_sha: Latest commit on the branch
        files: Current content of every file the run has committed, by path
        fix_attempts: CI failure cycles so far
        test_fix_attempts: Cycles that produced a fix commit
        audit_trail: Audit entries recorded during this execution
    """

    run_id: str
    task_id: str
    project_id: str
    log: Any
    stage: Stage | None = None
    task: Task | None = None
    artifacts: dict[str, SynthesisResult] = field(default_factory=dict)
    code: CodeChange | None = None
    branch_name: str | None = None
    pull_request: PullRequest | None = None
    head_sha: str | None = None
    files: dict[str, FileChange] = field(default_factory=dict)
    fix_attempts: int = 0
    test_fix_attempts: int = 0
    audit_trail: list[AuditEntry] = field(default_factory=list)

    @classmethod
    def open(cls, run_id: str, task_id: str, project_id: str) -> RunContext:
        """Create the context for a run with a logger bound to its ids."""
        logger = get_logger("devflow.run", run_id=run_id, task_id=task_id, project_id=project_id)
        return cls(run_id=run_id, task_id=task_id, project_id=project_id, log=logger)

    async def close(self, state: StateManager) -> None:
        """Flush the audit trail into the persisted run."""
        await state.replace_audit(self.run_id, self.audit_trail)

    def audit(self, event: str, **data: Any) -> None:
        """Record an audit entry and log it."""
        self.audit_trail.append({"event": event, "at": datetime.now(UTC).isoformat(), "data": data})
        self.log.info(event, **data)

    def record_files(self, files: list[FileChange]) -> None:
        for change in files:
            if change.action == "delete":
                self.files.pop(change.path, None)
            else:
                self.files[change.path] = change

    def progress(self) -> RunProgress:
        return {
            "branch": self.branch_name,
            "pr_number": self.pull_request.number if self.pull_request else None,
            "pr_url": self.pull_request.url if self.pull_request else None,
            "head_sha": self.head_sha,
            "fix_attempts": self.fix_attempts,
            "test_fix_attempts": self.test_fix_attempts,
        }
