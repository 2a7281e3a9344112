"""
State management with atomic transactions for run persistence.

Each run is persisted as ``{run_id}.json`` in the state directory. Writes
go to a temporary file that is renamed over the target, so a crash never
leaves a half-written run behind. Every run has its own asyncio lock;
creation additionally holds a manager-wide lock so the "one active run per
ticket" rule cannot be raced.

Transaction Support:
    The ``transaction()`` context manager loads a run, yields it for
    in-place modification, and saves it only if the block succeeds::

        async with state_manager.transaction("PROJ-42-1a2b3c4d") as run:
            run["fix_attempts"] += 1

Example:
    >>> state = StateManager(".devflow/state")
    >>> run = await state.create_run("PROJ-42-1a2b3c4d", "PROJ-42", "shop")
    >>> await state.append_history(run["run_id"], entry)
"""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, cast

import aiofiles
import structlog

from devflow.engine.types import AuditEntry, JournalEntry, WorkflowRun
from devflow.enums import RunStatus
from devflow.exceptions import ValidationError

log = structlog.get_logger(__name__)


class StateManager:
    """Manage run state with atomic file operations.

    Attributes:
        state_dir: Directory where run files are stored.

    Thread Safety:
        Designed for single-threaded asyncio usage. Each run has its own
        lock, created lazily under a meta-lock.
    """

    def __init__(self, state_dir: str | Path) -> None:
        """Initialize the state manager with a storage directory.

        Args:
            state_dir: Directory for run files. Created, with parents, if
                it does not exist.
        """
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_lock = asyncio.Lock()
        self._create_lock = asyncio.Lock()

    async def _get_lock(self, run_id: str) -> asyncio.Lock:
        async with self._locks_lock:
            if run_id not in self._locks:
                self._locks[run_id] = asyncio.Lock()
            return self._locks[run_id]

    def _get_state_path(self, run_id: str) -> Path:
        return self.state_dir / f"{run_id}.json"

    async def _read(self, run_id: str) -> WorkflowRun:
        state_path = self._get_state_path(run_id)
        if not state_path.exists():
            raise ValidationError(f"Unknown run: {run_id}", {"run_id": run_id})

        async with aiofiles.open(state_path) as f:
            content = await f.read()
        return cast(WorkflowRun, json.loads(content))

    async def _write(self, run: WorkflowRun) -> None:
        """Write a run atomically via a temporary file and rename."""
        run["updated_at"] = datetime.now(UTC).isoformat()
        path = self._get_state_path(run["run_id"])
        tmp_path = path.with_suffix(".tmp")

        async with aiofiles.open(tmp_path, "w") as f:
            await f.write(json.dumps(run, indent=2))

        # Atomic on POSIX when source and target share a filesystem
        tmp_path.replace(path)

    async def create_run(self, run_id: str, task_id: str, project_id: str) -> WorkflowRun:
        """Create and persist a new running run.

        Raises:
            ValidationError: If ``run_id`` already exists or another run is
                still active for ``task_id``
        """
        async with self._create_lock:
            if self._get_state_path(run_id).exists():
                raise ValidationError(f"Run already exists: {run_id}", {"run_id": run_id})

            active = await self.find_active_run(task_id)
            if active is not None:
                raise ValidationError(
                    f"Ticket {task_id} already has an active run: {active}",
                    {"task_id": task_id, "active_run_id": active},
                )

            now = datetime.now(UTC).isoformat()
            run: WorkflowRun = {
                "run_id": run_id,
                "task_id": task_id,
                "project_id": project_id,
                "status": RunStatus.RUNNING.value,
                "current_stage": None,
                "fix_attempts": 0,
                "test_fix_attempts": 0,
                "created_at": now,
                "updated_at": now,
                "progress": {},
                "history": [],
                "audit": [],
                "result": None,
            }
            lock = await self._get_lock(run_id)
            async with lock:
                await self._write(run)

        log.info("run_created", run_id=run_id, task_id=task_id, project_id=project_id)
        return run

    async def load_run(self, run_id: str) -> WorkflowRun:
        """Load a run.

        Raises:
            ValidationError: If the run does not exist
        """
        lock = await self._get_lock(run_id)
        async with lock:
            return await self._read(run_id)

    @asynccontextmanager
    async def transaction(self, run_id: str) -> AsyncIterator[WorkflowRun]:
        """Load a run, yield it for modification, save it on success.

        If the block raises, nothing is written and the error propagates.
        The run lock is held for the whole block.
        """
        lock = await self._get_lock(run_id)
        async with lock:
            run = await self._read(run_id)
            try:
                yield run
                await self._write(run)
            except Exception:
                log.error("state_transaction_failed", run_id=run_id)
                raise

    async def append_history(self, run_id: str, entry: JournalEntry) -> None:
        """Append one journal entry to a run."""
        async with self.transaction(run_id) as run:
            run["history"].append(entry)

    async def update_run(self, run_id: str, **fields: Any) -> None:
        """Overwrite top-level fields of a run."""
        async with self.transaction(run_id) as run:
            for key, value in fields.items():
                run[key] = value  # type: ignore[literal-required]

    async def replace_audit(self, run_id: str, audit: list[AuditEntry]) -> None:
        async with self.transaction(run_id) as run:
            run["audit"] = list(audit)

    async def finish_run(self, run_id: str, status: RunStatus, current_stage: str, result: dict[str, Any]) -> None:
        """Record the terminal status and structured result of a run."""
        async with self.transaction(run_id) as run:
            run["status"] = status.value
            run["current_stage"] = current_stage
            run["result"] = result

        log.info("run_finished", run_id=run_id, status=status.value, stage=current_stage)

    async def list_runs(self) -> list[WorkflowRun]:
        """All persisted runs, oldest first."""
        runs = []
        for state_file in self.state_dir.glob("*.json"):
            runs.append(await self.load_run(state_file.stem))
        return sorted(runs, key=lambda r: r["created_at"])

    async def find_active_run(self, task_id: str) -> str | None:
        """Id of the running run for a ticket, if there is one."""
        for run in await self.list_runs():
            if run["task_id"] == task_id and run["status"] == RunStatus.RUNNING.value:
                return run["run_id"]
        return None
