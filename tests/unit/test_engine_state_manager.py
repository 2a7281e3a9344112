"""Unit tests for engine/state_manager.py."""

import json
from pathlib import Path

import pytest

from devflow.engine.state_manager import StateManager
from devflow.enums import RunStatus
from devflow.exceptions import ValidationError


def journal_entry(seq: int, name: str = "sync_task") -> dict:
    return {
        "seq": seq,
        "type": "activity",
        "name": name,
        "status": "completed",
        "recorded_at": "2026-01-01T00:00:00+00:00",
        "result": None,
    }


class TestStateManagerInit:
    """Tests for StateManager initialization."""

    def test_initialization_creates_nested_directories(self, tmp_path: Path):
        """Test initialization creates nested directories."""
        state_dir = tmp_path / "nested" / "path" / "state"
        manager = StateManager(str(state_dir))

        assert state_dir.exists()
        assert manager.state_dir == state_dir


class TestCreateRun:
    """Tests for run creation."""

    @pytest.mark.asyncio
    async def test_create_run_persists_initial_state(self, state_manager: StateManager, temp_state_dir: Path):
        """Test that a new run is written with zeroed counters."""
        run = await state_manager.create_run("run-1", "PROJ-42", "shop")

        on_disk = json.loads((temp_state_dir / "run-1.json").read_text())
        assert on_disk["status"] == "running"
        assert on_disk["current_stage"] is None
        assert on_disk["fix_attempts"] == 0
        assert on_disk["history"] == []
        assert run["task_id"] == "PROJ-42"

    @pytest.mark.asyncio
    async def test_duplicate_run_id_rejected(self, state_manager: StateManager):
        await state_manager.create_run("run-1", "PROJ-42", "shop")

        with pytest.raises(ValidationError, match="already exists"):
            await state_manager.create_run("run-1", "PROJ-43", "shop")

    @pytest.mark.asyncio
    async def test_one_active_run_per_ticket(self, state_manager: StateManager):
        """Test a second run for a ticket with a running run is rejected."""
        await state_manager.create_run("run-1", "PROJ-42", "shop")

        with pytest.raises(ValidationError) as exc_info:
            await state_manager.create_run("run-2", "PROJ-42", "shop")

        assert exc_info.value.details == {"task_id": "PROJ-42", "active_run_id": "run-1"}

    @pytest.mark.asyncio
    async def test_finished_run_allows_new_run(self, state_manager: StateManager):
        await state_manager.create_run("run-1", "PROJ-42", "shop")
        await state_manager.finish_run("run-1", RunStatus.FAILED, "ci", {"success": False})

        run = await state_manager.create_run("run-2", "PROJ-42", "shop")

        assert run["run_id"] == "run-2"


class TestLoadAndUpdate:
    """Tests for reading and mutating runs."""

    @pytest.mark.asyncio
    async def test_load_unknown_run(self, state_manager: StateManager):
        with pytest.raises(ValidationError, match="Unknown run"):
            await state_manager.load_run("missing")

    @pytest.mark.asyncio
    async def test_append_history_keeps_order(self, state_manager: StateManager):
        await state_manager.create_run("run-1", "PROJ-42", "shop")

        await state_manager.append_history("run-1", journal_entry(0))
        await state_manager.append_history("run-1", journal_entry(1, "notify"))

        run = await state_manager.load_run("run-1")
        assert [entry["name"] for entry in run["history"]] == ["sync_task", "notify"]

    @pytest.mark.asyncio
    async def test_update_run_fields(self, state_manager: StateManager):
        await state_manager.create_run("run-1", "PROJ-42", "shop")

        await state_manager.update_run("run-1", current_stage="ci", fix_attempts=2)

        run = await state_manager.load_run("run-1")
        assert run["current_stage"] == "ci"
        assert run["fix_attempts"] == 2

    @pytest.mark.asyncio
    async def test_transaction_rolls_back_on_error(self, state_manager: StateManager):
        """Test that a failing transaction block writes nothing."""
        await state_manager.create_run("run-1", "PROJ-42", "shop")

        with pytest.raises(RuntimeError):
            async with state_manager.transaction("run-1") as run:
                run["fix_attempts"] = 99
                raise RuntimeError("boom")

        assert (await state_manager.load_run("run-1"))["fix_attempts"] == 0

    @pytest.mark.asyncio
    async def test_no_temp_file_left_behind(self, state_manager: StateManager, temp_state_dir: Path):
        await state_manager.create_run("run-1", "PROJ-42", "shop")
        await state_manager.update_run("run-1", fix_attempts=1)

        assert not list(temp_state_dir.glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_finish_run_records_result(self, state_manager: StateManager):
        await state_manager.create_run("run-1", "PROJ-42", "shop")

        await state_manager.finish_run("run-1", RunStatus.SUCCEEDED, "notify", {"success": True})

        run = await state_manager.load_run("run-1")
        assert run["status"] == "succeeded"
        assert run["current_stage"] == "notify"
        assert run["result"] == {"success": True}

    @pytest.mark.asyncio
    async def test_replace_audit(self, state_manager: StateManager):
        await state_manager.create_run("run-1", "PROJ-42", "shop")
        entry = {"event": "artifact_selected", "at": "2026-01-01T00:00:00+00:00", "data": {"kind": "user_story"}}

        await state_manager.replace_audit("run-1", [entry])

        assert (await state_manager.load_run("run-1"))["audit"] == [entry]


class TestListRuns:
    """Tests for listing and lookup."""

    @pytest.mark.asyncio
    async def test_list_runs_oldest_first(self, state_manager: StateManager):
        await state_manager.create_run("b-run", "PROJ-1", "shop")
        await state_manager.create_run("a-run", "PROJ-2", "shop")
        await state_manager.update_run("b-run", created_at="2026-01-01T00:00:00+00:00")
        await state_manager.update_run("a-run", created_at="2026-02-01T00:00:00+00:00")

        runs = await state_manager.list_runs()

        assert [r["run_id"] for r in runs] == ["b-run", "a-run"]

    @pytest.mark.asyncio
    async def test_find_active_run(self, state_manager: StateManager):
        await state_manager.create_run("run-1", "PROJ-42", "shop")
        await state_manager.create_run("run-2", "PROJ-7", "shop")
        await state_manager.finish_run("run-2", RunStatus.SUCCEEDED, "notify", {})

        assert await state_manager.find_active_run("PROJ-42") == "run-1"
        assert await state_manager.find_active_run("PROJ-7") is None
        assert await state_manager.find_active_run("PROJ-0") is None
