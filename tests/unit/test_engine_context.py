"""Tests for engine/context.py."""

import pytest

from devflow.engine.context import RunContext
from devflow.models.domain import FileChange, PullRequest


@pytest.fixture
def ctx() -> RunContext:
    return RunContext.open("run-1", "PROJ-42", "shop")


class TestRunContext:
    """Tests for the per-run context object."""

    def test_open_binds_identifiers(self, ctx):
        assert ctx.run_id == "run-1"
        assert ctx.stage is None
        assert ctx.fix_attempts == 0

    def test_audit_appends_entries(self, ctx):
        ctx.audit("artifact_selected", kind="user_story", backend="claude")

        assert len(ctx.audit_trail) == 1
        assert ctx.audit_trail[0]["event"] == "artifact_selected"
        assert ctx.audit_trail[0]["data"] == {"kind": "user_story", "backend": "claude"}

    def test_record_files_tracks_latest_content(self, ctx):
        ctx.record_files([FileChange(path="app/a.py", content="v1"), FileChange(path="app/b.py", content="x")])
        ctx.record_files([FileChange(path="app/a.py", content="v2"), FileChange(path="app/b.py", content="", action="delete")])

        assert list(ctx.files) == ["app/a.py"]
        assert ctx.files["app/a.py"].content == "v2"

    def test_progress(self, ctx):
        ctx.branch_name = "feature/PROJ-42-login"
        ctx.pull_request = PullRequest(number=3, url="https://git.example.com/pr/3", head="feature/x", base="main")
        ctx.head_sha = "abc"
        ctx.fix_attempts = 1

        assert ctx.progress() == {
            "branch": "feature/PROJ-42-login",
            "pr_number": 3,
            "pr_url": "https://git.example.com/pr/3",
            "head_sha": "abc",
            "fix_attempts": 1,
            "test_fix_attempts": 0,
        }

    @pytest.mark.asyncio
    async def test_close_flushes_audit(self, ctx, state_manager):
        await state_manager.create_run("run-1", "PROJ-42", "shop")
        ctx.audit("workflow_completed", merged=True)

        await ctx.close(state_manager)

        run = await state_manager.load_run("run-1")
        assert run["audit"][0]["data"] == {"merged": True}
