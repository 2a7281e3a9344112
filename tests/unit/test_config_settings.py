"""Tests for devflow/config/settings.py.

Tests cover:
- Section defaults
- Backend and workflow validation
- Loading from YAML with environment variable interpolation
- Environment variable overrides
- Error handling for missing or malformed files
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from devflow.config.settings import (
    BackendConfig,
    DevflowSettings,
    GenerationConfig,
    RetryConfig,
    TaskStatusConfig,
    WorkflowConfig,
)
from devflow.enums import ArtifactKind
from devflow.exceptions import ConfigurationError

MINIMAL_YAML = """
repository:
  owner: acme
  name: shop
"""


class TestSectionDefaults:
    """Test default values of each section."""

    def test_workflow_defaults(self):
        """Test fix loop and CI polling defaults."""
        config = WorkflowConfig()

        assert config.max_fix_attempts == 3
        assert config.fix_cooldown_seconds == 30
        assert config.ci_poll_interval_seconds == 30
        assert config.ci_max_polls == 60
        assert config.spec_artifacts == [ArtifactKind.USER_STORY, ArtifactKind.TECHNICAL_PLAN]

    def test_task_status_defaults(self):
        statuses = TaskStatusConfig()

        assert [statuses.specification, statuses.in_progress, statuses.in_review, statuses.done, statuses.blocked] == [
            "Specification",
            "In Progress",
            "In Review",
            "Done",
            "Blocked",
        ]

    def test_retry_config_to_policy(self):
        policy = RetryConfig(max_attempts=5, initial_interval=0.5).to_policy()

        assert policy.max_attempts == 5
        assert policy.delay_for(2) == 1.0
        assert policy.non_retryable_error_kinds == ("ValidationError", "AuthenticationError")


class TestGenerationConfig:
    """Test backend list validation."""

    def test_backend_ids_and_weights_follow_order(self):
        config = GenerationConfig(
            backends=[
                BackendConfig(id="claude", model="claude-sonnet-4"),
                BackendConfig(id="gpt", model="gpt-4o", weight=0.8),
            ]
        )

        assert config.backend_ids == ["claude", "gpt"]
        assert config.weights == {"claude": 1.0, "gpt": 0.8}

    def test_duplicate_backend_ids_rejected(self):
        with pytest.raises(ValidationError, match="unique"):
            GenerationConfig(backends=[{"id": "a", "model": "m"}, {"id": "a", "model": "n"}])

    def test_negative_weight_rejected(self):
        with pytest.raises(ValidationError):
            BackendConfig(id="a", model="m", weight=-1)


class TestWorkflowConfig:
    """Test workflow validation and boundaries."""

    def test_failure_analysis_not_a_spec_artifact(self):
        with pytest.raises(ValidationError, match="fix loop"):
            WorkflowConfig(spec_artifacts=["user_story", "failure_analysis"])

    def test_empty_spec_artifacts_rejected(self):
        with pytest.raises(ValidationError):
            WorkflowConfig(spec_artifacts=[])

    @pytest.mark.parametrize("attempts", [-1, 11])
    def test_fix_attempts_bounds(self, attempts):
        with pytest.raises(ValidationError):
            WorkflowConfig(max_fix_attempts=attempts)

    def test_status_artifacts_route_by_ticket_status(self):
        config = WorkflowConfig(status_artifacts={"To Refinement": ["refinement"]})

        assert config.artifacts_for("To Refinement") == [ArtifactKind.REFINEMENT]
        assert config.artifacts_for("Todo") == config.spec_artifacts
        assert config.artifacts_for(None) == config.spec_artifacts

    def test_status_artifacts_reject_failure_analysis(self):
        with pytest.raises(ValidationError, match="To Plan"):
            WorkflowConfig(status_artifacts={"To Plan": ["technical_plan", "failure_analysis"]})

    def test_zero_fix_attempts_allowed(self):
        assert WorkflowConfig(max_fix_attempts=0).max_fix_attempts == 0


class TestFromYaml:
    """Test loading settings from YAML files."""

    def test_minimal_file(self, tmp_path: Path):
        path = tmp_path / "devflow.yaml"
        path.write_text(MINIMAL_YAML)

        settings = DevflowSettings.from_yaml(str(path))

        assert settings.repository.owner == "acme"
        assert settings.repository.default_branch == "main"
        assert settings.generation.backends == []
        assert settings.state_dir == Path(".devflow/state")

    def test_env_interpolation(self, tmp_path: Path, monkeypatch):
        """Test ${VAR} and ${VAR:-default} references are resolved."""
        monkeypatch.setenv("OPENROUTER_KEY", "sk-test")
        monkeypatch.delenv("MISSING_MODEL", raising=False)
        path = tmp_path / "devflow.yaml"
        path.write_text(
            MINIMAL_YAML
            + """
generation:
  backends:
    - id: claude
      model: ${MISSING_MODEL:-anthropic/claude-sonnet-4}
      api_key: ${OPENROUTER_KEY}
"""
        )

        settings = DevflowSettings.from_yaml(str(path))

        backend = settings.generation.backends[0]
        assert backend.api_key == "sk-test"
        assert backend.model == "anthropic/claude-sonnet-4"

    def test_comment_lines_are_not_interpolated(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
        path = tmp_path / "devflow.yaml"
        path.write_text("# api_key: ${NOT_SET_ANYWHERE}\n" + MINIMAL_YAML)

        assert DevflowSettings.from_yaml(str(path)).repository.name == "shop"

    def test_missing_env_var(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
        path = tmp_path / "devflow.yaml"
        path.write_text(MINIMAL_YAML + "project:\n  framework: ${NOT_SET_ANYWHERE}\n")

        with pytest.raises(ConfigurationError, match="NOT_SET_ANYWHERE"):
            DevflowSettings.from_yaml(str(path))

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="not found"):
            DevflowSettings.from_yaml(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "devflow.yaml"
        path.write_text("repository: [unclosed")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            DevflowSettings.from_yaml(str(path))

    def test_scalar_document_rejected(self, tmp_path: Path):
        path = tmp_path / "devflow.yaml"
        path.write_text("just a string")

        with pytest.raises(ConfigurationError, match="YAML object"):
            DevflowSettings.from_yaml(str(path))

    def test_missing_repository_section(self, tmp_path: Path):
        path = tmp_path / "devflow.yaml"
        path.write_text("project:\n  language: go\n")

        with pytest.raises(ConfigurationError, match="Failed to validate"):
            DevflowSettings.from_yaml(str(path))


class TestEnvironmentOverrides:
    """Test DEVFLOW_ prefixed environment variables."""

    def test_nested_override(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("DEVFLOW_WORKFLOW__MAX_FIX_ATTEMPTS", "5")
        path = tmp_path / "devflow.yaml"
        path.write_text(MINIMAL_YAML)

        settings = DevflowSettings.from_yaml(str(path))

        assert settings.workflow.max_fix_attempts == 5
