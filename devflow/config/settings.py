"""
Configuration system using Pydantic for type-safe settings management.

This module provides configuration classes for the repository, the project
profile used for relevance scoring, the generator backends, the delivery
workflow, activity retries and ticket statuses.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from devflow.enums import ArtifactKind
from devflow.exceptions import ConfigurationError
from devflow.utils.retry import RetryPolicy


class RepositoryConfig(BaseModel):
    """Repository configuration."""

    owner: str = Field(..., description="Repository owner/organization")
    name: str = Field(..., description="Repository name")
    default_branch: str = Field(default="main", description="Default branch name")


class ProjectConfig(BaseModel):
    """Project profile used for relevance bonuses when scoring artifacts."""

    language: str = Field(default="python", description="Primary language of the project")
    framework: str | None = Field(default=None, description="Main framework, if any")
    known_paths: list[str] = Field(default_factory=list, description="Notable file paths in the project")


class BackendConfig(BaseModel):
    """A single generator backend.

    Supports environment references for api_key:
    - api_key: "${OPENROUTER_API_KEY}"
    - api_key: "${OPENAI_API_KEY:-}"
    """

    id: str = Field(..., description="Backend identifier used in candidates and weights")
    provider_type: Literal["openai-compatible"] = Field(default="openai-compatible", description="Backend protocol")
    base_url: str = Field(default="https://openrouter.ai/api/v1", description="Base URL of the API")
    model: str = Field(..., description="Model identifier sent to the API")
    api_key: str | None = Field(default=None, description="API key (supports ${ENV} references)")
    weight: float = Field(default=1.0, ge=0.0, description="Score multiplier applied during synthesis")


class GenerationConfig(BaseModel):
    """Multi-backend generation configuration.

    The order of ``backends`` is the priority order used to break score ties.
    """

    backends: list[BackendConfig] = Field(default_factory=list, description="Backends in priority order")
    timeout_seconds: float = Field(default=120.0, gt=0, description="Per-backend generation timeout")
    agreement_normalizer: float = Field(default=100.0, gt=0, description="Variance normalizer for agreement")

    @field_validator("backends")
    @classmethod
    def _unique_ids(cls, backends: list[BackendConfig]) -> list[BackendConfig]:
        ids = [b.id for b in backends]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Backend ids must be unique, got: {ids}")
        return backends

    @property
    def backend_ids(self) -> list[str]:
        return [b.id for b in self.backends]

    @property
    def weights(self) -> dict[str, float]:
        return {b.id: b.weight for b in self.backends}


def _check_spec_sequence(kinds: list[ArtifactKind]) -> list[ArtifactKind]:
    if ArtifactKind.FAILURE_ANALYSIS in kinds:
        raise ValueError("failure_analysis is produced by the fix loop, not the spec stage")
    if not kinds:
        raise ValueError("At least one spec artifact is required")
    return kinds


class WorkflowConfig(BaseModel):
    """Delivery workflow behavior configuration."""

    state_directory: str = Field(default=".devflow/state", description="Directory for run state files")
    max_fix_attempts: int = Field(default=3, ge=0, le=10, description="CI failure cycles before giving up")
    fix_cooldown_seconds: float = Field(default=30.0, ge=0, description="Wait between a fix and the next CI check")
    ci_poll_interval_seconds: float = Field(default=30.0, ge=0, description="Delay between CI status polls")
    ci_max_polls: int = Field(default=60, ge=1, description="CI status polls before timing out")
    spec_artifacts: list[ArtifactKind] = Field(
        default_factory=lambda: [ArtifactKind.USER_STORY, ArtifactKind.TECHNICAL_PLAN],
        description="Artifacts generated during the spec stage, in order",
    )
    status_artifacts: dict[str, list[ArtifactKind]] = Field(
        default_factory=dict,
        description="Spec artifacts by ticket status at sync time; other statuses use spec_artifacts",
    )
    auto_merge: bool = Field(default=True, description="Merge the pull request once validation passes")
    branch_prefix: str = Field(default="feature/", description="Prefix for generated branch names")

    @field_validator("spec_artifacts")
    @classmethod
    def _no_failure_analysis(cls, kinds: list[ArtifactKind]) -> list[ArtifactKind]:
        return _check_spec_sequence(kinds)

    @field_validator("status_artifacts")
    @classmethod
    def _valid_status_sequences(cls, routes: dict[str, list[ArtifactKind]]) -> dict[str, list[ArtifactKind]]:
        for status, kinds in routes.items():
            try:
                _check_spec_sequence(kinds)
            except ValueError as e:
                raise ValueError(f"status '{status}': {e}") from e
        return routes

    def artifacts_for(self, status: str | None) -> list[ArtifactKind]:
        """Artifact sequence for a ticket in ``status``."""
        if status is not None and status in self.status_artifacts:
            return self.status_artifacts[status]
        return self.spec_artifacts


class RetryConfig(BaseModel):
    """Default retry policy for activities."""

    max_attempts: int = Field(default=3, ge=1)
    initial_interval: float = Field(default=1.0, ge=0)
    backoff_coefficient: float = Field(default=2.0, ge=1.0)
    max_interval: float = Field(default=60.0, ge=0)
    non_retryable_error_kinds: list[str] = Field(default_factory=lambda: ["ValidationError", "AuthenticationError"])

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_interval=self.initial_interval,
            backoff_coefficient=self.backoff_coefficient,
            max_interval=self.max_interval,
            non_retryable_error_kinds=tuple(self.non_retryable_error_kinds),
        )


class TaskStatusConfig(BaseModel):
    """Ticket status names written back to the task source."""

    specification: str = Field(default="Specification", description="Spec is being generated")
    in_progress: str = Field(default="In Progress", description="Code is being generated")
    in_review: str = Field(default="In Review", description="Pull request is open")
    done: str = Field(default="Done", description="Change merged")
    blocked: str = Field(default="Blocked", description="Requires human intervention")


class DevflowSettings(BaseSettings):
    """Main devflow settings.

    This class combines all configuration sections and provides methods
    for loading from YAML files with environment variable interpolation.
    """

    model_config = SettingsConfigDict(
        env_prefix="DEVFLOW_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    repository: RepositoryConfig
    project: ProjectConfig = Field(default_factory=ProjectConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    task_statuses: TaskStatusConfig = Field(default_factory=TaskStatusConfig)

    @property
    def state_dir(self) -> Path:
        """Get state directory as Path object."""
        return Path(self.workflow.state_directory)

    @classmethod
    def from_yaml(cls, config_path: str) -> DevflowSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} and ${VAR_NAME:-default} syntax.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            DevflowSettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            yaml_content = config_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Comment lines are left untouched so documentation examples survive.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            if default_value is not None:
                return default_value
            raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))
