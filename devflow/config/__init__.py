"""Configuration system for devflow.

This package provides type-safe configuration management using Pydantic,
covering the repository, project profile, generator backends, workflow
limits, activity retries and ticket statuses.

Example:
    >>> from devflow.config import DevflowSettings
    >>> settings = DevflowSettings.from_yaml("devflow.yaml")
    >>> settings.workflow.max_fix_attempts
    3
"""

from devflow.config.settings import (
    BackendConfig,
    DevflowSettings,
    GenerationConfig,
    ProjectConfig,
    RepositoryConfig,
    RetryConfig,
    TaskStatusConfig,
    WorkflowConfig,
)

__all__ = [
    "BackendConfig",
    "DevflowSettings",
    "GenerationConfig",
    "ProjectConfig",
    "RepositoryConfig",
    "RetryConfig",
    "TaskStatusConfig",
    "WorkflowConfig",
]
