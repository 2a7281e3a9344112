"""Collaborator interfaces and reference implementations.

Key Components:
    - TaskSource, CodeHost, CIProvider, TestRunner, GeneratorBackend,
      NotificationSink: interfaces injected into the workflow engine
    - OpenAICompatibleBackend: generator backend over chat completions
    - LogNotificationSink: notification sink writing to the log
    - build_backends: backends from configuration
"""

from devflow.config.settings import GenerationConfig
from devflow.providers.base import (
    CIProvider,
    CodeHost,
    GeneratorBackend,
    NotificationSink,
    TaskSource,
    TestRunner,
)
from devflow.providers.notifications import LogNotificationSink
from devflow.providers.openai_compatible import OpenAICompatibleBackend


def build_backends(config: GenerationConfig) -> dict[str, GeneratorBackend]:
    """Instantiate one backend per configured entry, keyed by id."""
    return {
        backend.id: OpenAICompatibleBackend(
            backend_id=backend.id,
            model=backend.model,
            base_url=backend.base_url,
            api_key=backend.api_key,
            timeout=config.timeout_seconds,
        )
        for backend in config.backends
    }


__all__ = [
    "CIProvider",
    "CodeHost",
    "GeneratorBackend",
    "LogNotificationSink",
    "NotificationSink",
    "OpenAICompatibleBackend",
    "TaskSource",
    "TestRunner",
    "build_backends",
]
