"""Closed error taxonomy for the devflow delivery pipeline.

Every failure that crosses an activity boundary is one of the classes in
this module. Each class has a stable ``kind`` tag, a ``retryable`` flag
that the runtime's retry policy consults, and a structured payload so a
failure recorded in a run's journal can be rebuilt as the same exception
when the run is replayed.

Exception Hierarchy:
    DevflowError (base)
    ├── ConfigurationError
    ├── ValidationError
    ├── AuthenticationError
    ├── TransientIntegrationError
    ├── AllBackendsFailed
    ├── CIFailure
    ├── TestFailure
    ├── WorkflowCancelled
    └── NondeterminismError

Example Usage:
    >>> from devflow.exceptions import ValidationError
    >>> try:
    ...     plan = parse_artifact(kind, content)
    ... except ValueError as e:
    ...     raise ValidationError(f"Unparseable output: {e}") from e
"""

from __future__ import annotations

from typing import Any, ClassVar


class DevflowError(Exception):
    """Base exception for all devflow errors.

    Attributes:
        message: Human-readable error description
        details: Structured payload describing the failure
    """

    kind: ClassVar[str] = "DevflowError"
    retryable: ClassVar[bool] = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize exception.

        Args:
            message: Error message
            details: Optional structured payload
        """
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        """Serialize the error for the run journal."""
        return {"kind": self.kind, "message": self.message, "details": self.details}


class ConfigurationError(DevflowError):
    """Configuration file is missing, malformed, or fails validation."""

    kind = "ConfigurationError"


class ValidationError(DevflowError):
    """Bad input or unparseable generator output. Never retried."""

    kind = "ValidationError"


class AuthenticationError(DevflowError):
    """Credentials for a collaborator were rejected.

    Never retried; a human must reconnect the integration before the run
    can make progress.
    """

    kind = "AuthenticationError"

    def __init__(self, message: str, service: str | None = None, details: dict[str, Any] | None = None) -> None:
        details = dict(details or {})
        if service:
            details.setdefault("service", service)
            message = f"{message} (service: {service})"
        super().__init__(message, details)


class TransientIntegrationError(DevflowError):
    """A collaborator call failed in a way that may succeed on retry.

    Exceptions outside the taxonomy raised by collaborators are wrapped in
    this class, with the original type name kept in ``details["cause"]``.
    """

    kind = "TransientIntegrationError"
    retryable = True

    @classmethod
    def wrap(cls, error: BaseException) -> TransientIntegrationError:
        """Wrap a foreign exception, keeping its type name."""
        return cls(str(error) or type(error).__name__, {"cause": type(error).__name__})


class AllBackendsFailed(DevflowError):
    """Every generator backend failed for one generation request.

    Attributes:
        reasons: Mapping of backend id to the failure text of its sentinel
    """

    kind = "AllBackendsFailed"

    def __init__(self, message: str, reasons: dict[str, str] | None = None) -> None:
        self.reasons = dict(reasons or {})
        super().__init__(message, {"reasons": self.reasons})

    @classmethod
    def from_payload(cls, message: str, details: dict[str, Any]) -> AllBackendsFailed:
        return cls(message, details.get("reasons"))


class CIFailure(DevflowError):
    """CI kept failing after the fix loop exhausted its attempts.

    Attributes:
        logs: Logs of the failed CI jobs from the last check
        attempts: Fix attempts performed before giving up
        timed_out: True when polling ran out before CI finished
    """

    kind = "CIFailure"

    def __init__(self, message: str, logs: str = "", attempts: int = 0, timed_out: bool = False) -> None:
        self.logs = logs
        self.attempts = attempts
        self.timed_out = timed_out
        super().__init__(message, {"logs": logs, "attempts": attempts, "timed_out": timed_out})

    @classmethod
    def from_payload(cls, message: str, details: dict[str, Any]) -> CIFailure:
        return cls(
            message,
            logs=details.get("logs", ""),
            attempts=details.get("attempts", 0),
            timed_out=details.get("timed_out", False),
        )


class TestFailure(DevflowError):
    """Final validation test run failed.

    Attributes:
        failures: Failing test descriptions as plain dicts
    """

    kind = "TestFailure"
    # Keep pytest from collecting this class.
    __test__ = False

    def __init__(self, message: str, failures: list[dict[str, Any]] | None = None) -> None:
        self.failures = list(failures or [])
        super().__init__(message, {"failures": self.failures})

    @classmethod
    def from_payload(cls, message: str, details: dict[str, Any]) -> TestFailure:
        return cls(message, details.get("failures"))


class WorkflowCancelled(DevflowError):
    """The run was cancelled while suspended."""

    kind = "WorkflowCancelled"


class NondeterminismError(DevflowError):
    """A replayed run asked for a different activity than its journal holds."""

    kind = "NondeterminismError"


_ERROR_TYPES: dict[str, type[DevflowError]] = {
    cls.kind: cls
    for cls in (
        ConfigurationError,
        ValidationError,
        AuthenticationError,
        TransientIntegrationError,
        AllBackendsFailed,
        CIFailure,
        TestFailure,
        WorkflowCancelled,
        NondeterminismError,
    )
}


def error_from_payload(payload: dict[str, Any]) -> DevflowError:
    """Rebuild an exception from the payload produced by ``to_payload()``.

    Args:
        payload: Dict with ``kind``, ``message`` and ``details`` keys

    Returns:
        An exception instance of the recorded kind. Unknown kinds come back
        as a plain DevflowError.
    """
    kind = payload.get("kind", "DevflowError")
    message = payload.get("message", "")
    details = payload.get("details") or {}
    cls = _ERROR_TYPES.get(kind, DevflowError)

    from_payload = getattr(cls, "from_payload", None)
    if from_payload is not None:
        return from_payload(message, details)

    error = cls.__new__(cls)
    DevflowError.__init__(error, message, details)
    return error
