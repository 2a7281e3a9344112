"""Durable execution runtime for delivery runs.

Workflow code must be replayable: after a crash the engine runs the same
workflow function again from the top and must reach the same decisions
without repeating side effects. The runtime makes that possible by being
the only way workflow code touches the outside world:

- ``execute()`` runs an activity (a collaborator call) under its retry
  policy and records the result, or the final error, in the run journal.
  When the journal already holds an entry for that position, the recorded
  outcome is returned (or re-raised) without calling the activity again.
- ``sleep()`` records a timer with its fire time on the runtime clock.
  A resumed run waits only for the time that is left, and skips timers
  that were already followed by later journal entries.
- ``cancel()`` requests cooperative cancellation. It only takes effect at
  suspension points: a pending or future ``sleep()`` raises
  ``WorkflowCancelled``. Running activities are never interrupted.

Activities are plain async callables marked with the ``activity``
decorator, which names them and may attach a retry policy of their own.

Example:
    >>> runtime = WorkflowRuntime("run-1", state, history=[], clock=Clock(), default_retry=RetryPolicy())
    >>> task = await runtime.execute(activities.sync_task, "PROJ-42", result_type=Task)
    >>> await runtime.sleep(30, "fix_cooldown")
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any, TypeVar

import structlog
from pydantic import TypeAdapter

from devflow.engine.state_manager import StateManager
from devflow.engine.types import JournalEntry
from devflow.exceptions import (
    DevflowError,
    NondeterminismError,
    TransientIntegrationError,
    WorkflowCancelled,
    error_from_payload,
)
from devflow.utils.retry import RetryPolicy, call_with_retry

log = structlog.get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

ACTIVITY = "activity"
TIMER = "timer"


def activity(name: str | None = None, retry: RetryPolicy | None = None) -> Callable[[F], F]:
    """Mark an async callable as a workflow activity.

    Args:
        name: Journal name, defaults to the function name
        retry: Retry policy for this activity; the runtime default applies
            when omitted
    """

    def decorator(func: F) -> F:
        func.__activity_name__ = name or func.__name__  # type: ignore[attr-defined]
        func.__activity_retry__ = retry  # type: ignore[attr-defined]
        return func

    return decorator


class Clock:
    """Wall clock used for timers. Tests substitute a virtual clock."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class WorkflowRuntime:
    """Journal-backed activity dispatcher for one run.

    Attributes:
        run_id: Run whose journal is read and appended
        clock: Time source for timers and retry backoff
        default_retry: Policy for activities without one of their own
        retry_overrides: Policies by activity name, taking precedence
    """

    def __init__(
        self,
        run_id: str,
        state: StateManager,
        history: list[JournalEntry],
        clock: Clock,
        default_retry: RetryPolicy,
        retry_overrides: Mapping[str, RetryPolicy] | None = None,
    ) -> None:
        self.run_id = run_id
        self.state = state
        self.clock = clock
        self.default_retry = default_retry
        self.retry_overrides = dict(retry_overrides or {})
        self._history = list(history)
        self._cursor = 0
        self._cancelled = asyncio.Event()

    @property
    def replaying(self) -> bool:
        """True while workflow code is still catching up with the journal."""
        return self._cursor < len(self._history)

    @property
    def cancel_requested(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        log.info("run_cancel_requested", run_id=self.run_id)
        self._cancelled.set()

    def stop_replay(self) -> None:
        """Run every further step live, appending after the recorded journal.

        Used on failure paths once the journal no longer matches the
        workflow, so compensation is not answered by unrelated entries.
        """
        if self.replaying:
            log.warning(
                "replay_abandoned",
                run_id=self.run_id,
                cursor=self._cursor,
                journal_entries=len(self._history),
            )
        self._cursor = len(self._history)

    def policy_for(self, func: Callable[..., Any]) -> RetryPolicy:
        name = getattr(func, "__activity_name__", func.__name__)
        if name in self.retry_overrides:
            return self.retry_overrides[name]
        return getattr(func, "__activity_retry__", None) or self.default_retry

    async def execute(self, func: Callable[..., Any], *args: Any, result_type: Any = None, **kwargs: Any) -> Any:
        """Run an activity, or return its recorded outcome when replaying.

        Args:
            func: Activity marked with ``@activity``
            *args: Positional arguments for the activity
            result_type: Type used to restore the recorded result; plain
                JSON values are returned as recorded when omitted
            **kwargs: Keyword arguments for the activity

        Returns:
            The activity result.

        Raises:
            DevflowError: The activity's final error after retries. Errors
                outside the taxonomy are wrapped in TransientIntegrationError.
            NondeterminismError: If the journal records a different step here
        """
        name = getattr(func, "__activity_name__", None)
        if name is None:
            raise TypeError(f"{func!r} is not an activity")

        adapter = TypeAdapter(result_type if result_type is not None else Any)
        recorded = self._next_recorded(ACTIVITY, name)
        if recorded is not None:
            log.debug("activity_replayed", run_id=self.run_id, activity=name, seq=recorded["seq"])
            if recorded["status"] == "failed":
                raise error_from_payload(recorded["error"])
            return adapter.validate_python(recorded.get("result"))

        async def attempt() -> Any:
            try:
                return await func(*args, **kwargs)
            except DevflowError:
                raise
            except Exception as e:
                raise TransientIntegrationError.wrap(e) from e

        try:
            result = await call_with_retry(self.policy_for(func), attempt, name=name, sleep=self.clock.sleep)
        except DevflowError as e:
            await self._record(ACTIVITY, name, "failed", error=e.to_payload())
            raise

        await self._record(ACTIVITY, name, "completed", result=adapter.dump_python(result, mode="json"))
        return result

    async def sleep(self, seconds: float, name: str) -> None:
        """Durable timer; raises WorkflowCancelled if cancellation is requested.

        Args:
            seconds: Duration of the wait
            name: Journal name of the timer (e.g., "ci_poll")
        """
        recorded = self._next_recorded(TIMER, name)
        if recorded is None:
            fire_at = self.clock.now() + seconds
            await self._record(TIMER, name, "scheduled", fire_at=fire_at)
        elif self.replaying:
            # Later steps were recorded, so this timer already fired.
            return
        else:
            fire_at = recorded["fire_at"]

        if self._cancelled.is_set():
            raise WorkflowCancelled(f"Run {self.run_id} cancelled before {name}")

        remaining = fire_at - self.clock.now()
        if remaining > 0:
            log.debug("timer_waiting", run_id=self.run_id, timer=name, seconds=remaining)
            await self._wait(remaining, name)

    async def _wait(self, seconds: float, name: str) -> None:
        sleeper = asyncio.ensure_future(self.clock.sleep(seconds))
        canceller = asyncio.ensure_future(self._cancelled.wait())
        try:
            done, _ = await asyncio.wait({sleeper, canceller}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for future in (sleeper, canceller):
                if not future.done():
                    future.cancel()

        if sleeper not in done:
            raise WorkflowCancelled(f"Run {self.run_id} cancelled during {name}")

    def _next_recorded(self, entry_type: str, name: str) -> JournalEntry | None:
        if not self.replaying:
            return None

        entry = self._history[self._cursor]
        if entry["type"] != entry_type or entry["name"] != name:
            raise NondeterminismError(
                f"Replay diverged at step {self._cursor}: journal has {entry['type']} "
                f"'{entry['name']}', workflow asked for {entry_type} '{name}'",
                {"seq": self._cursor, "recorded": entry["name"], "requested": name},
            )
        self._cursor += 1
        return entry

    async def _record(self, entry_type: str, name: str, status: str, **fields: Any) -> None:
        entry: JournalEntry = {
            "seq": len(self._history),
            "type": entry_type,
            "name": name,
            "status": status,
            "recorded_at": datetime.now(UTC).isoformat(),
            **fields,  # type: ignore[typeddict-item]
        }
        self._history.append(entry)
        self._cursor = len(self._history)
        await self.state.append_history(self.run_id, entry)
