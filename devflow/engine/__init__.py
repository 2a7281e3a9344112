"""Durable delivery workflow engine.

Key Components:
    - WorkflowEngine: stage state machine with compensation on failure
    - FixLoopController: bounded CI repair loop
    - DeliveryActivities: collaborator calls exposed as journaled activities
    - WorkflowRuntime: activity journal, durable timers, cancellation
    - StateManager: atomic JSON persistence of runs
    - RunContext: per-run logger, audit trail and progress

Example:
    >>> from devflow.engine import WorkflowEngine
    >>> engine = WorkflowEngine(settings, activities, StateManager(settings.state_dir))
    >>> result = await engine.start("PROJ-42", "shop")
"""

from devflow.engine.activities import DeliveryActivities
from devflow.engine.context import RunContext
from devflow.engine.fix_loop import FixLoopController
from devflow.engine.runtime import Clock, WorkflowRuntime, activity
from devflow.engine.state_manager import StateManager
from devflow.engine.workflow import WorkflowEngine

__all__ = [
    "Clock",
    "DeliveryActivities",
    "FixLoopController",
    "RunContext",
    "StateManager",
    "WorkflowEngine",
    "WorkflowRuntime",
    "activity",
]
