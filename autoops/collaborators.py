"""
Collaborator Contracts
======================

Interfaces of the components the orchestrator delegates to. They live
outside the core; ``autoops.simulation`` provides small rule-based defaults.

The executor's per-task success is decided by an injectable outcome source
so failure and retry behaviour can be driven deterministically.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from autoops.models import (
    ExecutionResult,
    Goal,
    IntentClassification,
    OptimizationResult,
    PlannedTask,
    ReflectionResult,
    SafetyValidationResult,
    TaskPlan,
)


@dataclass
class TaskOutcome:
    """Result of running one task once."""
    success: bool
    output: Any = None
    error: Optional[str] = None


# A function deciding how a single task attempt turns out.
OutcomeSource = Callable[[PlannedTask], TaskOutcome]


@runtime_checkable
class IntentClassifier(Protocol):
    def classify(self, goal_text: str) -> IntentClassification:
        ...


@runtime_checkable
class SafetyValidator(Protocol):
    def validate_goal(self, goal_text: str, context: Optional[str] = None) -> SafetyValidationResult:
        ...


@runtime_checkable
class Planner(Protocol):
    def validate_input(self, goal: Goal) -> list[str]:
        """Return validation errors; empty when the goal can be planned."""
        ...

    def plan(self, goal: Goal) -> TaskPlan:
        ...


@runtime_checkable
class Executor(Protocol):
    async def execute(self, plan: TaskPlan) -> ExecutionResult:
        ...

    async def execute_task(self, task: PlannedTask) -> TaskOutcome:
        """Run one task again. Must be safe to call twice for the same task."""
        ...


@runtime_checkable
class Reflector(Protocol):
    def reflect(self, plan: TaskPlan, execution: ExecutionResult) -> ReflectionResult:
        ...


@runtime_checkable
class Optimizer(Protocol):
    def optimize(self, context: dict) -> OptimizationResult:
        ...


@dataclass
class ScriptedOutcomes:
    """
    Deterministic outcome source.

    Each task id maps to a queue of outcomes consumed one per attempt. Tasks
    without a script (or whose script ran out) use ``default``.

    Usage:
        outcomes = ScriptedOutcomes({
            "task-2": [TaskOutcome(False, error="connection refused"),
                       TaskOutcome(True, output="ok")],
        })
    """
    scripts: dict[str, list[TaskOutcome]] = field(default_factory=dict)
    default: TaskOutcome = field(default_factory=lambda: TaskOutcome(True, output="done"))
    calls: dict[str, int] = field(default_factory=dict)

    def __call__(self, task: PlannedTask) -> TaskOutcome:
        self.calls[task.id] = self.calls.get(task.id, 0) + 1
        queue = self.scripts.get(task.id)
        if queue:
            return queue.pop(0)
        return self.default
