"""
Core Data Model
===============

Shared types for the orchestration pipeline: goals, phases, planned tasks,
task executions, collaborator results and the composite run result.

Enumerations are closed sets; every field that holds one of them stores the
enum member, and ``to_jsonable`` converts a whole result tree to plain JSON
types (enum values, ISO timestamps) for storage or display.

Usage:
    from autoops.models import RunResult, PhaseName, to_jsonable

    payload = to_jsonable(result)
    names = result.phase_names
"""

import uuid
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from autoops.failure_recovery import FailureAnalysis, RecoveryPlan


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a new opaque identifier."""
    return str(uuid.uuid4())


def to_jsonable(value: Any) -> Any:
    """Recursively convert dataclasses, enums and datetimes to JSON types."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


# =============================================================================
# Errors
# =============================================================================

class AutoOpsError(Exception):
    """Base class for errors raised by the orchestration core."""


class GoalValidationError(AutoOpsError):
    """The goal failed input validation (too short, too long)."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Planning validation failed: {', '.join(self.errors)}")


class MissingStateError(AutoOpsError):
    """A phase was started without the state an earlier phase should provide."""


class RunDeadlineExceeded(AutoOpsError):
    """The caller-supplied deadline passed before the next phase could start."""


# =============================================================================
# Enumerations
# =============================================================================

class PhaseName(Enum):
    """Named stages of a run, in pipeline order (``ERROR`` is out of band)."""
    INTENT_CLASSIFICATION = "intent-classification"
    SAFETY_VALIDATION = "safety-validation"
    PLANNING = "planning"
    EXECUTING = "executing"
    REFLECTING = "reflecting"
    OPTIMIZING = "optimizing"
    COMPLETE = "complete"
    ERROR = "error"


PHASE_ORDER: tuple[PhaseName, ...] = (
    PhaseName.INTENT_CLASSIFICATION,
    PhaseName.SAFETY_VALIDATION,
    PhaseName.PLANNING,
    PhaseName.EXECUTING,
    PhaseName.REFLECTING,
    PhaseName.OPTIMIZING,
    PhaseName.COMPLETE,
)


class PhaseStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class TaskStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class TaskPriority(Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IntentType(Enum):
    """How a goal string should be handled."""
    EXECUTION_GOAL = "EXECUTION_GOAL"        # Plan and execute
    INFORMATION_QUERY = "INFORMATION_QUERY"  # Answer, no execution
    AMBIGUOUS = "AMBIGUOUS"                  # Ask for clarification


# =============================================================================
# Goal and Phases
# =============================================================================

@dataclass(frozen=True)
class Goal:
    """The input of a run. Created once per invocation."""
    text: str
    context: Optional[str] = None


@dataclass
class Phase:
    """
    One entry of a run's phase log.

    Phases are appended only. Once a phase reaches ``completed`` or
    ``failed`` its status is final; ``finish`` on a finished phase is a no-op.
    """
    name: PhaseName
    started_at: datetime = field(default_factory=utc_now)
    status: PhaseStatus = PhaseStatus.RUNNING
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None

    @property
    def is_finished(self) -> bool:
        return self.status in (PhaseStatus.COMPLETED, PhaseStatus.FAILED, PhaseStatus.SKIPPED)

    def finish(self, status: PhaseStatus) -> None:
        """Set the terminal status and fill in timing."""
        if self.is_finished:
            return
        self.status = status
        self.completed_at = utc_now()
        self.duration_ms = (self.completed_at - self.started_at).total_seconds() * 1000


# =============================================================================
# Planning and Execution
# =============================================================================

@dataclass
class PlannedTask:
    """A single step of a plan, as produced by the planner collaborator."""
    id: str
    title: str
    description: str = ""
    type: str = "generic"
    priority: TaskPriority = TaskPriority.MEDIUM
    estimated_duration: float = 1.0  # seconds
    dependencies: list[str] = field(default_factory=list)


@dataclass
class WorkflowSelection:
    """The workflow the planner chose to carry the tasks."""
    id: str
    name: str
    reason: str = ""
    confidence: float = 0.0


@dataclass
class TaskPlan:
    """Planner output: ordered tasks plus the selected workflow."""
    tasks: list[PlannedTask]
    workflow: WorkflowSelection
    total_estimated_duration: float = 0.0
    goal: str = ""
    plan_id: str = field(default_factory=new_id)

    def get_task(self, task_id: str) -> Optional[PlannedTask]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None


@dataclass
class TaskExecution:
    """
    Runtime record of attempting one planned task.

    Mutated only by the orchestrator and by the failure recovery engine
    (a successful retry flips ``failed`` to ``completed``).
    """
    task_id: str
    task_title: str
    status: TaskStatus = TaskStatus.PENDING
    error: Optional[str] = None
    output: Any = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration: float = 0.0  # seconds


@dataclass
class ExecutionResult:
    """
    Executor output.

    Counts and errors are derived from the task executions, so they stay
    correct after a retry changes a task's status.
    """
    task_executions: list[TaskExecution] = field(default_factory=list)
    total_duration: float = 0.0  # seconds

    @property
    def completed_tasks(self) -> int:
        return sum(1 for t in self.task_executions if t.status == TaskStatus.COMPLETED)

    @property
    def failed_tasks(self) -> int:
        return sum(1 for t in self.task_executions if t.status == TaskStatus.FAILED)

    @property
    def total_tasks(self) -> int:
        return len(self.task_executions)

    @property
    def errors(self) -> list[str]:
        return [t.error for t in self.task_executions if t.status == TaskStatus.FAILED and t.error]

    @property
    def success(self) -> bool:
        return self.failed_tasks == 0

    def failed_executions(self) -> list[TaskExecution]:
        return [t for t in self.task_executions if t.status == TaskStatus.FAILED]

    def to_dict(self) -> dict:
        data = to_jsonable(self)
        data.update({
            "completed_tasks": self.completed_tasks,
            "failed_tasks": self.failed_tasks,
            "errors": self.errors,
        })
        return data


# =============================================================================
# Collaborator Results
# =============================================================================

@dataclass
class IntentClassification:
    intent_type: IntentType
    confidence: float
    reasoning: str = ""
    suggested_action: Optional[str] = None


@dataclass
class SafetyValidationResult:
    is_approved: bool
    summary: str = ""
    violations: list[str] = field(default_factory=list)
    clarifications_needed: list[str] = field(default_factory=list)


@dataclass
class ReflectionResult:
    score: float            # 0-100
    grade: str              # A-F
    success_rate: float     # 0-1
    insights: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)
    lessons_learned: list[str] = field(default_factory=list)


@dataclass
class OptimizationResult:
    optimizations: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    estimated_improvements: dict[str, float] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "OptimizationResult":
        """Result substituted when the optimizer fails."""
        return cls(estimated_improvements={"success_rate": 0.0, "efficiency": 0.0, "duration": 0.0})


# =============================================================================
# Run Result
# =============================================================================

@dataclass
class RunResult:
    """Composite outcome of one orchestrator run."""
    run_id: str
    goal: str
    success: bool
    phases: list[Phase] = field(default_factory=list)
    plan: Optional[TaskPlan] = None
    execution: Optional[ExecutionResult] = None
    reflection: Optional[ReflectionResult] = None
    optimization: Optional[OptimizationResult] = None
    failure_analysis: Optional["FailureAnalysis"] = None
    recovery_plans: list["RecoveryPlan"] = field(default_factory=list)
    error: Optional[str] = None
    total_duration: float = 0.0  # seconds, wall clock
    summary: str = ""
    intent: Optional[IntentClassification] = None
    safety: Optional[SafetyValidationResult] = None
    strategy_version: Optional[int] = None
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @property
    def phase_names(self) -> list[str]:
        return [p.name.value for p in self.phases]

    def to_dict(self) -> dict:
        data = to_jsonable(self)
        if self.execution is not None:
            data["execution"] = self.execution.to_dict()
        return data
