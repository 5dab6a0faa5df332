"""
Failure Recovery Module
=======================

Handles failed task executions: classifies the error, assesses severity,
retries once, and when the retry does not help produces a structured
recovery plan with a confidence estimate.

Every public method returns a best-effort result; none of them raise for a
bad or unrecognised failure.

Usage:
    from autoops.failure_recovery import FailureRecoveryEngine

    engine = FailureRecoveryEngine(retry_delay_seconds=0.5)

    record = engine.record_failure(execution, plan)
    if engine.should_retry(record):
        retry = await engine.attempt_retry(execution, lambda: executor.execute_task(task))
    if not record.retry_succeeded:
        plan = engine.generate_recovery_plan(record)

    analysis = engine.analyze_failures()
    print(engine.format_analysis(analysis))
"""

import asyncio
import inspect
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from autoops.collaborators import TaskOutcome
from autoops.models import (
    TaskExecution,
    TaskPlan,
    TaskPriority,
    TaskStatus,
    new_id,
    to_jsonable,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY_SECONDS = 0.5
CONFIDENCE_FLOOR = 0.3
CONFIDENCE_CEILING = 0.95
ROOT_CAUSE_SHARE = 0.3


class FailureType(Enum):
    """Classified cause of a task failure."""
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    VALIDATION = "validation"
    RESOURCE = "resource"
    PERMISSION = "permission"
    DEPENDENCY = "dependency"
    UNKNOWN = "unknown"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryStrategy(Enum):
    RETRY = "retry"
    SKIP = "skip"
    FALLBACK = "fallback"
    PARTIAL_COMPLETION = "partial-completion"
    MANUAL_INTERVENTION = "manual-intervention"
    ROLLBACK = "rollback"


# Ordered keyword groups; the first group with a hit wins.
CLASSIFICATION_RULES: tuple[tuple[FailureType, tuple[str, ...]], ...] = (
    (FailureType.TIMEOUT, ("timeout", "timed out")),
    (FailureType.CONNECTION, ("connection", "network", "unreachable")),
    (FailureType.VALIDATION, ("validation", "invalid", "format")),
    (FailureType.RESOURCE, ("resource", "memory", "disk")),
    (FailureType.PERMISSION, ("permission", "denied", "unauthorized")),
    (FailureType.DEPENDENCY, ("dependency", "not found", "missing")),
)

# Failure type -> strategy when no retry has been attempted
TYPE_STRATEGIES: dict[FailureType, RecoveryStrategy] = {
    FailureType.TIMEOUT: RecoveryStrategy.RETRY,
    FailureType.CONNECTION: RecoveryStrategy.RETRY,
    FailureType.VALIDATION: RecoveryStrategy.FALLBACK,
    FailureType.RESOURCE: RecoveryStrategy.PARTIAL_COMPLETION,
    FailureType.PERMISSION: RecoveryStrategy.MANUAL_INTERVENTION,
    FailureType.DEPENDENCY: RecoveryStrategy.ROLLBACK,
}

# Severity -> strategy once a retry has failed
FAILED_RETRY_STRATEGIES: dict[Severity, RecoveryStrategy] = {
    Severity.LOW: RecoveryStrategy.SKIP,
    Severity.MEDIUM: RecoveryStrategy.FALLBACK,
    Severity.HIGH: RecoveryStrategy.PARTIAL_COMPLETION,
    Severity.CRITICAL: RecoveryStrategy.MANUAL_INTERVENTION,
}

# (action, description, automated)
STRATEGY_STEPS: dict[RecoveryStrategy, tuple[tuple[str, str, bool], ...]] = {
    RecoveryStrategy.RETRY: (
        ("Wait", "Wait for the transient issue to clear", True),
        ("Retry", "Run the task again", True),
        ("Verify", "Confirm the task completed", True),
    ),
    RecoveryStrategy.SKIP: (
        ("Log", "Log the failure for later review", True),
        ("Skip", "Skip the non-critical task and continue", True),
        ("Notify", "Add the skipped task to the execution report", True),
    ),
    RecoveryStrategy.FALLBACK: (
        ("Analyze", "Identify a fallback approach", True),
        ("Substitute", "Run the alternative method", True),
        ("Validate", "Check the fallback meets the requirements", True),
    ),
    RecoveryStrategy.PARTIAL_COMPLETION: (
        ("Assess", "Determine which parts can still complete", True),
        ("Execute", "Complete the available portions", True),
        ("Document", "Record the incomplete items", True),
        ("Schedule", "Plan the remaining work", False),
    ),
    RecoveryStrategy.MANUAL_INTERVENTION: (
        ("Alert", "Notify an operator of the failure", True),
        ("Pause", "Pause workflow execution", True),
        ("Investigate", "Investigate the failure manually", False),
        ("Resolve", "Apply a manual fix", False),
        ("Resume", "Resume the workflow after resolution", False),
    ),
    RecoveryStrategy.ROLLBACK: (
        ("Stop", "Halt the current execution", True),
        ("Revert", "Undo completed changes", True),
        ("Restore", "Restore the previous state", True),
        ("Report", "Generate a failure report", True),
    ),
}

BASE_RECOVERY_TIME: dict[RecoveryStrategy, float] = {
    RecoveryStrategy.RETRY: 5,
    RecoveryStrategy.SKIP: 1,
    RecoveryStrategy.FALLBACK: 10,
    RecoveryStrategy.PARTIAL_COMPLETION: 15,
    RecoveryStrategy.MANUAL_INTERVENTION: 60,
    RecoveryStrategy.ROLLBACK: 20,
}
MANUAL_STEP_TIME = 10

BASE_CONFIDENCE: dict[RecoveryStrategy, float] = {
    RecoveryStrategy.RETRY: 0.7,
    RecoveryStrategy.SKIP: 0.95,
    RecoveryStrategy.FALLBACK: 0.75,
    RecoveryStrategy.PARTIAL_COMPLETION: 0.8,
    RecoveryStrategy.MANUAL_INTERVENTION: 0.6,
    RecoveryStrategy.ROLLBACK: 0.85,
}

ALTERNATIVES: dict[FailureType, tuple[str, ...]] = {
    FailureType.TIMEOUT: ("Increase timeout limits", "Break into smaller subtasks", "Use async processing"),
    FailureType.CONNECTION: ("Check network connectivity", "Use offline fallback", "Queue for later execution"),
    FailureType.VALIDATION: ("Review input data format", "Apply data transformation", "Use lenient validation mode"),
    FailureType.RESOURCE: ("Free up system resources", "Scale up infrastructure", "Use resource pooling"),
    FailureType.PERMISSION: ("Request elevated permissions", "Use a service account", "Contact an administrator"),
    FailureType.DEPENDENCY: ("Install missing dependencies", "Update dependency versions", "Use an alternative library"),
    FailureType.UNKNOWN: ("Review task configuration", "Check system logs", "Contact support"),
}

EXPLANATIONS: dict[FailureType, str] = {
    FailureType.TIMEOUT: (
        'The task "{title}" took too long and was stopped. This usually means it was '
        "processing too much data or waiting on a slow service."
    ),
    FailureType.CONNECTION: (
        'The task "{title}" could not reach a required service. The network, the '
        "service itself, or the connection settings may be at fault."
    ),
    FailureType.VALIDATION: (
        'The task "{title}" received data in an unexpected format. The input needs '
        "to be checked and corrected before the task can succeed."
    ),
    FailureType.RESOURCE: (
        'The task "{title}" ran out of resources such as memory or disk space.'
    ),
    FailureType.PERMISSION: (
        'The task "{title}" lacks the permissions it needs. Access has to be granted '
        "before it can run."
    ),
    FailureType.DEPENDENCY: (
        'The task "{title}" is missing a component or service it depends on.'
    ),
    FailureType.UNKNOWN: (
        'The task "{title}" failed for an unexpected reason and needs investigation.'
    ),
}

STRATEGY_EXPLANATIONS: dict[RecoveryStrategy, str] = {
    RecoveryStrategy.RETRY: "The system will try again automatically.",
    RecoveryStrategy.SKIP: "The task was skipped so the workflow can continue.",
    RecoveryStrategy.FALLBACK: "An alternative approach will be used instead.",
    RecoveryStrategy.PARTIAL_COMPLETION: "The task will be completed partially and the rest scheduled.",
    RecoveryStrategy.MANUAL_INTERVENTION: "This needs manual attention to resolve.",
    RecoveryStrategy.ROLLBACK: "Changes are being rolled back to a safe state.",
}

GROUP_EXPLANATIONS: dict[FailureType, str] = {
    FailureType.TIMEOUT: "{count} task(s) timed out ({names}) - operations took too long",
    FailureType.CONNECTION: "{count} task(s) had connection issues ({names}) - network or service problems",
    FailureType.VALIDATION: "{count} task(s) failed validation ({names}) - data format issues",
    FailureType.RESOURCE: "{count} task(s) ran out of resources ({names}) - capacity limits reached",
    FailureType.PERMISSION: "{count} task(s) lacked permissions ({names}) - access denied",
    FailureType.DEPENDENCY: "{count} task(s) had missing dependencies ({names}) - components unavailable",
    FailureType.UNKNOWN: "{count} task(s) failed unexpectedly ({names}) - investigation needed",
}

ROOT_CAUSES: dict[FailureType, str] = {
    FailureType.TIMEOUT: "System performance issues causing frequent timeouts",
    FailureType.CONNECTION: "Network instability or external service issues",
    FailureType.VALIDATION: "Data quality problems in input sources",
    FailureType.RESOURCE: "Insufficient capacity for the workload",
    FailureType.PERMISSION: "Missing or misconfigured access rights",
    FailureType.DEPENDENCY: "Unavailable or mismatched dependencies",
    FailureType.UNKNOWN: "Recurring failures without a recognisable cause",
}


@dataclass
class RecoveryStep:
    order: int
    action: str
    description: str
    automated: bool


@dataclass
class RecoveryPlan:
    """A remediation proposal. Owned by exactly one FailureRecord."""
    strategy: RecoveryStrategy
    steps: list[RecoveryStep]
    estimated_time: float
    confidence: float
    alternatives: list[str] = field(default_factory=list)
    plan_id: str = field(default_factory=new_id)

    def to_dict(self) -> dict:
        return to_jsonable(self)


@dataclass
class FailureRecord:
    """Diagnostic record for one failed task execution."""
    task_id: str
    task_title: str
    error: str
    error_type: FailureType
    severity: Severity
    retry_attempted: bool = False
    retry_succeeded: bool = False
    recovery_plan: Optional[RecoveryPlan] = None
    record_id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return to_jsonable(self)


@dataclass
class FailureAnalysis:
    """Aggregate, read-only summary over all recorded failures."""
    total_failures: int
    failures_by_type: dict[str, int]
    failures_by_severity: dict[str, int]
    retries_attempted: int
    retries_succeeded: int
    recovery_rate: float
    plain_language_summary: str
    root_causes: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return to_jsonable(self)


@dataclass
class RetryResult:
    success: bool
    execution: TaskExecution


RetryFn = Callable[[], Union[Awaitable[TaskOutcome], TaskOutcome]]


class FailureRecoveryEngine:
    """
    Classifies failed tasks, retries them once and plans recovery.

    Failures accumulate for the lifetime of the instance; call
    ``clear_failures`` to start over.
    """

    def __init__(
        self,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        retry_critical_failures: bool = False,
    ):
        """
        Args:
            retry_delay_seconds: Settle delay before the single retry
            retry_critical_failures: Also retry tasks with critical severity
                instead of going straight to a recovery plan
        """
        self.retry_delay_seconds = retry_delay_seconds
        self.retry_critical_failures = retry_critical_failures
        self._failures: list[FailureRecord] = []

    # =========================================================================
    # Recording and Classification
    # =========================================================================

    def record_failure(self, execution: TaskExecution, plan: Optional[TaskPlan] = None) -> FailureRecord:
        """Create and keep a FailureRecord for a failed task execution."""
        error = execution.error or "Unknown error"
        error_type = self.classify_error(error)
        record = FailureRecord(
            task_id=execution.task_id,
            task_title=execution.task_title,
            error=error,
            error_type=error_type,
            severity=self.assess_severity(execution, plan, error_type),
        )
        self._failures.append(record)
        logger.info(
            "Recorded failure: %s (%s, %s)",
            record.task_title, record.error_type.value, record.severity.value,
        )
        return record

    @staticmethod
    def classify_error(error: str) -> FailureType:
        """Classify an error message by keyword."""
        error_lower = (error or "").lower()
        for failure_type, keywords in CLASSIFICATION_RULES:
            if any(keyword in error_lower for keyword in keywords):
                return failure_type
        return FailureType.UNKNOWN

    def assess_severity(
        self,
        execution: TaskExecution,
        plan: Optional[TaskPlan] = None,
        error_type: Optional[FailureType] = None,
    ) -> Severity:
        """Severity from the task's declared priority, else from the failure type."""
        if plan is not None:
            task = plan.get_task(execution.task_id)
            if task is not None:
                if task.priority == TaskPriority.CRITICAL:
                    return Severity.CRITICAL
                if task.priority == TaskPriority.HIGH:
                    return Severity.HIGH

        if error_type is None:
            error_type = self.classify_error(execution.error or "")
        if error_type in (FailureType.PERMISSION, FailureType.DEPENDENCY):
            return Severity.HIGH
        if error_type in (FailureType.VALIDATION, FailureType.RESOURCE):
            return Severity.MEDIUM
        return Severity.LOW

    # =========================================================================
    # Retry
    # =========================================================================

    def should_retry(self, record: FailureRecord) -> bool:
        """Whether the single retry should be attempted for this failure."""
        if record.retry_attempted:
            return False
        if record.severity == Severity.CRITICAL and not self.retry_critical_failures:
            return False
        return True

    async def attempt_retry(self, execution: TaskExecution, retry_fn: RetryFn) -> RetryResult:
        """
        Retry a failed task once.

        On success the execution is flipped to ``completed`` and its error
        cleared; on failure its error gets a "Retry failed" suffix. A task
        that was already retried is never retried again.
        """
        record = self.get_failure(execution.task_id)
        if record is None:
            logger.warning("No failure recorded for %s; not retrying", execution.task_title)
            return RetryResult(success=False, execution=execution)
        if record.retry_attempted:
            logger.warning("Retry already attempted for %s", execution.task_title)
            return RetryResult(success=False, execution=execution)

        logger.info("Attempting retry for: %s", execution.task_title)
        record.retry_attempted = True

        if self.retry_delay_seconds > 0:
            await asyncio.sleep(self.retry_delay_seconds)

        try:
            outcome = retry_fn()
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as e:
            logger.warning("Retry error for %s: %s", execution.task_title, e)
            execution.error = f"{execution.error or record.error} | Retry error: {e}"
            return RetryResult(success=False, execution=execution)

        if outcome.success:
            logger.info("Retry succeeded for: %s", execution.task_title)
            record.retry_succeeded = True
            execution.status = TaskStatus.COMPLETED
            execution.output = outcome.output
            execution.error = None
            execution.completed_at = utc_now()
            return RetryResult(success=True, execution=execution)

        logger.info("Retry failed for: %s", execution.task_title)
        execution.error = f"{execution.error or record.error} | Retry failed: {outcome.error or 'Unknown error'}"
        return RetryResult(success=False, execution=execution)

    # =========================================================================
    # Recovery Plans
    # =========================================================================

    def generate_recovery_plan(self, record: FailureRecord) -> RecoveryPlan:
        """Build (once) and attach the recovery plan for a failure."""
        if record.recovery_plan is not None:
            return record.recovery_plan

        strategy = self.select_recovery_strategy(record)
        steps = [
            RecoveryStep(order=i, action=action, description=description, automated=automated)
            for i, (action, description, automated) in enumerate(STRATEGY_STEPS[strategy], 1)
        ]
        plan = RecoveryPlan(
            strategy=strategy,
            steps=steps,
            estimated_time=self._estimate_recovery_time(strategy, steps),
            confidence=self._calculate_confidence(record, strategy),
            alternatives=list(ALTERNATIVES[record.error_type]),
        )
        record.recovery_plan = plan
        logger.info(
            "Recovery plan for %s: %s (%d steps, confidence %.2f)",
            record.task_title, strategy.value, len(steps), plan.confidence,
        )
        return plan

    @staticmethod
    def select_recovery_strategy(record: FailureRecord) -> RecoveryStrategy:
        if record.retry_attempted and not record.retry_succeeded:
            return FAILED_RETRY_STRATEGIES[record.severity]

        strategy = TYPE_STRATEGIES.get(record.error_type)
        if strategy is not None:
            return strategy
        if record.severity == Severity.CRITICAL:
            return RecoveryStrategy.MANUAL_INTERVENTION
        return RecoveryStrategy.SKIP

    @staticmethod
    def _estimate_recovery_time(strategy: RecoveryStrategy, steps: list[RecoveryStep]) -> float:
        manual_steps = sum(1 for s in steps if not s.automated)
        return BASE_RECOVERY_TIME[strategy] + manual_steps * MANUAL_STEP_TIME

    @staticmethod
    def _calculate_confidence(record: FailureRecord, strategy: RecoveryStrategy) -> float:
        confidence = BASE_CONFIDENCE[strategy]

        if record.severity == Severity.CRITICAL:
            confidence *= 0.8
        elif record.severity == Severity.LOW:
            confidence *= 1.1

        if record.error_type in (FailureType.TIMEOUT, FailureType.CONNECTION):
            confidence *= 1.1
        elif record.error_type == FailureType.UNKNOWN:
            confidence *= 0.8

        clamped = min(max(confidence, CONFIDENCE_FLOOR), CONFIDENCE_CEILING)
        if clamped != confidence:
            logger.debug(
                "Recovery confidence %.3f clamped to %.2f (%s, %s, %s)",
                confidence, clamped, strategy.value, record.severity.value, record.error_type.value,
            )
        return clamped

    # =========================================================================
    # Plain Language
    # =========================================================================

    def explain_failure(self, record: FailureRecord) -> str:
        explanation = EXPLANATIONS[record.error_type].format(title=record.task_title)
        if record.recovery_plan is not None:
            explanation += " " + STRATEGY_EXPLANATIONS[record.recovery_plan.strategy]
        return explanation

    def explain_failures(self, records: list[FailureRecord]) -> str:
        if not records:
            return "All tasks completed successfully with no failures."
        if len(records) == 1:
            return self.explain_failure(records[0])

        by_type: dict[FailureType, list[FailureRecord]] = {}
        for record in records:
            by_type.setdefault(record.error_type, []).append(record)

        parts = [f"{len(records)} tasks encountered issues:"]
        for failure_type, group in by_type.items():
            names = ", ".join(f'"{r.task_title}"' for r in group)
            parts.append(GROUP_EXPLANATIONS[failure_type].format(count=len(group), names=names))

        with_recovery = sum(1 for r in records if r.recovery_plan is not None)
        if with_recovery:
            parts.append(f"Recovery plans have been generated for {with_recovery} failure(s).")

        return "\n\n".join(parts)

    # =========================================================================
    # Analysis
    # =========================================================================

    def analyze_failures(self) -> FailureAnalysis:
        """Summarise every failure recorded by this engine."""
        total = len(self._failures)
        type_counts = Counter(f.error_type for f in self._failures)
        severity_counts = Counter(f.severity for f in self._failures)

        retries_attempted = sum(1 for f in self._failures if f.retry_attempted)
        retries_succeeded = sum(1 for f in self._failures if f.retry_succeeded)
        recovery_rate = retries_succeeded / retries_attempted if retries_attempted else 0.0

        root_causes = [
            ROOT_CAUSES[failure_type]
            for failure_type in FailureType
            if total and type_counts[failure_type] > total * ROOT_CAUSE_SHARE
        ]

        recommendations = []
        if type_counts[FailureType.TIMEOUT]:
            recommendations.append("Consider increasing timeout limits or optimizing slow operations")
        if type_counts[FailureType.CONNECTION]:
            recommendations.append("Implement connection retry logic and circuit breakers")
        if type_counts[FailureType.PERMISSION]:
            recommendations.append("Audit the permissions granted to automated tasks")
        if retries_attempted and recovery_rate < 0.5:
            recommendations.append("Improve retry strategies or add fallback mechanisms")

        return FailureAnalysis(
            total_failures=total,
            failures_by_type={t.value: type_counts[t] for t in FailureType},
            failures_by_severity={s.value: severity_counts[s] for s in Severity},
            retries_attempted=retries_attempted,
            retries_succeeded=retries_succeeded,
            recovery_rate=recovery_rate,
            plain_language_summary=self.explain_failures(self._failures),
            root_causes=root_causes or ["No clear patterns identified"],
            recommendations=recommendations or ["Continue monitoring for patterns"],
        )

    def format_analysis(self, analysis: FailureAnalysis) -> str:
        """Format a failure analysis for display."""
        lines = [
            "=" * 60,
            "FAILURE ANALYSIS",
            "=" * 60,
            f"Failures:      {analysis.total_failures}",
            f"Retries:       {analysis.retries_succeeded}/{analysis.retries_attempted} succeeded",
            f"Recovery rate: {analysis.recovery_rate:.0%}",
            "",
        ]

        counted = {k: v for k, v in analysis.failures_by_type.items() if v}
        if counted:
            lines.extend(["-" * 60, "BY TYPE", "-" * 60])
            for failure_type, count in sorted(counted.items(), key=lambda kv: -kv[1]):
                lines.append(f"  - {failure_type}: {count}")
            lines.append("")

        lines.extend(["-" * 60, "ROOT CAUSES", "-" * 60])
        lines.extend(f"  - {cause}" for cause in analysis.root_causes)
        lines.append("")
        lines.extend(["-" * 60, "RECOMMENDATIONS", "-" * 60])
        lines.extend(f"  {i}. {rec}" for i, rec in enumerate(analysis.recommendations, 1))
        lines.append("=" * 60)

        return "\n".join(lines)

    # =========================================================================
    # Accessors
    # =========================================================================

    def get_failures(self) -> list[FailureRecord]:
        return list(self._failures)

    def get_failure(self, task_id: str) -> Optional[FailureRecord]:
        """Most recent failure recorded for a task."""
        for record in reversed(self._failures):
            if record.task_id == task_id:
                return record
        return None

    def clear_failures(self) -> None:
        self._failures = []
