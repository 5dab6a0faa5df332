"""
Simulated Collaborators
=======================

Small rule-based implementations of the collaborator contracts so the
orchestration core can run end to end without any external services.

None of these do real work: the executor "runs" a task by asking an
injectable outcome source whether it succeeded.

Usage:
    from autoops.simulation import build_simulated_collaborators, RandomOutcomes

    collaborators = build_simulated_collaborators(run_store, RandomOutcomes(0.9, seed=7))
    orchestrator = RunOrchestrator(**collaborators, run_store=run_store, ...)
"""

import asyncio
import logging
import random
import re
from typing import Optional

from autoops.collaborators import OutcomeSource, TaskOutcome
from autoops.models import (
    ExecutionResult,
    Goal,
    IntentClassification,
    IntentType,
    OptimizationResult,
    PlannedTask,
    ReflectionResult,
    SafetyValidationResult,
    TaskExecution,
    TaskPlan,
    TaskPriority,
    TaskStatus,
    WorkflowSelection,
    utc_now,
)
from autoops.run_store import RunRecord, RunRecordStore, extract_tags

logger = logging.getLogger(__name__)

MIN_GOAL_LENGTH = 5
MAX_GOAL_LENGTH = 2000


# =============================================================================
# Intent and Safety
# =============================================================================

QUESTION_PREFIXES = ("what", "how", "why", "who", "when", "where", "which", "explain", "tell me", "describe")
ACTION_VERBS = (
    "deploy", "create", "build", "set up", "setup", "configure", "automate", "migrate",
    "run", "schedule", "monitor", "install", "generate", "sync", "backup", "test",
)


class KeywordIntentClassifier:
    """Question phrasing is a query, an action verb is a goal, anything else is ambiguous."""

    def classify(self, goal_text: str) -> IntentClassification:
        text = (goal_text or "").strip().lower()

        if text.endswith("?") or text.startswith(QUESTION_PREFIXES):
            return IntentClassification(
                intent_type=IntentType.INFORMATION_QUERY,
                confidence=0.85,
                reasoning="Goal is phrased as a question",
                suggested_action="Answer the question without executing tasks",
            )

        if any(re.search(rf"\b{re.escape(verb)}\b", text) for verb in ACTION_VERBS):
            return IntentClassification(
                intent_type=IntentType.EXECUTION_GOAL,
                confidence=0.9,
                reasoning="Goal contains an actionable verb",
            )

        if len(text.split()) >= 4:
            return IntentClassification(
                intent_type=IntentType.EXECUTION_GOAL,
                confidence=0.6,
                reasoning="Goal is descriptive enough to plan",
            )

        return IntentClassification(
            intent_type=IntentType.AMBIGUOUS,
            confidence=0.5,
            reasoning="Goal is too vague to plan",
            suggested_action="Describe what should be done and on which system",
        )


UNSAFE_PATTERNS: dict[str, str] = {
    r"\brm\s+-rf\b": "Recursive forced deletion",
    r"\bdrop\s+(database|table)\b": "Destructive database operation",
    r"\bdelete\s+(all|every)\b": "Bulk deletion",
    r"\bdisable\s+(security|auth|authentication|firewall)\b": "Disabling a security control",
    r"\b(exfiltrate|steal)\b": "Data exfiltration",
}


class PatternSafetyValidator:
    """Rejects goals matching a fixed list of destructive patterns."""

    def validate_goal(self, goal_text: str, context: Optional[str] = None) -> SafetyValidationResult:
        text = f"{goal_text} {context or ''}".lower()
        violations = [label for pattern, label in UNSAFE_PATTERNS.items() if re.search(pattern, text)]

        if violations:
            return SafetyValidationResult(
                is_approved=False,
                summary=f"Goal rejected: {', '.join(violations)}",
                violations=violations,
                clarifications_needed=["Confirm the scope and add safeguards for destructive steps"],
            )
        return SafetyValidationResult(is_approved=True, summary="No unsafe patterns detected")


# =============================================================================
# Planning
# =============================================================================

WORKFLOWS: dict[str, str] = {
    "ci-cd": "Deployment Pipeline",
    "data": "Data Pipeline",
    "api": "API Integration",
    "monitoring": "Monitoring Setup",
    "testing": "Test Automation",
    "security": "Security Hardening",
    "infrastructure": "Infrastructure Provisioning",
    "automation": "Scheduled Automation",
}


class TemplatePlanner:
    """Expands every goal into the same five-step template."""

    def validate_input(self, goal: Goal) -> list[str]:
        errors = []
        if not goal.text or len(goal.text.strip()) < MIN_GOAL_LENGTH:
            errors.append(f"Goal must be at least {MIN_GOAL_LENGTH} characters long")
        if goal.text and len(goal.text) > MAX_GOAL_LENGTH:
            errors.append(f"Goal exceeds maximum length of {MAX_GOAL_LENGTH} characters")
        return errors

    def plan(self, goal: Goal) -> TaskPlan:
        tags = extract_tags(goal.text)
        tag = tags[0] if tags else None
        workflow = WorkflowSelection(
            id=tag or "general",
            name=WORKFLOWS.get(tag, "General Automation"),
            reason=f"Goal matches the '{tag}' category" if tag else "No specific category detected",
            confidence=0.8 if tag else 0.5,
        )

        summary = goal.text.strip()
        if len(summary) > 60:
            summary = summary[:57] + "..."

        steps = [
            ("Analyze requirements", "analysis", TaskPriority.MEDIUM, 1.0, "Clarify scope and inputs"),
            ("Prepare environment", "setup", TaskPriority.MEDIUM, 2.0, "Provision what the goal needs"),
            (f"Execute: {summary}", "execution", TaskPriority.HIGH, 4.0, goal.text),
            ("Validate results", "validation", TaskPriority.HIGH, 1.5, "Check the outcome against the goal"),
            ("Report outcome", "reporting", TaskPriority.LOW, 0.5, "Summarise what was done"),
        ]
        tasks = []
        for i, (title, task_type, priority, duration, description) in enumerate(steps, 1):
            tasks.append(PlannedTask(
                id=f"task-{i}",
                title=title,
                description=description,
                type=task_type,
                priority=priority,
                estimated_duration=duration,
                dependencies=[f"task-{i - 1}"] if i > 1 else [],
            ))

        return TaskPlan(
            tasks=tasks,
            workflow=workflow,
            total_estimated_duration=sum(t.estimated_duration for t in tasks),
            goal=goal.text,
        )


# =============================================================================
# Execution
# =============================================================================

SAMPLE_ERRORS = (
    "Connection refused by upstream service",
    "Operation timed out after 30s",
    "Invalid input format in payload",
    "Permission denied for service account",
    "Dependency 'libfoo' not found",
    "Out of memory while processing batch",
)


class RandomOutcomes:
    """Seeded coin-flip outcome source."""

    def __init__(self, success_rate: float = 0.9, seed: Optional[int] = None):
        self.success_rate = success_rate
        self._rng = random.Random(seed)

    def __call__(self, task: PlannedTask) -> TaskOutcome:
        if self._rng.random() < self.success_rate:
            return TaskOutcome(True, output=f"{task.title} completed")
        return TaskOutcome(False, error=self._rng.choice(SAMPLE_ERRORS))


class SimulatedExecutor:
    """
    Runs plan tasks in order against an outcome source.

    Reported durations are the tasks' estimated durations; ``time_scale``
    controls how much real time (seconds per estimated second) is slept.
    """

    def __init__(self, outcome_source: Optional[OutcomeSource] = None, time_scale: float = 0.0):
        self.outcome_source = outcome_source or RandomOutcomes()
        self.time_scale = time_scale

    async def _attempt(self, task: PlannedTask) -> TaskOutcome:
        if self.time_scale > 0:
            await asyncio.sleep(task.estimated_duration * self.time_scale)
        try:
            return self.outcome_source(task)
        except Exception as e:
            logger.warning("Task %s raised: %s", task.id, e)
            return TaskOutcome(False, error=f"Task error: {e}")

    async def execute(self, plan: TaskPlan) -> ExecutionResult:
        result = ExecutionResult()
        for task in plan.tasks:
            execution = TaskExecution(
                task_id=task.id,
                task_title=task.title,
                status=TaskStatus.RUNNING,
                started_at=utc_now(),
            )
            result.task_executions.append(execution)

            outcome = await self._attempt(task)
            execution.completed_at = utc_now()
            execution.duration = task.estimated_duration
            if outcome.success:
                execution.status = TaskStatus.COMPLETED
                execution.output = outcome.output
            else:
                execution.status = TaskStatus.FAILED
                execution.error = outcome.error or "Unknown error"
            result.total_duration += task.estimated_duration

        return result

    async def execute_task(self, task: PlannedTask) -> TaskOutcome:
        return await self._attempt(task)


# =============================================================================
# Reflection and Optimization
# =============================================================================

def grade_for(score: float) -> str:
    if score >= 90:
        return "A"
    if score >= 80:
        return "B"
    if score >= 70:
        return "C"
    if score >= 60:
        return "D"
    return "F"


class ScoringReflector:
    """Scores a run from its success rate, goal completion, time efficiency and failures."""

    def reflect(self, plan: TaskPlan, execution: ExecutionResult) -> ReflectionResult:
        total = execution.total_tasks or len(plan.tasks)
        success_rate = execution.completed_tasks / total if total else 0.0
        achieved = execution.failed_tasks == 0 and total > 0

        if execution.total_duration > 0:
            efficiency = min(plan.total_estimated_duration / execution.total_duration, 1.0)
        else:
            efficiency = 1.0
        penalty = min(execution.failed_tasks * 5, 15)

        score = success_rate * 40 + (30 if achieved else 10) + efficiency * 15 + (15 - penalty)
        score = round(min(max(score, 0), 100))

        insights = [f"Completed {execution.completed_tasks} of {total} tasks"]
        improvements = []
        lessons = []
        if achieved:
            insights.append(f"Workflow '{plan.workflow.name}' handled this goal well")
        else:
            improvements.append("Add validation before the failing steps")
            lessons.extend(f"Failure: {error}" for error in execution.errors[:3])
        if efficiency < 1.0:
            improvements.append("Execution ran longer than estimated")

        return ReflectionResult(
            score=score,
            grade=grade_for(score),
            success_rate=success_rate,
            insights=insights,
            improvements=improvements,
            lessons_learned=lessons,
        )


class HistoryOptimizer:
    """Suggests optimizations from the current run and recent history."""

    def __init__(self, run_store: Optional[RunRecordStore] = None):
        self.run_store = run_store

    def optimize(self, context: dict) -> OptimizationResult:
        execution: Optional[ExecutionResult] = context.get("execution")
        recent: list[RunRecord] = context.get("recent_runs")
        if recent is None:
            recent = self.run_store.get_last_runs(10) if self.run_store is not None else []

        optimizations = []
        patterns = []

        if execution is not None:
            if execution.failed_tasks:
                optimizations.append("Add retries or fallbacks to failing tasks")
            if execution.total_duration > 15:
                optimizations.append("Run independent tasks in parallel")

        failing_runs = [r for r in recent if r.execution.failed_tasks]
        if len(failing_runs) >= 2:
            patterns.append(f"{len(failing_runs)} of the last {len(recent)} runs had failed tasks")

        workflows = {r.plan.workflow_name for r in recent}
        if len(recent) >= 3 and len(workflows) == 1:
            patterns.append(f"Recent goals all use the '{workflows.pop()}' workflow")

        avg_rate = sum(r.reflection.success_rate for r in recent) / len(recent) if recent else 1.0
        return OptimizationResult(
            optimizations=optimizations,
            patterns=patterns,
            estimated_improvements={
                "success_rate": round(max(0.0, 0.95 - avg_rate), 3),
                "efficiency": 0.1 if optimizations else 0.0,
                "duration": 0.2 if "Run independent tasks in parallel" in optimizations else 0.0,
            },
        )


def build_simulated_collaborators(
    run_store: Optional[RunRecordStore] = None,
    outcome_source: Optional[OutcomeSource] = None,
    time_scale: float = 0.0,
) -> dict:
    """Keyword arguments for RunOrchestrator covering every collaborator."""
    return {
        "intent_classifier": KeywordIntentClassifier(),
        "safety_validator": PatternSafetyValidator(),
        "planner": TemplatePlanner(),
        "executor": SimulatedExecutor(outcome_source, time_scale=time_scale),
        "reflector": ScoringReflector(),
        "optimizer": HistoryOptimizer(run_store),
    }
