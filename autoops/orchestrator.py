"""
Run Orchestrator
================

Drives one goal through the run pipeline:

    intent-classification -> safety-validation -> planning -> executing
    -> reflecting -> optimizing -> complete

Phases run strictly one after another. Failed tasks are handed to the
failure recovery engine (one at a time) before the executing phase
finishes. Optimization is best-effort; any other unexpected error aborts
the run, which is then reported with an ``error`` phase.

Usage:
    from autoops.orchestrator import create_orchestrator

    orchestrator = create_orchestrator()
    result = await orchestrator.run("Deploy the billing API to staging")
    print(result.summary)
"""

import copy
import dataclasses
import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Optional

from autoops.collaborators import (
    Executor,
    IntentClassifier,
    OutcomeSource,
    Optimizer,
    Planner,
    Reflector,
    SafetyValidator,
)
from autoops.config import AutoOpsConfig, OrchestratorConfig
from autoops.evolution import EvolutionEngine
from autoops.failure_recovery import FailureRecoveryEngine
from autoops.models import (
    ExecutionResult,
    Goal,
    GoalValidationError,
    IntentType,
    MissingStateError,
    OptimizationResult,
    Phase,
    PhaseName,
    PhaseStatus,
    RunDeadlineExceeded,
    RunResult,
    TaskPlan,
    new_id,
    utc_now,
)
from autoops.output import print_phase
from autoops.run_store import Recommendations, RunRecord, RunRecordStore
from autoops.simulation import build_simulated_collaborators

logger = logging.getLogger(__name__)

RECENT_RUNS_FOR_OPTIMIZER = 10


@dataclass
class _RunState:
    """Mutable state of a single run; never shared between runs."""
    goal: Goal
    result: RunResult
    deadline: Optional[float] = None  # time.monotonic() value


class RunOrchestrator:
    """
    Orchestrates a run across the collaborators, the failure recovery
    engine, the run record store and (optionally) the evolution engine.

    The orchestrator only reads the evolution strategy and only appends to
    the run store.
    """

    def __init__(
        self,
        intent_classifier: IntentClassifier,
        safety_validator: SafetyValidator,
        planner: Planner,
        executor: Executor,
        reflector: Reflector,
        optimizer: Optimizer,
        run_store: RunRecordStore,
        failure_engine: Optional[FailureRecoveryEngine] = None,
        evolution_engine: Optional[EvolutionEngine] = None,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.intent_classifier = intent_classifier
        self.safety_validator = safety_validator
        self.planner = planner
        self.executor = executor
        self.reflector = reflector
        self.optimizer = optimizer
        self.run_store = run_store
        self.failure_engine = failure_engine or FailureRecoveryEngine()
        self.evolution_engine = evolution_engine
        self.config = config or OrchestratorConfig()

    # =========================================================================
    # Public API
    # =========================================================================

    async def run(
        self,
        goal: str,
        context: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> RunResult:
        """
        Run a goal through every phase and return the composite result.

        Args:
            goal: Natural-language goal
            context: Optional free-text context passed to safety and planning
            deadline: Absolute ``time.monotonic()`` value; checked between
                phases. Defaults to now + ``run_timeout_seconds`` if configured.

        Returns:
            RunResult. This method does not raise for run failures; check
            ``result.error`` for aborted runs and ``result.success`` for
            the execution outcome.
        """
        if deadline is None and self.config.run_timeout_seconds:
            deadline = time.monotonic() + self.config.run_timeout_seconds

        state = _RunState(
            goal=Goal(goal, context),
            result=RunResult(run_id=new_id(), goal=goal, success=False),
            deadline=deadline,
        )
        result = state.result
        if self.evolution_engine is not None:
            result.strategy_version = self.evolution_engine.get_current_strategy().version

        logger.info("Run %s started: %s", result.run_id, goal)
        started = time.monotonic()
        try:
            await self._run_phases(state)
        except Exception as e:
            self._abort(state, e)
        finally:
            result.total_duration = time.monotonic() - started
            result.completed_at = utc_now()

        logger.info(
            "Run %s finished: success=%s phases=%s",
            result.run_id, result.success, ",".join(result.phase_names),
        )
        return result

    def plan_only(self, goal: str, context: Optional[str] = None) -> TaskPlan:
        """Validate and plan a goal without executing it."""
        goal_obj = Goal(goal, context)
        errors = self.planner.validate_input(goal_obj)
        if errors:
            raise GoalValidationError(errors)
        return self.planner.plan(goal_obj)

    def get_recent_runs(self, limit: int = 10) -> list[RunRecord]:
        return self.run_store.get_last_runs(limit)

    def get_recommendations(self, goal: str) -> Recommendations:
        return self.run_store.get_recommendations(goal)

    def update_config(self, **changes) -> OrchestratorConfig:
        """Replace config fields; unknown field names raise TypeError."""
        self.config = dataclasses.replace(self.config, **changes)
        return self.config

    # =========================================================================
    # Phase Bookkeeping
    # =========================================================================

    def _start_phase(self, state: _RunState, name: PhaseName) -> Phase:
        if state.deadline is not None and time.monotonic() > state.deadline:
            raise RunDeadlineExceeded(f"Deadline exceeded before phase '{name.value}'")

        phase = Phase(name=name)
        state.result.phases.append(phase)
        logger.info("Phase %s started", name.value)
        return phase

    def _finish_phase(self, phase: Phase, status: PhaseStatus, message: str = "") -> None:
        phase.finish(status)
        logger.info("Phase %s %s (%.0fms)", phase.name.value, phase.status.value, phase.duration_ms or 0)
        if self.config.verbose:
            print_phase(phase, message)

    def _skip_phase(self, state: _RunState, name: PhaseName, reason: str) -> None:
        phase = self._start_phase(state, name)
        self._finish_phase(phase, PhaseStatus.SKIPPED, reason)

    def _abort(self, state: _RunState, error: Exception) -> None:
        result = state.result
        logger.error("Run %s aborted: %s", result.run_id, error)

        for phase in result.phases:
            if not phase.is_finished:
                self._finish_phase(phase, PhaseStatus.FAILED)

        error_phase = Phase(name=PhaseName.ERROR)
        result.phases.append(error_phase)
        self._finish_phase(error_phase, PhaseStatus.FAILED, str(error))

        result.success = False
        result.error = str(error)
        result.summary = f"Orchestration failed: {error}"

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _run_phases(self, state: _RunState) -> None:
        if not self._classify_intent(state):
            return
        if not self._validate_safety(state):
            return

        self._plan(state)
        await self._execute(state)
        self._reflect(state)
        self._optimize(state)
        await self._complete(state)

    def _classify_intent(self, state: _RunState) -> bool:
        """Returns True only for goals that should be executed."""
        phase = self._start_phase(state, PhaseName.INTENT_CLASSIFICATION)
        intent = self.intent_classifier.classify(state.goal.text)
        state.result.intent = intent
        self._finish_phase(phase, PhaseStatus.COMPLETED, intent.intent_type.value)

        if intent.intent_type == IntentType.INFORMATION_QUERY:
            state.result.success = True
            state.result.summary = f"Information query: {intent.suggested_action or intent.reasoning}"
            return False
        if intent.intent_type == IntentType.AMBIGUOUS:
            state.result.success = False
            state.result.summary = f"Clarification needed: {intent.suggested_action or intent.reasoning}"
            return False
        return True

    def _validate_safety(self, state: _RunState) -> bool:
        phase = self._start_phase(state, PhaseName.SAFETY_VALIDATION)
        safety = self.safety_validator.validate_goal(state.goal.text, state.goal.context)
        state.result.safety = safety

        if not safety.is_approved:
            self._finish_phase(phase, PhaseStatus.FAILED, safety.summary)
            state.result.success = False
            state.result.summary = f"Safety validation failed: {safety.summary}"
            logger.warning("Goal rejected by safety validation: %s", safety.violations)
            return False

        self._finish_phase(phase, PhaseStatus.COMPLETED)
        return True

    def _plan(self, state: _RunState) -> None:
        phase = self._start_phase(state, PhaseName.PLANNING)

        errors = self.planner.validate_input(state.goal)
        if errors:
            raise GoalValidationError(errors)

        plan = self.planner.plan(state.goal)
        state.result.plan = plan
        self._finish_phase(phase, PhaseStatus.COMPLETED, f"{len(plan.tasks)} tasks via {plan.workflow.name}")

    async def _execute(self, state: _RunState) -> None:
        if self.config.skip_execution:
            self._skip_phase(state, PhaseName.EXECUTING, "disabled by configuration")
            return

        phase = self._start_phase(state, PhaseName.EXECUTING)
        plan = state.result.plan
        if plan is None:
            raise MissingStateError("Execution requires a plan")

        execution = await self.executor.execute(plan)
        state.result.execution = execution

        if execution.failed_tasks:
            await self._recover_failures(state, plan, execution)

        self._finish_phase(
            phase, PhaseStatus.COMPLETED,
            f"{execution.completed_tasks}/{execution.total_tasks} tasks completed",
        )

    async def _recover_failures(self, state: _RunState, plan: TaskPlan, execution: ExecutionResult) -> None:
        """Record, retry and plan recovery for each failed task, in order."""
        engine = self.failure_engine

        for task_execution in execution.failed_executions():
            record = engine.record_failure(task_execution, plan)
            task = plan.get_task(task_execution.task_id)
            if task is None:
                # nothing to re-run, so the failure goes straight to a recovery plan
                logger.warning(
                    "Task %s is not in the plan; skipping retry", task_execution.task_id,
                )
            elif engine.should_retry(record):
                await engine.attempt_retry(task_execution, partial(self.executor.execute_task, task))

            if not record.retry_succeeded:
                state.result.recovery_plans.append(engine.generate_recovery_plan(record))

        state.result.failure_analysis = engine.analyze_failures()

    def _reflect(self, state: _RunState) -> None:
        result = state.result
        if self.config.skip_reflection or result.execution is None:
            reason = "disabled by configuration" if self.config.skip_reflection else "no execution result"
            self._skip_phase(state, PhaseName.REFLECTING, reason)
            return

        phase = self._start_phase(state, PhaseName.REFLECTING)
        if result.plan is None:
            raise MissingStateError("Reflection requires a plan")

        result.reflection = self.reflector.reflect(result.plan, result.execution)
        self._finish_phase(phase, PhaseStatus.COMPLETED, f"score {result.reflection.score:.0f}")

    def _optimize(self, state: _RunState) -> None:
        if not self.config.enable_optimization:
            self._skip_phase(state, PhaseName.OPTIMIZING, "disabled by configuration")
            return

        phase = self._start_phase(state, PhaseName.OPTIMIZING)
        try:
            state.result.optimization = self.optimizer.optimize(self._optimizer_context(state))
        except Exception as e:
            logger.warning("Optimization failed, continuing with an empty result: %s", e)
            state.result.optimization = OptimizationResult.empty()
            self._finish_phase(phase, PhaseStatus.FAILED, str(e))
            return

        self._finish_phase(phase, PhaseStatus.COMPLETED)

    def _optimizer_context(self, state: _RunState) -> dict:
        result = state.result
        context = {
            "goal": result.goal,
            "plan": result.plan,
            "execution": result.execution,
            "reflection": result.reflection,
            "recent_runs": self.run_store.get_last_runs(RECENT_RUNS_FOR_OPTIMIZER),
            "strategy_version": None,
            "strategy_rules": [],
        }
        if self.evolution_engine is not None:
            strategy = self.evolution_engine.get_current_strategy()
            context["strategy_version"] = strategy.version
            context["strategy_rules"] = [copy.copy(rule) for rule in strategy.rules]
        return context

    async def _complete(self, state: _RunState) -> None:
        phase = self._start_phase(state, PhaseName.COMPLETE)
        result = state.result

        if result.plan is not None and result.execution is not None and result.reflection is not None:
            await self.run_store.save_run_async(
                goal=result.goal,
                plan=result.plan,
                execution=result.execution,
                reflection=result.reflection,
                context=state.goal.context,
                run_id=result.run_id,
            )

        result.success = result.execution is not None and result.execution.failed_tasks == 0
        result.summary = self._build_summary(result)
        self._finish_phase(phase, PhaseStatus.COMPLETED, result.summary)

    @staticmethod
    def _build_summary(result: RunResult) -> str:
        parts = [f'Goal: "{result.goal}"']
        if result.plan is not None:
            parts.append(f"Planned {len(result.plan.tasks)} tasks")
        if result.execution is not None:
            parts.append(f"Executed {result.execution.completed_tasks}/{result.execution.total_tasks} tasks")
        if result.reflection is not None:
            parts.append(f"Score: {result.reflection.score:.0f}/100 ({result.reflection.grade})")
        parts.append(f"Status: {'Success' if result.success else 'Completed with issues'}")
        return " | ".join(parts)


def create_orchestrator(
    config: Optional[AutoOpsConfig] = None,
    outcome_source: Optional[OutcomeSource] = None,
    run_store: Optional[RunRecordStore] = None,
    evolution_engine: Optional[EvolutionEngine] = None,
) -> RunOrchestrator:
    """
    Build an orchestrator wired to the simulated collaborators.

    Args:
        config: Loaded configuration (defaults to ``AutoOpsConfig()``)
        outcome_source: Decides task outcomes (defaults to a coin flip)
        run_store: Shared run store (created from config if omitted)
        evolution_engine: Engine whose strategy is read (created if omitted)
    """
    config = config or AutoOpsConfig()
    if run_store is None:
        run_store = RunRecordStore(max_size=config.max_stored_runs)
    if evolution_engine is None:
        evolution_engine = EvolutionEngine(run_store, sample_size=config.evolution_sample_size)

    return RunOrchestrator(
        **build_simulated_collaborators(run_store, outcome_source),
        run_store=run_store,
        failure_engine=FailureRecoveryEngine(
            retry_delay_seconds=config.retry_delay_seconds,
            retry_critical_failures=config.retry_critical_failures,
        ),
        evolution_engine=evolution_engine,
        config=config.orchestrator_config(),
    )
