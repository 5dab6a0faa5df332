"""
Tests for Simulated Collaborators
=================================

Tests for the rule-based intent classifier, safety validator, planner,
executor, reflector and optimizer.
"""

import pytest

from autoops.collaborators import (
    Executor,
    IntentClassifier,
    Optimizer,
    Planner,
    Reflector,
    SafetyValidator,
    ScriptedOutcomes,
    TaskOutcome,
)
from autoops.models import (
    ExecutionResult,
    Goal,
    IntentType,
    PlannedTask,
    TaskExecution,
    TaskPriority,
    TaskStatus,
)
from autoops.run_store import RunRecordStore
from autoops.simulation import (
    SAMPLE_ERRORS,
    HistoryOptimizer,
    KeywordIntentClassifier,
    PatternSafetyValidator,
    RandomOutcomes,
    ScoringReflector,
    SimulatedExecutor,
    TemplatePlanner,
    build_simulated_collaborators,
    grade_for,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def planner():
    return TemplatePlanner()


@pytest.fixture
def plan(planner):
    return planner.plan(Goal("Deploy the billing API to staging"))


def execution_with(statuses, duration=9.0, error="connection refused"):
    return ExecutionResult(
        task_executions=[
            TaskExecution(
                task_id=f"task-{i}",
                task_title=f"Task {i}",
                status=status,
                error=error if status == TaskStatus.FAILED else None,
            )
            for i, status in enumerate(statuses, 1)
        ],
        total_duration=duration,
    )


# =============================================================================
# Intent and Safety Tests
# =============================================================================

class TestIntentClassifier:

    @pytest.mark.parametrize("goal,intent", [
        ("How do I rotate the API keys", IntentType.INFORMATION_QUERY),
        ("Is the backup finished?", IntentType.INFORMATION_QUERY),
        ("Deploy the billing API", IntentType.EXECUTION_GOAL),
        ("The nightly invoices for EMEA accounts", IntentType.EXECUTION_GOAL),
        ("hello there", IntentType.AMBIGUOUS),
        ("", IntentType.AMBIGUOUS),
    ])
    def test_classify(self, goal, intent):
        assert KeywordIntentClassifier().classify(goal).intent_type == intent

    def test_action_verb_confidence(self):
        assert KeywordIntentClassifier().classify("Schedule the report").confidence == 0.9

    def test_verb_must_be_a_whole_word(self):
        # "running" is not "run", "contest" is not "test"
        result = KeywordIntentClassifier().classify("contest running")
        assert result.intent_type == IntentType.AMBIGUOUS


class TestSafetyValidator:

    def test_safe_goal(self):
        result = PatternSafetyValidator().validate_goal("Deploy the billing API")
        assert result.is_approved
        assert result.violations == []

    def test_destructive_goal(self):
        result = PatternSafetyValidator().validate_goal("Drop database production then rm -rf /srv")

        assert not result.is_approved
        assert result.violations == ["Recursive forced deletion", "Destructive database operation"]
        assert result.summary.startswith("Goal rejected: ")
        assert result.clarifications_needed

    def test_context_is_checked(self):
        result = PatternSafetyValidator().validate_goal("Clean up the servers", context="disable firewall first")
        assert result.violations == ["Disabling a security control"]


# =============================================================================
# Planner Tests
# =============================================================================

class TestTemplatePlanner:

    def test_validate_input(self, planner):
        assert planner.validate_input(Goal("Deploy the API")) == []
        assert planner.validate_input(Goal("   ab   ")) == ["Goal must be at least 5 characters long"]
        assert planner.validate_input(Goal("x" * 2001)) == ["Goal exceeds maximum length of 2000 characters"]

    def test_five_step_template(self, plan):
        assert [t.id for t in plan.tasks] == ["task-1", "task-2", "task-3", "task-4", "task-5"]
        assert plan.tasks[2].title == "Execute: Deploy the billing API to staging"
        assert [t.priority for t in plan.tasks] == [
            TaskPriority.MEDIUM, TaskPriority.MEDIUM, TaskPriority.HIGH, TaskPriority.HIGH, TaskPriority.LOW,
        ]
        assert plan.tasks[0].dependencies == []
        assert plan.tasks[3].dependencies == ["task-3"]
        assert plan.total_estimated_duration == 9.0
        assert plan.goal == "Deploy the billing API to staging"

    def test_workflow_from_tags(self, plan, planner):
        assert plan.workflow.id == "api"
        assert plan.workflow.name == "API Integration"

        general = planner.plan(Goal("Tidy up the shared folders"))
        assert general.workflow.id == "general"
        assert general.workflow.name == "General Automation"
        assert general.workflow.confidence == 0.5

    def test_long_goal_is_truncated_in_title(self, planner):
        plan = planner.plan(Goal("Migrate " + "very " * 30 + "large tables"))
        title = plan.tasks[2].title
        assert title.endswith("...")
        assert len(title) == len("Execute: ") + 60


# =============================================================================
# Execution Tests
# =============================================================================

class TestOutcomes:

    def test_scripted_outcomes(self):
        task = PlannedTask(id="task-1", title="T")
        outcomes = ScriptedOutcomes({"task-1": [TaskOutcome(False, error="boom")]})

        assert not outcomes(task).success
        assert outcomes(task).success
        assert outcomes.calls["task-1"] == 2

    def test_random_outcomes_are_seeded(self):
        task = PlannedTask(id="task-1", title="T")
        first = RandomOutcomes(0.5, seed=3)
        second = RandomOutcomes(0.5, seed=3)
        assert [first(task).success for _ in range(20)] == [second(task).success for _ in range(20)]

    def test_random_outcome_extremes(self):
        task = PlannedTask(id="task-1", title="T")
        assert RandomOutcomes(1.0, seed=1)(task).success
        failure = RandomOutcomes(0.0, seed=1)(task)
        assert not failure.success
        assert failure.error in SAMPLE_ERRORS


class TestSimulatedExecutor:

    @pytest.mark.asyncio
    async def test_execute(self, plan):
        outcomes = ScriptedOutcomes({"task-2": [TaskOutcome(False, error="Disk full")]})
        result = await SimulatedExecutor(outcomes).execute(plan)

        assert result.total_tasks == 5
        assert result.completed_tasks == 4
        assert result.failed_tasks == 1
        assert result.errors == ["Disk full"]
        assert result.total_duration == 9.0
        assert result.task_executions[1].duration == 2.0
        assert all(t.started_at is not None and t.completed_at is not None for t in result.task_executions)

    @pytest.mark.asyncio
    async def test_execute_task(self, plan):
        outcomes = ScriptedOutcomes()
        executor = SimulatedExecutor(outcomes)

        outcome = await executor.execute_task(plan.tasks[0])
        assert outcome.success
        assert outcomes.calls == {"task-1": 1}

    @pytest.mark.asyncio
    async def test_raising_source(self, plan):
        def broken(task):
            raise RuntimeError("no capacity")

        result = await SimulatedExecutor(broken).execute(plan)
        assert result.failed_tasks == 5
        assert result.errors[0] == "Task error: no capacity"


# =============================================================================
# Reflection and Optimization Tests
# =============================================================================

class TestScoringReflector:

    @pytest.mark.parametrize("score,grade", [
        (100, "A"), (90, "A"), (89, "B"), (80, "B"), (75, "C"), (60, "D"), (59, "F"), (0, "F"),
    ])
    def test_grade_for(self, score, grade):
        assert grade_for(score) == grade

    def test_perfect_run(self, plan):
        reflection = ScoringReflector().reflect(plan, execution_with([TaskStatus.COMPLETED] * 5))

        assert reflection.score == 100
        assert reflection.grade == "A"
        assert reflection.success_rate == 1.0
        assert reflection.improvements == []

    def test_run_with_failure(self, plan):
        statuses = [TaskStatus.COMPLETED] * 4 + [TaskStatus.FAILED]
        reflection = ScoringReflector().reflect(plan, execution_with(statuses))

        # 0.8 * 40 + 10 + 15 + (15 - 5)
        assert reflection.score == 67
        assert reflection.grade == "D"
        assert reflection.lessons_learned == ["Failure: connection refused"]

    def test_slow_run_loses_efficiency(self, plan):
        reflection = ScoringReflector().reflect(plan, execution_with([TaskStatus.COMPLETED] * 5, duration=18.0))

        assert reflection.score == round(40 + 30 + 7.5 + 15)
        assert "Execution ran longer than estimated" in reflection.improvements


class TestHistoryOptimizer:

    def test_current_run_suggestions(self):
        execution = execution_with([TaskStatus.COMPLETED, TaskStatus.FAILED], duration=20.0)
        result = HistoryOptimizer().optimize({"execution": execution, "recent_runs": []})

        assert result.optimizations == [
            "Add retries or fallbacks to failing tasks",
            "Run independent tasks in parallel",
        ]
        assert result.estimated_improvements == {"success_rate": 0.0, "efficiency": 0.1, "duration": 0.2}

    def test_history_patterns(self, plan):
        store = RunRecordStore()
        reflector = ScoringReflector()
        for statuses in ([TaskStatus.FAILED] * 5, [TaskStatus.FAILED] * 5, [TaskStatus.COMPLETED] * 5):
            execution = execution_with(statuses)
            store.save_run(plan.goal, plan, execution, reflector.reflect(plan, execution))

        result = HistoryOptimizer(store).optimize({"execution": None})

        assert "2 of the last 3 runs had failed tasks" in result.patterns
        assert "Recent goals all use the 'API Integration' workflow" in result.patterns
        assert result.estimated_improvements["success_rate"] == pytest.approx(round(0.95 - 1 / 3, 3))


def test_build_simulated_collaborators():
    collaborators = build_simulated_collaborators(RunRecordStore(), ScriptedOutcomes())

    assert isinstance(collaborators["intent_classifier"], IntentClassifier)
    assert isinstance(collaborators["safety_validator"], SafetyValidator)
    assert isinstance(collaborators["planner"], Planner)
    assert isinstance(collaborators["executor"], Executor)
    assert isinstance(collaborators["reflector"], Reflector)
    assert isinstance(collaborators["optimizer"], Optimizer)
