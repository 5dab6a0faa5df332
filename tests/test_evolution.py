"""
Tests for Strategy Evolution Module
===================================

Tests for the EvolutionEngine: run analysis, pattern detection, suggestion
generation, rule updates, versioning and manual suggestion handling.
"""

import asyncio

import pytest

from autoops.evolution import (
    Complexity,
    EvolutionEngine,
    Impact,
    InefficiencyType,
    OptimizationSuggestion,
    SuggestionCategory,
    create_evolution_engine,
    create_initial_strategy,
)
from autoops.models import (
    ExecutionResult,
    PlannedTask,
    ReflectionResult,
    TaskExecution,
    TaskPlan,
    TaskStatus,
    WorkflowSelection,
)
from autoops.run_store import RunRecord, RunRecordStore


# =============================================================================
# Helpers
# =============================================================================

GOAL = "Automate the nightly report"


def make_parts(tasks: int = 5, failed: int = 0, duration: float = 10.0, score: float = 90,
               completed: int = None):
    """Plan, execution and reflection for a synthetic run."""
    if completed is None:
        completed = tasks - failed
    plan = TaskPlan(
        tasks=[PlannedTask(id=f"task-{i}", title=f"Step {i}") for i in range(1, tasks + 1)],
        workflow=WorkflowSelection(id="general", name="General Automation"),
    )
    statuses = [TaskStatus.COMPLETED] * completed + [TaskStatus.FAILED] * failed
    execution = ExecutionResult(
        task_executions=[
            TaskExecution(
                task_id=f"task-{i}",
                task_title=f"Step {i}",
                status=status,
                error="timed out" if status == TaskStatus.FAILED else None,
            )
            for i, status in enumerate(statuses, 1)
        ],
        total_duration=duration,
    )
    reflection = ReflectionResult(
        score=score,
        grade="A" if score >= 90 else "D",
        success_rate=completed / tasks if tasks else 0.0,
    )
    return plan, execution, reflection


def build_record(**kwargs) -> RunRecord:
    return RunRecord.from_run(GOAL, *make_parts(**kwargs))


def add_runs(store: RunRecordStore, count: int, **kwargs) -> None:
    for _ in range(count):
        store.save_run(GOAL, *make_parts(**kwargs))


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def store():
    return RunRecordStore()


@pytest.fixture
def engine(store):
    return EvolutionEngine(store)


@pytest.fixture
def mixed_store(store):
    """20 runs: 16 clean, 4 with 2 of 5 tasks failed."""
    add_runs(store, 16, tasks=5, failed=0, duration=10.0, score=90)
    add_runs(store, 4, tasks=5, failed=2, duration=10.0, score=60)
    return store


@pytest.fixture
def slow_store(store):
    """3 slow, complex runs."""
    add_runs(store, 3, tasks=5, failed=0, duration=40.0, score=85)
    return store


# =============================================================================
# Initial Strategy Tests
# =============================================================================

class TestInitialStrategy:
    """Tests for the seed strategy."""

    def test_initial_rules(self):
        strategy = create_initial_strategy()

        assert strategy.version == 1
        assert [(r.condition, r.action, r.priority, r.effectiveness) for r in strategy.rules] == [
            ("new_goal", "decompose_into_tasks", 1, 0.9),
            ("task_ready", "execute_sequentially", 2, 0.85),
            ("execution_complete", "reflect_and_learn", 3, 0.88),
        ]
        assert all(r.times_applied == 0 for r in strategy.rules)

    def test_engine_starts_with_seed(self, engine):
        assert engine.get_current_strategy().version == 1
        assert engine.get_suggestions() == []
        assert engine.get_latest_report() is None

    def test_factory(self, store):
        engine = create_evolution_engine(store, sample_size=5)
        assert engine.sample_size == 5
        assert engine.run_store is store


# =============================================================================
# Analysis Tests
# =============================================================================

class TestAnalyzeExecution:
    """Tests for per-run inefficiency detection."""

    def test_clean_run_has_no_inefficiencies(self):
        analysis = EvolutionEngine.analyze_execution(build_record())

        assert analysis.inefficiencies == []
        assert analysis.complexity == Complexity.SIMPLE
        assert analysis.task_count == 5
        assert analysis.success_rate == 1.0

    def test_slow_execution(self):
        analysis = EvolutionEngine.analyze_execution(build_record(tasks=5, duration=40.0))

        types = [i.type for i in analysis.inefficiencies]
        assert types == [InefficiencyType.SLOW_EXECUTION]
        assert analysis.inefficiencies[0].severity == Impact.MEDIUM
        assert analysis.bottlenecks == ["Slow task execution"]
        assert analysis.complexity == Complexity.COMPLEX

    def test_very_slow_execution_is_high_severity(self):
        analysis = EvolutionEngine.analyze_execution(build_record(tasks=2, duration=30.0, score=90))
        assert analysis.inefficiencies[0].severity == Impact.HIGH

    @pytest.mark.parametrize("failed,severity", [
        (2, Impact.HIGH),     # 40%
        (1, Impact.MEDIUM),   # 20%
    ])
    def test_failure_severity(self, failed, severity):
        analysis = EvolutionEngine.analyze_execution(build_record(tasks=5, failed=failed))
        failure = [i for i in analysis.inefficiencies if i.type == InefficiencyType.HIGH_FAILURE]
        assert len(failure) == 1
        assert failure[0].severity == severity
        assert failure[0].affected_tasks == ["timed out"] * failed

    def test_low_failure_rate(self):
        analysis = EvolutionEngine.analyze_execution(build_record(tasks=10, failed=1, duration=10.0))
        failure = [i for i in analysis.inefficiencies if i.type == InefficiencyType.HIGH_FAILURE]
        assert failure[0].severity == Impact.LOW

    def test_over_planning(self):
        record = build_record(tasks=12, completed=5, duration=12.0)
        analysis = EvolutionEngine.analyze_execution(record)

        assert InefficiencyType.OVER_PLANNING in [i.type for i in analysis.inefficiencies]
        assert "Over-planning" in analysis.bottlenecks
        assert analysis.complexity == Complexity.COMPLEX

    def test_under_planning(self):
        analysis = EvolutionEngine.analyze_execution(build_record(tasks=2, duration=2.0, score=50))
        assert [i.type for i in analysis.inefficiencies] == [InefficiencyType.UNDER_PLANNING]

    def test_medium_complexity(self):
        analysis = EvolutionEngine.analyze_execution(build_record(tasks=7, duration=7.0))
        assert analysis.complexity == Complexity.MEDIUM

    def test_run_without_tasks(self):
        analysis = EvolutionEngine.analyze_execution(build_record(tasks=0, duration=0.0, score=90))
        assert analysis.task_count == 0
        assert analysis.execution_time == 0.0

    def test_identify_patterns(self):
        analyses = [
            EvolutionEngine.analyze_execution(build_record(failed=2)),
            EvolutionEngine.analyze_execution(build_record(failed=2, duration=40.0)),
        ]
        patterns = EvolutionEngine.identify_patterns(analyses)
        assert patterns == {InefficiencyType.HIGH_FAILURE: 2, InefficiencyType.SLOW_EXECUTION: 1}


# =============================================================================
# Suggestion Tests
# =============================================================================

class TestSuggestions:
    """Tests for suggestion and rule construction."""

    def test_pattern_suggestion_from_template(self):
        suggestion = EvolutionEngine.create_pattern_suggestion(InefficiencyType.HIGH_FAILURE, 4)

        assert suggestion.title == "Improve Task Reliability"
        assert suggestion.category == SuggestionCategory.RELIABILITY
        assert suggestion.impact == Impact.HIGH
        assert suggestion.auto_applicable
        assert suggestion.confidence == pytest.approx(0.95)
        assert "4 runs" in suggestion.description

    def test_pattern_suggestion_confidence_cap(self):
        suggestion = EvolutionEngine.create_pattern_suggestion(InefficiencyType.SLOW_EXECUTION, 9)
        assert suggestion.confidence == 0.95

    def test_pattern_suggestion_accepts_value(self):
        suggestion = EvolutionEngine.create_pattern_suggestion("under-planning", 2)
        assert suggestion.title == "Enhance Planning Completeness"
        assert not suggestion.auto_applicable
        assert suggestion.confidence == pytest.approx(0.8)

    def test_unknown_pattern_falls_back(self):
        suggestion = EvolutionEngine.create_pattern_suggestion("mystery", 3)

        assert suggestion.title == "General Optimization"
        assert suggestion.category == SuggestionCategory.EFFICIENCY
        assert suggestion.impact == Impact.LOW
        assert not suggestion.auto_applicable
        assert suggestion.description == 'Pattern "mystery" detected 3 times.'

    @pytest.mark.parametrize("category,condition,action,priority", [
        (SuggestionCategory.PERFORMANCE, "execution_time > threshold", "enable_parallel_execution", 1),
        (SuggestionCategory.ACCURACY, "success_rate < 0.85", "add_validation_step", 2),
        (SuggestionCategory.EFFICIENCY, "task_count > 8", "consolidate_tasks", 3),
        (SuggestionCategory.RELIABILITY, "failure_rate > 0.15", "enable_retry_logic", 1),
    ])
    def test_rule_from_suggestion(self, category, condition, action, priority):
        suggestion = OptimizationSuggestion(
            category=category, title="t", description="d", impact=Impact.LOW,
            confidence=0.7, auto_applicable=True,
        )
        rule = EvolutionEngine.create_rule_from_suggestion(suggestion)
        assert (rule.condition, rule.action, rule.priority) == (condition, action, priority)
        assert rule.effectiveness == 0.7
        assert rule.times_applied == 0

    def test_single_occurrence_is_not_a_pattern(self, engine):
        analyses = [EvolutionEngine.analyze_execution(build_record(failed=2))]
        suggestions = engine.generate_suggestions({InefficiencyType.HIGH_FAILURE: 1}, analyses)
        assert "Improve Task Reliability" not in [s.title for s in suggestions]

    def test_no_aggregate_suggestions_without_runs(self, engine):
        assert engine.generate_suggestions({}, []) == []


# =============================================================================
# Evolution Cycle Tests
# =============================================================================

class TestEvolveStrategy:
    """Tests for full evolution cycles."""

    @pytest.mark.asyncio
    async def test_reliability_rule_from_failing_runs(self, mixed_store):
        engine = EvolutionEngine(mixed_store)
        report = await engine.evolve_strategy()

        assert report.runs_analyzed == 20
        assert [s.title for s in report.new_suggestions] == ["Improve Task Reliability"]
        assert report.applied_improvements == ["Improve Task Reliability"]

        strategy = engine.get_current_strategy()
        assert strategy.version == 2
        reliability = [r for r in strategy.rules if r.condition == "failure_rate > 0.15"]
        assert len(reliability) == 1
        assert reliability[0].action == "enable_retry_logic"
        assert reliability[0].priority == 1
        assert reliability[0].effectiveness == pytest.approx(0.97)
        assert strategy.rules[0] is reliability[0]
        assert any(l.startswith("Applied: Improve Task Reliability - ") for l in strategy.learnings)

    @pytest.mark.asyncio
    async def test_rules_stay_sorted(self, mixed_store):
        engine = EvolutionEngine(mixed_store)
        await engine.evolve_strategy()

        keys = [(r.priority, -r.effectiveness) for r in engine.get_current_strategy().rules]
        assert keys == sorted(keys)

    @pytest.mark.asyncio
    async def test_effectiveness_rises_with_high_success(self, mixed_store):
        engine = EvolutionEngine(mixed_store)
        await engine.evolve_strategy()

        by_condition = {r.condition: r for r in engine.get_current_strategy().rules}
        assert by_condition["new_goal"].effectiveness == pytest.approx(0.92)
        assert by_condition["task_ready"].effectiveness == pytest.approx(0.87)
        assert all(r.times_applied == 1 for r in by_condition.values())

    @pytest.mark.asyncio
    async def test_effectiveness_falls_with_low_success(self, store):
        add_runs(store, 3, tasks=5, failed=3, duration=10.0, score=40)
        engine = EvolutionEngine(store)
        report = await engine.evolve_strategy()

        titles = [s.title for s in report.new_suggestions]
        assert "Improve Task Reliability" in titles
        assert "Add Pre-execution Validation" in titles

        by_condition = {r.condition: r for r in engine.get_current_strategy().rules}
        assert by_condition["new_goal"].effectiveness == pytest.approx(0.85)
        assert by_condition["success_rate < 0.85"].effectiveness == pytest.approx(0.73)

    @pytest.mark.asyncio
    async def test_effectiveness_floor(self, store):
        add_runs(store, 3, tasks=5, failed=5, duration=10.0, score=10)
        engine = EvolutionEngine(store)
        for _ in range(10):
            await engine.evolve_strategy()

        assert all(r.effectiveness >= 0.5 for r in engine.get_current_strategy().rules)

    @pytest.mark.asyncio
    async def test_slow_complex_runs(self, slow_store):
        engine = EvolutionEngine(slow_store)
        report = await engine.evolve_strategy()

        titles = [s.title for s in report.new_suggestions]
        assert titles == [
            "Optimize Task Execution Speed",
            "Enable Task Parallelization",
            "Implement Goal Decomposition",
        ]
        assert "Implement Goal Decomposition" not in report.applied_improvements
        assert [s.title for s in engine.get_pending_suggestions()] == ["Implement Goal Decomposition"]

    @pytest.mark.asyncio
    async def test_empty_store_still_bumps_version(self, engine):
        report = await engine.evolve_strategy()
        strategy = engine.get_current_strategy()

        assert report.runs_analyzed == 0
        assert report.analysis is None
        assert report.new_suggestions == []
        assert strategy.version == 2
        assert [r.effectiveness for r in strategy.rules] == [0.9, 0.85, 0.88]
        assert all(r.times_applied == 1 for r in strategy.rules)
        assert report.metrics.after.average_success_rate == 0.0
        assert report.metrics.delta == 0.0

    @pytest.mark.asyncio
    async def test_version_increments_per_cycle(self, mixed_store):
        engine = EvolutionEngine(mixed_store)
        versions = []
        for _ in range(3):
            report = await engine.evolve_strategy()
            versions.append(report.current_strategy.version)

        assert versions == [2, 3, 4]
        assert len(engine.get_evolution_history()) == 3
        assert engine.get_latest_report().current_strategy.version == 4

    @pytest.mark.asyncio
    async def test_concurrent_cycles_are_serialized(self, mixed_store):
        engine = EvolutionEngine(mixed_store)
        reports = await asyncio.gather(*(engine.evolve_strategy() for _ in range(3)))

        assert sorted(r.current_strategy.version for r in reports) == [2, 3, 4]
        assert engine.get_current_strategy().version == 4

    @pytest.mark.asyncio
    async def test_metrics_and_delta(self, mixed_store):
        engine = EvolutionEngine(mixed_store)
        first = await engine.evolve_strategy()

        assert first.metrics.before.average_success_rate == 0.0
        assert first.metrics.after.average_success_rate == pytest.approx(0.92)
        assert first.metrics.after.average_execution_time == pytest.approx(10.0)
        assert first.metrics.after.improvement_rate == 0.0
        assert first.metrics.after.rules_applied == 4

        add_runs(mixed_store, 20, tasks=5, failed=0, duration=10.0, score=95)
        second = await engine.evolve_strategy()

        assert second.metrics.after.average_success_rate == pytest.approx(1.0)
        assert second.metrics.after.improvement_rate == pytest.approx((1.0 - 0.92) / 0.92)
        assert second.metrics.delta == pytest.approx(second.metrics.after.improvement_rate)

    @pytest.mark.asyncio
    async def test_sample_size_limits_runs(self, mixed_store):
        engine = EvolutionEngine(mixed_store, sample_size=5)
        report = await engine.evolve_strategy()

        assert report.runs_analyzed == 5
        # the newest 5 runs include all 4 failing ones
        assert report.analysis.success_rate == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_report_is_a_snapshot(self, mixed_store):
        engine = EvolutionEngine(mixed_store)
        report = await engine.evolve_strategy()
        await engine.evolve_strategy()

        assert report.current_strategy.version == 2
        assert engine.get_current_strategy().version == 3

    @pytest.mark.asyncio
    async def test_format_report(self, mixed_store):
        engine = EvolutionEngine(mixed_store)
        report = await engine.evolve_strategy()
        text = engine.format_report(report)

        assert "EVOLUTION REPORT: strategy v2" in text
        assert "Improve Task Reliability" in text
        assert "failure_rate > 0.15 -> enable_retry_logic" in text


# =============================================================================
# Manual Suggestion Tests
# =============================================================================

class TestManualSuggestions:
    """Tests for apply_suggestion and dismiss_suggestion."""

    @pytest.mark.asyncio
    async def test_apply_pending_suggestion(self, slow_store):
        engine = EvolutionEngine(slow_store)
        await engine.evolve_strategy()
        pending = engine.get_pending_suggestions()[0]
        rule_count = len(engine.get_current_strategy().rules)

        assert engine.apply_suggestion(pending.id)

        strategy = engine.get_current_strategy()
        assert pending.applied
        assert pending.applied_at is not None
        assert len(strategy.rules) == rule_count + 1
        assert any(r.action == "consolidate_tasks" for r in strategy.rules)
        assert strategy.learnings[-1] == "Manually applied: Implement Goal Decomposition"

    @pytest.mark.asyncio
    async def test_apply_is_idempotent(self, slow_store):
        engine = EvolutionEngine(slow_store)
        await engine.evolve_strategy()
        pending = engine.get_pending_suggestions()[0]

        assert engine.apply_suggestion(pending.id)
        rule_count = len(engine.get_current_strategy().rules)
        assert not engine.apply_suggestion(pending.id)
        assert len(engine.get_current_strategy().rules) == rule_count

    def test_apply_unknown(self, engine):
        assert not engine.apply_suggestion("missing")

    @pytest.mark.asyncio
    async def test_dismiss_pending(self, slow_store):
        engine = EvolutionEngine(slow_store)
        await engine.evolve_strategy()
        pending = engine.get_pending_suggestions()[0]

        assert engine.dismiss_suggestion(pending.id)
        assert engine.get_suggestion(pending.id) is None
        assert engine.get_pending_suggestions() == []

    @pytest.mark.asyncio
    async def test_dismiss_applied_is_refused(self, mixed_store):
        engine = EvolutionEngine(mixed_store)
        await engine.evolve_strategy()
        applied = engine.get_applied_suggestions()[0]

        assert not engine.dismiss_suggestion(applied.id)
        assert engine.get_suggestion(applied.id) is applied
