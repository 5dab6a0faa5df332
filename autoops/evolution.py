"""
Strategy Evolution Module
=========================

Learns from run history to improve the agent's decision strategy. Each
evolution cycle:

1. Analyzes the most recent runs for inefficiencies
2. Detects recurring inefficiency patterns
3. Generates optimization suggestions from patterns and aggregate metrics
4. Auto-applies suggestions that are safe to apply as new strategy rules
5. Re-scores existing rules and bumps the strategy version

The EvolutionStrategy is owned by the engine; everything else reads it.

Usage:
    from autoops.evolution import EvolutionEngine

    engine = EvolutionEngine(run_store)
    report = await engine.evolve_strategy()
    print(engine.format_report(report))

    for suggestion in engine.get_pending_suggestions():
        engine.apply_suggestion(suggestion.id)
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from autoops.db.connection import commit_session
from autoops.db.models import EvolutionReportModel, StrategySnapshotModel
from autoops.models import new_id, to_jsonable, utc_now
from autoops.run_store import RunRecord, RunRecordStore

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 20
SIGNIFICANT_PATTERN_COUNT = 2

SLOW_TASK_SECONDS = 5
VERY_SLOW_TASK_SECONDS = 10
SLOW_RUN_SECONDS = 15
COMPLEX_RUN_SECONDS = 30
TARGET_SUCCESS_RATE = 0.85


class InefficiencyType(Enum):
    REDUNDANT_TASK = "redundant-task"
    SLOW_EXECUTION = "slow-execution"
    HIGH_FAILURE = "high-failure"
    OVER_PLANNING = "over-planning"
    UNDER_PLANNING = "under-planning"


class Complexity(Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class SuggestionCategory(Enum):
    PERFORMANCE = "performance"
    ACCURACY = "accuracy"
    EFFICIENCY = "efficiency"
    RELIABILITY = "reliability"


class Impact(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class SuggestionTemplate:
    category: SuggestionCategory
    title: str
    description: str  # formatted with {count}
    impact: Impact
    auto_applicable: bool


@dataclass(frozen=True)
class RuleTemplate:
    condition: str
    action: str
    priority: int


PATTERN_TEMPLATES: dict[InefficiencyType, SuggestionTemplate] = {
    InefficiencyType.SLOW_EXECUTION: SuggestionTemplate(
        SuggestionCategory.PERFORMANCE,
        "Optimize Task Execution Speed",
        "Detected slow execution in {count} runs. Consider caching and batch processing.",
        Impact.HIGH,
        True,
    ),
    InefficiencyType.HIGH_FAILURE: SuggestionTemplate(
        SuggestionCategory.RELIABILITY,
        "Improve Task Reliability",
        "High failure rate detected in {count} runs. Implement retry logic and better error handling.",
        Impact.HIGH,
        True,
    ),
    InefficiencyType.OVER_PLANNING: SuggestionTemplate(
        SuggestionCategory.EFFICIENCY,
        "Streamline Planning Process",
        "Over-planning detected in {count} runs. Reduce unnecessary task generation.",
        Impact.MEDIUM,
        True,
    ),
    InefficiencyType.UNDER_PLANNING: SuggestionTemplate(
        SuggestionCategory.ACCURACY,
        "Enhance Planning Completeness",
        "Under-planning detected in {count} runs. Ensure all goal aspects are covered.",
        Impact.MEDIUM,
        False,
    ),
    InefficiencyType.REDUNDANT_TASK: SuggestionTemplate(
        SuggestionCategory.EFFICIENCY,
        "Remove Redundant Tasks",
        "Redundant tasks detected in {count} runs. Consolidate similar operations.",
        Impact.LOW,
        True,
    ),
}

RULE_TEMPLATES: dict[SuggestionCategory, RuleTemplate] = {
    SuggestionCategory.PERFORMANCE: RuleTemplate("execution_time > threshold", "enable_parallel_execution", 1),
    SuggestionCategory.ACCURACY: RuleTemplate("success_rate < 0.85", "add_validation_step", 2),
    SuggestionCategory.EFFICIENCY: RuleTemplate("task_count > 8", "consolidate_tasks", 3),
    SuggestionCategory.RELIABILITY: RuleTemplate("failure_rate > 0.15", "enable_retry_logic", 1),
}
DEFAULT_RULE_TEMPLATE = RuleTemplate("always", "log_warning", 5)


# =============================================================================
# Analysis Types
# =============================================================================

@dataclass
class Inefficiency:
    type: InefficiencyType
    description: str
    severity: Impact
    suggested_fix: str
    affected_tasks: list[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)


@dataclass
class ExecutionAnalysis:
    """Findings for one analyzed run."""
    run_id: str
    execution_time: float
    complexity: Complexity
    task_count: int
    success_rate: float
    inefficiencies: list[Inefficiency] = field(default_factory=list)
    bottlenecks: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return to_jsonable(self)


# =============================================================================
# Strategy Types
# =============================================================================

@dataclass
class OptimizationSuggestion:
    category: SuggestionCategory
    title: str
    description: str
    impact: Impact
    confidence: float
    auto_applicable: bool
    applied: bool = False
    applied_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict:
        return to_jsonable(self)

    @classmethod
    def from_dict(cls, data: dict) -> "OptimizationSuggestion":
        applied_at = data.get("applied_at")
        return cls(
            id=data["id"],
            category=SuggestionCategory(data["category"]),
            title=data["title"],
            description=data.get("description", ""),
            impact=Impact(data.get("impact", "low")),
            confidence=data.get("confidence", 0.0),
            auto_applicable=data.get("auto_applicable", False),
            applied=data.get("applied", False),
            applied_at=datetime.fromisoformat(applied_at) if applied_at else None,
        )


@dataclass
class StrategyRule:
    condition: str
    action: str
    priority: int          # lower runs first
    effectiveness: float   # 0-1
    times_applied: int = 0
    id: str = field(default_factory=new_id)

    @classmethod
    def from_dict(cls, data: dict) -> "StrategyRule":
        return cls(
            id=data["id"],
            condition=data["condition"],
            action=data["action"],
            priority=data["priority"],
            effectiveness=data["effectiveness"],
            times_applied=data.get("times_applied", 0),
        )


@dataclass
class StrategyMetrics:
    average_success_rate: float = 0.0
    average_execution_time: float = 0.0
    improvement_rate: float = 0.0
    rules_applied: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "StrategyMetrics":
        return cls(
            average_success_rate=data.get("average_success_rate", 0.0),
            average_execution_time=data.get("average_execution_time", 0.0),
            improvement_rate=data.get("improvement_rate", 0.0),
            rules_applied=data.get("rules_applied", 0),
        )


@dataclass
class EvolutionStrategy:
    """The versioned rule set consulted across runs."""
    version: int
    rules: list[StrategyRule] = field(default_factory=list)
    learnings: list[str] = field(default_factory=list)
    metrics: StrategyMetrics = field(default_factory=StrategyMetrics)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    def sort_rules(self) -> None:
        self.rules.sort(key=lambda r: (r.priority, -r.effectiveness))

    def to_dict(self) -> dict:
        return to_jsonable(self)

    @classmethod
    def from_dict(cls, data: dict) -> "EvolutionStrategy":
        created_at = data.get("created_at")
        return cls(
            id=data["id"],
            version=data["version"],
            rules=[StrategyRule.from_dict(r) for r in data.get("rules", [])],
            learnings=data.get("learnings", []),
            metrics=StrategyMetrics.from_dict(data.get("metrics", {})),
            created_at=datetime.fromisoformat(created_at) if created_at else utc_now(),
        )


@dataclass
class MetricsComparison:
    before: StrategyMetrics
    after: StrategyMetrics
    delta: float


@dataclass
class EvolutionReport:
    evolution_id: str
    timestamp: datetime
    runs_analyzed: int
    current_strategy: EvolutionStrategy
    analysis: Optional[ExecutionAnalysis]
    new_suggestions: list[OptimizationSuggestion]
    applied_improvements: list[str]
    metrics: MetricsComparison

    def to_dict(self) -> dict:
        return to_jsonable(self)


def create_initial_strategy() -> EvolutionStrategy:
    """Version 1 with the three seed rules."""
    return EvolutionStrategy(
        version=1,
        rules=[
            StrategyRule("new_goal", "decompose_into_tasks", 1, 0.9),
            StrategyRule("task_ready", "execute_sequentially", 2, 0.85),
            StrategyRule("execution_complete", "reflect_and_learn", 3, 0.88),
        ],
    )


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# =============================================================================
# Engine
# =============================================================================

class EvolutionEngine:
    """
    Rule-based self-improvement loop over the run record store.

    At most one evolution cycle runs at a time. Manual apply/dismiss calls
    are synchronous and therefore never interleave with a cycle's mutation.
    """

    def __init__(self, run_store: RunRecordStore, sample_size: int = DEFAULT_SAMPLE_SIZE):
        self.run_store = run_store
        self.sample_size = sample_size

        self.strategy = create_initial_strategy()
        self._suggestions: list[OptimizationSuggestion] = []
        self._history: list[EvolutionReport] = []
        self._lock = asyncio.Lock()

        # Database session (set via set_session or init_async)
        self._db_session: Optional[AsyncSession] = None

    def set_session(self, session: AsyncSession) -> None:
        """Set the database session for async operations."""
        self._db_session = session

    async def init_async(self, session: AsyncSession) -> None:
        """Attach a session and restore the latest strategy snapshot."""
        self._db_session = session

        result = await session.execute(
            select(StrategySnapshotModel)
            .order_by(StrategySnapshotModel.version.desc(), StrategySnapshotModel.id.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return

        self.strategy = EvolutionStrategy.from_dict(row.strategy)
        self._suggestions = [OptimizationSuggestion.from_dict(s) for s in row.suggestions or []]
        logger.info("Restored strategy version %d", self.strategy.version)

    # =========================================================================
    # Evolution Cycle
    # =========================================================================

    async def evolve_strategy(self) -> EvolutionReport:
        """Run one evolution cycle over the most recent runs."""
        async with self._lock:
            report = self._evolve()
            await self._persist_async(report)
        return report

    def _evolve(self) -> EvolutionReport:
        runs = self.run_store.get_last_runs(self.sample_size)
        before = copy.deepcopy(self.strategy.metrics)

        analyses = [self.analyze_execution(run) for run in runs]
        patterns = self.identify_patterns(analyses)

        new_suggestions = self.generate_suggestions(patterns, analyses)
        self._suggestions.extend(new_suggestions)

        applied = self._apply_improvements(new_suggestions)
        self._update_strategy_rules(analyses)

        after = self._calculate_metrics(analyses)
        self.strategy.metrics = after
        self.strategy.version += 1

        report = EvolutionReport(
            evolution_id=new_id(),
            timestamp=utc_now(),
            runs_analyzed=len(runs),
            current_strategy=copy.deepcopy(self.strategy),
            analysis=analyses[0] if analyses else None,
            new_suggestions=new_suggestions,
            applied_improvements=applied,
            metrics=MetricsComparison(
                before=before,
                after=copy.deepcopy(after),
                delta=after.improvement_rate - before.improvement_rate,
            ),
        )
        self._history.append(report)

        logger.info(
            "Evolution cycle: v%d, %d runs analyzed, %d suggestions, %d applied",
            self.strategy.version, len(runs), len(new_suggestions), len(applied),
        )
        return report

    async def _persist_async(self, report: EvolutionReport) -> None:
        """Write the report and a strategy snapshot; failures are only logged."""
        if not self._db_session:
            return

        try:
            await commit_session(
                self._db_session,
                EvolutionReportModel(
                    evolution_id=report.evolution_id,
                    timestamp=report.timestamp,
                    runs_analyzed=report.runs_analyzed,
                    strategy_version=report.current_strategy.version,
                    report=report.to_dict(),
                ),
                self._snapshot_row(note="evolution"),
            )
        except SQLAlchemyError as e:
            logger.warning("Failed to persist evolution report %s: %s", report.evolution_id, e)

    def _snapshot_row(self, note: Optional[str] = None) -> StrategySnapshotModel:
        return StrategySnapshotModel(
            version=self.strategy.version,
            strategy=self.strategy.to_dict(),
            suggestions=[s.to_dict() for s in self._suggestions],
            note=note,
        )

    async def save_snapshot_async(self, note: Optional[str] = None) -> None:
        """Persist the current strategy, e.g. after manual suggestion changes."""
        if not self._db_session:
            return
        async with self._lock:
            await commit_session(self._db_session, self._snapshot_row(note=note))

    # =========================================================================
    # Analysis
    # =========================================================================

    @staticmethod
    def analyze_execution(run: RunRecord) -> ExecutionAnalysis:
        inefficiencies: list[Inefficiency] = []
        bottlenecks: list[str] = []

        total_tasks = run.execution.total_tasks
        task_count = run.plan.task_count
        duration = run.execution.duration

        avg_task_time = duration / total_tasks if total_tasks else 0.0
        if avg_task_time > SLOW_TASK_SECONDS:
            inefficiencies.append(Inefficiency(
                type=InefficiencyType.SLOW_EXECUTION,
                description=f"Average task time ({avg_task_time:.1f}s) exceeds optimal threshold",
                severity=Impact.HIGH if avg_task_time > VERY_SLOW_TASK_SECONDS else Impact.MEDIUM,
                suggested_fix="Consider parallelizing independent tasks or simplifying complex operations",
            ))
            bottlenecks.append("Slow task execution")

        if run.execution.failed_tasks > 0 and total_tasks:
            failure_rate = run.execution.failed_tasks / total_tasks
            if failure_rate > 0.3:
                severity = Impact.HIGH
            elif failure_rate > 0.15:
                severity = Impact.MEDIUM
            else:
                severity = Impact.LOW
            inefficiencies.append(Inefficiency(
                type=InefficiencyType.HIGH_FAILURE,
                description=f"{failure_rate:.0%} task failure rate detected",
                severity=severity,
                suggested_fix="Add validation steps or implement retry logic for failing tasks",
                affected_tasks=list(run.execution.errors),
            ))

        completion = run.execution.completed_tasks / task_count if task_count else 0.0
        if task_count > 10 and completion < 0.8:
            inefficiencies.append(Inefficiency(
                type=InefficiencyType.OVER_PLANNING,
                description="Plan generated more tasks than necessary for the goal",
                severity=Impact.MEDIUM,
                suggested_fix="Consolidate related tasks and remove redundant steps",
            ))
            bottlenecks.append("Over-planning")

        if task_count < 3 and run.reflection.score < 70:
            inefficiencies.append(Inefficiency(
                type=InefficiencyType.UNDER_PLANNING,
                description="Plan may have missed important steps",
                severity=Impact.MEDIUM,
                suggested_fix="Expand goal decomposition to include validation and error handling steps",
            ))

        complexity = Complexity.SIMPLE
        if task_count > 5:
            complexity = Complexity.MEDIUM
        if task_count > 10 or duration > COMPLEX_RUN_SECONDS:
            complexity = Complexity.COMPLEX

        return ExecutionAnalysis(
            run_id=run.run_id,
            execution_time=duration,
            complexity=complexity,
            task_count=task_count,
            success_rate=run.reflection.success_rate,
            inefficiencies=inefficiencies,
            bottlenecks=bottlenecks,
        )

    @staticmethod
    def identify_patterns(analyses: list[ExecutionAnalysis]) -> dict[InefficiencyType, int]:
        """Frequency of each inefficiency type across the analyzed runs."""
        patterns: dict[InefficiencyType, int] = {}
        for analysis in analyses:
            for inefficiency in analysis.inefficiencies:
                patterns[inefficiency.type] = patterns.get(inefficiency.type, 0) + 1
        return patterns

    # =========================================================================
    # Suggestions
    # =========================================================================

    def generate_suggestions(
        self,
        patterns: dict[InefficiencyType, int],
        analyses: list[ExecutionAnalysis],
    ) -> list[OptimizationSuggestion]:
        suggestions = [
            self.create_pattern_suggestion(pattern, count)
            for pattern, count in patterns.items()
            if count >= SIGNIFICANT_PATTERN_COUNT
        ]

        if not analyses:
            return suggestions

        avg_time = _mean([a.execution_time for a in analyses])
        if avg_time > SLOW_RUN_SECONDS:
            suggestions.append(OptimizationSuggestion(
                category=SuggestionCategory.PERFORMANCE,
                title="Enable Task Parallelization",
                description=(
                    f"Average execution time ({avg_time:.1f}s) is high. "
                    "Enable parallel execution for independent tasks."
                ),
                impact=Impact.HIGH,
                confidence=0.85,
                auto_applicable=True,
            ))

        avg_success = _mean([a.success_rate for a in analyses])
        if avg_success < TARGET_SUCCESS_RATE:
            suggestions.append(OptimizationSuggestion(
                category=SuggestionCategory.ACCURACY,
                title="Add Pre-execution Validation",
                description="Success rate is below optimal. Add validation steps before task execution.",
                impact=Impact.MEDIUM,
                confidence=0.78,
                auto_applicable=True,
            ))

        complex_runs = sum(1 for a in analyses if a.complexity == Complexity.COMPLEX)
        if complex_runs > len(analyses) * 0.5:
            suggestions.append(OptimizationSuggestion(
                category=SuggestionCategory.EFFICIENCY,
                title="Implement Goal Decomposition",
                description="Many runs are complex. Consider breaking large goals into sub-goals.",
                impact=Impact.HIGH,
                confidence=0.82,
                auto_applicable=False,
            ))

        return suggestions

    @staticmethod
    def create_pattern_suggestion(
        pattern: Union[InefficiencyType, str],
        count: int,
    ) -> OptimizationSuggestion:
        confidence = min(0.95, 0.6 + count * 0.1)
        if isinstance(pattern, str):
            pattern = next((t for t in InefficiencyType if t.value == pattern), pattern)
        template = PATTERN_TEMPLATES.get(pattern)
        if template is None:
            name = pattern.value if isinstance(pattern, InefficiencyType) else pattern
            return OptimizationSuggestion(
                category=SuggestionCategory.EFFICIENCY,
                title="General Optimization",
                description=f'Pattern "{name}" detected {count} times.',
                impact=Impact.LOW,
                confidence=confidence,
                auto_applicable=False,
            )

        return OptimizationSuggestion(
            category=template.category,
            title=template.title,
            description=template.description.format(count=count),
            impact=template.impact,
            confidence=confidence,
            auto_applicable=template.auto_applicable,
        )

    @staticmethod
    def create_rule_from_suggestion(suggestion: OptimizationSuggestion) -> StrategyRule:
        template = RULE_TEMPLATES.get(suggestion.category, DEFAULT_RULE_TEMPLATE)
        return StrategyRule(
            condition=template.condition,
            action=template.action,
            priority=template.priority,
            effectiveness=suggestion.confidence,
        )

    def _apply_improvements(self, suggestions: list[OptimizationSuggestion]) -> list[str]:
        applied = []
        for suggestion in suggestions:
            if suggestion.applied or not suggestion.auto_applicable:
                continue
            self._apply(suggestion)
            applied.append(suggestion.title)
            self.strategy.learnings.append(f"Applied: {suggestion.title} - {suggestion.description}")
        return applied

    def _apply(self, suggestion: OptimizationSuggestion) -> StrategyRule:
        rule = self.create_rule_from_suggestion(suggestion)
        self.strategy.rules.append(rule)
        suggestion.applied = True
        suggestion.applied_at = utc_now()
        return rule

    # =========================================================================
    # Rules and Metrics
    # =========================================================================

    def _update_strategy_rules(self, analyses: list[ExecutionAnalysis]) -> None:
        avg_success = _mean([a.success_rate for a in analyses])

        for rule in self.strategy.rules:
            if analyses:
                if avg_success > 0.8:
                    rule.effectiveness = min(1.0, rule.effectiveness + 0.02)
                elif avg_success < 0.6:
                    rule.effectiveness = max(0.5, rule.effectiveness - 0.05)
            rule.times_applied += 1

        self.strategy.sort_rules()

    def _calculate_metrics(self, analyses: list[ExecutionAnalysis]) -> StrategyMetrics:
        if not analyses:
            return copy.deepcopy(self.strategy.metrics)

        avg_success = _mean([a.success_rate for a in analyses])
        previous = self.strategy.metrics.average_success_rate
        improvement = (avg_success - previous) / previous if previous > 0 else 0.0

        return StrategyMetrics(
            average_success_rate=avg_success,
            average_execution_time=_mean([a.execution_time for a in analyses]),
            improvement_rate=improvement,
            rules_applied=sum(r.times_applied for r in self.strategy.rules),
        )

    # =========================================================================
    # Manual Suggestion Handling
    # =========================================================================

    def get_suggestion(self, suggestion_id: str) -> Optional[OptimizationSuggestion]:
        for suggestion in self._suggestions:
            if suggestion.id == suggestion_id:
                return suggestion
        return None

    def apply_suggestion(self, suggestion_id: str) -> bool:
        """Apply a pending suggestion. Returns False if unknown or already applied."""
        suggestion = self.get_suggestion(suggestion_id)
        if suggestion is None or suggestion.applied:
            return False

        self._apply(suggestion)
        self.strategy.learnings.append(f"Manually applied: {suggestion.title}")
        self.strategy.sort_rules()
        logger.info("Manually applied suggestion: %s", suggestion.title)
        return True

    def dismiss_suggestion(self, suggestion_id: str) -> bool:
        """Drop a pending suggestion. Applied suggestions stay on record."""
        suggestion = self.get_suggestion(suggestion_id)
        if suggestion is None or suggestion.applied:
            return False

        self._suggestions.remove(suggestion)
        logger.info("Dismissed suggestion: %s", suggestion.title)
        return True

    # =========================================================================
    # Accessors
    # =========================================================================

    def get_current_strategy(self) -> EvolutionStrategy:
        return self.strategy

    def get_suggestions(self) -> list[OptimizationSuggestion]:
        return list(self._suggestions)

    def get_pending_suggestions(self) -> list[OptimizationSuggestion]:
        return [s for s in self._suggestions if not s.applied]

    def get_applied_suggestions(self) -> list[OptimizationSuggestion]:
        return [s for s in self._suggestions if s.applied]

    def get_evolution_history(self) -> list[EvolutionReport]:
        return list(self._history)

    def get_latest_report(self) -> Optional[EvolutionReport]:
        return self._history[-1] if self._history else None

    def format_report(self, report: EvolutionReport) -> str:
        """Format an evolution report for display."""
        strategy = report.current_strategy
        after = report.metrics.after
        lines = [
            "=" * 60,
            f"EVOLUTION REPORT: strategy v{strategy.version}",
            "=" * 60,
            f"Runs analyzed:        {report.runs_analyzed}",
            f"Avg success rate:     {after.average_success_rate:.1%}",
            f"Avg execution time:   {after.average_execution_time:.1f}s",
            f"Improvement rate:     {after.improvement_rate:+.1%} (delta {report.metrics.delta:+.3f})",
            f"Rules applied total:  {after.rules_applied}",
            "",
        ]

        if report.new_suggestions:
            lines.extend(["-" * 60, "NEW SUGGESTIONS", "-" * 60])
            for s in report.new_suggestions:
                status = "applied" if s.applied else "pending"
                lines.append(
                    f"  [{s.impact.value.upper()}] {s.title} ({s.category.value}, "
                    f"{s.confidence:.0%}, {status})"
                )
            lines.append("")

        lines.extend(["-" * 60, "RULES", "-" * 60])
        for rule in strategy.rules:
            lines.append(
                f"  p{rule.priority} {rule.condition} -> {rule.action} "
                f"(eff {rule.effectiveness:.2f}, x{rule.times_applied})"
            )
        lines.append("=" * 60)

        return "\n".join(lines)


def create_evolution_engine(
    run_store: RunRecordStore,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> EvolutionEngine:
    """Create an EvolutionEngine over a run store."""
    return EvolutionEngine(run_store, sample_size=sample_size)
