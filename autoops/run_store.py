"""
Run Record Store
================

Append-only log of completed orchestration runs. Each RunRecord carries a
summary of the plan, the execution outcome and the reflection, and is the
unit the evolution engine learns from.

Records live in memory (bounded, oldest evicted first) and, when a database
session is attached, are also written to the ``run_records`` table.

Usage:
    from autoops.run_store import RunRecordStore

    store = RunRecordStore(max_size=1000)
    record = store.save_run(goal, plan, execution, reflection)

    recent = store.get_last_runs(20)
    advice = store.get_recommendations("Deploy the billing API")
"""

import json
import logging
import re
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autoops.db.connection import commit_session
from autoops.db.models import RunRecordModel
from autoops.models import (
    ExecutionResult,
    ReflectionResult,
    TaskPlan,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RUNS = 1000
DEFAULT_ESTIMATED_SCORE = 75
TIP_SCORE_THRESHOLD = 80
WARNING_SCORE_THRESHOLD = 60

STOP_WORDS = frozenset({
    "a", "an", "the", "is", "are", "was", "were", "be", "been",
    "being", "have", "has", "had", "do", "does", "did", "will",
    "would", "could", "should", "may", "might", "must", "shall",
    "can", "need", "dare", "ought", "used", "to", "of", "in",
    "for", "on", "with", "at", "by", "from", "as", "into",
    "through", "during", "before", "after", "above", "below",
    "between", "under", "again", "further", "then", "once",
    "and", "but", "or", "nor", "so", "yet", "both", "either",
    "neither", "not", "only", "own", "same", "than", "too",
    "very", "just", "also", "now", "here", "there", "when",
    "where", "why", "how", "all", "each", "every",
    "few", "more", "most", "other", "some", "such", "no",
    "any", "i", "me", "my", "myself", "we", "our", "ours",
    "create", "build", "make", "set", "up", "get", "that", "this",
})

TAG_PATTERNS: dict[str, tuple[str, ...]] = {
    "data": ("data", "database", "analytics", "etl", "pipeline"),
    "api": ("api", "endpoint", "rest", "graphql", "webhook"),
    "ci-cd": ("deploy", "ci", "cd", "build", "release", "pipeline"),
    "testing": ("test", "qa", "quality", "validation"),
    "monitoring": ("monitor", "alert", "log", "metric", "observability"),
    "security": ("security", "auth", "encrypt", "ssl", "certificate"),
    "infrastructure": ("infra", "server", "cloud", "kubernetes", "docker"),
    "automation": ("automate", "schedule", "cron", "workflow"),
}


def extract_keywords(text: str) -> list[str]:
    """Lower-cased content words of a goal, stop words removed."""
    cleaned = re.sub(r"[^a-z0-9\s]", "", (text or "").lower())
    return [w for w in cleaned.split() if len(w) > 2 and w not in STOP_WORDS]


def extract_tags(goal: str, existing: Optional[list[str]] = None) -> list[str]:
    """Merge caller-supplied tags with categories detected in the goal."""
    goal_lower = (goal or "").lower()
    tags = list(existing or [])
    for tag, patterns in TAG_PATTERNS.items():
        if tag not in tags and any(p in goal_lower for p in patterns):
            tags.append(tag)
    return tags


def _as_utc(value: Optional[datetime]) -> datetime:
    """SQLite drops tzinfo; stored timestamps are always UTC."""
    if value is None:
        return utc_now()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# Record Types
# =============================================================================

@dataclass
class TaskSummary:
    id: str
    title: str
    type: str = "generic"
    priority: str = "medium"
    estimated_duration: float = 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type,
            "priority": self.priority,
            "estimated_duration": self.estimated_duration,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TaskSummary":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            type=data.get("type", "generic"),
            priority=data.get("priority", "medium"),
            estimated_duration=data.get("estimated_duration", 0.0),
        )


@dataclass
class PlanSummary:
    plan_id: str
    workflow_id: str
    workflow_name: str
    tasks: list[TaskSummary] = field(default_factory=list)
    confidence: float = 0.0
    reasoning: str = ""

    @property
    def task_count(self) -> int:
        return len(self.tasks)

    def to_dict(self) -> dict:
        return {
            "plan_id": self.plan_id,
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow_name,
            "tasks": [t.to_dict() for t in self.tasks],
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PlanSummary":
        return cls(
            plan_id=data.get("plan_id", ""),
            workflow_id=data.get("workflow_id", ""),
            workflow_name=data.get("workflow_name", ""),
            tasks=[TaskSummary.from_dict(t) for t in data.get("tasks", [])],
            confidence=data.get("confidence", 0.0),
            reasoning=data.get("reasoning", ""),
        )


@dataclass
class ExecutionSummary:
    success: bool
    completed_tasks: int
    failed_tasks: int
    total_tasks: int
    duration: float
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "completed_tasks": self.completed_tasks,
            "failed_tasks": self.failed_tasks,
            "total_tasks": self.total_tasks,
            "duration": self.duration,
            "errors": list(self.errors),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionSummary":
        return cls(
            success=data.get("success", False),
            completed_tasks=data.get("completed_tasks", 0),
            failed_tasks=data.get("failed_tasks", 0),
            total_tasks=data.get("total_tasks", 0),
            duration=data.get("duration", 0.0),
            errors=data.get("errors", []),
        )


@dataclass
class ReflectionSummary:
    goal_achieved: bool
    success_rate: float
    score: float
    grade: str = ""
    insights: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)
    lessons_learned: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "goal_achieved": self.goal_achieved,
            "success_rate": self.success_rate,
            "score": self.score,
            "grade": self.grade,
            "insights": list(self.insights),
            "improvements": list(self.improvements),
            "lessons_learned": list(self.lessons_learned),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReflectionSummary":
        return cls(
            goal_achieved=data.get("goal_achieved", False),
            success_rate=data.get("success_rate", 0.0),
            score=data.get("score", 0.0),
            grade=data.get("grade", ""),
            insights=data.get("insights", []),
            improvements=data.get("improvements", []),
            lessons_learned=data.get("lessons_learned", []),
        )


@dataclass
class RunRecord:
    """Durable, read-only summary of one completed run."""
    run_id: str
    goal: str
    plan: PlanSummary
    execution: ExecutionSummary
    reflection: ReflectionSummary
    context: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def execution_time(self) -> float:
        return self.execution.duration

    @classmethod
    def from_run(
        cls,
        goal: str,
        plan: TaskPlan,
        execution: ExecutionResult,
        reflection: ReflectionResult,
        context: Optional[str] = None,
        tags: Optional[list[str]] = None,
        run_id: Optional[str] = None,
    ) -> "RunRecord":
        """Summarise the live results of a run into a record."""
        plan_summary = PlanSummary(
            plan_id=plan.plan_id,
            workflow_id=plan.workflow.id,
            workflow_name=plan.workflow.name,
            tasks=[
                TaskSummary(
                    id=t.id,
                    title=t.title,
                    type=t.type,
                    priority=t.priority.value,
                    estimated_duration=t.estimated_duration,
                )
                for t in plan.tasks
            ],
            confidence=plan.workflow.confidence,
            reasoning=plan.workflow.reason,
        )
        execution_summary = ExecutionSummary(
            success=execution.success,
            completed_tasks=execution.completed_tasks,
            failed_tasks=execution.failed_tasks,
            total_tasks=execution.total_tasks,
            duration=execution.total_duration,
            errors=execution.errors,
        )
        reflection_summary = ReflectionSummary(
            goal_achieved=execution.success,
            success_rate=reflection.success_rate,
            score=reflection.score,
            grade=reflection.grade,
            insights=list(reflection.insights),
            improvements=list(reflection.improvements),
            lessons_learned=list(reflection.lessons_learned),
        )
        return cls(
            run_id=run_id or new_id(),
            goal=goal,
            plan=plan_summary,
            execution=execution_summary,
            reflection=reflection_summary,
            context=context,
            tags=extract_tags(goal, tags),
        )

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "goal": self.goal,
            "context": self.context,
            "plan": self.plan.to_dict(),
            "execution": self.execution.to_dict(),
            "reflection": self.reflection.to_dict(),
            "tags": list(self.tags),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RunRecord":
        timestamp = data.get("timestamp")
        return cls(
            run_id=data["run_id"],
            goal=data["goal"],
            context=data.get("context"),
            plan=PlanSummary.from_dict(data["plan"]),
            execution=ExecutionSummary.from_dict(data["execution"]),
            reflection=ReflectionSummary.from_dict(data["reflection"]),
            tags=data.get("tags", []),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else utc_now(),
        )


@dataclass
class StoreStats:
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    average_score: float = 0.0
    average_execution_time: float = 0.0
    top_insights: list[str] = field(default_factory=list)
    top_improvements: list[str] = field(default_factory=list)
    common_patterns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return dict(self.__dict__)


@dataclass
class Recommendations:
    """Advice for a new goal drawn from similar past runs."""
    suggested_workflow: Optional[str]
    estimated_score: float
    tips: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return dict(self.__dict__)


# =============================================================================
# Store
# =============================================================================

class RunRecordStore:
    """
    Bounded, append-only store of RunRecords keyed by run id.

    Only whole records are added; nothing in a stored record is changed
    afterwards. When full, the oldest record is evicted.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_RUNS):
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self.max_size = max_size
        self._runs: "OrderedDict[str, RunRecord]" = OrderedDict()
        self._insights: Counter = Counter()
        self._improvements: Counter = Counter()
        self._goal_patterns: dict[str, list[str]] = {}

        # Database session (set via set_session or init_async)
        self._db_session: Optional[AsyncSession] = None

    def set_session(self, session: AsyncSession) -> None:
        """Set the database session for async operations."""
        self._db_session = session

    async def init_async(self, session: AsyncSession) -> None:
        """Attach a session and load the most recent stored runs into memory."""
        self._db_session = session

        result = await session.execute(
            select(RunRecordModel).order_by(RunRecordModel.id.desc()).limit(self.max_size)
        )
        rows = list(result.scalars().all())
        for row in reversed(rows):
            if row.run_id in self._runs:
                continue
            self._add(self._row_to_record(row))
        logger.info("Loaded %d run records from database", len(rows))

    @staticmethod
    def _row_to_record(row: RunRecordModel) -> RunRecord:
        return RunRecord(
            run_id=row.run_id,
            goal=row.goal,
            context=row.context,
            plan=PlanSummary.from_dict(row.plan or {}),
            execution=ExecutionSummary.from_dict(row.execution or {}),
            reflection=ReflectionSummary.from_dict(row.reflection or {}),
            tags=row.tags or [],
            timestamp=_as_utc(row.timestamp),
        )

    # =========================================================================
    # Writing
    # =========================================================================

    def _add(self, record: RunRecord) -> RunRecord:
        if record.run_id in self._runs:
            raise ValueError(f"Run already recorded: {record.run_id}")

        while len(self._runs) >= self.max_size:
            evicted_id, _ = self._runs.popitem(last=False)
            logger.debug("Evicted oldest run record %s", evicted_id)

        self._runs[record.run_id] = record
        self._insights.update(record.reflection.insights)
        self._improvements.update(record.reflection.improvements)
        for keyword in extract_keywords(record.goal):
            goals = self._goal_patterns.setdefault(keyword, [])
            if record.goal not in goals:
                goals.append(record.goal)
        return record

    def save_run(
        self,
        goal: str,
        plan: TaskPlan,
        execution: ExecutionResult,
        reflection: ReflectionResult,
        context: Optional[str] = None,
        tags: Optional[list[str]] = None,
        run_id: Optional[str] = None,
    ) -> RunRecord:
        """Summarise and append a completed run (memory only)."""
        record = RunRecord.from_run(goal, plan, execution, reflection, context, tags, run_id)
        return self._add(record)

    async def save_run_async(
        self,
        goal: str,
        plan: TaskPlan,
        execution: ExecutionResult,
        reflection: ReflectionResult,
        context: Optional[str] = None,
        tags: Optional[list[str]] = None,
        run_id: Optional[str] = None,
    ) -> RunRecord:
        """
        Append a completed run, writing it to the database first if attached.

        The record only enters memory once the commit succeeded; a failed
        write is rolled back and re-raised.
        """
        record = RunRecord.from_run(goal, plan, execution, reflection, context, tags, run_id)
        if record.run_id in self._runs:
            raise ValueError(f"Run already recorded: {record.run_id}")

        if self._db_session:
            await commit_session(self._db_session, RunRecordModel(
                run_id=record.run_id,
                timestamp=record.timestamp,
                goal=record.goal,
                context=record.context,
                plan=record.plan.to_dict(),
                execution=record.execution.to_dict(),
                reflection=record.reflection.to_dict(),
                score=record.reflection.score,
                success=record.execution.success,
                tags=record.tags,
            ))
        return self._add(record)

    # =========================================================================
    # Reading
    # =========================================================================

    def __len__(self) -> int:
        return len(self._runs)

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        return self._runs.get(run_id)

    def get_last_runs(self, limit: int = 10) -> list[RunRecord]:
        """Most recent runs, newest first."""
        return list(reversed(self._runs.values()))[:limit]

    def query_runs(
        self,
        goal_contains: Optional[str] = None,
        min_score: Optional[float] = None,
        max_score: Optional[float] = None,
        successful: Optional[bool] = None,
        tags: Optional[list[str]] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[RunRecord]:
        """Filter stored runs; results are newest first."""
        results = list(reversed(self._runs.values()))

        if goal_contains:
            term = goal_contains.lower()
            results = [r for r in results if term in r.goal.lower()]
        if min_score is not None:
            results = [r for r in results if r.reflection.score >= min_score]
        if max_score is not None:
            results = [r for r in results if r.reflection.score <= max_score]
        if successful is not None:
            results = [r for r in results if r.execution.success == successful]
        if tags:
            results = [r for r in results if any(t in r.tags for t in tags)]
        if start_date is not None:
            results = [r for r in results if r.timestamp >= start_date]
        if end_date is not None:
            results = [r for r in results if r.timestamp <= end_date]

        if limit:
            results = results[:limit]
        return results

    # =========================================================================
    # Analytics
    # =========================================================================

    def get_stats(self) -> StoreStats:
        runs = list(self._runs.values())
        if not runs:
            return StoreStats()

        successful = sum(1 for r in runs if r.execution.success)
        return StoreStats(
            total_runs=len(runs),
            successful_runs=successful,
            failed_runs=len(runs) - successful,
            average_score=round(sum(r.reflection.score for r in runs) / len(runs)),
            average_execution_time=round(sum(r.execution_time for r in runs) / len(runs)),
            top_insights=[i for i, _ in self._insights.most_common(5)],
            top_improvements=[i for i, _ in self._improvements.most_common(5)],
            common_patterns=self.get_common_patterns(5),
        )

    def get_common_patterns(self, limit: int = 5) -> list[str]:
        ranked = sorted(self._goal_patterns.items(), key=lambda kv: len(kv[1]), reverse=True)
        return [keyword for keyword, _ in ranked[:limit]]

    def find_similar_runs(self, goal: str, limit: int = 5) -> list[RunRecord]:
        """Past runs ranked by keyword overlap with ``goal``."""
        keywords = extract_keywords(goal)
        scored = []
        for record in self._runs.values():
            run_keywords = set(extract_keywords(record.goal))
            overlap = sum(1 for k in keywords if k in run_keywords)
            if overlap > 0:
                scored.append((overlap, record))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [record for _, record in scored[:limit]]

    def get_recommendations(self, goal: str) -> Recommendations:
        similar = self.find_similar_runs(goal, 10)
        if not similar:
            return Recommendations(
                suggested_workflow=None,
                estimated_score=DEFAULT_ESTIMATED_SCORE,
                tips=["This appears to be a new type of goal. The agent will learn from this execution."],
            )

        workflow_scores: dict[str, list[float]] = {}
        for record in similar:
            workflow_scores.setdefault(record.plan.workflow_name, []).append(record.reflection.score)

        best_workflow = None
        best_avg = 0.0
        for workflow, scores in workflow_scores.items():
            avg = sum(scores) / len(scores)
            if avg > best_avg:
                best_avg = avg
                best_workflow = workflow

        tips = [
            insight
            for record in similar if record.reflection.score >= TIP_SCORE_THRESHOLD
            for insight in record.reflection.insights
        ][:3]
        warnings = [
            error
            for record in similar if record.reflection.score < WARNING_SCORE_THRESHOLD
            for error in record.execution.errors if error
        ][:3]

        return Recommendations(
            suggested_workflow=best_workflow,
            estimated_score=round(sum(r.reflection.score for r in similar) / len(similar)),
            tips=tips or ["Follow best practices for optimal results."],
            warnings=warnings,
        )

    # =========================================================================
    # Import / Export
    # =========================================================================

    def export_json(self) -> str:
        data = {
            "runs": [r.to_dict() for r in self._runs.values()],
            "insights": dict(self._insights),
            "improvements": dict(self._improvements),
            "goal_patterns": self._goal_patterns,
            "exported_at": utc_now().isoformat(),
        }
        return json.dumps(data, indent=2)

    def import_json(self, payload: str) -> None:
        """Replace the in-memory contents with an exported snapshot."""
        try:
            data: dict[str, Any] = json.loads(payload)
            runs = [RunRecord.from_dict(r) for r in data["runs"]]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise ValueError("Invalid run store data format") from e

        self._runs = OrderedDict((r.run_id, r) for r in runs[-self.max_size:])
        self._insights = Counter(data.get("insights", {}))
        self._improvements = Counter(data.get("improvements", {}))
        self._goal_patterns = {k: list(v) for k, v in data.get("goal_patterns", {}).items()}
        logger.info("Imported %d run records", len(self._runs))

    def clear(self) -> None:
        self._runs.clear()
        self._insights.clear()
        self._improvements.clear()
        self._goal_patterns.clear()
