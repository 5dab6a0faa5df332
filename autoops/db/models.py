"""
Database Models for AutoOps
===========================

SQLAlchemy models for persisting run records and the evolution strategy.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import String, Integer, Float, DateTime, JSON, Text, Boolean
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class RunRecordModel(Base):
    """A completed orchestration run (replaces the in-memory-only store)."""
    __tablename__ = "run_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    goal: Mapped[str] = mapped_column(Text)
    context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Summaries stored as JSON blobs, shaped like RunRecord.to_dict()
    plan: Mapped[Dict[str, Any]] = mapped_column(JSON)
    execution: Mapped[Dict[str, Any]] = mapped_column(JSON)
    reflection: Mapped[Dict[str, Any]] = mapped_column(JSON)

    # Denormalized for queries
    score: Mapped[float] = mapped_column(Float, default=0.0)
    success: Mapped[bool] = mapped_column(Boolean, default=False)
    tags: Mapped[List[str]] = mapped_column(JSON, default=list)


class EvolutionReportModel(Base):
    """One evolution cycle report."""
    __tablename__ = "evolution_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evolution_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    runs_analyzed: Mapped[int] = mapped_column(Integer, default=0)
    strategy_version: Mapped[int] = mapped_column(Integer)
    report: Mapped[Dict[str, Any]] = mapped_column(JSON)


class StrategySnapshotModel(Base):
    """Strategy state after an evolution cycle, including suggestion lists."""
    __tablename__ = "strategy_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    version: Mapped[int] = mapped_column(Integer, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    strategy: Mapped[Dict[str, Any]] = mapped_column(JSON)
    suggestions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    note: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
