#!/usr/bin/env python3
"""
Demo: Runs, Recovery and Strategy Evolution
===========================================

Runs a handful of goals through the orchestrator with simulated
collaborators, then evolves the strategy from the recorded runs.

Task outcomes are a seeded coin flip, so some tasks fail and go through
the retry / recovery path.

Usage:
    python examples/demo_run.py
    python examples/demo_run.py --persist ./demo-data
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from autoops.config import AutoOpsConfig
from autoops.db import close_db, init_db
from autoops.evolution import EvolutionEngine
from autoops.orchestrator import create_orchestrator
from autoops.output import (
    print_evolution_report,
    print_header,
    print_info,
    print_run_summary,
    setup_rich_logging,
)
from autoops.run_store import RunRecordStore
from autoops.simulation import RandomOutcomes

GOALS = [
    "Deploy the billing API to staging",
    "Build a nightly data pipeline for the analytics warehouse",
    "What is the current release process?",
    "Configure alerting for the payment service",
    "Clean up old tenants and drop database legacy",
    "Automate the weekly backup of customer records",
]


async def run_demo(persist_dir: Optional[Path]) -> None:
    config = AutoOpsConfig.load()
    setup_rich_logging(config.log_level)

    store = RunRecordStore(max_size=config.max_stored_runs)
    engine = EvolutionEngine(store, sample_size=config.evolution_sample_size)

    session = None
    if persist_dir is not None:
        session_maker = await init_db(persist_dir)
        session = session_maker()
        await store.init_async(session)
        await engine.init_async(session)
        print_info(f"Loaded {len(store)} stored runs, strategy v{engine.get_current_strategy().version}")

    orchestrator = create_orchestrator(
        config,
        outcome_source=RandomOutcomes(success_rate=0.8, seed=7),
        run_store=store,
        evolution_engine=engine,
    )

    try:
        for goal in GOALS:
            print_header(goal)
            result = await orchestrator.run(goal)
            print_run_summary(result)

        print_header("Strategy evolution")
        report = await engine.evolve_strategy()
        print_evolution_report(report)
    finally:
        if session is not None:
            await session.close()
            await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="AutoOps orchestration demo")
    parser.add_argument("--persist", type=Path, default=None, help="Directory for the SQLite database")
    args = parser.parse_args()
    asyncio.run(run_demo(args.persist))


if __name__ == "__main__":
    main()
