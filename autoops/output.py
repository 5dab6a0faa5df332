"""
Rich Output Utilities
=====================

Terminal output for AutoOps using the Rich library: a themed console, status
messages, phase banners, run and evolution summaries, and logging
integration.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.theme import Theme

from autoops.models import PhaseName, PhaseStatus

if TYPE_CHECKING:
    from autoops.evolution import EvolutionReport
    from autoops.models import Phase, RunResult


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class AutoOpsColors:
    """AutoOps color palette using hex for truecolor terminal support."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    accent: str = "#A78BFA"    # warm accent
    cyan: str = "#22D3EE"      # cool accent
    steel: str = "#94A3B8"     # secondary accent
    ok: str = "#22C55E"        # success green
    warn: str = "#FBBF24"      # warning yellow
    err: str = "#EF4444"       # error red


def autoops_theme(colors: AutoOpsColors = AutoOpsColors()) -> Theme:
    """
    Rich Theme for AutoOps.

    Style names are semantic:
      console.print("...", style="ao.ok")
    """
    return Theme(
        {
            "ao.border": f"{colors.cyan}",
            "ao.accent": f"bold {colors.accent}",
            "ao.muted": f"{colors.dim}",
            "ao.text": f"{colors.ink}",

            # Status
            "ao.ok": f"bold {colors.ok}",
            "ao.warn": f"bold {colors.warn}",
            "ao.err": f"bold {colors.err}",
            "ao.info": f"{colors.cyan}",

            # Data display
            "ao.key": f"{colors.steel}",
            "ao.value": f"{colors.ink}",
            "ao.number": f"bold {colors.accent}",

            # Run phases
            "ao.phase.gate": f"bold {colors.steel}",
            "ao.phase.plan": f"bold {colors.cyan}",
            "ao.phase.exec": f"bold {colors.accent}",
            "ao.phase.reflect": f"bold {colors.warn}",
            "ao.phase.done": f"bold {colors.ok}",
            "ao.phase.error": f"bold {colors.err}",

            "ao.table.header": f"bold {colors.cyan}",
        }
    )


def _can_use_unicode() -> bool:
    """Check if the terminal can handle the status glyphs."""
    if os.name == "nt":
        try:
            encoding = sys.stdout.encoding or "utf-8"
            "✓✗•".encode(encoding)
            return True
        except (UnicodeEncodeError, LookupError, AttributeError):
            return False
    return True


_UNICODE_ICONS = {"check": "✓", "cross": "✗", "warning": "⚠", "info": "ℹ", "bullet": "•"}
_ASCII_ICONS = {"check": "[OK]", "cross": "[X]", "warning": "[!]", "info": "[i]", "bullet": "-"}
_ICONS = _UNICODE_ICONS if _can_use_unicode() else _ASCII_ICONS


def icon(name: str) -> str:
    """Get an icon by name, using ASCII fallback if needed."""
    return _ICONS.get(name, "")


# Themed console - the single source of truth for output
console = Console(theme=autoops_theme())

PHASE_STYLES: dict[PhaseName, str] = {
    PhaseName.INTENT_CLASSIFICATION: "ao.phase.gate",
    PhaseName.SAFETY_VALIDATION: "ao.phase.gate",
    PhaseName.PLANNING: "ao.phase.plan",
    PhaseName.EXECUTING: "ao.phase.exec",
    PhaseName.REFLECTING: "ao.phase.reflect",
    PhaseName.OPTIMIZING: "ao.phase.reflect",
    PhaseName.COMPLETE: "ao.phase.done",
    PhaseName.ERROR: "ao.phase.error",
}

STATUS_STYLES: dict[PhaseStatus, str] = {
    PhaseStatus.COMPLETED: "ao.ok",
    PhaseStatus.FAILED: "ao.err",
    PhaseStatus.RUNNING: "ao.info",
    PhaseStatus.PENDING: "ao.warn",
    PhaseStatus.SKIPPED: "ao.muted",
}


# =============================================================================
# Basic Message Functions
# =============================================================================

def print_success(message: str) -> None:
    console.print(f"[ao.ok]{icon('check')} {message}[/]")


def print_error(message: str) -> None:
    console.print(f"[ao.err]{icon('cross')} {message}[/]")


def print_warning(message: str) -> None:
    console.print(f"[ao.warn]{icon('warning')} {message}[/]")


def print_info(message: str) -> None:
    console.print(f"[ao.info]{icon('info')} {message}[/]")


def print_header(title: str, style: str = "ao.accent") -> None:
    """Print a prominent section header with rule lines."""
    console.print()
    console.print(Rule(f"[{style}]{title}[/]", style=style))
    console.print()


# =============================================================================
# Data Display Functions
# =============================================================================

def print_key_value_table(
    data: Dict[str, Any],
    *,
    title: Optional[str] = None,
    border_style: str = "ao.border",
) -> None:
    """Print multiple key-value pairs in a clean table format."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="ao.key")
    table.add_column("Value", style="ao.value")

    for key, value in data.items():
        table.add_row(key, str(value))

    if title:
        console.print(Panel(table, title=f"[bold]{title}[/]", border_style=border_style))
    else:
        console.print(table)


def create_table(
    *,
    title: Optional[str] = None,
    columns: Optional[List[str]] = None,
    border_style: str = "ao.border",
) -> Table:
    """Create a styled Rich Table with the AutoOps theme."""
    table = Table(
        title=title,
        header_style="ao.table.header",
        border_style=border_style,
        title_style="ao.accent",
    )
    for col in columns or []:
        table.add_column(col)
    return table


# =============================================================================
# Run Displays
# =============================================================================

def print_phase(phase: "Phase", message: str = "") -> None:
    """
    Print a phase label with its status.

    Usage:
        print_phase(phase, "3 tasks planned")
    """
    style = PHASE_STYLES.get(phase.name, "ao.text")
    status_style = STATUS_STYLES.get(phase.status, "ao.text")
    timing = f" ({phase.duration_ms:.0f}ms)" if phase.duration_ms is not None else ""
    text = f" [ao.text]{message}[/]" if message else ""
    console.print(
        f"[{style}]{phase.name.value:>22}[/] "
        f"[{status_style}]{phase.status.value}[/][ao.muted]{timing}[/]{text}"
    )


def print_run_summary(result: "RunResult") -> None:
    """Render a RunResult as a phase table plus a summary panel."""
    table = create_table(title=f"Run {result.run_id[:8]}", columns=["Phase", "Status", "Duration"])
    for phase in result.phases:
        status_style = STATUS_STYLES.get(phase.status, "ao.text")
        duration = f"{phase.duration_ms:.0f}ms" if phase.duration_ms is not None else "-"
        table.add_row(phase.name.value, f"[{status_style}]{phase.status.value}[/]", duration)
    console.print(table)

    details: Dict[str, Any] = {"Goal": result.goal, "Success": result.success}
    if result.execution is not None:
        details["Tasks"] = f"{result.execution.completed_tasks}/{result.execution.total_tasks} completed"
    if result.reflection is not None:
        details["Score"] = f"{result.reflection.score:.0f}/100 ({result.reflection.grade})"
    if result.recovery_plans:
        details["Recovery plans"] = ", ".join(p.strategy.value for p in result.recovery_plans)
    if result.strategy_version is not None:
        details["Strategy"] = f"v{result.strategy_version}"
    details["Duration"] = f"{result.total_duration:.2f}s"
    print_key_value_table(details, title="Summary", border_style="ao.ok" if result.success else "ao.warn")

    if result.error:
        print_error(result.error)
    elif result.summary:
        print_info(result.summary)


def print_evolution_report(report: "EvolutionReport") -> None:
    """Render an EvolutionReport: metrics, new suggestions and rules."""
    after = report.metrics.after
    print_key_value_table(
        {
            "Version": report.current_strategy.version,
            "Runs analyzed": report.runs_analyzed,
            "Avg success rate": f"{after.average_success_rate:.1%}",
            "Avg execution time": f"{after.average_execution_time:.1f}s",
            "Delta": f"{report.metrics.delta:+.3f}",
        },
        title="Evolution",
    )

    if report.new_suggestions:
        table = create_table(title="Suggestions", columns=["Title", "Category", "Impact", "Confidence", "Status"])
        for s in report.new_suggestions:
            table.add_row(
                s.title,
                s.category.value,
                s.impact.value,
                f"{s.confidence:.0%}",
                "[ao.ok]applied[/]" if s.applied else "[ao.warn]pending[/]",
            )
        console.print(table)

    rules = create_table(title="Rules", columns=["Priority", "Condition", "Action", "Effectiveness", "Applied"])
    for rule in report.current_strategy.rules:
        rules.add_row(
            str(rule.priority), rule.condition, rule.action,
            f"{rule.effectiveness:.2f}", str(rule.times_applied),
        )
    console.print(rules)


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: Union[int, str] = logging.INFO) -> None:
    """
    Configure Python logging to use Rich.

    Usage:
        setup_rich_logging(config.log_level)
        logging.info("This will be pretty!")
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=console,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )],
    )
