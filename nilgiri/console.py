"""Rich console output for a finished run."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import RunOutcome
from .report import summary_figures

SUMMARY_ROWS = (
    ("Total requests", "total_requests"),
    ("Avg response (ms)", "avg_duration_ms"),
    ("Virtual users", "vus"),
    ("Throughput (req/s)", "throughput"),
    ("Checks passed", "pass_count"),
    ("Checks failed", "fail_count"),
    ("Iterations", "iterations"),
    ("Error rate", "error_rate"),
)


def build_summary_table(outcome: RunOutcome) -> Table:
    """Single Rich grid with the same figures as the report tiles."""
    figures = summary_figures(outcome.model)
    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan")
    table.add_column(style="green")
    for label, key in SUMMARY_ROWS:
        table.add_row(label, str(figures[key]))
    table.add_row("k6 exit code", str(outcome.engine_exit_code))
    table.add_row("AI analysis", "included" if outcome.insight_available else "unavailable")
    return table


def create_summary_panel(outcome: RunOutcome) -> Panel:
    title = Text()
    title.append("nilgiri ", style="bold magenta")
    title.append("| run summary", style="dim")
    border = "blue" if outcome.engine_exit_code == 0 else "yellow"
    return Panel(build_summary_table(outcome), title=title, border_style=border)


def print_run_summary(outcome: RunOutcome, console: Console | None = None) -> None:
    console = console or Console()
    console.print(create_summary_panel(outcome))
    if outcome.detailed_json_path:
        console.print(f"[dim]JSON report:[/dim] {outcome.detailed_json_path}")
    console.print(f"[green]Report written to[/green] {outcome.report_path}")
