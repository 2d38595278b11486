"""Terminal rendering of run summaries with rich."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from testfleet.scheduling.backends import ResultsSink

if TYPE_CHECKING:
    from testfleet.models.summary import RunnerPick, RunSummary

console = Console()

_PERFECT_RATE = 1.0
_GOOD_RATE = 0.8
_SECONDS_PER_MINUTE = 60.0


def _success_rate_color(rate: float) -> str:
    """Return a Rich color name for a success rate in [0, 1]."""
    if rate >= _PERFECT_RATE:
        return "green"
    if rate >= _GOOD_RATE:
        return "yellow"
    return "red"


def _format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string."""
    if seconds >= _SECONDS_PER_MINUTE:
        return f"{seconds / _SECONDS_PER_MINUTE:.1f}m"
    return f"{seconds:.1f}s"


def _format_pick(label: str, pick: RunnerPick | None) -> str:
    if pick is None:
        return f"{label}: [dim]n/a[/dim]"
    return f"{label}: [bold]{pick.id}[/bold] [dim]({pick.score:.2f})[/dim]"


class TerminalReporter(ResultsSink):
    """Print a run summary: totals, per-runner table, insights."""

    def __init__(self, output: Console | None = None) -> None:
        self.console = output or console

    def write(self, summary: RunSummary) -> None:
        self.print_summary(summary)

    def print_summary(self, summary: RunSummary) -> None:
        color = _success_rate_color(summary.success_rate)
        title = "Distributed Test Run" + (" [red](aborted)[/red]" if summary.aborted else "")
        self.console.print()
        self.console.print(Panel(f"[bold white]{title}[/bold white]", border_style="cyan"))
        self.console.print(
            f"  [bold]{summary.total_tests}[/bold] tests  "
            f"[green]{summary.completed} passed[/green]  "
            f"[red]{summary.failed} failed[/red]  "
            f"[bold {color}]{summary.success_rate:.1%}[/bold {color}] success  "
            f"[dim]cost ${summary.total_cost:.4f} · peak {summary.peak_concurrency} shards[/dim]"
        )
        self.print_runner_table(summary)
        self.print_insights(summary)

    def print_runner_table(self, summary: RunSummary) -> None:
        if not summary.runner_utilization:
            return
        table = Table(title="Runner utilization", show_lines=False)
        table.add_column("Runner", style="cyan")
        table.add_column("Executed", justify="right")
        table.add_column("Failure rate", justify="right")
        table.add_column("Avg shard", justify="right")
        table.add_column("Tests / $", justify="right")
        table.add_column("Health", justify="right")

        for runner_id, usage in sorted(summary.runner_utilization.items()):
            table.add_row(
                runner_id,
                str(usage.total_executed),
                f"{usage.failure_rate:.1%}",
                _format_duration(usage.average_duration_ms / 1000),
                f"{usage.cost_effectiveness:.1f}",
                f"{usage.health_score:.2f}",
            )
        self.console.print(table)

    def print_insights(self, summary: RunSummary) -> None:
        insights = summary.insights
        self.console.print("\n[bold cyan]Insights[/bold cyan]")
        self.console.print("  " + _format_pick("Most cost-effective", insights.most_cost_effective_runner))
        self.console.print("  " + _format_pick("Fastest", insights.fastest_runner))
        self.console.print("  " + _format_pick("Most reliable", insights.most_reliable_runner))
        for item in insights.bottlenecks:
            self.console.print(f"  [yellow]⚠[/yellow] {item}")
        for item in insights.scaling_recommendations:
            self.console.print(f"  [dim]→ {item}[/dim]")
