"""Tests for the terminal (Rich) reporter."""

from __future__ import annotations

from io import StringIO
from unittest.mock import MagicMock

import pytest
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from testfleet.models.summary import RunInsights, RunnerPick, RunnerUtilization, RunSummary
from testfleet.reporters.terminal import (
    TerminalReporter,
    _format_duration,
    _format_pick,
    _success_rate_color,
)

# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def mock_console() -> MagicMock:
    """Return a MagicMock that replaces the console."""
    return MagicMock()


@pytest.fixture
def summary() -> RunSummary:
    return RunSummary(
        total_tests=10,
        completed=9,
        failed=1,
        success_rate=0.9,
        total_cost=0.0421,
        peak_concurrency=3,
        runner_utilization={
            "linux-large": RunnerUtilization(
                total_executed=7,
                failure_rate=0.0,
                average_duration_ms=90_000.0,
                cost_effectiveness=12.5,
                health_score=0.95,
            ),
            "linux-small": RunnerUtilization(total_executed=3, failure_rate=1 / 3),
        },
        insights=RunInsights(
            fastest_runner=RunnerPick("linux-small", 1200.0),
            bottlenecks=("e2e tests account for 80% of execution time",),
            scaling_recommendations=("Runner linux-spare was idle",),
        ),
    )


def _render(summary: RunSummary) -> str:
    buffer = StringIO()
    TerminalReporter(Console(file=buffer, width=140, color_system=None)).write(summary)
    return buffer.getvalue()


# ── Helper function tests ───────────────────────────────────────


class TestSuccessRateColor:
    def test_perfect_rate(self) -> None:
        assert _success_rate_color(1.0) == "green"

    def test_good_rate_returns_yellow(self) -> None:
        assert _success_rate_color(0.8) == "yellow"

    def test_below_good_returns_red(self) -> None:
        assert _success_rate_color(0.5) == "red"


class TestFormatDuration:
    def test_seconds(self) -> None:
        assert _format_duration(12.34) == "12.3s"

    def test_exactly_sixty_seconds(self) -> None:
        assert _format_duration(60.0) == "1.0m"

    def test_zero(self) -> None:
        assert _format_duration(0.0) == "0.0s"


class TestFormatPick:
    def test_missing_pick(self) -> None:
        assert "n/a" in _format_pick("Fastest", None)

    def test_pick(self) -> None:
        assert "linux-small" in _format_pick("Fastest", RunnerPick("linux-small", 2.0))


# ── Reporter output ─────────────────────────────────────────────


class TestTerminalReporter:
    def test_panel_and_table(self, mock_console: MagicMock, summary: RunSummary) -> None:
        reporter = TerminalReporter(mock_console)
        reporter.print_summary(summary)

        printed = [c.args[0] for c in mock_console.print.call_args_list if c.args]
        assert any(isinstance(item, Panel) for item in printed)
        tables = [item for item in printed if isinstance(item, Table)]
        assert len(tables) == 1
        assert tables[0].row_count == 2

    def test_no_table_without_runners(self, mock_console: MagicMock) -> None:
        TerminalReporter(mock_console).print_runner_table(RunSummary())
        mock_console.print.assert_not_called()

    def test_rendered_text(self, summary: RunSummary) -> None:
        text = _render(summary)
        assert "Distributed Test Run" in text
        assert "9 passed" in text
        assert "linux-large" in text
        assert "1.5m" in text
        assert "e2e tests account for 80%" in text
        assert "Runner linux-spare was idle" in text
        assert "Most cost-effective: n/a" in text

    def test_aborted_run_is_flagged(self) -> None:
        assert "(aborted)" in _render(RunSummary(aborted=True))
