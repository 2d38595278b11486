"""Results sinks for run summaries."""

from testfleet.reporters.json_reporter import JSONReporter, read_run_summary
from testfleet.reporters.terminal import TerminalReporter

__all__ = ["JSONReporter", "TerminalReporter", "read_run_summary"]
