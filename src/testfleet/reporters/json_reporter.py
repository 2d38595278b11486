"""JSON reporter: persists run summaries for downstream tooling.

Writes ``summary.json`` (the full summary, insights included) and
``insights.json`` (insights only) into an output directory, and reads a
summary back for comparison across runs.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from testfleet.models.summary import RunSummary
from testfleet.scheduling.backends import ResultsSink

logger = logging.getLogger(__name__)

SUMMARY_FILENAME = "summary.json"
INSIGHTS_FILENAME = "insights.json"


class JSONReporter(ResultsSink):
    """Write run summaries as JSON files into *output_dir*."""

    def __init__(self, output_dir: str | Path) -> None:
        self.output_dir = Path(output_dir)

    def write(self, summary: RunSummary) -> None:
        """Write ``summary.json`` and ``insights.json``."""
        self.generate(summary)

    def generate(self, summary: RunSummary) -> Path:
        """Write both report files.

        Returns:
            The path of the generated ``summary.json``.
        """
        report = _build_report(summary)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        summary_path = self.output_dir / SUMMARY_FILENAME
        summary_path.write_text(
            json.dumps(report, indent=2, ensure_ascii=False), encoding="utf-8"
        )
        (self.output_dir / INSIGHTS_FILENAME).write_text(
            json.dumps(report["insights"], indent=2, ensure_ascii=False), encoding="utf-8"
        )
        logger.info("Results saved to %s", self.output_dir)
        return summary_path

    def generate_string(self, summary: RunSummary) -> str:
        """Return the ``summary.json`` content as a string."""
        return json.dumps(_build_report(summary), indent=2, ensure_ascii=False)


def _build_report(summary: RunSummary) -> dict[str, Any]:
    report: dict[str, Any] = {
        "tool": "testfleet",
        "timestamp": datetime.now(tz=UTC).isoformat(),
    }
    report.update(summary.to_dict())
    return report


def read_run_summary(path: Path) -> RunSummary:
    """Load a :class:`RunSummary` from a ``summary.json`` file."""
    data = json.loads(path.read_text(encoding="utf-8"))
    return RunSummary.from_dict(data)
