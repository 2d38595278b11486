"""Run summary models produced by the aggregator.

A :class:`RunSummary` is created once at the end of a run and never
mutated afterwards, so every model here is a frozen dataclass.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class RunnerUtilization:
    """Per-runner figures derived from cumulative runner stats."""

    total_executed: int = 0
    failure_rate: float = 0.0
    average_duration_ms: float = 0.0
    cost_effectiveness: float = 0.0
    """Tests executed per unit of currency spent."""

    health_score: float = 1.0


@dataclass(frozen=True)
class RunnerPick:
    """A runner singled out by an insight, with the metric that won."""

    id: str
    score: float
    type: str = ""


@dataclass(frozen=True)
class RunInsights:
    """Derived observations about cost, speed and reliability."""

    most_cost_effective_runner: RunnerPick | None = None
    fastest_runner: RunnerPick | None = None
    most_reliable_runner: RunnerPick | None = None
    bottlenecks: tuple[str, ...] = ()
    scaling_recommendations: tuple[str, ...] = ()
    health_trends: dict[str, tuple[str, ...]] = field(default_factory=dict)
    """Runner ids grouped under ``improving``, ``declining`` and ``stable``."""


@dataclass(frozen=True)
class ShardErrorRecord:
    """Terminal cause recorded for a shard that did not complete."""

    cause: str
    """Exception class name (e.g. ``RetryExhaustedError``)."""

    message: str
    test_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class RunSummary:
    """Final, immutable report of one scheduler run."""

    total_tests: int = 0
    completed: int = 0
    failed: int = 0
    success_rate: float = 0.0
    """``completed / (completed + failed)``, in [0, 1]."""

    total_cost: float = 0.0
    average_cost_per_test: float = 0.0
    average_execution_time_ms: float = 0.0
    peak_concurrency: int = 0
    attempts: int = 0
    """Shard execution attempts, retries included."""

    aborted: bool = False
    completed_test_ids: tuple[str, ...] = ()
    failed_test_ids: tuple[str, ...] = ()
    runner_utilization: dict[str, RunnerUtilization] = field(default_factory=dict)
    shard_errors: dict[str, ShardErrorRecord] = field(default_factory=dict)
    insights: RunInsights = field(default_factory=RunInsights)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        data = asdict(self)
        for key in ("completed_test_ids", "failed_test_ids"):
            data[key] = list(data[key])
        for record in data["shard_errors"].values():
            record["test_ids"] = list(record["test_ids"])
        insights = data["insights"]
        insights["bottlenecks"] = list(insights["bottlenecks"])
        insights["scaling_recommendations"] = list(insights["scaling_recommendations"])
        insights["health_trends"] = {k: list(v) for k, v in insights["health_trends"].items()}
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunSummary:
        """Rebuild a summary from :meth:`to_dict` output."""
        raw_insights = data.get("insights", {})
        insights = RunInsights(
            most_cost_effective_runner=_pick_from_dict(raw_insights.get("most_cost_effective_runner")),
            fastest_runner=_pick_from_dict(raw_insights.get("fastest_runner")),
            most_reliable_runner=_pick_from_dict(raw_insights.get("most_reliable_runner")),
            bottlenecks=tuple(raw_insights.get("bottlenecks", [])),
            scaling_recommendations=tuple(raw_insights.get("scaling_recommendations", [])),
            health_trends={
                k: tuple(v) for k, v in raw_insights.get("health_trends", {}).items()
            },
        )
        return cls(
            total_tests=int(data.get("total_tests", 0)),
            completed=int(data.get("completed", 0)),
            failed=int(data.get("failed", 0)),
            success_rate=float(data.get("success_rate", 0.0)),
            total_cost=float(data.get("total_cost", 0.0)),
            average_cost_per_test=float(data.get("average_cost_per_test", 0.0)),
            average_execution_time_ms=float(data.get("average_execution_time_ms", 0.0)),
            peak_concurrency=int(data.get("peak_concurrency", 0)),
            attempts=int(data.get("attempts", 0)),
            aborted=bool(data.get("aborted", False)),
            completed_test_ids=tuple(data.get("completed_test_ids", [])),
            failed_test_ids=tuple(data.get("failed_test_ids", [])),
            runner_utilization={
                runner_id: RunnerUtilization(**values)
                for runner_id, values in data.get("runner_utilization", {}).items()
            },
            shard_errors={
                shard_id: ShardErrorRecord(
                    cause=record["cause"],
                    message=record.get("message", ""),
                    test_ids=tuple(record.get("test_ids", [])),
                )
                for shard_id, record in data.get("shard_errors", {}).items()
            },
            insights=insights,
        )


def _pick_from_dict(data: dict[str, Any] | None) -> RunnerPick | None:
    if not data:
        return None
    return RunnerPick(id=data["id"], score=float(data["score"]), type=data.get("type", ""))
