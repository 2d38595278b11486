"""Run metrics collection and summary/insight derivation.

The dispatch executor is the only writer: it reports attempt costs,
per-test outcomes and terminal shard failures as they happen.  At the
end of the run :meth:`Aggregator.summarize` folds everything, together
with the final registry state, into an immutable :class:`RunSummary`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from testfleet.models.runner import RunnerStatus
from testfleet.models.summary import (
    RunInsights,
    RunnerPick,
    RunnerUtilization,
    RunSummary,
    ShardErrorRecord,
)
from testfleet.scheduling.errors import NoEligibleRunnerError, RetryExhaustedError

if TYPE_CHECKING:
    from testfleet.models.runner import Runner
    from testfleet.models.shard import Shard
    from testfleet.models.test_case import TestCase, TestOutcome

logger = logging.getLogger(__name__)

_MS_PER_MINUTE = 60_000.0
_DOMINANT_SHARE = 0.5
_HIGH_FAILURE_RATE = 0.25
_TREND_DELTA = 0.05


@dataclass(frozen=True)
class ShardAttempt:
    """One execution attempt of a shard on a runner."""

    shard_id: str
    runner_id: str
    elapsed_ms: float
    cost: float
    faulted: bool = False


class Aggregator:
    """Accumulates run-level counters and builds the final summary."""

    def __init__(self, total_tests: int) -> None:
        self.total_tests = total_tests
        self.total_cost = 0.0
        self.peak_concurrency = 0
        self.attempts: list[ShardAttempt] = []
        self._in_flight = 0
        self._completed: dict[str, float] = {}
        self._failed: dict[str, str] = {}
        self._shard_errors: dict[str, ShardErrorRecord] = {}
        self._time_by_kind: dict[str, float] = {}

    # ── Recording (dispatch loop only) ─────────────────────────────

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def shard_started(self) -> None:
        self._in_flight += 1
        self.peak_concurrency = max(self.peak_concurrency, self._in_flight)

    def shard_finished(self) -> None:
        self._in_flight -= 1

    def record_attempt(
        self, shard: Shard, runner: Runner, elapsed_ms: float, *, faulted: bool = False
    ) -> float:
        """Charge ``unit_cost * minutes`` for one attempt and return the charge."""
        cost = runner.unit_cost * (elapsed_ms / _MS_PER_MINUTE)
        self.total_cost += cost
        self.attempts.append(
            ShardAttempt(
                shard_id=shard.id,
                runner_id=runner.id,
                elapsed_ms=elapsed_ms,
                cost=cost,
                faulted=faulted,
            )
        )
        return cost

    def record_outcomes(self, shard: Shard, outcomes: list[TestOutcome]) -> tuple[int, int]:
        """Record per-test results of a successful execution.

        Tests of the shard without an outcome count as failed.

        Returns:
            ``(passed, failed)`` counts for the shard.
        """
        by_id = {outcome.test_id: outcome for outcome in outcomes}
        passed = failed = 0
        for test in shard.tests:
            outcome = by_id.get(test.id)
            duration = test.estimated_duration_ms
            if outcome is not None and outcome.duration_ms is not None:
                duration = outcome.duration_ms
            self._add_kind_time(test, duration)

            if outcome is not None and outcome.passed:
                self._completed[test.id] = duration
                passed += 1
            else:
                reason = "no outcome reported" if outcome is None else outcome.failure_message
                self._failed[test.id] = reason
                failed += 1
        return passed, failed

    def record_shard_failure(self, shard: Shard, error: Exception) -> None:
        """Move every test of a terminally failed shard to the failed set."""
        for test in shard.tests:
            self._failed.setdefault(test.id, str(error))
        self._shard_errors[shard.id] = ShardErrorRecord(
            cause=type(error).__name__,
            message=str(error),
            test_ids=tuple(shard.test_ids),
        )

    def _add_kind_time(self, test: TestCase, duration_ms: float) -> None:
        kind = test.kind.value
        self._time_by_kind[kind] = self._time_by_kind.get(kind, 0.0) + duration_ms

    # ── Summary ────────────────────────────────────────────────────

    def summarize(
        self,
        runners: list[Runner],
        *,
        aborted: bool = False,
        health_history: dict[str, list[float]] | None = None,
        max_concurrent_shards: int = 0,
    ) -> RunSummary:
        """Build the final :class:`RunSummary` from recorded data and runner state."""
        completed = len(self._completed)
        failed = len(self._failed)
        finished = completed + failed

        utilization = {runner.id: runner_utilization(runner) for runner in runners}
        insights = RunInsights(
            most_cost_effective_runner=find_most_cost_effective_runner(runners, utilization),
            fastest_runner=find_fastest_runner(runners),
            most_reliable_runner=find_most_reliable_runner(runners),
            bottlenecks=tuple(self._identify_bottlenecks(runners)),
            scaling_recommendations=tuple(
                self._scaling_recommendations(runners, max_concurrent_shards)
            ),
            health_trends=analyze_health_trends(health_history or {}),
        )

        summary = RunSummary(
            total_tests=self.total_tests,
            completed=completed,
            failed=failed,
            success_rate=completed / finished if finished else 0.0,
            total_cost=self.total_cost,
            average_cost_per_test=self.total_cost / self.total_tests if self.total_tests else 0.0,
            average_execution_time_ms=(
                sum(self._completed.values()) / completed if completed else 0.0
            ),
            peak_concurrency=self.peak_concurrency,
            attempts=len(self.attempts),
            aborted=aborted,
            completed_test_ids=tuple(self._completed),
            failed_test_ids=tuple(self._failed),
            runner_utilization=utilization,
            shard_errors=dict(self._shard_errors),
            insights=insights,
        )
        logger.info(
            "Run summary: %d/%d completed, %d failed, cost %.4f, peak concurrency %d",
            completed,
            self.total_tests,
            failed,
            self.total_cost,
            self.peak_concurrency,
        )
        return summary

    def _identify_bottlenecks(self, runners: list[Runner]) -> list[str]:
        bottlenecks: list[str] = []

        total_time = sum(self._time_by_kind.values())
        if total_time > 0:
            kind, kind_time = max(self._time_by_kind.items(), key=lambda item: item[1])
            share = kind_time / total_time
            if share >= _DOMINANT_SHARE and len(self._time_by_kind) > 1:
                bottlenecks.append(f"{kind} tests account for {share:.0%} of execution time")

        for runner in runners:
            rate = runner.stats.failure_rate
            if runner.stats.total_executed > 0 and rate >= _HIGH_FAILURE_RATE:
                bottlenecks.append(f"Runner {runner.id} failed {rate:.0%} of executed tests")

        unplaced = [
            record for record in self._shard_errors.values()
            if record.cause == NoEligibleRunnerError.__name__
        ]
        if unplaced:
            bottlenecks.append(
                f"{len(unplaced)} shard(s) found no eligible runner for their requirements"
            )

        exhausted = [
            record for record in self._shard_errors.values()
            if record.cause == RetryExhaustedError.__name__
        ]
        if exhausted:
            bottlenecks.append(f"{len(exhausted)} shard(s) exhausted their retries")

        return bottlenecks

    def _scaling_recommendations(
        self, runners: list[Runner], max_concurrent_shards: int
    ) -> list[str]:
        recommendations: list[str] = []
        total_executed = sum(r.stats.total_executed for r in runners)

        if total_executed > 0 and len(runners) > 1:
            busiest = max(runners, key=lambda r: (r.stats.total_executed, r.id))
            share = busiest.stats.total_executed / total_executed
            if share > _DOMINANT_SHARE:
                recommendations.append(
                    f"Runner {busiest.id} handled {share:.0%} of executed tests; "
                    "add runners with matching capabilities to spread the load"
                )

        for runner in runners:
            if runner.stats.total_executed == 0:
                recommendations.append(
                    f"Runner {runner.id} was idle; consider removing it or broadening "
                    "its capabilities"
                )
            elif runner.status is RunnerStatus.UNHEALTHY:
                recommendations.append(
                    f"Runner {runner.id} ended with health {runner.health_score:.2f}; "
                    "investigate or replace it"
                )

        if max_concurrent_shards and self.peak_concurrency >= max_concurrent_shards:
            recommendations.append(
                f"Concurrency budget of {max_concurrent_shards} was saturated; raising "
                "max_concurrent_shards may shorten the run"
            )
        return recommendations


# ── Per-runner metrics ────────────────────────────────────────────


def cost_effectiveness(runner: Runner) -> float:
    """Tests executed per unit of currency: ``executed / (cost * avg_minutes)``."""
    spend = runner.unit_cost * runner.stats.average_duration_ms / _MS_PER_MINUTE
    if spend <= 0:
        return 0.0
    return runner.stats.total_executed / spend


def runner_utilization(runner: Runner) -> RunnerUtilization:
    return RunnerUtilization(
        total_executed=runner.stats.total_executed,
        failure_rate=runner.stats.failure_rate,
        average_duration_ms=runner.stats.average_duration_ms,
        cost_effectiveness=cost_effectiveness(runner),
        health_score=runner.health_score,
    )


def find_most_cost_effective_runner(
    runners: list[Runner], utilization: dict[str, RunnerUtilization]
) -> RunnerPick | None:
    best: RunnerPick | None = None
    for runner in runners:
        score = utilization[runner.id].cost_effectiveness
        if score > 0 and (best is None or score > best.score):
            best = RunnerPick(id=runner.id, score=score, type=runner.type)
    return best


def find_fastest_runner(runners: list[Runner]) -> RunnerPick | None:
    fastest: RunnerPick | None = None
    for runner in runners:
        if runner.stats.total_executed == 0:
            continue
        avg = runner.stats.average_duration_ms
        if fastest is None or avg < fastest.score:
            fastest = RunnerPick(id=runner.id, score=avg, type=runner.type)
    return fastest


def find_most_reliable_runner(runners: list[Runner]) -> RunnerPick | None:
    best: RunnerPick | None = None
    for runner in runners:
        if runner.stats.total_executed == 0:
            continue
        reliability = (1 - runner.stats.failure_rate) * runner.health_score
        if reliability > 0 and (best is None or reliability > best.score):
            best = RunnerPick(id=runner.id, score=reliability, type=runner.type)
    return best


def analyze_health_trends(history: dict[str, list[float]]) -> dict[str, tuple[str, ...]]:
    """Classify runners by the change between their first and last health score."""
    trends: dict[str, list[str]] = {"improving": [], "declining": [], "stable": []}
    for runner_id in sorted(history):
        scores = history[runner_id]
        if not scores:
            continue
        delta = scores[-1] - scores[0]
        if delta > _TREND_DELTA:
            trends["improving"].append(runner_id)
        elif delta < -_TREND_DELTA:
            trends["declining"].append(runner_id)
        else:
            trends["stable"].append(runner_id)
    return {key: tuple(ids) for key, ids in trends.items()}
