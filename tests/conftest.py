"""Shared fakes and builders for scheduler tests."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import TYPE_CHECKING, Any

import pytest

from testfleet.models.requirements import RequirementSet
from testfleet.models.runner import Runner
from testfleet.models.test_case import Priority, TestCase, TestKind, TestOutcome
from testfleet.scheduling.backends import ExecutionBackend, HealthProbe, ResultsSink

if TYPE_CHECKING:
    from collections.abc import Collection, Mapping

    from testfleet.models.shard import Shard
    from testfleet.models.summary import RunSummary

# ── Builders ─────────────────────────────────────────────────────


def make_test(
    test_id: str,
    duration_ms: float = 1000.0,
    *,
    priority: Priority = Priority.MEDIUM,
    kind: TestKind = TestKind.UNIT,
    requirements: Mapping[str, Any] | None = None,
) -> TestCase:
    """Build a :class:`TestCase` with catalog-style requirements."""
    return TestCase(
        id=test_id,
        kind=kind,
        estimated_duration_ms=duration_ms,
        priority=priority,
        requirements=RequirementSet.from_mapping(requirements or {}),
    )


def make_runner(
    runner_id: str,
    *,
    capacity: int = 4,
    unit_cost: float = 0.01,
    health: float = 1.0,
    capabilities: Mapping[str, Any] | None = None,
    runner_type: str = "",
) -> Runner:
    """Build a :class:`Runner` with catalog-style capabilities."""
    return Runner(
        id=runner_id,
        capacity=capacity,
        unit_cost=unit_cost,
        health_score=health,
        capabilities=RequirementSet.from_mapping(capabilities or {}),
        type=runner_type,
    )


# ── Fakes ────────────────────────────────────────────────────────


class ManualClock:
    """Monotonic clock advanced explicitly by tests (seconds)."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


class FakeBackend(ExecutionBackend):
    """Deterministic execution backend.

    Tests pass unless listed in *failing_tests*; runners listed in
    *faulty_runners* fail whole shards.  Tracks concurrency overall and
    per runner.
    """

    def __init__(
        self,
        *,
        delay: float = 0.0,
        faulty_runners: Collection[str] = (),
        failing_tests: Collection[str] = (),
        omitted_tests: Collection[str] = (),
        clock: ManualClock | None = None,
        elapsed_ms: float | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.delay = delay
        self.faulty_runners = set(faulty_runners)
        self.failing_tests = set(failing_tests)
        self.omitted_tests = set(omitted_tests)
        self.clock = clock
        self.elapsed_ms = elapsed_ms
        self.gate = gate
        self.calls: list[tuple[str, str]] = []
        self.running = 0
        self.max_running = 0
        self.running_by_runner: dict[str, int] = defaultdict(int)
        self.max_by_runner: dict[str, int] = defaultdict(int)

    async def execute(self, shard: Shard, runner: Runner) -> list[TestOutcome]:
        self.calls.append((shard.id, runner.id))
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        self.running_by_runner[runner.id] += 1
        self.max_by_runner[runner.id] = max(
            self.max_by_runner[runner.id], self.running_by_runner[runner.id]
        )
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.clock is not None:
                elapsed = self.elapsed_ms
                if elapsed is None:
                    elapsed = shard.estimated_duration_ms
                self.clock.advance_ms(elapsed)
            if runner.id in self.faulty_runners:
                msg = f"runner {runner.id} lost connection"
                raise RuntimeError(msg)
            return [
                TestOutcome(
                    test_id=test.id,
                    passed=test.id not in self.failing_tests,
                    duration_ms=test.estimated_duration_ms,
                    failure_message="assertion failed" if test.id in self.failing_tests else "",
                )
                for test in shard.tests
                if test.id not in self.omitted_tests
            ]
        finally:
            self.running -= 1
            self.running_by_runner[runner.id] -= 1

    def runners_for(self, shard_id: str) -> list[str]:
        return [runner_id for sid, runner_id in self.calls if sid == shard_id]


class FakeProbe(HealthProbe):
    """Returns scripted health scores; runners without a script keep 1.0."""

    def __init__(
        self,
        scores: Mapping[str, float] | None = None,
        *,
        broken: Collection[str] = (),
    ) -> None:
        self.scores = dict(scores or {})
        self.broken = set(broken)
        self.probed: list[str] = []

    async def probe(self, runner: Runner) -> float:
        self.probed.append(runner.id)
        if runner.id in self.broken:
            msg = f"probe endpoint for {runner.id} unreachable"
            raise ConnectionError(msg)
        return self.scores.get(runner.id, 1.0)


class CollectingSink(ResultsSink):
    """Keeps every summary written to it."""

    def __init__(self) -> None:
        self.summaries: list[RunSummary] = []

    def write(self, summary: RunSummary) -> None:
        self.summaries.append(summary)


# ── Fixtures ─────────────────────────────────────────────────────


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def standard_runners() -> list[Runner]:
    """R1/R2 healthy, R3 below the default health threshold."""
    return [
        make_runner("R1", capacity=4, unit_cost=0.008),
        make_runner("R2", capacity=8, unit_cost=0.005),
        make_runner("R3", capacity=4, unit_cost=0.001, health=0.3),
    ]
