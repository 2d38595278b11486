"""Run coordinator: plan, dispatch (alongside health monitoring), aggregate."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

from testfleet.config import (
    CoordinatorConfig,
    load_config,
    validate_config,
    validate_runners,
    validate_scheduler_config,
)
from testfleet.reporters.json_reporter import JSONReporter
from testfleet.reporters.terminal import TerminalReporter
from testfleet.scheduling.aggregator import Aggregator
from testfleet.scheduling.errors import ConfigError
from testfleet.scheduling.executor import DispatchExecutor
from testfleet.scheduling.health import HealthMonitor
from testfleet.scheduling.registry import RunnerRegistry
from testfleet.sharding.planner import plan_shards
from testfleet.sharding.splitter import round_robin_shards
from testfleet.telemetry import init_sentry, record_metric_gauge, start_span

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from testfleet.models.runner import Runner
    from testfleet.models.shard import Shard
    from testfleet.models.summary import RunSummary
    from testfleet.models.test_case import TestCase
    from testfleet.scheduling.backends import ExecutionBackend, HealthProbe, ResultsSink

logger = logging.getLogger(__name__)


def _validate_tests(tests: Sequence[TestCase]) -> list[str]:
    errors: list[str] = []
    seen: set[str] = set()
    for test in tests:
        if test.id in seen:
            errors.append(f"tests: duplicate test id {test.id}")
        seen.add(test.id)
        if test.estimated_duration_ms < 0:
            errors.append(f"tests.{test.id}.estimated_duration_ms must be non-negative")
    return errors


class Coordinator:
    """Owns the configuration of a run and sequences its phases.

    Plan -> dispatch (with the health monitor running concurrently)
    -> aggregate -> write summary to the sinks.
    """

    def __init__(
        self,
        config: CoordinatorConfig | None = None,
        *,
        backend: ExecutionBackend,
        probe: HealthProbe | None = None,
        sinks: Sequence[ResultsSink] = (),
        success_history: Mapping[str, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CoordinatorConfig()
        self._backend = backend
        self._probe = probe
        self._sinks = list(sinks)
        self._success_history = success_history
        self._clock = clock
        self.shards: list[Shard] = []
        self.registry: RunnerRegistry | None = None

    def plan(self, tests: list[TestCase], runner_count: int) -> list[Shard]:
        """Group *tests* into shards using the configured strategy."""
        if self.config.sharding_strategy == "round_robin":
            shards = round_robin_shards(tests, runner_count)
            logger.info("Planned %d round-robin shards from %d tests", len(shards), len(tests))
            return shards
        plan = plan_shards(
            tests,
            self.config.target_shard_duration_ms,
            self.config.planner_weights,
            self._success_history,
        )
        return plan.shards

    async def run(
        self,
        tests: Sequence[TestCase],
        runners: Sequence[Runner],
        *,
        cancel_event: asyncio.Event | None = None,
        deadline_s: float | None = None,
    ) -> RunSummary:
        """Schedule and execute *tests* on *runners*.

        Returns once every shard is terminal or the run is aborted.

        Raises:
            ConfigError: If the configuration, runners or tests are invalid.
        """
        errors = validate_scheduler_config(self.config)
        errors.extend(validate_runners(list(runners)))
        errors.extend(_validate_tests(tests))
        if errors:
            raise ConfigError(errors)

        with start_span(op="testfleet.run", description="scheduler run") as span:
            registry = RunnerRegistry(
                runners,
                unhealthy_threshold=self.config.unhealthy_threshold,
                selector_weights=self.config.selector_weights,
                enforce_capacity=self.config.enforce_runner_capacity,
            )
            self.registry = registry
            aggregator = Aggregator(total_tests=len(tests))
            self.shards = self.plan(list(tests), len(runners))
            span.set_data("shards", len(self.shards))

            executor = DispatchExecutor(
                registry, self._backend, aggregator, self.config, clock=self._clock
            )
            monitor = None
            if self._probe is not None:
                monitor = HealthMonitor(
                    registry, self._probe, interval_ms=self.config.health_check_interval_ms
                )
                monitor.start()

            try:
                aborted = await executor.run(
                    self.shards, cancel_event=cancel_event, deadline_s=deadline_s
                )
            finally:
                if monitor is not None:
                    await monitor.stop()

            summary = aggregator.summarize(
                registry.snapshot(),
                aborted=aborted,
                health_history=registry.health_history(),
                max_concurrent_shards=self.config.max_concurrent_shards,
            )

        record_metric_gauge("testfleet.run.cost", summary.total_cost)
        record_metric_gauge("testfleet.run.peak_concurrency", summary.peak_concurrency)

        for sink in self._sinks:
            sink.write(summary)
        return summary


async def run(
    tests: Sequence[TestCase],
    runners: Sequence[Runner],
    config: CoordinatorConfig | None = None,
    *,
    backend: ExecutionBackend,
    probe: HealthProbe | None = None,
    sinks: Sequence[ResultsSink] = (),
    success_history: Mapping[str, float] | None = None,
    cancel_event: asyncio.Event | None = None,
    deadline_s: float | None = None,
) -> RunSummary:
    """Run the scheduler once and return its summary."""
    coordinator = Coordinator(
        config,
        backend=backend,
        probe=probe,
        sinks=sinks,
        success_history=success_history,
    )
    return await coordinator.run(
        tests, runners, cancel_event=cancel_event, deadline_s=deadline_s
    )


def run_blocking(
    tests: Sequence[TestCase],
    runners: Sequence[Runner],
    config: CoordinatorConfig | None = None,
    *,
    backend: ExecutionBackend,
    probe: HealthProbe | None = None,
    sinks: Sequence[ResultsSink] = (),
    deadline_s: float | None = None,
) -> RunSummary:
    """Synchronous wrapper around :func:`run` for callers without an event loop."""
    return asyncio.run(
        run(
            tests,
            runners,
            config,
            backend=backend,
            probe=probe,
            sinks=sinks,
            deadline_s=deadline_s,
        )
    )


async def run_from_config(
    root: str | Path,
    tests: Sequence[TestCase],
    *,
    backend: ExecutionBackend,
    probe: HealthProbe | None = None,
    success_history: Mapping[str, float] | None = None,
    cancel_event: asyncio.Event | None = None,
    deadline_s: float | None = None,
) -> RunSummary:
    """Run with settings and runner inventory from ``<root>/.testfleet.yml``.

    Initializes Sentry when enabled and writes the JSON report (plus the
    terminal summary when ``report.terminal`` is on).
    """
    config = load_config(root)
    errors = validate_config(config)
    if errors:
        raise ConfigError(errors)

    init_sentry(config.sentry)

    sinks: list[ResultsSink] = [JSONReporter(Path(root) / config.report.output_dir)]
    if config.report.terminal:
        sinks.append(TerminalReporter())

    return await run(
        tests,
        config.runners,
        config.scheduler,
        backend=backend,
        probe=probe,
        sinks=sinks,
        success_history=success_history,
        cancel_event=cancel_event,
        deadline_s=deadline_s,
    )
