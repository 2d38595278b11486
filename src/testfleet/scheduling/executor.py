"""Bounded-concurrency shard dispatch with retry on alternate runners.

A fixed pool of ``max_concurrent_shards`` worker tasks pulls shards from
a priority queue, reserves a runner through the registry, invokes the
execution backend and settles the attempt.  A whole-shard fault sends
the shard back to the queue with the faulting runner excluded until
``max_retries`` is used up.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from testfleet.config import CoordinatorConfig
from testfleet.models.shard import Shard, ShardStatus
from testfleet.scheduling.errors import (
    ExecutionFault,
    NoEligibleRunnerError,
    RetryExhaustedError,
    RunAborted,
)
from testfleet.telemetry import record_metric_count, record_metric_distribution, start_span

if TYPE_CHECKING:
    from collections.abc import Callable

    from testfleet.models.runner import Runner
    from testfleet.models.test_case import TestOutcome
    from testfleet.scheduling.aggregator import Aggregator
    from testfleet.scheduling.backends import ExecutionBackend
    from testfleet.scheduling.registry import RunnerRegistry

logger = logging.getLogger(__name__)


@dataclass(order=True)
class _QueueEntry:
    """Priority-queue entry: high priority first, then cheap, then planner order."""

    priority_rank: int
    cost_rank: float
    sequence: int
    shard: Shard = field(compare=False)

    @classmethod
    def for_shard(cls, shard: Shard, sequence: int, *, cost_optimization: bool) -> _QueueEntry:
        return cls(
            priority_rank=-shard.priority.value_score,
            cost_rank=shard.estimated_cost if cost_optimization else 0.0,
            sequence=sequence,
            shard=shard,
        )


def order_for_dispatch(shards: list[Shard], *, cost_optimization: bool = True) -> list[Shard]:
    """Return *shards* (given in planner order) in the order workers take them."""
    entries = [
        _QueueEntry.for_shard(shard, i, cost_optimization=cost_optimization)
        for i, shard in enumerate(shards)
    ]
    return [entry.shard for entry in sorted(entries)]


class DispatchExecutor:
    """Runs shards through the execution backend under a global concurrency cap."""

    def __init__(
        self,
        registry: RunnerRegistry,
        backend: ExecutionBackend,
        aggregator: Aggregator,
        config: CoordinatorConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._backend = backend
        self._aggregator = aggregator
        self._config = config or CoordinatorConfig()
        self._clock = clock
        self._queue: asyncio.PriorityQueue[_QueueEntry] = asyncio.PriorityQueue()
        self._sequence: dict[str, int] = {}
        self._workers: list[asyncio.Task[None]] = []
        self._aborting = False
        self._abort_reason = ""
        self.shards: list[Shard] = []

    # ── Queue ──────────────────────────────────────────────────────

    def _enqueue(self, shard: Shard) -> None:
        shard.status = ShardStatus.PENDING
        shard.runner_id = None
        self._queue.put_nowait(
            _QueueEntry.for_shard(
                shard,
                self._sequence[shard.id],
                cost_optimization=self._config.cost_optimization,
            )
        )

    def submit(self, shards: list[Shard]) -> None:
        """Queue shards in planner order."""
        for shard in shards:
            self._sequence[shard.id] = len(self._sequence)
            self.shards.append(shard)
            self._enqueue(shard)

    # ── Run ────────────────────────────────────────────────────────

    async def run(
        self,
        shards: list[Shard],
        *,
        cancel_event: asyncio.Event | None = None,
        deadline_s: float | None = None,
    ) -> bool:
        """Execute *shards* until every one is terminal or the run is aborted.

        Args:
            shards: Shards in planner order.
            cancel_event: Setting this event aborts the run.
            deadline_s: Abort the run after this many seconds.

        Returns:
            True if the run was aborted.
        """
        self.submit(shards)
        self._workers = [
            asyncio.create_task(self._worker(), name=f"testfleet-dispatch-{i}")
            for i in range(self._config.max_concurrent_shards)
        ]
        logger.info(
            "Dispatching %d shards with %d workers",
            len(shards),
            self._config.max_concurrent_shards,
        )

        drained = asyncio.create_task(self._queue.join())
        waiters: set[asyncio.Task[object]] = {drained}
        cancel_wait: asyncio.Task[object] | None = None
        if cancel_event is not None:
            cancel_wait = asyncio.create_task(cancel_event.wait())
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=deadline_s, return_when=asyncio.FIRST_COMPLETED
            )
            aborted = drained not in done
            if aborted:
                cancelled = cancel_wait is not None and cancel_wait in done
                await self.abort("run cancelled" if cancelled else "deadline exceeded")
                await drained
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()
            if not drained.done():
                drained.cancel()
            for worker in self._workers:
                worker.cancel()
            await asyncio.gather(*self._workers, return_exceptions=True)

        return aborted

    async def abort(self, reason: str) -> None:
        """Stop dispatching: fail every pending shard with :class:`RunAborted`.

        In-flight shards finish unless ``abandon_in_flight_on_abort`` is set,
        in which case their workers are cancelled.
        """
        if self._aborting:
            return
        self._aborting = True
        self._abort_reason = reason
        logger.warning("Aborting run: %s", reason)

        while True:
            try:
                entry = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._fail(entry.shard, RunAborted(f"Shard {entry.shard.id} not started: {reason}"))
            self._queue.task_done()

        await self._registry.close()

        if self._config.abandon_in_flight_on_abort:
            for worker in self._workers:
                worker.cancel()

    # ── Workers ────────────────────────────────────────────────────

    async def _worker(self) -> None:
        """Pull shards from the queue until cancelled."""
        while True:
            entry = await self._queue.get()
            shard = entry.shard
            try:
                await self._process(shard)
            except asyncio.CancelledError:
                if not shard.status.is_terminal:
                    self._fail(
                        shard, RunAborted(f"Shard {shard.id} abandoned: {self._abort_reason}")
                    )
                raise
            finally:
                self._queue.task_done()

    async def _process(self, shard: Shard) -> None:
        if self._aborting:
            self._fail(shard, RunAborted(f"Shard {shard.id} not started: {self._abort_reason}"))
            return

        if not self._registry.can_satisfy(shard.requirements, shard.excluded_runners):
            self._fail(
                shard,
                NoEligibleRunnerError(shard.id, "no runner offers the required capabilities"),
            )
            return

        wait_s = self._config.no_eligible_runner_timeout_ms / 1000.0
        runner = await self._registry.acquire(
            shard.requirements,
            shard.excluded_runners,
            timeout=wait_s,
            wait_while_saturated=True,
        )
        if runner is None:
            if self._aborting:
                self._fail(
                    shard, RunAborted(f"Shard {shard.id} not started: {self._abort_reason}")
                )
            else:
                self._fail(
                    shard,
                    NoEligibleRunnerError(shard.id, f"none became eligible within {wait_s:.1f}s"),
                )
            return

        shard.runner_id = runner.id
        shard.status = ShardStatus.ASSIGNED
        await self._attempt(shard, runner)

    async def _attempt(self, shard: Shard, runner: Runner) -> None:
        """Run one execution attempt of *shard* on a reserved *runner*."""
        logger.info("Executing %s on %s (%d tests)", shard.id, runner.id, len(shard.tests))
        shard.status = ShardStatus.RUNNING
        self._aggregator.shard_started()
        started = self._clock()
        try:
            outcomes = await self._call_backend(shard, runner)
        except ExecutionFault as fault:
            await self._settle(shard, runner, started, failed=len(shard.tests), faulted=True)
            self._handle_fault(shard, fault)
            return
        except asyncio.CancelledError:
            await self._settle(shard, runner, started, failed=len(shard.tests), faulted=True)
            raise
        finally:
            self._aggregator.shard_finished()

        passed, failed = self._aggregator.record_outcomes(shard, outcomes)
        await self._settle(shard, runner, started, failed=failed)
        shard.status = ShardStatus.COMPLETED
        logger.info("Shard %s completed: %d passed, %d failed", shard.id, passed, failed)

    async def _call_backend(self, shard: Shard, runner: Runner) -> list[TestOutcome]:
        """Invoke the backend; any exception becomes an :class:`ExecutionFault`."""
        timeout = self._config.shard_timeout_ms / 1000.0 or None
        with start_span(op="testfleet.shard", description=shard.id) as span:
            span.set_data("runner", runner.id)
            span.set_data("retry_count", shard.retry_count)
            try:
                return await asyncio.wait_for(self._backend.execute(shard, runner), timeout)
            except Exception as exc:
                span.set_status("internal_error")
                message = str(exc) or type(exc).__name__
                raise ExecutionFault(shard.id, runner.id, message) from exc

    async def _settle(
        self,
        shard: Shard,
        runner: Runner,
        started: float,
        *,
        failed: int,
        faulted: bool = False,
    ) -> None:
        """Charge the attempt and free the runner slot."""
        elapsed_ms = (self._clock() - started) * 1000.0
        self._aggregator.record_attempt(shard, runner, elapsed_ms, faulted=faulted)
        await self._registry.release(
            runner.id, executed=len(shard.tests), failed=failed, elapsed_ms=elapsed_ms
        )
        record_metric_distribution(
            "testfleet.shard.duration_ms", elapsed_ms, unit="millisecond", runner=runner.id
        )

    def _handle_fault(self, shard: Shard, fault: ExecutionFault) -> None:
        logger.warning("%s", fault)
        record_metric_count("testfleet.shard.fault", runner=fault.runner_id)
        shard.excluded_runners.add(fault.runner_id)
        shard.error = fault

        if self._aborting:
            self._fail(shard, RunAborted(f"Shard {shard.id} faulted during abort: {fault}"))
            return

        if shard.retry_count < self._config.max_retries:
            shard.retry_count += 1
            logger.warning(
                "Retrying shard %s (retry %d of %d), excluding %s",
                shard.id,
                shard.retry_count,
                self._config.max_retries,
                ", ".join(sorted(shard.excluded_runners)),
            )
            record_metric_count("testfleet.shard.retry")
            self._enqueue(shard)
            return

        exhausted = RetryExhaustedError(shard.id, shard.retry_count + 1)
        exhausted.__cause__ = fault
        self._fail(shard, exhausted)

    def _fail(self, shard: Shard, error: Exception) -> None:
        """Mark *shard* terminally failed and move its tests to the failed set."""
        shard.status = ShardStatus.FAILED
        shard.error = error
        self._aggregator.record_shard_failure(shard, error)
        logger.warning("Shard %s failed: %s", shard.id, error)
