"""Runner registry: static runner attributes plus synchronized runtime state.

The dispatch workers and the health monitor both mutate runner state.
Every read-modify-write goes through a single :class:`asyncio.Condition`,
which also wakes shards waiting for a runner whenever state changes.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import TYPE_CHECKING

from testfleet.config import SelectorWeights
from testfleet.models.runner import RunnerStatus
from testfleet.scheduling.selector import select_runner

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable

    from testfleet.models.requirements import RequirementSet
    from testfleet.models.runner import Runner

logger = logging.getLogger(__name__)


class RunnerRegistry:
    """Owns every runner of a run.

    Runners passed in are copied; callers only ever see snapshots.
    """

    def __init__(
        self,
        runners: Iterable[Runner],
        *,
        unhealthy_threshold: float = 0.5,
        selector_weights: SelectorWeights | None = None,
        enforce_capacity: bool = True,
    ) -> None:
        self._runners: dict[str, Runner] = {r.id: copy.deepcopy(r) for r in runners}
        self._threshold = unhealthy_threshold
        self._weights = selector_weights or SelectorWeights()
        self._enforce_capacity = enforce_capacity
        self._condition = asyncio.Condition()
        self._health_history: dict[str, list[float]] = {
            runner_id: [runner.health_score] for runner_id, runner in self._runners.items()
        }
        self._closed = False

    @property
    def runner_ids(self) -> list[str]:
        return sorted(self._runners)

    @property
    def unhealthy_threshold(self) -> float:
        return self._threshold

    def get(self, runner_id: str) -> Runner:
        """Return a snapshot of one runner.

        Raises:
            KeyError: If the runner is unknown.
        """
        return copy.deepcopy(self._runners[runner_id])

    def snapshot(self) -> list[Runner]:
        """Return copies of all runners, ordered by id."""
        return [copy.deepcopy(self._runners[runner_id]) for runner_id in self.runner_ids]

    def health_history(self) -> dict[str, list[float]]:
        """Recorded health scores per runner, oldest first."""
        return {runner_id: list(scores) for runner_id, scores in self._health_history.items()}

    def can_satisfy(self, requirements: RequirementSet, exclusions: Collection[str] = ()) -> bool:
        """Return True if any non-excluded runner could ever host *requirements*.

        Status, load and health are ignored: this answers whether waiting
        for a runner can possibly succeed.
        """
        return any(
            runner.capabilities.contains(requirements)
            for runner in self._runners.values()
            if runner.id not in exclusions
        )

    def _has_saturated_host(
        self, requirements: RequirementSet, exclusions: Collection[str]
    ) -> bool:
        """Return True if a runner would be eligible for *requirements* but for its load.

        Caller must hold the condition.
        """
        return any(
            runner.status in (RunnerStatus.AVAILABLE, RunnerStatus.RUNNING)
            and runner.health_score >= self._threshold
            and runner.id not in exclusions
            and runner.capabilities.contains(requirements)
            for runner in self._runners.values()
        )

    async def acquire(
        self,
        requirements: RequirementSet,
        exclusions: Collection[str] = (),
        *,
        timeout: float = 0.0,
        wait_while_saturated: bool = False,
    ) -> Runner | None:
        """Select the best eligible runner and reserve a slot on it.

        Waits up to *timeout* seconds for a runner to become eligible.
        With *wait_while_saturated*, the timeout only runs while no
        capable healthy runner exists; a runner that is merely at
        capacity is waited for until a slot frees up or the registry
        is closed.  Selection and reservation happen under the registry
        lock, so concurrent callers can never both take a runner's last
        slot.

        Returns:
            A snapshot of the reserved runner, or None on timeout or
            after :meth:`close`.
        """
        loop = asyncio.get_running_loop()
        deadline: float | None = None

        async with self._condition:
            while not self._closed:
                runner = select_runner(
                    self._runners.values(),
                    requirements,
                    exclusions=exclusions,
                    threshold=self._threshold,
                    weights=self._weights,
                    enforce_capacity=self._enforce_capacity,
                )
                if runner is not None:
                    runner.current_load += 1
                    if self._enforce_capacity and runner.current_load >= runner.capacity:
                        runner.status = RunnerStatus.RUNNING
                    return copy.deepcopy(runner)

                if wait_while_saturated and self._has_saturated_host(requirements, exclusions):
                    deadline = None
                    await self._condition.wait()
                    continue

                if deadline is None:
                    deadline = loop.time() + timeout
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return None
                try:
                    await asyncio.wait_for(self._condition.wait(), timeout=remaining)
                except TimeoutError:
                    return None
        return None

    async def release(
        self,
        runner_id: str,
        *,
        executed: int,
        failed: int,
        elapsed_ms: float,
    ) -> None:
        """Free a slot reserved by :meth:`acquire` and record the attempt."""
        async with self._condition:
            runner = self._runners[runner_id]
            runner.current_load = max(0, runner.current_load - 1)
            runner.stats.record(executed=executed, failed=failed, elapsed_ms=elapsed_ms)
            if runner.status is RunnerStatus.RUNNING:
                runner.status = RunnerStatus.AVAILABLE
            self._condition.notify_all()

    async def update_health(self, runner_id: str, score: float) -> None:
        """Store a new health score and toggle availability.

        Falling below the threshold marks the runner unhealthy even while
        it hosts shards; those shards keep running.  On recovery the
        runner becomes available again if it has a free slot.
        """
        score = min(1.0, max(0.0, score))
        async with self._condition:
            runner = self._runners[runner_id]
            runner.health_score = score
            self._health_history[runner_id].append(score)

            if score < self._threshold:
                if runner.status is not RunnerStatus.UNHEALTHY:
                    logger.warning("Runner %s is unhealthy (score: %.2f)", runner_id, score)
                runner.status = RunnerStatus.UNHEALTHY
            elif runner.status is RunnerStatus.UNHEALTHY:
                if self._enforce_capacity and runner.current_load >= runner.capacity:
                    runner.status = RunnerStatus.RUNNING
                else:
                    runner.status = RunnerStatus.AVAILABLE
                logger.info("Runner %s recovered (score: %.2f)", runner_id, score)
            self._condition.notify_all()

    async def close(self) -> None:
        """Wake every waiter and make further :meth:`acquire` calls return None."""
        async with self._condition:
            self._closed = True
            self._condition.notify_all()
