"""Interfaces of the collaborators the scheduler drives."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from testfleet.models.runner import Runner
    from testfleet.models.shard import Shard
    from testfleet.models.summary import RunSummary
    from testfleet.models.test_case import TestOutcome


class ExecutionBackend(ABC):
    """Runs a shard on a concrete runner."""

    @abstractmethod
    async def execute(self, shard: Shard, runner: Runner) -> list[TestOutcome]:
        """Execute every test of *shard* on *runner*.

        Must honour task cancellation.  Raising any exception fails the
        whole shard; per-test failures are reported as outcomes instead.

        Args:
            shard: The shard to run (``shard.runner_id`` is *runner*'s id).
            runner: Snapshot of the runner hosting the attempt.

        Returns:
            One outcome per test of the shard.
        """


class HealthProbe(ABC):
    """Reports the current health of a runner."""

    @abstractmethod
    async def probe(self, runner: Runner) -> float:
        """Return a health score between 0.0 and 1.0 for *runner*."""


class ResultsSink(ABC):
    """Persists the final run summary."""

    @abstractmethod
    def write(self, summary: RunSummary) -> None:
        """Store *summary*."""
