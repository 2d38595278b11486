"""Execution runner model."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from testfleet.models.requirements import RequirementSet


class RunnerStatus(Enum):
    """Availability of a runner for new work."""

    AVAILABLE = "available"
    RUNNING = "running"
    UNHEALTHY = "unhealthy"


@dataclass
class RunnerStats:
    """Cumulative execution statistics of a runner."""

    total_executed: int = 0
    """Tests executed on this runner (every attempt counts)."""

    total_failed: int = 0
    """Tests that failed on this runner, whole-shard faults included."""

    attempts: int = 0
    """Shard execution attempts hosted."""

    average_duration_ms: float = 0.0
    """Mean wall-clock duration of a shard attempt."""

    def record(self, *, executed: int, failed: int, elapsed_ms: float) -> None:
        """Fold one shard attempt into the running totals."""
        self.total_executed += executed
        self.total_failed += failed
        self.attempts += 1
        self.average_duration_ms += (elapsed_ms - self.average_duration_ms) / self.attempts

    @property
    def failure_rate(self) -> float:
        if self.total_executed == 0:
            return 0.0
        return self.total_failed / self.total_executed


@dataclass
class Runner:
    """An execution environment: static attributes plus runtime state.

    Runtime state (``status``, ``current_load``, ``health_score``,
    ``stats``) is owned by :class:`~testfleet.scheduling.registry.RunnerRegistry`;
    copies handed out by the registry are snapshots.
    """

    id: str
    capacity: int
    unit_cost: float
    """Currency per minute of execution."""

    capabilities: RequirementSet = field(default_factory=RequirementSet)
    type: str = ""
    region: str = ""
    status: RunnerStatus = RunnerStatus.AVAILABLE
    current_load: int = 0
    health_score: float = 1.0
    stats: RunnerStats = field(default_factory=RunnerStats)
