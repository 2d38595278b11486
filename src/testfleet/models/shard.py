"""Shard model and lifecycle states."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from testfleet.models.requirements import RequirementSet, merge_all
from testfleet.models.test_case import Priority

if TYPE_CHECKING:
    from testfleet.models.test_case import TestCase

# Dispatch cost estimate
_BASE_COST_PER_MINUTE = 0.01
_REQUIREMENT_COST_FACTOR = 0.5
_MS_PER_MINUTE = 60_000


class ShardStatus(Enum):
    """Lifecycle: PENDING -> ASSIGNED -> RUNNING -> COMPLETED | FAILED."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {ShardStatus.COMPLETED, ShardStatus.FAILED}


@dataclass
class Shard:
    """A group of tests scheduled and executed as a unit.

    Membership, duration, requirements and priority are fixed at
    creation.  Only the state-machine fields (``status``,
    ``retry_count``, ``runner_id``, ``excluded_runners``, ``error``)
    change, and only the dispatch executor changes them.
    """

    id: str
    tests: tuple[TestCase, ...]
    estimated_duration_ms: float
    requirements: RequirementSet
    priority: Priority
    status: ShardStatus = ShardStatus.PENDING
    runner_id: str | None = None
    retry_count: int = 0
    excluded_runners: set[str] = field(default_factory=set)
    error: Exception | None = None

    @classmethod
    def from_tests(cls, shard_id: str, tests: list[TestCase]) -> Shard:
        """Close a shard over *tests*: sum durations, merge requirements, max priority."""
        if tests:
            priority = Priority.from_score(max(t.priority.value_score for t in tests))
        else:
            priority = Priority.LOW
        return cls(
            id=shard_id,
            tests=tuple(tests),
            estimated_duration_ms=sum(t.estimated_duration_ms for t in tests),
            requirements=merge_all(t.requirements for t in tests),
            priority=priority,
        )

    @property
    def test_ids(self) -> list[str]:
        return [t.id for t in self.tests]

    @property
    def estimated_cost(self) -> float:
        """Rough cost estimate used to order dispatch (cheaper first)."""
        minutes = self.estimated_duration_ms / _MS_PER_MINUTE
        # Flags declared false are never stored, so only present requirements count.
        surcharge = 1 + len(self.requirements) * _REQUIREMENT_COST_FACTOR
        return _BASE_COST_PER_MINUTE * minutes * surcharge
