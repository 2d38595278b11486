"""Scored test ordering and duration-bounded shard packing.

Tests are scored by a weighted heuristic (fast, high-priority, reliable,
simple tests first), sorted highest-score first, and greedily packed into
shards whose estimated duration stays under the configured target.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from testfleet.config import PlannerWeights
from testfleet.models.shard import Shard

if TYPE_CHECKING:
    from collections.abc import Mapping

    from testfleet.models.test_case import TestCase

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────

DEFAULT_SUCCESS_RATE = 1.0
"""Historical success rate assumed for tests without recorded history."""

# ── Data models ───────────────────────────────────────────────────


@dataclass
class TestScore:
    """Planner score for a single test."""

    __test__ = False

    test_id: str
    """Identifier of the scored test."""

    score: float = 0.0
    """Composite ordering score (higher runs earlier)."""

    components: dict[str, float] = field(default_factory=dict)
    """Per-term contributions, for debugging the ordering."""


@dataclass
class ShardPlan:
    """Ordered shards produced by the planner."""

    shards: list[Shard] = field(default_factory=list)
    """Shards in planner order."""

    scores: list[TestScore] = field(default_factory=list)
    """Test scores, same order the tests were packed in."""


# ── Public API ────────────────────────────────────────────────────


def score_test(
    test: TestCase,
    weights: PlannerWeights,
    success_rate: float = DEFAULT_SUCCESS_RATE,
) -> TestScore:
    """Score one test.

    ``duration·(Dmax - d)/Dmax + priority·p + reliability·r - complexity·|req|``
    """
    components = {
        "duration": weights.duration
        * (weights.max_duration_ms - test.estimated_duration_ms)
        / weights.max_duration_ms,
        "priority": weights.priority * test.priority.value_score,
        "reliability": weights.reliability * success_rate,
        "complexity": -weights.complexity * len(test.requirements),
    }
    return TestScore(test_id=test.id, score=sum(components.values()), components=components)


def order_tests(
    tests: list[TestCase],
    weights: PlannerWeights | None = None,
    success_history: Mapping[str, float] | None = None,
) -> tuple[list[TestCase], list[TestScore]]:
    """Sort tests by descending score.

    The sort is stable, so tests with equal scores keep catalog order.

    Returns:
        The sorted tests and their scores in the same order.
    """
    weights = weights or PlannerWeights()
    history = success_history or {}

    scored = [
        (test, score_test(test, weights, history.get(test.id, DEFAULT_SUCCESS_RATE)))
        for test in tests
    ]
    scored.sort(key=lambda pair: pair[1].score, reverse=True)
    return [test for test, _ in scored], [score for _, score in scored]


def pack_shards(tests: list[TestCase], target_duration_ms: float) -> list[Shard]:
    """Greedily pack *tests*, in order, into duration-bounded shards.

    A test that would push a non-empty shard above *target_duration_ms*
    closes that shard and starts the next one.  An empty shard always
    accepts its first test, so a single test longer than the target
    forms a shard on its own.
    """
    shards: list[Shard] = []
    current: list[TestCase] = []
    current_duration = 0.0

    for test in tests:
        if current and current_duration + test.estimated_duration_ms > target_duration_ms:
            shards.append(Shard.from_tests(f"shard-{len(shards)}", current))
            current = []
            current_duration = 0.0
        current.append(test)
        current_duration += test.estimated_duration_ms

    if current:
        shards.append(Shard.from_tests(f"shard-{len(shards)}", current))

    return shards


def plan_shards(
    tests: list[TestCase],
    target_duration_ms: float,
    weights: PlannerWeights | None = None,
    success_history: Mapping[str, float] | None = None,
) -> ShardPlan:
    """Order *tests* by score and pack them into shards.

    An empty catalog produces an empty plan.
    """
    ordered, scores = order_tests(tests, weights, success_history)
    shards = pack_shards(ordered, target_duration_ms)
    logger.info("Planned %d shards from %d tests", len(shards), len(tests))
    return ShardPlan(shards=shards, scores=scores)
