"""Deterministic runner selection for a shard."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from testfleet.config import SelectorWeights
from testfleet.models.runner import RunnerStatus

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable

    from testfleet.models.requirements import RequirementSet
    from testfleet.models.runner import Runner

logger = logging.getLogger(__name__)


def runner_score(runner: Runner, weights: SelectorWeights | None = None) -> float:
    """Return ``(capacity / unit_cost) * health_score`` under the given exponents."""
    w = weights or SelectorWeights()
    return (
        runner.capacity**w.capacity / runner.unit_cost**w.cost
    ) * runner.health_score**w.health


def is_eligible(
    runner: Runner,
    requirements: RequirementSet,
    *,
    exclusions: Collection[str] = (),
    threshold: float = 0.5,
    enforce_capacity: bool = True,
) -> bool:
    """Return True if *runner* may host a shard with *requirements* right now."""
    if runner.status is not RunnerStatus.AVAILABLE:
        return False
    if runner.health_score < threshold:
        return False
    if runner.id in exclusions:
        return False
    if enforce_capacity and runner.current_load >= runner.capacity:
        return False
    return runner.capabilities.contains(requirements)


def select_runner(
    runners: Iterable[Runner],
    requirements: RequirementSet,
    *,
    exclusions: Collection[str] = (),
    threshold: float = 0.5,
    weights: SelectorWeights | None = None,
    enforce_capacity: bool = True,
) -> Runner | None:
    """Pick the best eligible runner, or None when nothing is eligible.

    Highest score wins; ties go to the lowest current load, then to the
    lowest id, so the same registry state always yields the same runner.
    """
    eligible = [
        r
        for r in runners
        if is_eligible(
            r,
            requirements,
            exclusions=exclusions,
            threshold=threshold,
            enforce_capacity=enforce_capacity,
        )
    ]
    if not eligible:
        return None

    best = min(eligible, key=lambda r: (-runner_score(r, weights), r.current_load, r.id))
    logger.debug(
        "Selected runner %s (score %.2f) from %d eligible",
        best.id,
        runner_score(best, weights),
        len(eligible),
    )
    return best
