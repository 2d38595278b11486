"""Round-robin shard splitting."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from testfleet.models.shard import Shard

if TYPE_CHECKING:
    from testfleet.models.test_case import TestCase

_TESTS_PER_SHARD = 10


def split_into_shards(
    tests: list[TestCase],
    shard_index: int,
    shard_count: int,
) -> list[TestCase]:
    """Split tests into shards using round-robin assignment.

    Args:
        tests: Ordered list of all tests.
        shard_index: Zero-based index of this shard.
        shard_count: Total number of shards.

    Returns:
        Subset of tests assigned to this shard.

    Raises:
        ValueError: If shard_index or shard_count is invalid.
    """
    if shard_count < 1:
        msg = f"shard_count must be >= 1, got {shard_count}"
        raise ValueError(msg)
    if shard_index < 0 or shard_index >= shard_count:
        msg = f"shard_index must be in [0, {shard_count}), got {shard_index}"
        raise ValueError(msg)
    return [t for i, t in enumerate(tests) if i % shard_count == shard_index]


def round_robin_shards(tests: list[TestCase], runner_count: int) -> list[Shard]:
    """Build ``min(runner_count, ceil(len(tests) / 10))`` round-robin shards.

    Used when scored packing is switched off.  Always yields at least one
    shard for a non-empty catalog.
    """
    if not tests:
        return []
    shard_count = max(1, min(runner_count, math.ceil(len(tests) / _TESTS_PER_SHARD)))
    return [
        Shard.from_tests(f"shard-{i}", split_into_shards(tests, i, shard_count))
        for i in range(shard_count)
    ]
