"""Test sharding: scored duration-bounded packing and round-robin splitting."""

from testfleet.sharding.planner import (
    DEFAULT_SUCCESS_RATE,
    ShardPlan,
    TestScore,
    order_tests,
    pack_shards,
    plan_shards,
    score_test,
)
from testfleet.sharding.splitter import round_robin_shards, split_into_shards

__all__ = [
    "DEFAULT_SUCCESS_RATE",
    "ShardPlan",
    "TestScore",
    "order_tests",
    "pack_shards",
    "plan_shards",
    "round_robin_shards",
    "score_test",
    "split_into_shards",
]
