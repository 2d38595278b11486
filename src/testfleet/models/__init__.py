"""Data models for testfleet."""

from testfleet.models.requirements import RequirementSet, merge_all
from testfleet.models.runner import Runner, RunnerStats, RunnerStatus
from testfleet.models.shard import Shard, ShardStatus
from testfleet.models.summary import (
    RunInsights,
    RunnerPick,
    RunnerUtilization,
    RunSummary,
    ShardErrorRecord,
)
from testfleet.models.test_case import Priority, TestCase, TestKind, TestOutcome

__all__ = [
    "Priority",
    "RequirementSet",
    "RunInsights",
    "RunSummary",
    "Runner",
    "RunnerPick",
    "RunnerStats",
    "RunnerStatus",
    "RunnerUtilization",
    "Shard",
    "ShardErrorRecord",
    "ShardStatus",
    "TestCase",
    "TestKind",
    "TestOutcome",
    "merge_all",
]
