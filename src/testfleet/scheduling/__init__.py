"""Runner registry, selection, dispatch, health monitoring and aggregation."""

from testfleet.scheduling.aggregator import Aggregator, ShardAttempt
from testfleet.scheduling.backends import ExecutionBackend, HealthProbe, ResultsSink
from testfleet.scheduling.errors import (
    ConfigError,
    ExecutionFault,
    NoEligibleRunnerError,
    RetryExhaustedError,
    RunAborted,
    SchedulerError,
)
from testfleet.scheduling.executor import DispatchExecutor, order_for_dispatch
from testfleet.scheduling.health import HealthMonitor
from testfleet.scheduling.registry import RunnerRegistry
from testfleet.scheduling.selector import is_eligible, runner_score, select_runner

__all__ = [
    "Aggregator",
    "ConfigError",
    "DispatchExecutor",
    "ExecutionBackend",
    "ExecutionFault",
    "HealthMonitor",
    "HealthProbe",
    "NoEligibleRunnerError",
    "ResultsSink",
    "RetryExhaustedError",
    "RunAborted",
    "RunnerRegistry",
    "SchedulerError",
    "ShardAttempt",
    "is_eligible",
    "order_for_dispatch",
    "runner_score",
    "select_runner",
]
