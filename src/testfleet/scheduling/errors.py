"""Scheduler error taxonomy.

Only :class:`ConfigError` escapes :func:`testfleet.coordinator.run`; the
others are recorded against the shard they happened to.
"""

from __future__ import annotations


class SchedulerError(Exception):
    """Base exception for scheduler errors."""


class ConfigError(SchedulerError):
    """Raised before scheduling starts when the configuration is unusable."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class NoEligibleRunnerError(SchedulerError):
    """No known, healthy, non-excluded runner can host the shard."""

    def __init__(self, shard_id: str, reason: str) -> None:
        super().__init__(f"No eligible runner for shard {shard_id}: {reason}")
        self.shard_id = shard_id


class ExecutionFault(SchedulerError):  # noqa: N818
    """The execution backend failed a whole shard."""

    def __init__(self, shard_id: str, runner_id: str, message: str) -> None:
        super().__init__(f"Shard {shard_id} failed on runner {runner_id}: {message}")
        self.shard_id = shard_id
        self.runner_id = runner_id


class RetryExhaustedError(SchedulerError):
    """The shard faulted on its last allowed attempt."""

    def __init__(self, shard_id: str, attempts: int) -> None:
        super().__init__(f"Shard {shard_id} exhausted retries after {attempts} attempts")
        self.shard_id = shard_id
        self.attempts = attempts


class RunAborted(SchedulerError):  # noqa: N818
    """The run was cancelled or hit its deadline before the shard finished."""
