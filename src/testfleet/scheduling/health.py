"""Periodic runner health monitoring."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from testfleet.scheduling.backends import HealthProbe
    from testfleet.scheduling.registry import RunnerRegistry

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Probes every runner on a fixed interval and writes scores to the registry.

    Runs as its own asyncio task alongside the dispatch workers; all
    writes go through :meth:`RunnerRegistry.update_health`.
    """

    def __init__(
        self,
        registry: RunnerRegistry,
        probe: HealthProbe,
        *,
        interval_ms: float = 30_000.0,
    ) -> None:
        self._registry = registry
        self._probe = probe
        self._interval = interval_ms / 1000.0
        self._task: asyncio.Task[None] | None = None
        self.checks_completed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_once(self) -> None:
        """Probe every runner once.

        A probe that raises leaves that runner's previous score in place.
        """
        for runner in self._registry.snapshot():
            try:
                score = await self._probe.probe(runner)
            except Exception as exc:
                logger.warning("Health probe failed for runner %s: %s", runner.id, exc)
                continue
            await self._registry.update_health(runner.id, score)
        self.checks_completed += 1

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.check_once()

    def start(self) -> None:
        """Start the periodic task on the running loop (first check after one interval)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="testfleet-health-monitor")
        logger.info("Health monitoring started (interval %.1fs)", self._interval)

    async def stop(self) -> None:
        """Cancel the periodic task and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Health monitoring stopped")
