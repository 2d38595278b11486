"""Tests for testfleet.scheduling.registry."""

from __future__ import annotations

import asyncio

from testfleet.models.requirements import RequirementSet
from testfleet.models.runner import Runner, RunnerStatus
from testfleet.scheduling.registry import RunnerRegistry
from tests.conftest import make_runner


class TestSnapshots:
    def test_runners_are_copied(self) -> None:
        runner = make_runner("r1")
        registry = RunnerRegistry([runner])
        runner.current_load = 3
        assert registry.get("r1").current_load == 0

        snap = registry.get("r1")
        snap.health_score = 0.0
        assert registry.get("r1").health_score == 1.0

    def test_snapshot_sorted_by_id(self) -> None:
        registry = RunnerRegistry([make_runner("b"), make_runner("a")])
        assert [r.id for r in registry.snapshot()] == ["a", "b"]
        assert registry.runner_ids == ["a", "b"]

    def test_can_satisfy_ignores_health(self) -> None:
        registry = RunnerRegistry([make_runner("r", health=0.0, capabilities={"browser": True})])
        need = RequirementSet.from_mapping({"browser": True})
        assert registry.can_satisfy(need)
        assert not registry.can_satisfy(need, exclusions={"r"})
        assert not registry.can_satisfy(RequirementSet.from_mapping({"gpu": True}))

    def test_tiered_capabilities_survive_copy(self) -> None:
        runner = make_runner("r", capabilities={"memory": "4GB", "cpu": 2, "browser": True})
        registry = RunnerRegistry([runner])
        snap = registry.get("r")
        assert snap is not runner
        assert snap.capabilities == runner.capabilities
        assert snap.capabilities.tiers["memory"] == 4096


class TestAcquireRelease:
    async def test_acquire_reserves_slot(self, standard_runners: list[Runner]) -> None:
        registry = RunnerRegistry(standard_runners)
        runner = await registry.acquire(RequirementSet())
        assert runner is not None
        assert runner.id == "R2"
        assert registry.get("R2").current_load == 1

    async def test_saturated_runner_becomes_running(self) -> None:
        registry = RunnerRegistry([make_runner("r", capacity=1)])
        assert await registry.acquire(RequirementSet()) is not None
        assert registry.get("r").status is RunnerStatus.RUNNING
        assert await registry.acquire(RequirementSet(), timeout=0.0) is None

        await registry.release("r", executed=2, failed=1, elapsed_ms=500.0)
        runner = registry.get("r")
        assert runner.status is RunnerStatus.AVAILABLE
        assert runner.current_load == 0
        assert runner.stats.total_executed == 2
        assert runner.stats.total_failed == 1
        assert runner.stats.average_duration_ms == 500.0

    async def test_advisory_capacity(self) -> None:
        registry = RunnerRegistry([make_runner("r", capacity=1)], enforce_capacity=False)
        assert await registry.acquire(RequirementSet()) is not None
        assert await registry.acquire(RequirementSet()) is not None
        runner = registry.get("r")
        assert runner.current_load == 2
        assert runner.status is RunnerStatus.AVAILABLE

    async def test_waiter_woken_by_release(self) -> None:
        registry = RunnerRegistry([make_runner("r", capacity=1)])
        await registry.acquire(RequirementSet())

        waiter = asyncio.create_task(registry.acquire(RequirementSet(), timeout=5.0))
        await asyncio.sleep(0)
        assert not waiter.done()

        await registry.release("r", executed=1, failed=0, elapsed_ms=10.0)
        runner = await asyncio.wait_for(waiter, timeout=1.0)
        assert runner is not None
        assert runner.id == "r"

    async def test_waiter_times_out(self) -> None:
        registry = RunnerRegistry([make_runner("r", health=0.1)])
        assert await registry.acquire(RequirementSet(), timeout=0.05) is None

    async def test_close_wakes_waiters(self) -> None:
        registry = RunnerRegistry([make_runner("r", health=0.1)])
        waiter = asyncio.create_task(registry.acquire(RequirementSet(), timeout=10.0))
        await asyncio.sleep(0)
        await registry.close()
        assert await asyncio.wait_for(waiter, timeout=1.0) is None
        assert await registry.acquire(RequirementSet()) is None

    async def test_waits_past_timeout_while_runner_is_saturated(self) -> None:
        registry = RunnerRegistry([make_runner("r", capacity=1)])
        await registry.acquire(RequirementSet())

        waiter = asyncio.create_task(
            registry.acquire(RequirementSet(), timeout=0.01, wait_while_saturated=True)
        )
        await asyncio.sleep(0.05)
        assert not waiter.done()

        await registry.release("r", executed=1, failed=0, elapsed_ms=50.0)
        runner = await asyncio.wait_for(waiter, timeout=1.0)
        assert runner is not None
        assert runner.id == "r"

    async def test_saturated_runner_turning_unhealthy_starts_timeout(self) -> None:
        registry = RunnerRegistry([make_runner("r", capacity=1)])
        await registry.acquire(RequirementSet())

        waiter = asyncio.create_task(
            registry.acquire(RequirementSet(), timeout=0.02, wait_while_saturated=True)
        )
        await asyncio.sleep(0)
        await registry.update_health("r", 0.1)
        assert await asyncio.wait_for(waiter, timeout=1.0) is None

    async def test_saturated_excluded_runner_is_not_waited_for(self) -> None:
        registry = RunnerRegistry([make_runner("r", capacity=1)])
        await registry.acquire(RequirementSet())
        result = await registry.acquire(
            RequirementSet(), {"r"}, timeout=0.02, wait_while_saturated=True
        )
        assert result is None

    async def test_concurrent_acquires_never_oversubscribe(self) -> None:
        registry = RunnerRegistry([make_runner("a", capacity=2), make_runner("b", capacity=1)])
        results = await asyncio.gather(
            *(registry.acquire(RequirementSet(), timeout=0.0) for _ in range(5))
        )
        granted = [r.id for r in results if r is not None]
        assert sorted(granted) == ["a", "a", "b"]
        assert registry.get("a").current_load == 2
        assert registry.get("b").current_load == 1


class TestUpdateHealth:
    async def test_below_threshold_marks_unhealthy(self) -> None:
        registry = RunnerRegistry([make_runner("r")], unhealthy_threshold=0.5)
        await registry.update_health("r", 0.3)
        runner = registry.get("r")
        assert runner.status is RunnerStatus.UNHEALTHY
        assert runner.health_score == 0.3
        assert await registry.acquire(RequirementSet()) is None

    async def test_recovery_restores_availability(self) -> None:
        registry = RunnerRegistry([make_runner("r")], unhealthy_threshold=0.5)
        await registry.update_health("r", 0.2)
        await registry.update_health("r", 0.9)
        assert registry.get("r").status is RunnerStatus.AVAILABLE
        assert registry.health_history() == {"r": [1.0, 0.2, 0.9]}

    async def test_recovery_while_saturated_stays_running(self) -> None:
        registry = RunnerRegistry([make_runner("r", capacity=1)])
        await registry.acquire(RequirementSet())
        await registry.update_health("r", 0.1)
        await registry.update_health("r", 0.8)
        assert registry.get("r").status is RunnerStatus.RUNNING

    async def test_score_is_clamped(self) -> None:
        registry = RunnerRegistry([make_runner("r")])
        await registry.update_health("r", 1.7)
        assert registry.get("r").health_score == 1.0
        await registry.update_health("r", -0.5)
        assert registry.get("r").health_score == 0.0

    async def test_release_keeps_unhealthy(self) -> None:
        registry = RunnerRegistry([make_runner("r", capacity=2)])
        await registry.acquire(RequirementSet())
        await registry.update_health("r", 0.1)
        await registry.release("r", executed=1, failed=0, elapsed_ms=1.0)
        assert registry.get("r").status is RunnerStatus.UNHEALTHY
