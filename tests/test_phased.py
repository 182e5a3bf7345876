"""
Phased Scenario Tests.

Covers the stabilize / test / recover timeline, failure handling and
cancellation of PhasedScenario.
"""

import asyncio
import logging

import pytest

from chaos.errors import PerturbationError, ScenarioError
from chaos.observer import Phase
from chaos.phased import (
    DEFAULT_RECOVERY_TIME,
    DEFAULT_STABILIZATION_TIME,
    PhasedScenario,
    PhasedScenarioConfig,
)
from chaos.proxy import CleanupResult
from tests.fakes import wait_until

FAST = 0.01


class Perturbation:
    """Counts apply/remove calls and optionally fails them."""

    def __init__(self, fail_apply: bool = False, fail_remove: bool = False, block_apply: bool = False):
        self.fail_apply = fail_apply
        self.fail_remove = fail_remove
        self.block_apply = block_apply
        self.applied = 0
        self.removed = 0

    async def apply(self, proxies):
        self.applied += 1
        if self.block_apply:
            await asyncio.sleep(10)
        if self.fail_apply:
            raise RuntimeError("boom")

    async def remove(self, proxies):
        self.removed += 1
        if self.fail_remove:
            raise RuntimeError("stuck")


def make_scenario(perturbation, observer=None, testing_time=FAST, cleanup=None, **kwargs):
    config = PhasedScenarioConfig(
        name="test-scenario",
        description="test",
        testing_time=testing_time,
        stabilization_time=kwargs.pop("stabilization_time", FAST),
        recovery_time=kwargs.pop("recovery_time", FAST),
        apply=perturbation.apply,
        remove=perturbation.remove,
    )
    if cleanup is None:
        return PhasedScenario(config, observer)
    return PhasedScenario(config, observer, cleanup=cleanup)


class TestPhasedScenarioConfig:
    """Tests for construction and defaults."""

    def test_missing_testing_time_rejected(self):
        """A zero testing time is a configuration error."""
        with pytest.raises(ValueError):
            make_scenario(Perturbation(), testing_time=0)

    def test_default_durations(self):
        """Unset stabilization and recovery fall back to 30s and 60s."""
        perturbation = Perturbation()
        scenario = PhasedScenario(PhasedScenarioConfig(
            name="defaults", description="", testing_time=5,
            apply=perturbation.apply, remove=perturbation.remove,
        ))

        assert scenario.stabilization_time == DEFAULT_STABILIZATION_TIME == 30.0
        assert scenario.recovery_time == DEFAULT_RECOVERY_TIME == 60.0
        assert scenario.durations == {
            Phase.STABILIZATION: 30.0,
            Phase.TESTING: 5,
            Phase.RECOVERY: 60.0,
        }
        assert scenario.phase == Phase.IDLE


class TestPhasedScenarioRun:
    """Tests for a full run."""

    @pytest.mark.asyncio
    async def test_phases_in_order(self, proxies, observer):
        """A successful run walks every phase once and ends idle."""
        perturbation = Perturbation()
        scenario = make_scenario(perturbation, observer)

        await scenario.run(proxies)

        assert observer.phases() == [Phase.STABILIZATION, Phase.TESTING, Phase.RECOVERY, Phase.IDLE]
        assert perturbation.applied == 1
        assert perturbation.removed == 1
        assert observer.runs() == [("test-scenario", True)]
        assert scenario.phase == Phase.IDLE
        assert not scenario.running

    @pytest.mark.asyncio
    async def test_reports_active_and_durations(self, proxies, observer):
        """The run is bracketed by scenario_active events."""
        scenario = make_scenario(Perturbation(), observer)

        await scenario.run(proxies)

        active = [e[1] for e in observer.events if e[0] == "active"]
        assert active == [True, False]
        durations = [e for e in observer.events if e[0] == "durations"]
        assert durations[0][2][Phase.TESTING] == FAST

    @pytest.mark.asyncio
    async def test_resets_toxic_metrics_before_start(self, proxies, observer):
        """Toxic gauges are zeroed for every proxy before stabilization."""
        scenario = make_scenario(Perturbation(), observer)

        await scenario.run(proxies)

        first_phase = next(i for i, e in enumerate(observer.events) if e[0] == "phase")
        resets = {e[1] for e in observer.events[:first_phase] if e[0] == "toxic_active"}
        assert resets == {p.name for p in proxies}

    @pytest.mark.asyncio
    async def test_cleans_before_and_after_testing(self, proxies):
        """The proxy set is force-cleaned at start and after removal."""
        calls = []

        async def cleanup(target):
            calls.append(len(target))
            return CleanupResult()

        await make_scenario(Perturbation(), cleanup=cleanup).run(proxies)

        assert calls == [3, 3]

    @pytest.mark.asyncio
    async def test_cleanup_warnings_do_not_fail_run(self, proxies, observer):
        """A proxy that cannot be cleaned only produces warnings."""
        proxies[0].fail_on.add("toxics")

        await make_scenario(Perturbation(), observer).run(proxies)

        assert observer.runs() == [("test-scenario", True)]


class TestPhasedScenarioFailures:
    """Tests for apply/remove failures."""

    @pytest.mark.asyncio
    async def test_apply_failure_skips_remove(self, proxies, observer):
        """A failed apply ends the run without calling remove."""
        perturbation = Perturbation(fail_apply=True)
        scenario = make_scenario(perturbation, observer)

        with pytest.raises(PerturbationError) as exc_info:
            await scenario.run(proxies)

        assert exc_info.value.stage == "apply"
        assert "failed to apply perturbation: boom" in str(exc_info.value)
        assert perturbation.removed == 0
        assert observer.runs() == [("test-scenario", False)]
        assert Phase.RECOVERY not in observer.phases()
        assert scenario.phase == Phase.IDLE

    @pytest.mark.asyncio
    async def test_remove_failure_fails_run(self, proxies, observer):
        """A failed remove is reported and skips recovery."""
        perturbation = Perturbation(fail_remove=True)
        scenario = make_scenario(perturbation, observer)

        with pytest.raises(PerturbationError) as exc_info:
            await scenario.run(proxies)

        assert exc_info.value.stage == "remove"
        assert perturbation.removed == 1
        assert observer.runs() == [("test-scenario", False)]
        assert observer.phases()[-1] == Phase.IDLE

    @pytest.mark.asyncio
    async def test_concurrent_run_rejected(self, proxies):
        """The same instance cannot run twice at once."""
        scenario = make_scenario(Perturbation(), testing_time=10)
        task = asyncio.ensure_future(scenario.run(proxies))
        await wait_until(lambda: scenario.running)

        with pytest.raises(ScenarioError):
            await scenario.run(proxies)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class TestPhasedScenarioCancellation:
    """Tests for cancellation at each phase."""

    @pytest.mark.asyncio
    async def test_cancel_during_testing_removes_once(self, proxies, observer):
        """Cancelling mid-test removes the perturbation exactly once."""
        perturbation = Perturbation()
        scenario = make_scenario(perturbation, observer, testing_time=10)

        task = asyncio.ensure_future(scenario.run(proxies))
        await wait_until(lambda: perturbation.applied == 1)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert perturbation.removed == 1
        assert observer.runs() == []
        assert observer.phases()[-1] == Phase.IDLE
        assert Phase.RECOVERY not in observer.phases()
        assert not scenario.running

    @pytest.mark.asyncio
    async def test_cancel_during_apply_still_removes(self, proxies):
        """Cancellation while apply is in flight also triggers remove."""
        perturbation = Perturbation(block_apply=True)
        scenario = make_scenario(perturbation)

        task = asyncio.ensure_future(scenario.run(proxies))
        await wait_until(lambda: perturbation.applied == 1)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert perturbation.removed == 1

    @pytest.mark.asyncio
    async def test_cancel_during_stabilization_never_applies(self, proxies, observer):
        """Nothing is applied or removed when stopped before testing."""
        perturbation = Perturbation()
        scenario = make_scenario(perturbation, observer, stabilization_time=10)

        task = asyncio.ensure_future(scenario.run(proxies))
        await wait_until(lambda: scenario.phase == Phase.STABILIZATION)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert perturbation.applied == 0
        assert perturbation.removed == 0
        assert observer.phases() == [Phase.STABILIZATION, Phase.IDLE]

    @pytest.mark.asyncio
    async def test_remove_error_on_cancel_is_swallowed(self, proxies, caplog):
        """A failing remove during cancellation is logged, not raised."""
        perturbation = Perturbation(fail_remove=True)
        scenario = make_scenario(perturbation, testing_time=10)

        task = asyncio.ensure_future(scenario.run(proxies))
        await wait_until(lambda: perturbation.applied == 1)
        with caplog.at_level(logging.WARNING, logger="chaos.phased"):
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert perturbation.removed == 1
        assert "after cancellation, discarding" in caplog.text

    @pytest.mark.asyncio
    async def test_can_run_again_after_cancel(self, proxies, observer):
        """A cancelled scenario starts over cleanly on the next run."""
        perturbation = Perturbation()
        scenario = make_scenario(perturbation, observer, testing_time=10)

        task = asyncio.ensure_future(scenario.run(proxies))
        await wait_until(lambda: perturbation.applied == 1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        scenario.testing_time = FAST
        await scenario.run(proxies)

        assert perturbation.applied == 2
        assert perturbation.removed == 2
        assert observer.runs() == [("test-scenario", True)]
