"""
Fixed-Pattern Scenario Tests.
"""

import asyncio

import pytest

from chaos.errors import PreconditionError, ProxyError
from chaos.fixed import (
    FIXED_SCENARIOS,
    BriefPacketDropScenario,
    FlappingNodeScenario,
    LatencyScenario,
    MajorityNodeFailureScenario,
    PacketLossScenario,
    SingleNodeFailureScenario,
    TotalPacketDropScenario,
)
from chaos.observer import Phase
from tests.fakes import FakeProxy, wait_until

FAST = 0.01


class TestFixedScenarioCatalog:
    """Tests for names and defaults."""

    def test_names(self):
        names = [cls().name for cls in FIXED_SCENARIOS]

        assert names == [
            "brief-packet-drop",
            "total-packet-drop",
            "packet-loss",
            "latency",
            "single-node-failure",
            "majority-node-failure",
            "flapping-node",
        ]

    def test_default_timings(self):
        """Default fault and recovery times match the scenario descriptions."""
        assert BriefPacketDropScenario().durations == {Phase.TESTING: 5.0, Phase.RECOVERY: 5.0}
        assert TotalPacketDropScenario().durations == {Phase.TESTING: 10.0, Phase.RECOVERY: 10.0}
        assert PacketLossScenario().durations == {Phase.TESTING: 20.0, Phase.RECOVERY: 5.0}
        assert LatencyScenario().durations == {Phase.TESTING: 30.0, Phase.RECOVERY: 5.0}
        assert SingleNodeFailureScenario().durations == {Phase.TESTING: 15.0, Phase.RECOVERY: 10.0}
        assert MajorityNodeFailureScenario().durations == {Phase.TESTING: 10.0, Phase.RECOVERY: 15.0}
        assert FlappingNodeScenario().durations == {Phase.TESTING: 100.0, Phase.RECOVERY: 10.0}


class TestPreconditions:
    """Tests for proxy-count checks."""

    @pytest.mark.asyncio
    async def test_single_node_failure_needs_three(self, observer):
        """With two proxies nothing is disabled."""
        two = [FakeProxy("memcache1"), FakeProxy("memcache2")]
        scenario = SingleNodeFailureScenario(observer, fault_time=FAST, recovery_time=FAST)

        with pytest.raises(PreconditionError) as exc_info:
            await scenario.run(two)

        assert str(exc_info.value) == "[single-node-failure] need at least 3 proxies, got 2"
        assert all(p.calls == [] for p in two)
        assert observer.runs() == [("single-node-failure", False)]
        assert observer.phases() == []

    @pytest.mark.asyncio
    async def test_brief_drop_needs_a_proxy(self):
        with pytest.raises(PreconditionError) as exc_info:
            await BriefPacketDropScenario().run([])

        assert str(exc_info.value) == "[brief-packet-drop] no proxies available"


class TestFaults:
    """Tests for the fault each scenario injects."""

    @pytest.mark.asyncio
    async def test_brief_packet_drop(self, proxies, observer):
        """A timeout toxic is installed on the first proxy and removed."""
        scenario = BriefPacketDropScenario(observer, fault_time=FAST, recovery_time=FAST)

        await scenario.run(proxies)

        assert proxies[0].calls == [
            ("add_toxic", "brief_timeout", "timeout"),
            ("remove_toxic", "brief_timeout"),
        ]
        assert proxies[0].installed == {}
        assert proxies[1].calls == []
        assert observer.phases() == [Phase.TESTING, Phase.RECOVERY, Phase.IDLE]
        assert observer.runs() == [("brief-packet-drop", True)]

    @pytest.mark.asyncio
    async def test_total_packet_drop(self, proxies):
        """The first proxy is disabled then re-enabled."""
        scenario = TotalPacketDropScenario(fault_time=FAST, recovery_time=FAST)

        await scenario.run(proxies)

        assert proxies[0].calls == [("disable",), ("enable",)]
        assert proxies[0].enabled

    @pytest.mark.asyncio
    async def test_packet_loss_on_all_nodes(self, proxies, observer):
        """Every proxy gets a 5% bandwidth toxic for the fault window."""
        scenario = PacketLossScenario(observer, fault_time=FAST, recovery_time=FAST)
        seen = {}

        async def snapshot():
            await wait_until(lambda: all(p.installed for p in proxies))
            seen.update({p.name: list(p.installed.values()) for p in proxies})

        watcher = asyncio.ensure_future(snapshot())
        await scenario.run(proxies)
        await watcher

        for toxics in seen.values():
            assert len(toxics) == 1
            assert toxics[0].type == "bandwidth"
            assert toxics[0].toxicity == pytest.approx(0.05)
            assert toxics[0].attributes == {"rate": 0}
        assert all(p.installed == {} for p in proxies)
        assert ("toxic_value", "memcache3", "packet_loss", "rate", 0.05) in observer.events

    @pytest.mark.asyncio
    async def test_latency_on_all_nodes(self, proxies, observer):
        """Latency with jitter is applied everywhere and removed."""
        scenario = LatencyScenario(observer, fault_time=FAST, recovery_time=FAST)

        await scenario.run(proxies)

        for proxy in proxies:
            assert proxy.calls == [
                ("add_toxic", "high_latency", "latency"),
                ("remove_toxic", "high_latency"),
            ]
        assert ("toxic_value", "memcache1", "latency", "latency_ms", 500.0) in observer.events

    @pytest.mark.asyncio
    async def test_majority_failure_spares_last_node(self, proxies):
        """Two proxies go down, the third is untouched."""
        scenario = MajorityNodeFailureScenario(fault_time=FAST, recovery_time=FAST)

        await scenario.run(proxies)

        assert proxies[0].calls == [("disable",), ("enable",)]
        assert proxies[1].calls == [("disable",), ("enable",)]
        assert proxies[2].calls == []

    @pytest.mark.asyncio
    async def test_flapping_node(self, proxies):
        """The first proxy alternates down and up once per cycle."""
        scenario = FlappingNodeScenario(cycles=2, down_time=FAST, up_time=FAST, recovery_time=FAST)

        await scenario.run(proxies)

        assert proxies[0].calls == [("disable",), ("enable",), ("disable",), ("enable",)]


class TestFixedScenarioFailures:
    """Tests for failures and cancellation."""

    @pytest.mark.asyncio
    async def test_proxy_error_fails_run(self, proxies, observer):
        """A proxy API failure is recorded and re-raised."""
        proxies[0].fail_on.add("disable")
        scenario = TotalPacketDropScenario(observer, fault_time=FAST, recovery_time=FAST)

        with pytest.raises(ProxyError):
            await scenario.run(proxies)

        assert observer.runs() == [("total-packet-drop", False)]
        assert observer.phases()[-1] == Phase.IDLE

    @pytest.mark.asyncio
    async def test_cancel_leaves_cleanup_to_caller(self, proxies, observer):
        """Cancellation stops immediately without recording a run."""
        scenario = SingleNodeFailureScenario(observer, fault_time=10, recovery_time=FAST)

        task = asyncio.ensure_future(scenario.run(proxies))
        await wait_until(lambda: not proxies[0].enabled)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert not proxies[0].enabled
        assert observer.runs() == []
        assert observer.events[-1] == ("active", False)
