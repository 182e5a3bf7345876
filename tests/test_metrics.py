"""
Scenario Metrics Tests.
"""

import pytest

from chaos.observer import CompositeObserver, Phase
from chaos.suites import PacketLossScenarioSuite
from monitoring import ScenarioMetrics
from monitoring.scenario_metrics import (
    SCENARIO_ACTIVE,
    SCENARIO_PHASE,
    SCENARIO_PHASE_DURATION,
    SCENARIO_RUNS,
    TOXIC_ACTIVE,
    TOXIC_VALUE,
)
from tests.fakes import RecordingObserver

FAST = 0.01


class TestScenarioMetrics:
    """Tests for the Prometheus observer."""

    def test_phase_gauge(self):
        metrics = ScenarioMetrics()

        metrics.phase_changed("latency", Phase.TESTING)

        assert metrics.sample(SCENARIO_PHASE, scenario="latency") == 2

    def test_phase_durations(self):
        metrics = ScenarioMetrics()

        metrics.phase_durations("latency", {Phase.STABILIZATION: 30, Phase.RECOVERY: 60})

        assert metrics.sample(SCENARIO_PHASE_DURATION, scenario="latency", phase="stabilization") == 30
        assert metrics.sample(SCENARIO_PHASE_DURATION, scenario="latency", phase="recovery") == 60

    def test_run_counter_by_status(self):
        metrics = ScenarioMetrics()

        metrics.run_recorded("latency", True)
        metrics.run_recorded("latency", True)
        metrics.run_recorded("latency", False)

        assert metrics.sample(SCENARIO_RUNS, scenario="latency", status="success") == 2
        assert metrics.sample(SCENARIO_RUNS, scenario="latency", status="failed") == 1

    def test_toxic_gauges(self):
        metrics = ScenarioMetrics()

        metrics.toxic_active("memcache1", "packet_loss", True)
        metrics.toxic_value("memcache1", "packet_loss", "rate", 0.2)

        assert metrics.sample(TOXIC_ACTIVE, server="memcache1", type="packet_loss") == 1
        assert metrics.sample(TOXIC_VALUE, server="memcache1", type="packet_loss", param="rate") == 0.2

    def test_instances_do_not_collide(self):
        """Each instance has its own registry."""
        first, second = ScenarioMetrics(), ScenarioMetrics()

        first.scenario_active(True)

        assert first.sample(SCENARIO_ACTIVE) == 1
        assert second.sample(SCENARIO_ACTIVE) == 0

    def test_unknown_metric(self):
        with pytest.raises(KeyError):
            ScenarioMetrics().get("nope")

    def test_exposition(self):
        metrics = ScenarioMetrics()
        metrics.phase_changed("latency", Phase.RECOVERY)

        output = metrics.generate_metrics().decode()

        assert 'scenario_phase{scenario="latency"} 3.0' in output
        assert "# TYPE scenario_runs" in output
        assert "text/plain" in metrics.get_content_type()

    @pytest.mark.asyncio
    async def test_full_run(self, proxies):
        """A completed run leaves the scenario idle with one success counted."""
        metrics = ScenarioMetrics()
        recorder = RecordingObserver()
        suite = PacketLossScenarioSuite(CompositeObserver([metrics, recorder]), rates=[0.5],
                                        testing_time=FAST, stabilization_time=FAST,
                                        recovery_time=FAST)

        await suite.create_scenarios()[0].run(proxies)

        assert metrics.sample(SCENARIO_RUNS, scenario="packet-loss-50-pct", status="success") == 1
        assert metrics.sample(SCENARIO_PHASE, scenario="packet-loss-50-pct") == 0
        assert metrics.sample(SCENARIO_ACTIVE) == 0
        assert metrics.sample(TOXIC_ACTIVE, server="memcache1", type="packet_loss") == 0
        assert metrics.sample(TOXIC_VALUE, server="memcache1", type="packet_loss", param="rate") == 0
        assert ("toxic_value", "memcache1", "packet_loss", "rate", 0.5) in recorder.events
