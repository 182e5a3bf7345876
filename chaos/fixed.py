"""
Fixed-pattern scenarios.

Hand-timed scenarios that toggle proxies or install toxics directly,
without a stabilization phase. They report ``TESTING`` while the fault is
in place and ``RECOVERY`` while waiting afterwards. On cancellation they
return immediately and leave the proxy set to the orchestrator's cleanup.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from .observer import (
    PARAM_LATENCY_MS,
    PARAM_RATE,
    TOXIC_LATENCY,
    TOXIC_PACKET_LOSS,
    Phase,
    ScenarioObserver,
)
from .proxy import DOWNSTREAM, ProxyHandle, Toxic
from .scenario import Scenario, require_proxies

logger = logging.getLogger(__name__)


class FixedScenario(Scenario):
    """
    Base class for hand-timed scenarios.

    Subclasses set ``scenario_name``, ``scenario_description`` and
    ``min_proxies`` and implement ``_execute``. The base class checks the
    proxy count before anything is touched and reports the run outcome.
    """

    scenario_name = ""
    scenario_description = ""
    min_proxies = 1

    def __init__(self, observer: Optional[ScenarioObserver] = None):
        self.observer = observer or ScenarioObserver()
        self.phase = Phase.IDLE

    @property
    def name(self) -> str:
        return self.scenario_name

    @property
    def description(self) -> str:
        return self.scenario_description

    @property
    def durations(self) -> Dict[Phase, float]:
        return {}

    async def run(self, proxies: Sequence[ProxyHandle]) -> None:
        try:
            require_proxies(self.name, proxies, self.min_proxies)
        except Exception:
            self.observer.run_recorded(self.name, False)
            raise

        self.observer.scenario_active(True)
        self.observer.phase_durations(self.name, self.durations)
        try:
            await self._execute(proxies)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Scenario {self.name}] Failed: {e}")
            self.observer.run_recorded(self.name, False)
            raise
        else:
            self.observer.run_recorded(self.name, True)
        finally:
            self._enter(Phase.IDLE)
            self.observer.scenario_active(False)

    async def _execute(self, proxies: Sequence[ProxyHandle]) -> None:
        raise NotImplementedError

    def _enter(self, phase: Phase) -> None:
        self.phase = phase
        self.observer.phase_changed(self.name, phase)

    async def _recover(self, seconds: float) -> None:
        logger.info(f"[Scenario {self.name}] Allowing {seconds}s recovery time")
        self._enter(Phase.RECOVERY)
        await asyncio.sleep(seconds)


class BriefPacketDropScenario(FixedScenario):
    """Brief network glitch: connections time out on one node."""

    scenario_name = "brief-packet-drop"
    scenario_description = "Brief packet drop (100ms) on one node - simulates transient network glitch"

    def __init__(self, observer: Optional[ScenarioObserver] = None,
                 timeout_ms: int = 100, fault_time: float = 5.0, recovery_time: float = 5.0):
        super().__init__(observer)
        self.timeout_ms = timeout_ms
        self.fault_time = fault_time
        self.recovery_time = recovery_time

    @property
    def durations(self) -> Dict[Phase, float]:
        return {Phase.TESTING: self.fault_time, Phase.RECOVERY: self.recovery_time}

    async def _execute(self, proxies: Sequence[ProxyHandle]) -> None:
        proxy = proxies[0]
        logger.info(f"[Scenario {self.name}] Injecting brief packet drop "
                    f"({self.timeout_ms}ms timeout) on {proxy.name}")

        self._enter(Phase.TESTING)
        toxic = await proxy.add_toxic("brief_timeout", "timeout", DOWNSTREAM, 1.0,
                                      {"timeout": self.timeout_ms})
        await asyncio.sleep(self.fault_time)

        logger.info(f"[Scenario {self.name}] Removing toxic from {proxy.name}")
        await proxy.remove_toxic(toxic.name)

        await self._recover(self.recovery_time)


class TotalPacketDropScenario(FixedScenario):
    """Complete partition of one node."""

    scenario_name = "total-packet-drop"
    scenario_description = "Total packet drop (10s) on one node - simulates complete network partition"

    def __init__(self, observer: Optional[ScenarioObserver] = None,
                 fault_time: float = 10.0, recovery_time: float = 10.0):
        super().__init__(observer)
        self.fault_time = fault_time
        self.recovery_time = recovery_time

    @property
    def durations(self) -> Dict[Phase, float]:
        return {Phase.TESTING: self.fault_time, Phase.RECOVERY: self.recovery_time}

    async def _execute(self, proxies: Sequence[ProxyHandle]) -> None:
        proxy = proxies[0]
        logger.info(f"[Scenario {self.name}] Disabling proxy {proxy.name} (total network partition)")

        self._enter(Phase.TESTING)
        await proxy.disable()
        logger.info(f"[Scenario {self.name}] Node unavailable for {self.fault_time}s")
        await asyncio.sleep(self.fault_time)

        logger.info(f"[Scenario {self.name}] Re-enabling proxy {proxy.name}")
        await proxy.enable()

        await self._recover(self.recovery_time)


class _AllNodesToxicScenario(FixedScenario):
    """Installs the same toxic on every proxy for a fixed time."""

    toxic_name = ""
    toxic_type = ""
    toxicity = 1.0
    metric_type = ""
    metric_param = ""

    def __init__(self, observer: Optional[ScenarioObserver] = None,
                 fault_time: float = 20.0, recovery_time: float = 5.0):
        super().__init__(observer)
        self.fault_time = fault_time
        self.recovery_time = recovery_time

    @property
    def durations(self) -> Dict[Phase, float]:
        return {Phase.TESTING: self.fault_time, Phase.RECOVERY: self.recovery_time}

    @property
    def attributes(self) -> Dict[str, float]:
        raise NotImplementedError

    @property
    def metric_value(self) -> float:
        raise NotImplementedError

    async def _execute(self, proxies: Sequence[ProxyHandle]) -> None:
        self._enter(Phase.TESTING)
        toxics: List[Toxic] = []
        for proxy in proxies:
            toxic = await proxy.add_toxic(self.toxic_name, self.toxic_type, DOWNSTREAM,
                                          self.toxicity, self.attributes)
            toxics.append(toxic)
            self.observer.toxic_active(proxy.name, self.metric_type, True)
            self.observer.toxic_value(proxy.name, self.metric_type, self.metric_param,
                                      self.metric_value)

        logger.info(f"[Scenario {self.name}] Running with {self.toxic_type} toxic "
                    f"on all nodes for {self.fault_time}s")
        await asyncio.sleep(self.fault_time)

        logger.info(f"[Scenario {self.name}] Removing {self.toxic_type} toxics")
        for proxy, toxic in zip(proxies, toxics):
            await proxy.remove_toxic(toxic.name)
            self.observer.toxic_active(proxy.name, self.metric_type, False)
            self.observer.toxic_value(proxy.name, self.metric_type, self.metric_param, 0)

        await self._recover(self.recovery_time)


class PacketLossScenario(_AllNodesToxicScenario):
    """Degraded network: 5% packet loss everywhere."""

    scenario_name = "packet-loss"
    scenario_description = "5% packet loss on all nodes - simulates degraded network quality"
    toxic_name = "packet_loss"
    toxic_type = "bandwidth"
    metric_type = TOXIC_PACKET_LOSS
    metric_param = PARAM_RATE

    def __init__(self, observer: Optional[ScenarioObserver] = None, loss_rate: float = 0.05,
                 fault_time: float = 20.0, recovery_time: float = 5.0):
        super().__init__(observer, fault_time, recovery_time)
        self.toxicity = loss_rate

    @property
    def attributes(self) -> Dict[str, float]:
        # bandwidth at 0 on the affected fraction of connections
        return {"rate": 0}

    @property
    def metric_value(self) -> float:
        return self.toxicity


class LatencyScenario(_AllNodesToxicScenario):
    """Slow network: high latency with jitter everywhere."""

    scenario_name = "latency"
    scenario_description = "500ms latency (+/- 50ms jitter) on all nodes - simulates slow network"
    toxic_name = "high_latency"
    toxic_type = "latency"
    metric_type = TOXIC_LATENCY
    metric_param = PARAM_LATENCY_MS

    def __init__(self, observer: Optional[ScenarioObserver] = None,
                 latency_ms: int = 500, jitter_ms: int = 50,
                 fault_time: float = 30.0, recovery_time: float = 5.0):
        super().__init__(observer, fault_time, recovery_time)
        self.latency_ms = latency_ms
        self.jitter_ms = jitter_ms

    @property
    def attributes(self) -> Dict[str, float]:
        return {"latency": self.latency_ms, "jitter": self.jitter_ms}

    @property
    def metric_value(self) -> float:
        return float(self.latency_ms)


class _NodeOutageScenario(FixedScenario):
    """Disables the first ``failed_nodes`` proxies for a fixed time."""

    failed_nodes = 1
    min_proxies = 3

    def __init__(self, observer: Optional[ScenarioObserver] = None,
                 fault_time: float = 15.0, recovery_time: float = 10.0):
        super().__init__(observer)
        self.fault_time = fault_time
        self.recovery_time = recovery_time

    @property
    def durations(self) -> Dict[Phase, float]:
        return {Phase.TESTING: self.fault_time, Phase.RECOVERY: self.recovery_time}

    async def _execute(self, proxies: Sequence[ProxyHandle]) -> None:
        failed = proxies[:self.failed_nodes]
        names = [proxy.name for proxy in failed]
        logger.info(f"[Scenario {self.name}] Disabling {names} "
                    f"({len(failed)}/{len(proxies)} nodes down)")

        self._enter(Phase.TESTING)
        for proxy in failed:
            await proxy.disable()

        await asyncio.sleep(self.fault_time)

        logger.info(f"[Scenario {self.name}] Re-enabling {names}")
        for proxy in failed:
            await proxy.enable()

        await self._recover(self.recovery_time)


class SingleNodeFailureScenario(_NodeOutageScenario):
    """One node out of three goes down."""

    scenario_name = "single-node-failure"
    scenario_description = "Single node failure (1 of 3) for 15s - simulates partial availability"
    failed_nodes = 1


class MajorityNodeFailureScenario(_NodeOutageScenario):
    """Two nodes out of three go down."""

    scenario_name = "majority-node-failure"
    scenario_description = "Majority node failure (2 of 3) for 10s - simulates quorum loss"
    failed_nodes = 2

    def __init__(self, observer: Optional[ScenarioObserver] = None,
                 fault_time: float = 10.0, recovery_time: float = 15.0):
        super().__init__(observer, fault_time, recovery_time)


class FlappingNodeScenario(FixedScenario):
    """A node that keeps going up and down."""

    scenario_name = "flapping-node"
    scenario_description = "Node flapping (up/down every 10s) - simulates unstable node"

    def __init__(self, observer: Optional[ScenarioObserver] = None, cycles: int = 5,
                 down_time: float = 10.0, up_time: float = 10.0, recovery_time: float = 10.0):
        super().__init__(observer)
        self.cycles = cycles
        self.down_time = down_time
        self.up_time = up_time
        self.recovery_time = recovery_time

    @property
    def durations(self) -> Dict[Phase, float]:
        return {
            Phase.TESTING: self.cycles * (self.down_time + self.up_time),
            Phase.RECOVERY: self.recovery_time,
        }

    async def _execute(self, proxies: Sequence[ProxyHandle]) -> None:
        proxy = proxies[0]
        logger.info(f"[Scenario {self.name}] Node {proxy.name} flapping "
                    f"({self.cycles} cycles of {self.down_time}s down, {self.up_time}s up)")

        self._enter(Phase.TESTING)
        for _ in range(self.cycles):
            logger.info(f"[Scenario {self.name}] Disabling {proxy.name}")
            await proxy.disable()
            await asyncio.sleep(self.down_time)

            logger.info(f"[Scenario {self.name}] Enabling {proxy.name}")
            await proxy.enable()
            await asyncio.sleep(self.up_time)

        await self._recover(self.recovery_time)


FIXED_SCENARIOS = (
    BriefPacketDropScenario,
    TotalPacketDropScenario,
    PacketLossScenario,
    LatencyScenario,
    SingleNodeFailureScenario,
    MajorityNodeFailureScenario,
    FlappingNodeScenario,
)
