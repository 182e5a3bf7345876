"""
Scenario families.

Each suite is a factory: it closes over one parameter (loss rate, test
duration, failed node count) and produces one ``PhasedScenario`` per value.
Names are derived from the parameter so they are stable across runs.

The perturbation of a generated scenario keeps its active toxics in a
``PerturbationState`` owned by that scenario alone; sibling scenarios from
the same suite never share it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .errors import ProxyError
from .observer import (
    PARAM_LATENCY_MS,
    PARAM_RATE,
    TOXIC_LATENCY,
    TOXIC_PACKET_LOSS,
    ScenarioObserver,
)
from .phased import PhasedScenario, PhasedScenarioConfig
from .proxy import DOWNSTREAM, ProxyHandle, Toxic
from .scenario import Scenario, require_proxies

logger = logging.getLogger(__name__)

DEFAULT_LOSS_RATES = (0.02, 0.05, 0.10, 0.20, 0.50, 1.0)
DEFAULT_LATENCY_DURATIONS = (0.1, 1.0, 5.0, 10.0, 40.0, 120.0)
DEFAULT_LATENCY_MS = 200
MULTI_FAILURE_LATENCY_MS = 500


def format_duration(seconds: float) -> str:
    """Compact duration for scenario names: 100ms, 5s, 2m."""
    if seconds < 1:
        return f"{int(round(seconds * 1000))}ms"
    if seconds < 60:
        return f"{int(seconds)}s"
    return f"{int(seconds // 60)}m"


@dataclass
class ToxicSpec:
    """What to install on each targeted proxy."""
    toxic_type: str
    toxicity: float
    attributes: Dict[str, Any]
    metric_type: str
    metric_param: str
    metric_value: float


@dataclass
class PerturbationState:
    """Per-scenario mutable state: active toxics and the proxies they sit on."""
    toxics: List[Toxic] = field(default_factory=list)
    targets: List[str] = field(default_factory=list)

    @property
    def active(self) -> bool:
        return bool(self.toxics)

    def clear(self) -> None:
        self.toxics = []
        self.targets = []


class ToxicPerturbation:
    """
    Installs one toxic on each of the first ``node_count`` proxies.

    A failed ``apply`` is not rolled back: toxics already installed stay
    in ``state`` and on the proxies until the next cleanup.
    """

    def __init__(
        self,
        scenario: str,
        spec: ToxicSpec,
        observer: ScenarioObserver,
        node_count: int = 1,
        min_proxies: int = 1,
    ):
        self.scenario = scenario
        self.spec = spec
        self.observer = observer
        self.node_count = node_count
        self.min_proxies = max(min_proxies, node_count)
        self.state = PerturbationState()

    async def apply(self, proxies: Sequence[ProxyHandle]) -> None:
        require_proxies(self.scenario, proxies, self.min_proxies)

        targets = list(proxies[:self.node_count])
        self.state.clear()
        logger.info(f"[{self.scenario}] Applying {self.spec.toxic_type} toxic "
                    f"({self._describe()}) to {[proxy.name for proxy in targets]}")

        for proxy in targets:
            toxic = await proxy.add_toxic("", self.spec.toxic_type, DOWNSTREAM,
                                          self.spec.toxicity, self.spec.attributes)
            self.state.toxics.append(toxic)
            self.state.targets.append(proxy.name)
            self.observer.toxic_active(proxy.name, self.spec.metric_type, True)
            self.observer.toxic_value(proxy.name, self.spec.metric_type,
                                      self.spec.metric_param, self.spec.metric_value)

    async def remove(self, proxies: Sequence[ProxyHandle]) -> None:
        if not self.state.active:
            return

        logger.info(f"[{self.scenario}] Removing {self.spec.toxic_type} toxic from {self.state.targets}")
        by_name = {proxy.name: proxy for proxy in proxies}

        while self.state.toxics:
            target, toxic = self.state.targets[0], self.state.toxics[0]
            proxy = by_name.get(target)
            if proxy is None:
                raise ProxyError(target, f"remove toxic {toxic.name}", "proxy not in set")
            await proxy.remove_toxic(toxic.name)
            self.observer.toxic_active(target, self.spec.metric_type, False)
            self.observer.toxic_value(target, self.spec.metric_type, self.spec.metric_param, 0)
            self.state.toxics.pop(0)
            self.state.targets.pop(0)

    def _describe(self) -> str:
        params = [f"{key}={value}" for key, value in self.spec.attributes.items()]
        params.append(f"toxicity={self.spec.toxicity}")
        return ", ".join(params)


class ToxicScenario(PhasedScenario):
    """A phased scenario driven by a ``ToxicPerturbation``."""

    def __init__(self, config: PhasedScenarioConfig, perturbation: ToxicPerturbation,
                 observer: ScenarioObserver):
        super().__init__(config, observer)
        self.perturbation = perturbation


def build_toxic_scenario(
    name: str,
    description: str,
    spec: ToxicSpec,
    observer: ScenarioObserver,
    testing_time: float,
    stabilization_time: Optional[float] = None,
    recovery_time: Optional[float] = None,
    node_count: int = 1,
    min_proxies: int = 1,
) -> ToxicScenario:
    """Wire a fresh ``ToxicPerturbation`` into a ``ToxicScenario``."""
    perturbation = ToxicPerturbation(name, spec, observer, node_count, min_proxies)
    config = PhasedScenarioConfig(
        name=name,
        description=description,
        testing_time=testing_time,
        stabilization_time=stabilization_time,
        recovery_time=recovery_time,
        apply=perturbation.apply,
        remove=perturbation.remove,
    )
    return ToxicScenario(config, perturbation, observer)


def packet_loss_spec(rate: float) -> ToxicSpec:
    """
    Bandwidth toxic at rate 0, applied with probability ``rate``.

    Toxiproxy has no per-packet drop; a zero-throughput bandwidth limit
    on a fraction of connections stands in for it.
    """
    return ToxicSpec(
        toxic_type="bandwidth",
        toxicity=rate,
        attributes={"rate": 0},
        metric_type=TOXIC_PACKET_LOSS,
        metric_param=PARAM_RATE,
        metric_value=rate,
    )


def latency_spec(latency_ms: int, jitter_ms: int = 0) -> ToxicSpec:
    return ToxicSpec(
        toxic_type="latency",
        toxicity=1.0,
        attributes={"latency": latency_ms, "jitter": jitter_ms},
        metric_type=TOXIC_LATENCY,
        metric_param=PARAM_LATENCY_MS,
        metric_value=float(latency_ms),
    )


class PacketLossScenarioSuite:
    """Packet loss on a single server, one scenario per loss rate."""

    def __init__(
        self,
        observer: ScenarioObserver,
        rates: Iterable[float] = DEFAULT_LOSS_RATES,
        testing_time: float = 60.0,
        stabilization_time: float = 30.0,
        recovery_time: float = 60.0,
    ):
        self.observer = observer
        self.rates = tuple(rates)
        self.testing_time = testing_time
        self.stabilization_time = stabilization_time
        self.recovery_time = recovery_time

    def create_scenarios(self) -> List[Scenario]:
        return [self.create_scenario(rate) for rate in self.rates]

    def create_scenario(self, loss_rate: float) -> ToxicScenario:
        percent = loss_rate * 100
        name = f"packet-loss-{percent:.0f}-pct"
        description = (f"{percent:.0f}% packet loss on single server "
                       f"for {format_duration(self.testing_time)}")
        return build_toxic_scenario(
            name, description, packet_loss_spec(loss_rate), self.observer,
            testing_time=self.testing_time,
            stabilization_time=self.stabilization_time,
            recovery_time=self.recovery_time,
        )


class LatencyScenarioSuite:
    """Fixed added latency on a single server, one scenario per test duration."""

    def __init__(
        self,
        observer: ScenarioObserver,
        latency_ms: int = DEFAULT_LATENCY_MS,
        durations: Iterable[float] = DEFAULT_LATENCY_DURATIONS,
        stabilization_time: float = 30.0,
        recovery_time: float = 60.0,
    ):
        self.observer = observer
        self.latency_ms = latency_ms
        self.durations = tuple(durations)
        self.stabilization_time = stabilization_time
        self.recovery_time = recovery_time

    def create_scenarios(self) -> List[Scenario]:
        return [self.create_scenario(duration) for duration in self.durations]

    def create_scenario(self, testing_time: float) -> ToxicScenario:
        name = f"latency-{self.latency_ms}ms-{format_duration(testing_time)}"
        description = (f"+{self.latency_ms}ms latency on single server "
                       f"for {format_duration(testing_time)}")
        return build_toxic_scenario(
            name, description, latency_spec(self.latency_ms), self.observer,
            testing_time=testing_time,
            stabilization_time=self.stabilization_time,
            recovery_time=self.recovery_time,
        )


class MultiFailureScenarioSuite:
    """
    Simultaneous faults on several servers.

    The first ``failed_nodes`` proxies are degraded and the rest stay
    healthy, which exercises the last-healthy-node path of the client.
    """

    def __init__(
        self,
        observer: ScenarioObserver,
        failed_nodes: int = 2,
        min_proxies: int = 3,
        testing_time: float = 60.0,
        stabilization_time: float = 30.0,
        recovery_time: float = 60.0,
    ):
        self.observer = observer
        self.failed_nodes = failed_nodes
        self.min_proxies = min_proxies
        self.testing_time = testing_time
        self.stabilization_time = stabilization_time
        self.recovery_time = recovery_time

    def create_scenarios(self) -> List[Scenario]:
        return [
            self.create_packet_loss_scenario(),
            self.create_latency_scenario(),
        ]

    def create_packet_loss_scenario(self) -> ToxicScenario:
        return self._build(
            "packet-loss",
            f"100% packet loss on {self._share()} servers simultaneously "
            f"for {format_duration(self.testing_time)}",
            packet_loss_spec(1.0),
        )

    def create_latency_scenario(self) -> ToxicScenario:
        return self._build(
            "latency",
            f"+{MULTI_FAILURE_LATENCY_MS}ms latency on {self._share()} servers simultaneously "
            f"for {format_duration(self.testing_time)}",
            latency_spec(MULTI_FAILURE_LATENCY_MS),
        )

    def _share(self) -> str:
        return f"{self.failed_nodes} out of {self.min_proxies}"

    def _build(self, kind: str, description: str, spec: ToxicSpec) -> ToxicScenario:
        return build_toxic_scenario(
            f"multi-failure-{self.failed_nodes}-servers-{kind}", description, spec, self.observer,
            testing_time=self.testing_time,
            stabilization_time=self.stabilization_time,
            recovery_time=self.recovery_time,
            node_count=self.failed_nodes,
            min_proxies=self.min_proxies,
        )
