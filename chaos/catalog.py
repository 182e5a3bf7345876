"""
Built-in scenario catalog.

Assembles the registry from an explicit list: the fixed-pattern scenarios
plus every scenario generated by the packet loss, latency and
multi-failure suites.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .fixed import FIXED_SCENARIOS
from .observer import ScenarioObserver
from .scenario import Scenario, ScenarioRegistry
from .suites import (
    DEFAULT_LATENCY_MS,
    LatencyScenarioSuite,
    MultiFailureScenarioSuite,
    PacketLossScenarioSuite,
)

GROUP_PACKET_LOSS = "Packet Loss Scenarios"
GROUP_LATENCY = "Latency Scenarios"
GROUP_MULTI_FAILURE = "Multiple Simultaneous Failures"
GROUP_FIXED = "Node and Fixed-Pattern Scenarios"


@dataclass
class Catalog:
    """A frozen registry together with the listing groups it was built from."""
    registry: ScenarioRegistry
    groups: Dict[str, List[str]] = field(default_factory=dict)

    def grouped(self) -> Dict[str, List[Scenario]]:
        """Scenarios per group, each group sorted by name."""
        return {
            group: [self.registry.get(name) for name in sorted(names)]
            for group, names in self.groups.items()
        }


def build_catalog(observer: Optional[ScenarioObserver] = None,
                  latency_ms: int = DEFAULT_LATENCY_MS) -> Catalog:
    observer = observer or ScenarioObserver()

    groups: Dict[str, List[Scenario]] = {
        GROUP_PACKET_LOSS: PacketLossScenarioSuite(observer).create_scenarios(),
        GROUP_LATENCY: LatencyScenarioSuite(observer, latency_ms=latency_ms).create_scenarios(),
        GROUP_MULTI_FAILURE: MultiFailureScenarioSuite(observer).create_scenarios(),
        GROUP_FIXED: [scenario_cls(observer) for scenario_cls in FIXED_SCENARIOS],
    }

    registry = ScenarioRegistry()
    for scenarios in groups.values():
        for scenario in scenarios:
            registry.register(scenario)

    return Catalog(
        registry=registry.freeze(),
        groups={group: [s.name for s in scenarios] for group, scenarios in groups.items()},
    )


def build_registry(observer: Optional[ScenarioObserver] = None,
                   latency_ms: int = DEFAULT_LATENCY_MS) -> ScenarioRegistry:
    """Frozen registry holding every built-in scenario."""
    return build_catalog(observer, latency_ms).registry
