"""
Failure Scenario Engine for memcache client testing.

Injects network faults (packet loss, latency, node outages) through
Toxiproxy in named, timed scenarios, and orchestrates them one at a time
against a shared proxy set.
"""

from .catalog import Catalog, build_catalog, build_registry
from .config import ProxyConfig, ToxiproxyConfig, resolve_host_to_ip
from .errors import (
    PerturbationError,
    PreconditionError,
    ProxyError,
    ScenarioError,
    ScenarioNotFoundError,
)
from .fixed import (
    FIXED_SCENARIOS,
    BriefPacketDropScenario,
    FixedScenario,
    FlappingNodeScenario,
    LatencyScenario,
    MajorityNodeFailureScenario,
    PacketLossScenario,
    SingleNodeFailureScenario,
    TotalPacketDropScenario,
)
from .observer import CompositeObserver, Phase, ScenarioObserver
from .orchestrator import (
    Orchestrator,
    OrchestratorConfig,
    RunOutcome,
    ScenarioRunRecord,
)
from .phased import PhasedScenario, PhasedScenarioConfig
from .proxy import (
    CleanupResult,
    Proxy,
    ProxyHandle,
    Toxic,
    ToxiproxyClient,
    cleanup_proxies,
    setup_proxies,
)
from .scenario import Scenario, ScenarioRegistry
from .suites import (
    LatencyScenarioSuite,
    MultiFailureScenarioSuite,
    PacketLossScenarioSuite,
)

__all__ = [
    # Core
    "Scenario",
    "ScenarioRegistry",
    "Phase",
    "PhasedScenario",
    "PhasedScenarioConfig",
    # Orchestration
    "Orchestrator",
    "OrchestratorConfig",
    "RunOutcome",
    "ScenarioRunRecord",
    # Catalog
    "Catalog",
    "build_catalog",
    "build_registry",
    "PacketLossScenarioSuite",
    "LatencyScenarioSuite",
    "MultiFailureScenarioSuite",
    "FIXED_SCENARIOS",
    "FixedScenario",
    "BriefPacketDropScenario",
    "TotalPacketDropScenario",
    "PacketLossScenario",
    "LatencyScenario",
    "SingleNodeFailureScenario",
    "MajorityNodeFailureScenario",
    "FlappingNodeScenario",
    # Proxies
    "ProxyHandle",
    "Proxy",
    "Toxic",
    "ToxiproxyClient",
    "CleanupResult",
    "cleanup_proxies",
    "setup_proxies",
    "ProxyConfig",
    "ToxiproxyConfig",
    "resolve_host_to_ip",
    # Observers
    "ScenarioObserver",
    "CompositeObserver",
    # Errors
    "ScenarioError",
    "ScenarioNotFoundError",
    "PreconditionError",
    "ProxyError",
    "PerturbationError",
]

__version__ = "1.0.0"
