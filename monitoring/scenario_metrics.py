"""
Prometheus Metrics for Failure Scenarios.

Exports the scenario lifecycle and the toxics installed on each proxy so a
dashboard can line up client-side behaviour with the fault being injected.

Usage:
    from monitoring import ScenarioMetrics, start_metrics_server

    metrics = ScenarioMetrics()
    start_metrics_server(9092, metrics)

    registry = build_registry(observer=metrics)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
    start_http_server,
)

from chaos.observer import Phase, ScenarioObserver

logger = logging.getLogger(__name__)


class MetricType(Enum):
    """Types of Prometheus metrics used here."""
    COUNTER = "counter"
    GAUGE = "gauge"


@dataclass
class MetricDefinition:
    """Definition for a Prometheus metric."""
    name: str
    description: str
    metric_type: MetricType
    labels: List[str] = field(default_factory=list)


# =============================================================================
# METRIC DEFINITIONS
# =============================================================================

SCENARIO_PHASE = "scenario_phase"
SCENARIO_PHASE_DURATION = "scenario_phase_duration_seconds"
SCENARIO_RUNS = "scenario_runs_total"
SCENARIO_ACTIVE = "scenario_active"
TOXIC_ACTIVE = "toxiproxy_toxic_active"
TOXIC_VALUE = "toxiproxy_toxic_value"

SCENARIO_METRICS = [
    MetricDefinition(
        name=SCENARIO_PHASE,
        description="Current scenario phase (0=idle, 1=stabilization, 2=testing, 3=recovery)",
        metric_type=MetricType.GAUGE,
        labels=["scenario"],
    ),
    MetricDefinition(
        name=SCENARIO_PHASE_DURATION,
        description="Configured duration of each scenario phase in seconds",
        metric_type=MetricType.GAUGE,
        labels=["scenario", "phase"],
    ),
    MetricDefinition(
        name=SCENARIO_RUNS,
        description="Total number of scenario runs",
        metric_type=MetricType.COUNTER,
        labels=["scenario", "status"],
    ),
    MetricDefinition(
        name=SCENARIO_ACTIVE,
        description="Whether a scenario is currently running (0=no, 1=yes)",
        metric_type=MetricType.GAUGE,
    ),
]

TOXIC_METRICS = [
    MetricDefinition(
        name=TOXIC_ACTIVE,
        description="Whether a toxic is currently active (0=inactive, 1=active)",
        metric_type=MetricType.GAUGE,
        labels=["server", "type"],
    ),
    MetricDefinition(
        name=TOXIC_VALUE,
        description="Toxic configuration value (e.g. latency in ms, packet loss rate 0.0-1.0)",
        metric_type=MetricType.GAUGE,
        labels=["server", "type", "param"],
    ),
]


class ScenarioMetrics(ScenarioObserver):
    """
    Scenario observer backed by prometheus_client.

    Every instance owns its ``CollectorRegistry``, so several instances
    (one per test, say) never collide on metric names.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self._registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}

        for metric_def in SCENARIO_METRICS + TOXIC_METRICS:
            self._create_metric(metric_def)

    def _create_metric(self, definition: MetricDefinition):
        metric_class = {
            MetricType.COUNTER: Counter,
            MetricType.GAUGE: Gauge,
        }[definition.metric_type]

        self._metrics[definition.name] = metric_class(
            name=definition.name,
            documentation=definition.description,
            labelnames=definition.labels,
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def get(self, name: str) -> Any:
        """Get a metric by name."""
        if name not in self._metrics:
            raise KeyError(f"Metric '{name}' not found")
        return self._metrics[name]

    # -------------------------------------------------------------------------
    # ScenarioObserver
    # -------------------------------------------------------------------------

    def scenario_active(self, active: bool) -> None:
        self.get(SCENARIO_ACTIVE).set(1 if active else 0)

    def phase_durations(self, scenario: str, durations: Dict[Phase, float]) -> None:
        for phase, seconds in durations.items():
            self.get(SCENARIO_PHASE_DURATION).labels(scenario=scenario, phase=phase.label).set(seconds)

    def phase_changed(self, scenario: str, phase: Phase) -> None:
        self.get(SCENARIO_PHASE).labels(scenario=scenario).set(int(phase))

    def run_recorded(self, scenario: str, success: bool) -> None:
        status = "success" if success else "failed"
        self.get(SCENARIO_RUNS).labels(scenario=scenario, status=status).inc()

    def toxic_active(self, server: str, toxic_type: str, active: bool) -> None:
        self.get(TOXIC_ACTIVE).labels(server=server, type=toxic_type).set(1 if active else 0)

    def toxic_value(self, server: str, toxic_type: str, param: str, value: float) -> None:
        self.get(TOXIC_VALUE).labels(server=server, type=toxic_type, param=param).set(value)

    # -------------------------------------------------------------------------
    # Exposition
    # -------------------------------------------------------------------------

    def sample(self, name: str, **labels) -> Optional[float]:
        """Current value of a sample, or None if it was never set."""
        return self._registry.get_sample_value(name, labels)

    def generate_metrics(self) -> bytes:
        """Generate metrics output for Prometheus scraping."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


def start_metrics_server(port: int = 9092, metrics: Optional[ScenarioMetrics] = None) -> ScenarioMetrics:
    """
    Start a standalone HTTP server for Prometheus metrics.

    Args:
        port: Port to listen on (default: 9092)
        metrics: ScenarioMetrics instance (creates one if None)
    """
    if metrics is None:
        metrics = ScenarioMetrics()

    start_http_server(port, registry=metrics.registry)
    logger.info(f"Metrics server started on port {port} (http://localhost:{port}/metrics)")
    return metrics
