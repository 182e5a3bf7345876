"""
Monitoring Module for the scenario controller.

Exports scenario phases, run outcomes and active toxics as Prometheus
metrics.

Quick Start:
    from monitoring import ScenarioMetrics, start_metrics_server

    metrics = ScenarioMetrics()
    start_metrics_server(9092, metrics)
"""

from monitoring.scenario_metrics import (
    MetricDefinition,
    MetricType,
    ScenarioMetrics,
    start_metrics_server,
)

__all__ = [
    "MetricDefinition",
    "MetricType",
    "ScenarioMetrics",
    "start_metrics_server",
]

__version__ = "1.0.0"
