"""
Observability module for the scenario controller.

Records every scenario run as an OpenTelemetry span and traces the calls
made to the Toxiproxy API.
"""

from .tracing import (
    DistributedTracer,
    ScenarioTracingObserver,
    TracingConfig,
)

__all__ = [
    'TracingConfig',
    'DistributedTracer',
    'ScenarioTracingObserver',
]

__version__ = '1.0.0'
