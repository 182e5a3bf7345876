"""
OpenTelemetry Tracing for Failure Scenarios.

Each scenario run becomes one span. Phase transitions, toxic changes and
the run outcome are recorded on it as events and status, so a trace
backend shows exactly when a fault was live next to the client spans it
affected.
"""

import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.aiohttp_client import AioHttpClientInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import SpanKind, Status, StatusCode

from chaos.observer import Phase, ScenarioObserver

logger = logging.getLogger(__name__)


class TracingConfig:
    """Configuration for scenario tracing."""

    def __init__(
        self,
        service_name: str = "scenario-controller",
        service_version: str = "1.0.0",
        otlp_endpoint: Optional[str] = None,
        environment: str = "development",
        enable_console_export: bool = False,
        instrument_http: bool = True,
    ):
        """
        Initialize tracing configuration.

        Args:
            service_name: Name of the service for trace identification
            service_version: Version of the service
            otlp_endpoint: OTLP collector endpoint (e.g., "http://jaeger:4317");
                falls back to OTEL_EXPORTER_OTLP_ENDPOINT, no OTLP export if neither is set
            environment: Deployment environment (development, staging, production)
            enable_console_export: Whether to also export to console
            instrument_http: Trace the aiohttp calls made to the proxy API
        """
        self.service_name = service_name
        self.service_version = service_version
        self.otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        self.environment = environment
        self.enable_console_export = enable_console_export
        self.instrument_http = instrument_http


class DistributedTracer:
    """
    Tracing manager using OpenTelemetry.

    Example:
        >>> tracer = DistributedTracer(TracingConfig(otlp_endpoint="http://jaeger:4317"))
        >>> tracer.initialize()
        >>> observer = ScenarioTracingObserver(tracer.tracer)
    """

    def __init__(self, config: TracingConfig):
        self.config = config
        self._tracer: Optional[trace.Tracer] = None
        self._provider: Optional[TracerProvider] = None
        self._initialized = False

    def initialize(self) -> None:
        """Set up the TracerProvider with the configured exporters."""
        if self._initialized:
            return

        resource = Resource.create({
            SERVICE_NAME: self.config.service_name,
            SERVICE_VERSION: self.config.service_version,
            "deployment.environment": self.config.environment,
        })
        self._provider = TracerProvider(resource=resource)

        if self.config.otlp_endpoint:
            otlp_exporter = OTLPSpanExporter(
                endpoint=self.config.otlp_endpoint,
                insecure=True,
            )
            self._provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
            logger.info(f"Exporting traces to {self.config.otlp_endpoint}")

        if self.config.enable_console_export:
            self._provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

        trace.set_tracer_provider(self._provider)
        self._tracer = trace.get_tracer(self.config.service_name, self.config.service_version)

        if self.config.instrument_http:
            AioHttpClientInstrumentor().instrument()

        self._initialized = True

    @property
    def tracer(self) -> trace.Tracer:
        """Get the tracer instance, initializing if necessary."""
        if not self._initialized:
            self.initialize()
        return self._tracer

    @contextmanager
    def span(self, name: str, kind: SpanKind = SpanKind.INTERNAL,
             attributes: Optional[Dict[str, Any]] = None):
        """Create a new span as a context manager; exceptions mark it as failed."""
        with self.tracer.start_as_current_span(name, kind=kind, attributes=attributes or {}) as span:
            try:
                yield span
            except Exception as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise

    def shutdown(self) -> None:
        """Shutdown the tracer and flush pending spans."""
        if self._provider:
            self._provider.shutdown()
        if self._initialized and self.config.instrument_http:
            AioHttpClientInstrumentor().uninstrument()


class ScenarioTracingObserver(ScenarioObserver):
    """
    Scenario observer that turns each run into a span.

    The span opens on the first non-idle phase and closes when the scenario
    returns to idle. A run that ends without an outcome was cancelled.
    """

    SPAN_NAME = "scenario.run"

    def __init__(self, tracer: trace.Tracer):
        self._tracer = tracer
        self._spans: Dict[str, trace.Span] = {}
        self._outcomes: Dict[str, bool] = {}
        self._durations: Dict[str, Dict[Phase, float]] = {}
        self._current: Optional[str] = None

    def phase_durations(self, scenario: str, durations: Dict[Phase, float]) -> None:
        self._durations[scenario] = dict(durations)

    def phase_changed(self, scenario: str, phase: Phase) -> None:
        if phase == Phase.IDLE:
            self._finish(scenario)
            return

        span = self._spans.get(scenario)
        if span is None:
            span = self._start(scenario)
        span.add_event(f"phase.{phase.label}", {"scenario.phase": int(phase)})

    def run_recorded(self, scenario: str, success: bool) -> None:
        span = self._spans.get(scenario)
        if span is None:
            # failed before any phase, e.g. not enough proxies
            span = self._start(scenario)
            self._outcomes[scenario] = success
            self._finish(scenario)
            return
        self._outcomes[scenario] = success

    def toxic_active(self, server: str, toxic_type: str, active: bool) -> None:
        span = self._spans.get(self._current) if self._current else None
        if span is not None:
            name = "toxic.added" if active else "toxic.removed"
            span.add_event(name, {"toxic.server": server, "toxic.type": toxic_type})

    def toxic_value(self, server: str, toxic_type: str, param: str, value: float) -> None:
        span = self._spans.get(self._current) if self._current else None
        if span is not None and value:
            span.set_attribute(f"toxic.{server}.{toxic_type}.{param}", value)

    def _start(self, scenario: str) -> trace.Span:
        attributes: Dict[str, Any] = {"scenario.name": scenario}
        for phase, seconds in self._durations.get(scenario, {}).items():
            attributes[f"scenario.{phase.label}_seconds"] = seconds

        span = self._tracer.start_span(self.SPAN_NAME, kind=SpanKind.INTERNAL, attributes=attributes)
        self._spans[scenario] = span
        self._current = scenario
        return span

    def _finish(self, scenario: str) -> None:
        span = self._spans.pop(scenario, None)
        if span is None:
            return

        outcome = self._outcomes.pop(scenario, None)
        if outcome is None:
            span.set_attribute("scenario.outcome", "cancelled")
        elif outcome:
            span.set_attribute("scenario.outcome", "success")
            span.set_status(Status(StatusCode.OK))
        else:
            span.set_attribute("scenario.outcome", "failed")
            span.set_status(Status(StatusCode.ERROR, "scenario run failed"))
        span.end()

        if self._current == scenario:
            self._current = None
