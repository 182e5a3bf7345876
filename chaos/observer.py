"""
Scenario observers.

The phase state machine reports every transition, run outcome and toxic
change to a ``ScenarioObserver``. Metrics and tracing backends subclass it;
the engine itself never talks to a telemetry library.
"""

from enum import IntEnum
from typing import Dict, Iterable, List


class Phase(IntEnum):
    """Scenario phase. The value is what the phase gauge exports."""
    IDLE = 0
    STABILIZATION = 1
    TESTING = 2
    RECOVERY = 3

    @property
    def label(self) -> str:
        return self.name.lower()


class ScenarioObserver:
    """
    Receives scenario lifecycle events.

    All methods are fire-and-forget and default to no-ops, so a subclass
    only overrides what it cares about.
    """

    def scenario_active(self, active: bool) -> None:
        pass

    def phase_durations(self, scenario: str, durations: Dict[Phase, float]) -> None:
        pass

    def phase_changed(self, scenario: str, phase: Phase) -> None:
        pass

    def run_recorded(self, scenario: str, success: bool) -> None:
        pass

    def toxic_active(self, server: str, toxic_type: str, active: bool) -> None:
        pass

    def toxic_value(self, server: str, toxic_type: str, param: str, value: float) -> None:
        pass


class CompositeObserver(ScenarioObserver):
    """Fans every event out to a list of observers."""

    def __init__(self, observers: Iterable[ScenarioObserver] = ()):
        self.observers: List[ScenarioObserver] = list(observers)

    def add(self, observer: ScenarioObserver) -> None:
        self.observers.append(observer)

    def scenario_active(self, active: bool) -> None:
        for observer in self.observers:
            observer.scenario_active(active)

    def phase_durations(self, scenario: str, durations: Dict[Phase, float]) -> None:
        for observer in self.observers:
            observer.phase_durations(scenario, durations)

    def phase_changed(self, scenario: str, phase: Phase) -> None:
        for observer in self.observers:
            observer.phase_changed(scenario, phase)

    def run_recorded(self, scenario: str, success: bool) -> None:
        for observer in self.observers:
            observer.run_recorded(scenario, success)

    def toxic_active(self, server: str, toxic_type: str, active: bool) -> None:
        for observer in self.observers:
            observer.toxic_active(server, toxic_type, active)

    def toxic_value(self, server: str, toxic_type: str, param: str, value: float) -> None:
        for observer in self.observers:
            observer.toxic_value(server, toxic_type, param, value)


# Toxic metric labels shared by the scenarios and the pre-run reset.
TOXIC_PACKET_LOSS = "packet_loss"
TOXIC_LATENCY = "latency"
PARAM_RATE = "rate"
PARAM_LATENCY_MS = "latency_ms"


def reset_toxic_metrics(observer: ScenarioObserver, servers: Iterable[str]) -> None:
    """Zero the toxic state for every server."""
    for server in servers:
        observer.toxic_active(server, TOXIC_PACKET_LOSS, False)
        observer.toxic_active(server, TOXIC_LATENCY, False)
        observer.toxic_value(server, TOXIC_PACKET_LOSS, PARAM_RATE, 0)
        observer.toxic_value(server, TOXIC_LATENCY, PARAM_LATENCY_MS, 0)
