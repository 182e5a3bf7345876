"""
Exceptions raised by the scenario engine.

Cancellation is not represented here: a stopped scenario surfaces as
``asyncio.CancelledError`` so callers can tell a user-initiated stop
apart from a failed run.
"""

from typing import Optional


class ScenarioError(Exception):
    """Base class for scenario engine errors."""


class ScenarioNotFoundError(ScenarioError, KeyError):
    """Raised when a scenario name is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"scenario not found: {name}")

    def __str__(self) -> str:
        return self.args[0]


class PreconditionError(ScenarioError):
    """A scenario cannot run against the supplied proxy set."""

    def __init__(self, scenario: str, required: int, available: int):
        self.scenario = scenario
        self.required = required
        self.available = available
        if required == 1:
            message = "no proxies available"
        else:
            message = f"need at least {required} proxies, got {available}"
        super().__init__(f"[{scenario}] {message}")


class ProxyError(ScenarioError):
    """A call to the proxy control API failed."""

    def __init__(self, proxy: str, operation: str, detail: Optional[str] = None):
        self.proxy = proxy
        self.operation = operation
        self.detail = detail
        message = f"failed to {operation} on {proxy}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class PerturbationError(ScenarioError):
    """Applying or removing a scenario's fault failed."""

    def __init__(self, scenario: str, stage: str, cause: BaseException):
        self.scenario = scenario
        self.stage = stage
        self.cause = cause
        super().__init__(f"[{scenario}] failed to {stage} perturbation: {cause}")
