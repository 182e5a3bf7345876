"""
Scenario abstraction and registry.

A scenario is a named unit of fault injection with one blocking coroutine,
``run(proxies)``. It returns when the scenario is over, raises on failure and
raises ``asyncio.CancelledError`` when stopped.
"""

from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Sequence

from .errors import PreconditionError, ScenarioError, ScenarioNotFoundError
from .proxy import ProxyHandle


class Scenario(ABC):
    """A failure scenario that can be executed against a proxy set."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier, used on the command line and as a metric label."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description."""

    @abstractmethod
    async def run(self, proxies: Sequence[ProxyHandle]) -> None:
        """Execute the scenario. Blocks for its whole duration."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


def require_proxies(scenario: str, proxies: Sequence[ProxyHandle], count: int) -> None:
    """Raise ``PreconditionError`` when fewer than ``count`` proxies are supplied."""
    if len(proxies) < count:
        raise PreconditionError(scenario, count, len(proxies))


class ScenarioRegistry:
    """
    Name -> scenario lookup.

    Built once at startup from an explicit list, then frozen. Lookups after
    that are read-only, so no locking is involved.
    """

    def __init__(self, scenarios: Iterable[Scenario] = ()):
        self._scenarios: Dict[str, Scenario] = {}
        self._frozen = False
        for scenario in scenarios:
            self.register(scenario)

    def register(self, scenario: Scenario) -> None:
        """Insert or overwrite the entry for ``scenario.name``."""
        if self._frozen:
            raise ScenarioError(f"registry is frozen, cannot register {scenario.name}")
        self._scenarios[scenario.name] = scenario

    def freeze(self) -> "ScenarioRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Scenario:
        try:
            return self._scenarios[name]
        except KeyError:
            raise ScenarioNotFoundError(name) from None

    def all(self) -> Mapping[str, Scenario]:
        """Live read-only view keyed by name."""
        return MappingProxyType(self._scenarios)

    def list(self) -> List[str]:
        """Scenario names, in no particular order."""
        return list(self._scenarios)

    def sorted(self) -> List[Scenario]:
        """Scenarios ordered by name."""
        return [self._scenarios[name] for name in sorted(self._scenarios)]

    def __contains__(self, name: object) -> bool:
        return name in self._scenarios

    def __len__(self) -> int:
        return len(self._scenarios)
