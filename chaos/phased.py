"""
Three-phase scenarios.

A ``PhasedScenario`` wraps a pair of perturbation callbacks with a fixed
timeline::

    IDLE -> STABILIZATION -> TESTING -> RECOVERY -> IDLE

Stabilization lets the workload settle on a clean proxy set, testing runs
with the perturbation applied, recovery watches the system come back after
the perturbation is removed. Every wait is an ``asyncio.sleep`` and therefore
ends early when the running task is cancelled.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Sequence

from .errors import PerturbationError, ScenarioError
from .observer import Phase, ScenarioObserver, reset_toxic_metrics
from .proxy import CleanupResult, ProxyHandle, cleanup_proxies
from .scenario import Scenario

logger = logging.getLogger(__name__)

DEFAULT_STABILIZATION_TIME = 30.0
DEFAULT_RECOVERY_TIME = 60.0

PerturbationFn = Callable[[Sequence[ProxyHandle]], Awaitable[None]]
CleanupFn = Callable[[Sequence[ProxyHandle]], Awaitable[CleanupResult]]


@dataclass
class PhasedScenarioConfig:
    """
    Configures a 3-phase scenario.

    ``apply`` is called once per run at the start of the testing phase.
    ``remove`` is called once per run, at the end of testing or when the run
    is cancelled during testing; it must be a no-op when nothing is active.
    Durations are in seconds; stabilization and recovery fall back to 30s
    and 60s when unset.
    """
    name: str
    description: str
    testing_time: float
    apply: PerturbationFn
    remove: PerturbationFn
    stabilization_time: Optional[float] = None
    recovery_time: Optional[float] = None


class PhasedScenario(Scenario):
    """
    Stabilize, perturb, recover.

    One instance must not be run concurrently with itself: the perturbation
    callbacks keep per-run state. A second concurrent ``run`` is rejected.
    """

    def __init__(
        self,
        config: PhasedScenarioConfig,
        observer: Optional[ScenarioObserver] = None,
        cleanup: CleanupFn = cleanup_proxies,
    ):
        if not config.testing_time or config.testing_time <= 0:
            raise ValueError(f"{config.name}: testing_time is required")

        self._name = config.name
        self._description = config.description
        self.stabilization_time = config.stabilization_time or DEFAULT_STABILIZATION_TIME
        self.testing_time = config.testing_time
        self.recovery_time = config.recovery_time or DEFAULT_RECOVERY_TIME
        self._apply = config.apply
        self._remove = config.remove
        self._cleanup = cleanup
        self.observer = observer or ScenarioObserver()

        self.phase = Phase.IDLE
        self._running = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def durations(self) -> Dict[Phase, float]:
        return {
            Phase.STABILIZATION: self.stabilization_time,
            Phase.TESTING: self.testing_time,
            Phase.RECOVERY: self.recovery_time,
        }

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, proxies: Sequence[ProxyHandle]) -> None:
        if self._running:
            raise ScenarioError(f"[Scenario {self._name}] already running")
        self._running = True
        try:
            await self._run(proxies)
        finally:
            self._running = False

    async def _run(self, proxies: Sequence[ProxyHandle]) -> None:
        prefix = f"[Scenario {self._name}]"
        logger.info(f"{prefix} Starting 3-phase execution")

        logger.info(f"{prefix} Ensuring clean toxiproxy state")
        (await self._cleanup(proxies)).log_warnings(prefix)
        reset_toxic_metrics(self.observer, [proxy.name for proxy in proxies])

        self.observer.scenario_active(True)
        self.observer.phase_durations(self._name, self.durations)

        try:
            logger.info(f"{prefix} Phase 1: Stabilization ({self.stabilization_time}s)")
            self._enter(Phase.STABILIZATION)
            await asyncio.sleep(self.stabilization_time)

            logger.info(f"{prefix} Phase 2: Testing ({self.testing_time}s) - Applying perturbation")
            self._enter(Phase.TESTING)
            try:
                try:
                    await self._apply(proxies)
                except Exception as e:
                    logger.error(f"{prefix} Failed to apply perturbation: {e}")
                    self.observer.run_recorded(self._name, False)
                    raise PerturbationError(self._name, "apply", e) from e

                await asyncio.sleep(self.testing_time)
            except asyncio.CancelledError:
                logger.info(f"{prefix} Cancelled during testing, removing perturbation")
                await self._remove_best_effort(proxies)
                raise

            logger.info(f"{prefix} Removing perturbation")
            try:
                await self._remove(proxies)
            except Exception as e:
                logger.error(f"{prefix} Failed to remove perturbation: {e}")
                self.observer.run_recorded(self._name, False)
                raise PerturbationError(self._name, "remove", e) from e

            # remove() may have cleaned up only partially
            (await self._cleanup(proxies)).log_warnings(prefix)

            logger.info(f"{prefix} Phase 3: Recovery ({self.recovery_time}s)")
            self._enter(Phase.RECOVERY)
            await asyncio.sleep(self.recovery_time)

            logger.info(f"{prefix} Complete")
            self.observer.run_recorded(self._name, True)
        finally:
            self._enter(Phase.IDLE)
            self.observer.scenario_active(False)

    def _enter(self, phase: Phase) -> None:
        self.phase = phase
        self.observer.phase_changed(self._name, phase)

    async def _remove_best_effort(self, proxies: Sequence[ProxyHandle]) -> None:
        """Run ``remove``, logging and dropping any failure."""
        try:
            await self._remove(proxies)
        except Exception as e:
            logger.warning(f"[Scenario {self._name}] Warning: failed to remove perturbation "
                           f"after cancellation, discarding: {e}")
