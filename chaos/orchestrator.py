"""
Scenario orchestration.

Runs registered scenarios against one shared proxy set, either as a
sequence (a single scenario or ``all`` in name order, optionally looped)
or interactively, where the running scenario can be replaced at any time
by sending its successor's name on a queue.

Only one scenario touches the proxy set at a time: a switch cancels the
current run, waits for it to finish unwinding and cleans the proxies
before the next scenario starts.

Example:
    >>> orchestrator = Orchestrator(build_registry(), proxies,
    ...                             OrchestratorConfig(loop=True))
    >>> await orchestrator.run("all")
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .errors import ScenarioNotFoundError
from .phased import CleanupFn
from .proxy import ProxyHandle, cleanup_proxies
from .scenario import Scenario, ScenarioRegistry

logger = logging.getLogger(__name__)

ALL_SCENARIOS = "all"


class RunOutcome(str, Enum):
    """How a single scenario run ended."""
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ScenarioRunRecord:
    """One finished scenario run."""
    scenario: str
    iteration: int
    outcome: RunOutcome
    start_time: datetime
    duration: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario,
            "iteration": self.iteration,
            "outcome": self.outcome.value,
            "start_time": self.start_time.isoformat(),
            "duration": self.duration,
            "error": self.error,
        }


@dataclass
class OrchestratorConfig:
    """
    Sequencing options. Pauses are in seconds.

    ``runs`` is the number of iterations of the selection (or repetitions of
    the current scenario in interactive mode); 0 means until cancelled.
    ``loop`` forces continuous iteration regardless of ``runs``.
    """
    loop: bool = False
    runs: int = 1
    scenario_pause: float = 5.0
    iteration_pause: float = 10.0
    run_pause: float = 2.0
    switch_pause: float = 0.5


class Orchestrator:
    """Executes scenarios from a registry against a fixed proxy set."""

    def __init__(
        self,
        registry: ScenarioRegistry,
        proxies: Sequence[ProxyHandle],
        config: Optional[OrchestratorConfig] = None,
        cleanup: CleanupFn = cleanup_proxies,
    ):
        self.registry = registry
        self.proxies = list(proxies)
        self.config = config or OrchestratorConfig()
        self._cleanup = cleanup
        self.history: List[ScenarioRunRecord] = []
        self.switch_requests: asyncio.Queue = asyncio.Queue()

    def resolve(self, selection: str) -> List[Scenario]:
        """A single scenario by name, or every scenario sorted by name for ``all``."""
        if selection == ALL_SCENARIOS:
            return self.registry.sorted()
        return [self.registry.get(selection)]

    def request_switch(self, name: str) -> None:
        """Ask a running ``run_interactive`` to move to another scenario."""
        self.switch_requests.put_nowait(name)

    def summary(self) -> Dict[str, int]:
        counts = {outcome.value: 0 for outcome in RunOutcome}
        for record in self.history:
            counts[record.outcome.value] += 1
        counts["total"] = len(self.history)
        return counts

    # =========================================================================
    # Sequential mode
    # =========================================================================

    async def run(self, selection: str) -> List[ScenarioRunRecord]:
        """
        Run the selection in order, iterating as configured.

        A failed scenario is logged and recorded; the sequence moves on.
        Cancellation stops at once, after a last proxy cleanup.
        """
        scenarios = self.resolve(selection)
        logger.info(f"Will run {len(scenarios)} scenario(s)")

        records: List[ScenarioRunRecord] = []
        iteration = 0
        try:
            while True:
                iteration += 1
                for index, scenario in enumerate(scenarios):
                    logger.info(f"=== Scenario {index + 1}/{len(scenarios)}: {scenario.name} ===")
                    logger.info(f"Description: {scenario.description}")
                    logger.info(f"Run: {iteration}")

                    records.append(await self._run_one(scenario, iteration))

                    logger.info("Cleaning up toxiproxy state...")
                    await self._cleanup_proxies()

                    if index < len(scenarios) - 1:
                        await asyncio.sleep(self.config.scenario_pause)

                if not self._continue_after(iteration):
                    break
                logger.info(f"Completed run {iteration}, starting next iteration...")
                await asyncio.sleep(self.config.iteration_pause)
        except asyncio.CancelledError:
            logger.info("Run cancelled, cleaning up toxiproxy state")
            await self._cleanup_proxies()
            raise

        summary = self.summary()
        logger.info(f"All scenarios complete ({iteration} run(s)): "
                    f"{summary['success']} succeeded, {summary['failed']} failed")
        return records

    def _continue_after(self, iteration: int) -> bool:
        if self.config.loop or self.config.runs == 0:
            return True
        return iteration < self.config.runs

    # =========================================================================
    # Interactive mode
    # =========================================================================

    async def run_interactive(self, initial: str,
                              requests: Optional[asyncio.Queue] = None) -> None:
        """
        Run ``initial`` repeatedly, switching on request.

        Names read from ``requests`` (``switch_requests`` by default) replace
        the running scenario: the current run is cancelled and awaited, the
        proxies are cleaned and the new scenario starts from the beginning.
        Unknown names are logged and ignored.
        """
        scenario = self.registry.get(initial)
        requests = requests if requests is not None else self.switch_requests

        run_count = 0
        current: Optional[asyncio.Task] = None
        switch = asyncio.ensure_future(self._next_switch(requests))
        try:
            while True:
                run_count += 1
                if self.config.runs and not self.config.loop:
                    logger.info(f"Starting scenario run {run_count}/{self.config.runs}: "
                                f"{scenario.description}")
                else:
                    logger.info(f"Starting scenario run {run_count}: {scenario.description}")

                current = asyncio.ensure_future(self._run_one(scenario, run_count))
                await asyncio.wait({current, switch}, return_when=asyncio.FIRST_COMPLETED)

                if not switch.done():
                    current = None
                    if not self._continue_after(run_count):
                        logger.info(f"All {self.config.runs} scenario runs complete")
                        return
                    await asyncio.wait({switch}, timeout=self.config.run_pause)
                    if not switch.done():
                        continue

                target = switch.result()
                if current is not None:
                    logger.info(f"Stopping {scenario.name}")
                    await self._stop(current)
                    current = None

                logger.info(f"Switching from {scenario.name} to {target.name}")
                await self._cleanup_proxies()
                await asyncio.sleep(self.config.switch_pause)

                scenario, run_count = target, 0
                switch = asyncio.ensure_future(self._next_switch(requests))
        finally:
            if current is not None:
                await self._stop(current)
            await self._stop(switch)
            await self._cleanup_proxies()

    async def _next_switch(self, requests: asyncio.Queue) -> Scenario:
        """Wait for the next request naming a registered scenario."""
        while True:
            name = str(await requests.get()).strip()
            try:
                return self.registry.get(name)
            except ScenarioNotFoundError as e:
                logger.warning(f"Ignoring switch request: {e}")

    @staticmethod
    async def _stop(task: asyncio.Task) -> None:
        """Cancel ``task`` and wait until it has finished unwinding."""
        task.cancel()
        await asyncio.wait({task})

    # =========================================================================
    # Shared helpers
    # =========================================================================

    async def _run_one(self, scenario: Scenario, iteration: int) -> ScenarioRunRecord:
        """Run a scenario once and record the outcome. Re-raises cancellation."""
        started = datetime.now()
        start = time.monotonic()
        record = ScenarioRunRecord(scenario.name, iteration, RunOutcome.SUCCESS, started)
        try:
            await scenario.run(self.proxies)
        except asyncio.CancelledError:
            record.outcome = RunOutcome.CANCELLED
            logger.info(f"Scenario {scenario.name} canceled")
            raise
        except Exception as e:
            record.outcome = RunOutcome.FAILED
            record.error = str(e)
            logger.error(f"ERROR: Scenario {scenario.name} failed: {e}")
        else:
            logger.info(f"SUCCESS: Scenario {scenario.name} completed in "
                        f"{time.monotonic() - start:.0f}s")
        finally:
            record.duration = time.monotonic() - start
            self.history.append(record)
        return record

    async def _cleanup_proxies(self) -> None:
        result = await self._cleanup(self.proxies)
        result.log_warnings("[Orchestrator]")
