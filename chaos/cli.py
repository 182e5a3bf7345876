"""
Scenario Controller CLI.

Command-line interface for listing and running failure scenarios against
a Toxiproxy-fronted memcache cluster.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from monitoring import ScenarioMetrics, start_metrics_server
from observability import DistributedTracer, ScenarioTracingObserver, TracingConfig

from .catalog import build_catalog
from .config import ToxiproxyConfig
from .errors import ProxyError, ScenarioNotFoundError
from .observer import CompositeObserver
from .orchestrator import ALL_SCENARIOS, Orchestrator, OrchestratorConfig
from .proxy import ToxiproxyClient, setup_proxies
from .suites import DEFAULT_LATENCY_MS

logger = logging.getLogger(__name__)

QUIT_COMMANDS = ("q", "quit", "exit")


def setup_logging(verbose: bool = False):
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def print_scenario_list(latency_ms: int = DEFAULT_LATENCY_MS):
    """Print the catalog grouped by family."""
    catalog = build_catalog(latency_ms=latency_ms)

    print("\n=== Available Scenarios ===")
    for group, scenarios in catalog.grouped().items():
        print(f"\n{group}:")
        for scenario in scenarios:
            print(f"  {scenario.name:<35} {scenario.description}")

    print("\nUsage:")
    print("  chaos-scenarios run <name>          Run specific scenario")
    print("  chaos-scenarios run all             Run all scenarios sequentially")
    print("  chaos-scenarios run all --loop      Loop scenarios continuously")
    print("  chaos-scenarios run <name> -i       Run interactively, type a name to switch")
    print()


def print_summary(orchestrator: Orchestrator):
    summary = orchestrator.summary()
    print("\n" + "=" * 60)
    print("Scenario Runs")
    print("=" * 60)
    for record in orchestrator.history:
        line = f"  [{record.outcome.value:>9}] {record.scenario} (run {record.iteration}, {record.duration:.0f}s)"
        if record.error:
            line += f" - {record.error}"
        print(line)
    print(f"\n  Total: {summary['total']}  Success: {summary['success']}  "
          f"Failed: {summary['failed']}  Cancelled: {summary['cancelled']}")
    print("=" * 60 + "\n")


def attach_telemetry(observer: CompositeObserver, args) -> Optional[DistributedTracer]:
    """Add the metrics sink, plus a tracing sink when an OTLP endpoint is configured."""
    metrics = ScenarioMetrics()
    if args.metrics_port:
        start_metrics_server(args.metrics_port, metrics)
    observer.add(metrics)

    if not args.otlp_endpoint:
        return None
    tracer = DistributedTracer(TracingConfig(otlp_endpoint=args.otlp_endpoint))
    tracer.initialize()
    observer.add(ScenarioTracingObserver(tracer.tracer))
    return tracer


def watch_stdin(loop: asyncio.AbstractEventLoop, orchestrator: Orchestrator,
                main_task: asyncio.Task) -> None:
    """Feed scenario names typed on stdin to the orchestrator."""
    def on_line():
        line = sys.stdin.readline()
        name = line.strip()
        if not line or name in QUIT_COMMANDS:
            logger.info("Quit requested, shutting down...")
            loop.remove_reader(sys.stdin)
            main_task.cancel()
        elif name:
            logger.info(f"Switch requested: {name}")
            orchestrator.request_switch(name)

    loop.add_reader(sys.stdin, on_line)


async def run_scenarios(args) -> int:
    """Set up proxies and telemetry, then run the selection until done or interrupted."""
    observer = CompositeObserver()
    catalog = build_catalog(observer, latency_ms=args.latency_ms)

    if args.scenario != ALL_SCENARIOS and args.scenario not in catalog.registry:
        print(f"Error: {ScenarioNotFoundError(args.scenario)}")
        print("Use 'chaos-scenarios list' to see available scenarios")
        return 1
    if args.interactive and args.scenario == ALL_SCENARIOS:
        print("Error: interactive mode needs a single starting scenario")
        return 1

    logger.info("Starting memcache scenario controller")
    tracer = attach_telemetry(observer, args)
    if args.metrics_port:
        logger.info(f"  Metrics: http://localhost:{args.metrics_port}/metrics")

    config = ToxiproxyConfig.default(api_url=args.toxiproxy_url)
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, main_task.cancel)

    orchestrator: Optional[Orchestrator] = None
    try:
        async with ToxiproxyClient(config.api_url) as client:
            logger.info("Initializing toxiproxy...")
            try:
                proxies = await setup_proxies(client, config)
            except ProxyError as e:
                logger.error(f"Error setting up toxiproxy: {e}")
                logger.error("Make sure toxiproxy is running (docker compose up -d)")
                return 1

            orchestrator = Orchestrator(
                catalog.registry, proxies,
                OrchestratorConfig(loop=args.loop, runs=args.runs),
            )
            if args.interactive:
                watch_stdin(loop, orchestrator, main_task)
                try:
                    await orchestrator.run_interactive(args.scenario)
                finally:
                    loop.remove_reader(sys.stdin)
            else:
                await orchestrator.run(args.scenario)
    except asyncio.CancelledError:
        logger.info("Received interrupt, shutting down...")
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        if tracer is not None:
            tracer.shutdown()

    if orchestrator is not None:
        print_summary(orchestrator)
    logger.info("Scenario controller shutting down")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chaos-scenarios",
        description="Failure scenario controller for a Toxiproxy-fronted memcache cluster",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List all available scenarios
  chaos-scenarios list

  # Run a specific scenario once
  chaos-scenarios run packet-loss-10-pct

  # Run every scenario in name order, forever
  chaos-scenarios run all --loop

  # Start with one scenario and switch by typing names on stdin
  chaos-scenarios run latency --interactive
        """
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "--toxiproxy-url",
        type=str,
        default=None,
        help="Toxiproxy API address (default: $TOXIPROXY_URL or http://localhost:8474)"
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=9092,
        help="Port for Prometheus metrics, 0 to disable (default: 9092)"
    )
    parser.add_argument(
        "--otlp-endpoint",
        type=str,
        default=None,
        help="OTLP collector endpoint for scenario traces (e.g. http://jaeger:4317)"
    )
    parser.add_argument(
        "--latency-ms",
        type=int,
        default=DEFAULT_LATENCY_MS,
        help=f"Added latency for the latency suite (default: {DEFAULT_LATENCY_MS})"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("list", help="List available scenarios")

    run_parser = subparsers.add_parser("run", help="Run a scenario, or 'all'")
    run_parser.add_argument(
        "scenario",
        type=str,
        help="Name of the scenario to run, or 'all' for every scenario in name order"
    )
    run_parser.add_argument(
        "--loop",
        action="store_true",
        help="Loop scenarios continuously"
    )
    run_parser.add_argument(
        "--runs",
        type=int,
        default=None,
        help="Number of runs, 0 for continuous (default: 1, or continuous with --interactive)"
    )
    run_parser.add_argument(
        "--interactive", "-i",
        action="store_true",
        help="Read scenario names from stdin and switch to them ('q' quits)"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    if args.command == "list":
        print_scenario_list(args.latency_ms)
        return 0

    if args.command == "run":
        if args.runs is None:
            args.runs = 0 if args.interactive else 1
        if args.runs < 0:
            parser.error("--runs must be >= 0")
        return asyncio.run(run_scenarios(args))

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
