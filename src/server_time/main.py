#!/usr/bin/env python3
"""
server-time: HTTP Date header clock offset estimator

Main entry point. This tool:
1. Reads the clock sync settings once at startup
2. Probes a web server with HEAD requests, reading only the Date header
3. Narrows the server's sub-second phase from whole-second samples
4. Reports the offset (server ≈ local + offset) and publishes a correction
   when it exceeds the sync threshold

Usage:
    # One run against a server
    server-time --url https://example.org

    # Re-run every 5 minutes, with a status endpoint
    server-time --config /etc/server-time/config.toml --interval 300 --health-port 8080

    # Offline run against a simulated server
    server-time --simulate --sim-offset-ms 1234.5 --sim-jitter-ms 3

Architecture:
    ┌──────────────────────────────────────────────────────────────┐
    │                        server-time                           │
    │                                                              │
    │  ┌─────────────┐  StartRun   ┌────────────────────────────┐  │
    │  │ Coordinator │────────────▶│ EstimatorWorker (thread)   │  │
    │  │             │◀────────────│ probe → refine → schedule  │  │
    │  └─────────────┘ OffsetReport└────────────────────────────┘  │
    │         │                                                    │
    │         ▼                                                    │
    │     EventBus: CORRECTION_AVAILABLE, RUN_COMPLETE             │
    └──────────────────────────────────────────────────────────────┘
"""

import argparse
import logging
import signal
import sys
import threading
from typing import Any, Dict, Optional

# Set up logging before imports that use it
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger('server-time')

from .config import ClockSyncSettings, load_config
from .engine.coordinator import ClockSyncCoordinator, start_clock_sync
from .estimation.probe import HttpTimeProbe
from .estimation.simulated_source import SimulatedClock, SimulatedTimeSource
from .interfaces.messages import RunOutcome, SyncOutcome
from .output.event_bus import CORRECTION_AVAILABLE, RUN_COMPLETE, EventBus
from .output.health_server import HealthServer

# Extra wall-clock slack when waiting on a run (one in-flight request)
WAIT_SLACK_S = 5.0


class ServerTimeDaemon:
    """
    Repeats clock sync runs at a fixed interval.

    Runs never overlap: the next run starts only after the previous one
    has published RUN_COMPLETE.
    """

    def __init__(
        self,
        settings: ClockSyncSettings,
        event_bus: EventBus,
        interval_s: float,
        coordinator_kwargs: Optional[Dict[str, Any]] = None,
        health_port: int = 0,
    ):
        self.settings = settings
        self.event_bus = event_bus
        self.interval_s = interval_s
        self.coordinator_kwargs = coordinator_kwargs or {}
        self.health_port = health_port

        self.coordinator: Optional[ClockSyncCoordinator] = None
        self.health_server: Optional[HealthServer] = None
        self._stop_event = threading.Event()

    def start(self):
        """Run until a shutdown signal arrives."""
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        logger.info("=" * 60)
        logger.info("server-time daemon starting")
        logger.info(f"  Server: {self.settings.url}")
        logger.info(f"  Interval: {self.interval_s}s")
        logger.info(f"  Timeout: {self.settings.timeout_ms}ms")
        logger.info(f"  Precision: {self.settings.precision_ms}ms")
        logger.info("=" * 60)

        self.coordinator = ClockSyncCoordinator(
            self.event_bus,
            timeout_ms=self.settings.timeout_ms,
            precision_ms=self.settings.precision_ms,
            sync_threshold_ms=self.settings.threshold_ms,
            **self.coordinator_kwargs,
        )

        if self.health_port > 0:
            self.health_server = HealthServer(port=self.health_port)
            self.health_server.set_coordinator(self.coordinator)
            self.health_server.start()

        try:
            while not self._stop_event.is_set():
                outcome = self.coordinator.run(
                    timeout=self.settings.timeout_ms / 1000.0 + WAIT_SLACK_S
                )
                if outcome is None:
                    logger.warning("Clock sync run did not complete in time, stopping it")
                    self.coordinator.stop()
                self._stop_event.wait(self.interval_s)
        finally:
            self._cleanup()

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self._stop_event.set()
        if self.coordinator:
            self.coordinator.stop()

    def _cleanup(self):
        if self.health_server:
            self.health_server.stop()
        if self.coordinator:
            stats = self.coordinator.stats
            logger.info(f"Completed {stats['runs']} runs, "
                        f"{stats['corrections']} corrections, {stats['failures']} failures")
        logger.info("server-time stopped")


def _build_coordinator_kwargs(args, settings: ClockSyncSettings) -> Dict[str, Any]:
    """Time source wiring: real HTTP server or simulation."""
    if not args.simulate:
        return {'probe_factory': lambda: HttpTimeProbe(settings.url)}

    clock = SimulatedClock()
    logger.info(f"Simulating server: offset={args.sim_offset_ms}ms, "
                f"latency={args.sim_latency_ms}ms, jitter={args.sim_jitter_ms}ms")
    return {
        'probe_factory': lambda: SimulatedTimeSource(
            clock,
            offset_ms=args.sim_offset_ms,
            latency_ms=args.sim_latency_ms,
            jitter_ms=args.sim_jitter_ms,
            seed=args.sim_seed,
        ),
        'clock': clock,
        'sleep': clock.sleep,
    }


def run_once(settings: ClockSyncSettings, event_bus: EventBus,
             coordinator_kwargs: Dict[str, Any]) -> Optional[RunOutcome]:
    """
    Run clock sync once, as at application startup.

    Returns:
        RunOutcome, or None if sync is disabled or did not complete
    """
    coordinator = start_clock_sync(settings, event_bus, **coordinator_kwargs)
    if coordinator is None:
        return None
    outcome = coordinator.wait(timeout=settings.timeout_ms / 1000.0 + WAIT_SLACK_S)
    if outcome is None:
        logger.error("Clock sync did not complete in time")
        coordinator.stop()
        outcome = coordinator.wait(timeout=WAIT_SLACK_S)
    return outcome


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='server-time: estimate clock offset from HTTP Date headers',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # One run against a server
    server-time --url https://example.org

    # Daemon mode with status endpoint
    server-time --config /etc/server-time/config.toml --interval 300 --health-port 8080

    # Simulated server, 1.2 s ahead, 3 ms jitter
    server-time --simulate --sim-offset-ms 1234.5 --sim-jitter-ms 3
        """
    )

    parser.add_argument('--config', '-c', help='Path to TOML configuration file')
    parser.add_argument('--url', '-u', help='Server base URL (overrides config)')
    parser.add_argument('--timeout-ms', type=int, help='Time budget per run in ms')
    parser.add_argument('--precision-ms', type=int, help='Required precision in ms')
    parser.add_argument('--threshold-ms', type=float,
                        help='Offsets within this are not published (default: precision)')
    parser.add_argument('--interval', type=float,
                        help='Re-run every N seconds (daemon mode, 0 = run once)')
    parser.add_argument('--health-port', type=int,
                        help='HTTP port for status endpoint in daemon mode (0 to disable)')
    parser.add_argument('--simulate', action='store_true',
                        help='Probe a simulated server instead of the network')
    parser.add_argument('--sim-offset-ms', type=float, default=1234.5,
                        help='Simulated server offset (default: 1234.5)')
    parser.add_argument('--sim-latency-ms', type=float, default=15.0,
                        help='Simulated one-way latency (default: 15)')
    parser.add_argument('--sim-jitter-ms', type=float, default=0.0,
                        help='Simulated latency jitter std dev (default: 0)')
    parser.add_argument('--sim-seed', type=int, default=None,
                        help='Random seed for the simulation')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    # Load configuration
    config = load_config(args.config)

    # Apply command-line overrides
    sync = config.setdefault('sync', {})
    if args.url:
        sync['url'] = args.url
    if args.timeout_ms is not None:
        sync['timeout_ms'] = args.timeout_ms
    if args.precision_ms is not None:
        sync['precision_ms'] = args.precision_ms
    if args.threshold_ms is not None:
        sync['sync_threshold_ms'] = args.threshold_ms
    if args.interval is not None:
        config.setdefault('daemon', {})['interval_s'] = args.interval
    if args.health_port is not None:
        config.setdefault('output', {})['health_port'] = args.health_port

    settings = ClockSyncSettings.from_config(config)
    event_bus = EventBus()
    event_bus.subscribe(
        logger, CORRECTION_AVAILABLE,
        lambda offset_ms: logger.info(f"Correction available: {offset_ms:+.3f}ms")
    )
    event_bus.subscribe(
        logger, RUN_COMPLETE,
        lambda: logger.debug("Clock sync run complete")
    )

    coordinator_kwargs = _build_coordinator_kwargs(args, settings)
    interval_s = float(config.get('daemon', {}).get('interval_s', 0))

    if interval_s > 0 and settings.enabled:
        daemon = ServerTimeDaemon(
            settings,
            event_bus,
            interval_s,
            coordinator_kwargs=coordinator_kwargs,
            health_port=int(config.get('output', {}).get('health_port', 0)),
        )
        daemon.start()
        return

    outcome = run_once(settings, event_bus, coordinator_kwargs)
    if outcome is None:
        if not settings.enabled:
            return
        sys.exit(1)

    print(outcome.to_json())
    if outcome.outcome in (SyncOutcome.FAILED, SyncOutcome.CANCELLED):
        sys.exit(1)


if __name__ == '__main__':
    main()
