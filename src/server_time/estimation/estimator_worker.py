"""
Estimator Worker - owns one estimation run in its own thread

    IDLE ──StartRun──▶ SAMPLING ──(converged | deadline)──▶ FINISHED

The worker talks to its owner only through two queues:

    inbox   StartRun messages (None = shut down)
    outbox  OffsetReport after every probe attempt; finished=True is last

All run state lives inside execute() and is never shared. A probe failure
does not end the run; the scheduler's deadline bounds how long failures can
go on. Whatever happens, the last message of a run is a well-formed
OffsetReport(finished=True), so the owner is never left waiting.

Usage:
    worker = EstimatorWorker(HttpTimeProbe(url))
    worker.start()
    worker.post(StartRun(timeout_ms=8000, precision_ms=100))
    report = worker.outbox.get()
"""

from enum import Enum
from typing import Callable, List, Optional
import logging
import queue
import threading

import numpy as np

from ..interfaces.messages import OffsetReport, StartRun
from .clock import monotonic_time_ms
from .interval_refiner import RunState, estimate_offset, refine
from .scheduler import next_delay

logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """Lifecycle of the estimator worker."""
    IDLE = "IDLE"            # Waiting for StartRun
    SAMPLING = "SAMPLING"    # Probing and refining
    FINISHED = "FINISHED"    # Final report posted


class EstimatorWorker:
    """
    Background worker running the probe → refine → report → schedule loop.

    Args:
        probe: Time source with probe(deadline_ms) -> Optional[ProbeResult]
        clock: Local clock in epoch milliseconds
        sleep: Optional sleep hook taking milliseconds and returning True if
            the worker was stopped while sleeping. Defaults to an
            interruptible wait on the worker's stop event.
    """

    def __init__(
        self,
        probe,
        clock: Callable[[], float] = monotonic_time_ms,
        sleep: Optional[Callable[[float], bool]] = None,
        name: str = "EstimatorWorker",
    ):
        self.probe = probe
        self.clock = clock
        self.name = name
        self._sleep = sleep or self._wait
        self._stop_event = threading.Event()

        self.inbox: "queue.Queue[Optional[StartRun]]" = queue.Queue()
        self.outbox: "queue.Queue[OffsetReport]" = queue.Queue()

        self.state = WorkerState.IDLE
        self.thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Start the worker thread."""
        if self.thread is not None:
            logger.warning(f"{self.name} already started")
            return
        self.thread = threading.Thread(target=self._serve, name=self.name, daemon=True)
        self.thread.start()

    def post(self, message: StartRun):
        """Send a StartRun message to the worker."""
        self.inbox.put(message)

    def terminate(self):
        """
        Stop the worker as soon as possible.

        An in-flight request is abandoned, not awaited: the thread is a
        daemon and posts nothing further once stopped.
        """
        self._stop_event.set()
        self.inbox.put(None)

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def _wait(self, delay_ms: float) -> bool:
        return self._stop_event.wait(delay_ms / 1000.0)

    def _serve(self):
        """Thread main: handle StartRun messages until terminated."""
        try:
            while not self.stopped:
                message = self.inbox.get()
                if message is None:
                    break
                self.execute(message)
        finally:
            close = getattr(self.probe, 'close', None)
            if close is not None:
                close()

    def _emit(self, report: OffsetReport):
        if not self.stopped:
            self.outbox.put(report)

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def execute(self, request: StartRun) -> Optional[float]:
        """
        Run one estimation to completion in the calling thread.

        Args:
            request: Run configuration

        Returns:
            Final offset estimate in ms, or None
        """
        self.state = WorkerState.SAMPLING
        run = RunState.start(self.clock(), request.timeout_ms)
        round_trips: List[float] = []
        failures = 0
        offset_ms: Optional[float] = None

        logger.info(f"{self.name}: starting run "
                    f"(timeout={request.timeout_ms}ms, precision={request.precision_ms}ms)")

        try:
            while True:
                result = self.probe.probe(run.deadline_ms)
                if self.stopped:
                    logger.info(f"{self.name}: terminated during probe")
                    return offset_ms

                if result is None:
                    failures += 1
                else:
                    round_trips.append(result.round_trip_ms)
                    run = refine(run, result)

                offset_ms = estimate_offset(run)
                delay_ms = next_delay(run, self.clock(), request.precision_ms)
                finished = delay_ms is None

                if finished:
                    self.state = WorkerState.FINISHED
                self._emit(OffsetReport(offset_ms=offset_ms, finished=finished))

                if finished:
                    break

                if self._sleep(delay_ms):
                    logger.info(f"{self.name}: terminated while sleeping")
                    return offset_ms

        except Exception as e:
            logger.exception(f"{self.name}: run aborted: {e}")
            self.state = WorkerState.FINISHED
            self._emit(OffsetReport(offset_ms=offset_ms, finished=True))
            return offset_ms

        self._log_summary(run, round_trips, failures, request.precision_ms)
        return offset_ms

    def _log_summary(self, run: RunState, round_trips: List[float], failures: int,
                     precision_ms: float):
        """Log how the run went."""
        interval = run.interval
        converged = interval.width_ms <= precision_ms
        logger.info(
            f"{self.name}: run finished ({'converged' if converged else 'deadline'}), "
            f"interval=[{interval.low_ms:.1f}, {interval.high_ms:.1f}]ms, "
            f"accepted={run.accepted}, rejected={run.rejected}, failures={failures}"
        )
        if round_trips:
            rtt = np.asarray(round_trips)
            logger.info(
                f"{self.name}: round trip median={np.median(rtt):.1f}ms "
                f"p90={np.percentile(rtt, 90):.1f}ms "
                f"min={rtt.min():.1f}ms max={rtt.max():.1f}ms (n={len(rtt)})"
            )
