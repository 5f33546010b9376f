"""
Clock Sync Coordinator

Runs in the caller's context and owns the estimator worker for the duration
of one run:

    start() ──▶ spawn EstimatorWorker, post StartRun
            ──▶ dispatcher thread drains OffsetReports
                 keeps the latest estimate
                 on finished: terminate worker, decide, publish

Decision on completion:
    no estimate                 → FAILED     (logged, nothing published)
    |offset| <= threshold       → IN_SYNC    (clocks already close enough)
    |offset| >  threshold       → CORRECTED  (CORRECTION_AVAILABLE published)

RUN_COMPLETE is published in every case, including cancellation, so that
dependent components can stop waiting.
"""

from enum import Enum
from typing import Any, Callable, Dict, Optional
import logging
import queue
import threading
import time

from ..config import ClockSyncSettings
from ..estimation.clock import monotonic_time_ms
from ..estimation.estimator_worker import EstimatorWorker
from ..estimation.probe import HttpTimeProbe
from ..interfaces.messages import (
    DEFAULT_PRECISION_MS,
    DEFAULT_TIMEOUT_MS,
    OffsetReport,
    RunOutcome,
    StartRun,
    SyncOutcome,
)
from ..output.event_bus import CORRECTION_AVAILABLE, RUN_COMPLETE, EventBus

logger = logging.getLogger(__name__)


class CoordinatorState(Enum):
    """Coordinator lifecycle."""
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    COMPLETE = "COMPLETE"


class ClockSyncCoordinator:
    """
    Owns one estimator worker per run and republishes its result.

    Only one run may be active at a time; start() refuses a second one.
    """

    # How often the dispatcher checks for cancellation while idle
    POLL_INTERVAL_S = 0.1

    def __init__(
        self,
        event_bus: EventBus,
        probe_factory: Callable[[], Any],
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        precision_ms: int = DEFAULT_PRECISION_MS,
        sync_threshold_ms: Optional[float] = None,
        clock: Callable[[], float] = monotonic_time_ms,
        sleep: Optional[Callable[[float], bool]] = None,
    ):
        """
        Initialize coordinator.

        Args:
            event_bus: Bus on which results are published
            probe_factory: Builds a fresh time source for each run
            timeout_ms: Time budget per run
            precision_ms: Interval width at which the worker stops
            sync_threshold_ms: Offsets within this are not published
                (defaults to precision_ms)
            clock: Local clock handed to the worker
            sleep: Optional sleep hook handed to the worker
        """
        self.event_bus = event_bus
        self.probe_factory = probe_factory
        self.request = StartRun(timeout_ms=timeout_ms, precision_ms=precision_ms)
        self.threshold_ms = float(precision_ms if sync_threshold_ms is None else sync_threshold_ms)
        self.clock = clock
        self.sleep = sleep

        self.state = CoordinatorState.IDLE
        self.worker: Optional[EstimatorWorker] = None
        self.last_outcome: Optional[RunOutcome] = None

        self._lock = threading.Lock()
        self._done = threading.Event()
        self._cancelled = threading.Event()
        self._dispatcher: Optional[threading.Thread] = None
        self._offset_ms: Optional[float] = None
        self._reports = 0
        self._started_at = 0.0

        self.stats = {
            'runs': 0,
            'corrections': 0,
            'in_sync': 0,
            'failures': 0,
            'cancelled': 0,
        }

    @property
    def running(self) -> bool:
        return self.state == CoordinatorState.RUNNING

    @property
    def latest_offset_ms(self) -> Optional[float]:
        """Latest estimate reported during the current or last run."""
        return self._offset_ms

    def start(self) -> bool:
        """
        Start one estimation run.

        Returns:
            True if started, False if a run is already active
        """
        with self._lock:
            if self.state == CoordinatorState.RUNNING:
                logger.warning("Clock sync already running, ignoring start")
                return False

            self.state = CoordinatorState.RUNNING
            # Fresh per run: a waiter never sees a previous run complete
            self._done = threading.Event()
            self._cancelled.clear()
            self._offset_ms = None
            self._reports = 0
            self._started_at = time.time()
            self.stats['runs'] += 1

            self.worker = EstimatorWorker(
                self.probe_factory(),
                clock=self.clock,
                sleep=self.sleep,
                name=f"EstimatorWorker-{self.stats['runs']}",
            )
            self.worker.start()
            self.worker.post(self.request)

            self._dispatcher = threading.Thread(
                target=self._dispatch,
                args=(self.worker,),
                name="ClockSyncCoordinator",
                daemon=True,
            )
            self._dispatcher.start()

        logger.info(f"Clock sync started (timeout={self.request.timeout_ms}ms, "
                    f"precision={self.request.precision_ms}ms, threshold={self.threshold_ms:g}ms)")
        return True

    def _dispatch(self, worker: EstimatorWorker):
        """Dispatcher thread: forward worker reports until the run ends."""
        while not self._cancelled.is_set():
            try:
                report = worker.outbox.get(timeout=self.POLL_INTERVAL_S)
            except queue.Empty:
                continue
            if self._cancelled.is_set():
                break
            if self.handle_report(report) is not None:
                return

        self._complete(SyncOutcome.CANCELLED)

    def handle_report(self, report: OffsetReport) -> Optional[RunOutcome]:
        """
        Process one worker report.

        Args:
            report: Incremental or final report

        Returns:
            RunOutcome if this was the final report, else None
        """
        self._reports += 1
        if report.offset_ms is not None:
            self._offset_ms = report.offset_ms
            logger.debug(f"Estimate #{self._reports}: {report.offset_ms:+.3f}ms")

        if not report.finished:
            return None

        if self.worker is not None:
            self.worker.terminate()

        if self._offset_ms is None:
            outcome = SyncOutcome.FAILED
        elif abs(self._offset_ms) <= self.threshold_ms:
            outcome = SyncOutcome.IN_SYNC
        else:
            outcome = SyncOutcome.CORRECTED

        return self._complete(outcome)

    def _complete(self, outcome: SyncOutcome) -> RunOutcome:
        """Record the outcome, publish events, release waiters."""
        # Captured first: a RUN_COMPLETE subscriber may start the next run
        done = self._done
        result = RunOutcome(
            outcome=outcome,
            offset_ms=self._offset_ms,
            threshold_ms=self.threshold_ms,
            reports=self._reports,
            duration_s=time.time() - self._started_at if self._started_at else 0.0,
        )
        self.last_outcome = result
        self.worker = None

        if outcome == SyncOutcome.CORRECTED:
            self.stats['corrections'] += 1
            logger.info(result.describe())
        elif outcome == SyncOutcome.IN_SYNC:
            self.stats['in_sync'] += 1
            logger.info(result.describe())
        elif outcome == SyncOutcome.FAILED:
            self.stats['failures'] += 1
            logger.error(result.describe())
        else:
            self.stats['cancelled'] += 1
            logger.info(result.describe())

        self.state = CoordinatorState.COMPLETE
        try:
            if outcome == SyncOutcome.CORRECTED:
                self.event_bus.publish(CORRECTION_AVAILABLE, result.offset_ms)
        finally:
            try:
                self.event_bus.publish(RUN_COMPLETE)
            finally:
                done.set()
        return result

    def stop(self):
        """
        Tear down the current run, if any.

        The worker is terminated immediately; an in-flight probe is
        abandoned. The dispatcher publishes RUN_COMPLETE on its way out.
        """
        worker = self.worker
        if worker is None or not self.running:
            return
        logger.info("Stopping clock sync")
        self._cancelled.set()
        worker.terminate()

    def wait(self, timeout: Optional[float] = None) -> Optional[RunOutcome]:
        """
        Block until the current run completes.

        Args:
            timeout: Seconds to wait (None = forever)

        Returns:
            RunOutcome, or None if the wait timed out
        """
        if not self._done.wait(timeout):
            return None
        return self.last_outcome

    def run(self, timeout: Optional[float] = None) -> Optional[RunOutcome]:
        """Start a run and wait for its outcome."""
        if not self.start():
            return None
        return self.wait(timeout)

    def status(self) -> Dict[str, Any]:
        """Snapshot of coordinator state for monitoring."""
        status: Dict[str, Any] = {
            'timestamp': time.time(),
            'state': self.state.value,
            'offset_ms': self._offset_ms,
            'threshold_ms': self.threshold_ms,
            'timeout_ms': self.request.timeout_ms,
            'precision_ms': self.request.precision_ms,
        }
        status.update(self.stats)
        if self.last_outcome is not None:
            status['last_outcome'] = self.last_outcome.to_dict()
        return status


def start_clock_sync(
    settings: ClockSyncSettings,
    event_bus: EventBus,
    probe_factory: Optional[Callable[[], Any]] = None,
    **kwargs,
) -> Optional[ClockSyncCoordinator]:
    """
    Start clock sync if enabled in settings.

    When sync is disabled nothing is probed, and RUN_COMPLETE is published
    straight away so that components waiting on clock sync can proceed.

    Args:
        settings: Settings read at startup
        event_bus: Bus on which results are published
        probe_factory: Time source factory (default: HttpTimeProbe on settings.url)
        **kwargs: Passed through to ClockSyncCoordinator (clock, sleep)

    Returns:
        The running coordinator, or None if sync is disabled
    """
    if not settings.enabled:
        logger.info("Clock sync disabled, using local time")
        event_bus.publish(RUN_COMPLETE)
        return None

    if probe_factory is None:
        probe_factory = lambda: HttpTimeProbe(settings.url)  # noqa: E731

    coordinator = ClockSyncCoordinator(
        event_bus,
        probe_factory,
        timeout_ms=settings.timeout_ms,
        precision_ms=settings.precision_ms,
        sync_threshold_ms=settings.threshold_ms,
        **kwargs,
    )
    coordinator.start()
    return coordinator
