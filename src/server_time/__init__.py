"""
server-time: HTTP Date header clock offset estimator

This package determines how far the local clock differs from a remote web
server's clock using nothing but the Date header of ordinary HTTP
responses, which has one-second resolution. Repeated, carefully timed
probes narrow the server's sub-second phase until the offset is known to
the required precision or the time budget runs out.

Architecture:
    EstimatorWorker (thread) → OffsetReport → ClockSyncCoordinator → EventBus

The estimator is best-effort: if it never converges the consuming
application proceeds on uncorrected local time.

Version: 1.0.0
"""

__version__ = "1.0.0"

from .interfaces.messages import (
    OffsetReport,
    ProbeResult,
    RunOutcome,
    StartRun,
    SyncOutcome,
)
from .engine.coordinator import ClockSyncCoordinator, start_clock_sync
from .output.event_bus import CORRECTION_AVAILABLE, RUN_COMPLETE, EventBus

__all__ = [
    "OffsetReport",
    "ProbeResult",
    "RunOutcome",
    "StartRun",
    "SyncOutcome",
    "ClockSyncCoordinator",
    "start_clock_sync",
    "EventBus",
    "CORRECTION_AVAILABLE",
    "RUN_COMPLETE",
    "__version__",
]
