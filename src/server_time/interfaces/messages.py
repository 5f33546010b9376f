"""
Message Contracts

These dataclasses define the contract between the estimator worker and the
coordinator that owns it, plus the outcome reported to the rest of the
application. Every message is frozen: the worker and the coordinator never
share mutable state, they only exchange snapshots.

    coordinator ──StartRun──▶ worker
    coordinator ◀─OffsetReport── worker   (after every probe attempt)

Contract Version: 1.0.0
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional
import json


# Default time budget for one estimation run
DEFAULT_TIMEOUT_MS = 8000

# Default confidence interval width at which a run is considered converged
DEFAULT_PRECISION_MS = 100


class SyncOutcome(str, Enum):
    """How an estimation run ended, from the coordinator's point of view."""
    CORRECTED = "CORRECTED"   # Offset exceeded the threshold and was published
    IN_SYNC = "IN_SYNC"       # Offset within the threshold, nothing published
    FAILED = "FAILED"         # No probe ever succeeded
    CANCELLED = "CANCELLED"   # Torn down before the worker finished


@dataclass(frozen=True)
class ProbeResult:
    """
    One sample of the server clock.

    server_seconds is the server's Unix time truncated to whole seconds, as
    read from the Date header. local_sample_time_ms is the local instant at
    which that value is assumed to have been true (midpoint of the round
    trip).
    """
    server_seconds: int
    local_sample_time_ms: float
    round_trip_ms: float


@dataclass(frozen=True)
class StartRun:
    """Configuration message that starts one worker run."""
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    precision_ms: int = DEFAULT_PRECISION_MS

    def __post_init__(self):
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if self.precision_ms <= 0:
            raise ValueError(f"precision_ms must be positive, got {self.precision_ms}")


@dataclass(frozen=True)
class OffsetReport:
    """
    Incremental or final estimate posted by the worker.

    offset_ms is None until a baseline sample exists. finished=True marks
    the last report of a run.
    """
    offset_ms: Optional[float]
    finished: bool = False


@dataclass(frozen=True)
class RunOutcome:
    """Final result of one run, as decided by the coordinator."""
    outcome: SyncOutcome
    offset_ms: Optional[float] = None
    threshold_ms: float = float(DEFAULT_PRECISION_MS)
    reports: int = 0
    duration_s: float = 0.0

    @property
    def published(self) -> bool:
        """True if a correction was sent to consumers."""
        return self.outcome == SyncOutcome.CORRECTED

    def describe(self) -> str:
        """Human-readable one-line summary."""
        if self.offset_ms is None:
            if self.outcome == SyncOutcome.CANCELLED:
                return "Clock sync cancelled."
            return "Failed to determine server time."

        abs_offset = abs(self.offset_ms)
        direction = "behind" if self.offset_ms < 0 else "ahead"
        verdict = "close enough." if self.outcome == SyncOutcome.IN_SYNC else "synced."
        if self.outcome == SyncOutcome.CANCELLED:
            verdict = "cancelled."
        return (f"Server is {abs_offset:.3f} ms {direction} "
                f"(±{self.threshold_ms:g} ms), {verdict}")

    def to_dict(self) -> dict:
        data = asdict(self)
        data['outcome'] = self.outcome.value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
