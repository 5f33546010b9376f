"""
Interval Refiner - sub-second phase estimation from whole-second samples

================================================================================
THE PROBLEM
================================================================================
The only time source is the HTTP Date header, which has ONE SECOND resolution.
A single sample therefore only tells us the server second, not where within
that second the server clock currently is.

================================================================================
THE TRICK
================================================================================
The first successful sample becomes the BASELINE: server second S0 observed
at local instant L0. The unknown is the phase p ∈ [0, 1000) ms: how far into
second S0 the server clock was at L0.

A later sample taken `elapsed` ms after L0 reads server second S. If the
server clock advanced exactly by `elapsed`:

    S == S0 + floor(elapsed / 1000)      iff   p < 1000 - (elapsed mod 1000)

so each sample splits the candidate range for p at
`candidate = 1000 - (elapsed mod 1000)`:

    same second as extrapolated   ──▶  high = min(high, candidate)
    one second ahead              ──▶  low  = max(low,  candidate)

The interval [low, high] only ever narrows. Samples whose round trip is
wider than the interval cannot improve it and are rejected; samples whose
candidate falls outside the interval are inconsistent and discarded.

The estimated offset (server - local) is then

    offset = 1000 * S0 + midpoint(low, high) - L0
"""

from dataclasses import dataclass, replace
from typing import Optional
import logging

from ..interfaces.messages import ProbeResult

logger = logging.getLogger(__name__)

MS_PER_SECOND = 1000.0


@dataclass(frozen=True)
class ConfidenceInterval:
    """Bounds (ms) on the server clock's sub-second phase at the baseline."""
    low_ms: float = 0.0
    high_ms: float = MS_PER_SECOND

    @property
    def width_ms(self) -> float:
        return self.high_ms - self.low_ms

    @property
    def midpoint_ms(self) -> float:
        return (self.low_ms + self.high_ms) / 2

    def contains(self, value_ms: float) -> bool:
        """True if value lies within the bounds (ties included)."""
        return self.low_ms <= value_ms <= self.high_ms


@dataclass(frozen=True)
class Baseline:
    """First successful sample of a run; fixed for the rest of it."""
    server_seconds: int
    local_sample_time_ms: float


@dataclass(frozen=True)
class RunState:
    """
    Complete state of one estimation run.

    Never mutated in place: refine() returns a new instance.
    """
    deadline_ms: float
    interval: ConfidenceInterval = ConfidenceInterval()
    baseline: Optional[Baseline] = None
    latency_ms: Optional[float] = None   # Last one-way latency (scheduling only)
    accepted: int = 0                    # Samples that tightened a bound
    rejected: int = 0                    # Noisy or inconsistent samples

    @classmethod
    def start(cls, now_ms: float, timeout_ms: float) -> "RunState":
        """Fresh state for a run starting at now_ms with the given budget."""
        return cls(deadline_ms=now_ms + timeout_ms)

    @property
    def has_baseline(self) -> bool:
        return self.baseline is not None


def refine(state: RunState, result: ProbeResult) -> RunState:
    """
    Fold one probe result into the run state.

    Args:
        state: Current run state
        result: Successful probe result

    Returns:
        New RunState (interval possibly narrowed, latency updated)
    """
    latency_ms = result.round_trip_ms / 2

    if state.baseline is None:
        # A lone sample carries no sub-second information
        baseline = Baseline(
            server_seconds=result.server_seconds,
            local_sample_time_ms=result.local_sample_time_ms,
        )
        logger.debug(f"Baseline: server second {baseline.server_seconds} "
                     f"at local {baseline.local_sample_time_ms:.3f}ms")
        return replace(state, baseline=baseline, latency_ms=latency_ms)

    interval = state.interval

    if result.round_trip_ms > interval.width_ms:
        logger.debug(f"Rejected: round trip {result.round_trip_ms:.1f}ms "
                     f"wider than interval {interval.width_ms:.1f}ms")
        return replace(state, latency_ms=latency_ms, rejected=state.rejected + 1)

    elapsed_ms = result.local_sample_time_ms - state.baseline.local_sample_time_ms
    candidate_ms = MS_PER_SECOND - (elapsed_ms % MS_PER_SECOND)

    if not interval.contains(candidate_ms):
        logger.debug(f"Rejected: candidate {candidate_ms:.1f}ms outside "
                     f"[{interval.low_ms:.1f}, {interval.high_ms:.1f}]")
        return replace(state, latency_ms=latency_ms, rejected=state.rejected + 1)

    expected_seconds = state.baseline.server_seconds + int(elapsed_ms // MS_PER_SECOND)
    if result.server_seconds == expected_seconds:
        # Boundary not reached yet at this sample
        interval = replace(interval, high_ms=min(interval.high_ms, candidate_ms))
    else:
        interval = replace(interval, low_ms=max(interval.low_ms, candidate_ms))

    logger.debug(f"Interval now [{interval.low_ms:.1f}, {interval.high_ms:.1f}] "
                 f"(width {interval.width_ms:.1f}ms)")

    return replace(
        state,
        interval=interval,
        latency_ms=latency_ms,
        accepted=state.accepted + 1,
    )


def estimate_offset(state: RunState) -> Optional[float]:
    """
    Current offset estimate such that server_time ≈ local_time + offset.

    Returns:
        Offset in ms, or None until a baseline exists
    """
    if state.baseline is None:
        return None
    return (MS_PER_SECOND * state.baseline.server_seconds
            + state.interval.midpoint_ms
            - state.baseline.local_sample_time_ms)
