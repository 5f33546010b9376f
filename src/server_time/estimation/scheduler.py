"""
Probe Scheduler

Decides when the next probe should be sent. The most informative sample is
one whose server-side timestamp lands right on the predicted second
boundary: it splits the confidence interval at its midpoint. The scheduler
aims the next request at that boundary, early by the last one-way latency.
"""

from typing import Optional
import logging

from .interval_refiner import RunState, MS_PER_SECOND

logger = logging.getLogger(__name__)

# Retry period while no baseline sample exists
NO_BASELINE_RETRY_MS = 1000.0


def is_converged(state: RunState, precision_ms: float) -> bool:
    """True once the interval is no wider than the required precision."""
    return state.interval.width_ms <= precision_ms


def next_delay(state: RunState, now_ms: float, precision_ms: float) -> Optional[float]:
    """
    Delay until the next probe.

    Args:
        state: Current run state
        now_ms: Current local time (ms)
        precision_ms: Interval width at which the run has converged

    Returns:
        Delay in ms, or None when the run is done (converged or out of time)
    """
    if is_converged(state, precision_ms):
        logger.debug(f"Converged: width {state.interval.width_ms:.1f}ms <= {precision_ms}ms")
        return None

    delay_ms = NO_BASELINE_RETRY_MS
    if state.baseline is not None:
        baseline_ms = state.baseline.local_sample_time_ms
        seconds_since = (now_ms - baseline_ms) // MS_PER_SECOND
        boundary_ms = baseline_ms + MS_PER_SECOND * (seconds_since + 1) - state.interval.midpoint_ms
        delay_ms = boundary_ms - (state.latency_ms or 0.0) - now_ms

    while delay_ms < 0:
        delay_ms += MS_PER_SECOND

    if now_ms + delay_ms > state.deadline_ms:
        logger.debug(f"Deadline reached: next probe would be "
                     f"{now_ms + delay_ms - state.deadline_ms:.0f}ms late")
        return None

    return delay_ms
