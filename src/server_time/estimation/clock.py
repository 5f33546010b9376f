"""
Local clock for server-time estimation.

All timestamps handled by the estimator are milliseconds on a monotonic
clock that is anchored to the Unix epoch once, at import time. Offsets
computed against it are therefore comparable with wall-clock time, but the
clock itself never steps backward if the system time is adjusted while a
run is in progress.
"""

import time

# Epoch milliseconds corresponding to time.monotonic() == 0
_EPOCH_ANCHOR_MS = time.time() * 1000.0 - time.monotonic() * 1000.0


def monotonic_time_ms(offset_ms: float = 0.0) -> float:
    """
    Current local time in epoch milliseconds.

    Args:
        offset_ms: Optional correction to add (e.g. a published server offset)

    Returns:
        Milliseconds since the Unix epoch, monotonic within this process
    """
    return _EPOCH_ANCHOR_MS + time.monotonic() * 1000.0 + offset_ms
