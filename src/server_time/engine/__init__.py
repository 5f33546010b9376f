"""Clock sync coordination - owns the estimator worker and publishes results.

Contains:
- ClockSyncCoordinator: one worker per run, decides whether to publish
"""

from .coordinator import ClockSyncCoordinator, CoordinatorState, start_clock_sync

__all__ = ['ClockSyncCoordinator', 'CoordinatorState', 'start_clock_sync']
