"""
Clock offset estimation for server-time.

Probe, interval refinement and scheduling algorithms, plus the worker that
runs them.
"""

from .estimator_worker import EstimatorWorker, WorkerState
from .interval_refiner import ConfidenceInterval, Baseline, RunState, refine, estimate_offset
from .probe import HttpTimeProbe, ProbeError, parse_date_header
from .scheduler import next_delay

__all__ = [
    'EstimatorWorker', 'WorkerState',
    'ConfidenceInterval', 'Baseline', 'RunState', 'refine', 'estimate_offset',
    'HttpTimeProbe', 'ProbeError', 'parse_date_header',
    'next_delay',
]
