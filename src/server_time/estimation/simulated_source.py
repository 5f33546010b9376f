#!/usr/bin/env python3
"""
Simulated Server Clock and Time Source

A deterministic stand-in for an HTTP server, used to exercise the estimator
without a network:

- SimulatedClock: a manual millisecond clock. sleep() advances it instantly,
  so multi-second runs complete in microseconds.
- SimulatedTimeSource: a server whose clock runs at local + offset, reached
  over a link with fixed one-way latency plus optional Gaussian jitter and
  random failures. Implements the same probe(deadline_ms) contract as
  HttpTimeProbe, including request timeouts against the deadline.

The server only ever reveals whole seconds, exactly like a Date header.
"""

from typing import Optional
import logging
import math

import numpy as np

from ..interfaces.messages import ProbeResult

logger = logging.getLogger(__name__)


class SimulatedClock:
    """Manually advanced local clock (epoch milliseconds)."""

    def __init__(self, start_ms: float = 1_700_000_000_000.0):
        self._now_ms = float(start_ms)

    def __call__(self) -> float:
        return self._now_ms

    def now(self) -> float:
        return self._now_ms

    def advance(self, delta_ms: float) -> float:
        if delta_ms < 0:
            raise ValueError(f"Cannot move clock backward by {delta_ms}ms")
        self._now_ms += delta_ms
        return self._now_ms

    def sleep(self, delay_ms: float) -> bool:
        """Sleep-compatible hook: advances the clock, never interrupted."""
        self.advance(delay_ms)
        return False


class SimulatedTimeSource:
    """
    Simulated HTTP time server.

    Attributes:
        offset_ms: True server offset (server = local + offset)
        latency_ms: Mean one-way latency
        jitter_ms: Std deviation of per-leg latency noise
        failure_rate: Probability that a probe fails outright
    """

    def __init__(
        self,
        clock: SimulatedClock,
        offset_ms: float = 0.0,
        latency_ms: float = 10.0,
        jitter_ms: float = 0.0,
        failure_rate: float = 0.0,
        seed: Optional[int] = None,
    ):
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError(f"failure_rate must be in [0, 1], got {failure_rate}")
        self.clock = clock
        self.offset_ms = offset_ms
        self.latency_ms = latency_ms
        self.jitter_ms = jitter_ms
        self.failure_rate = failure_rate
        self.rng = np.random.default_rng(seed)

        self.probe_count = 0
        self.failure_count = 0

    def server_time_ms(self, local_ms: float) -> float:
        """Server clock reading at a given local instant."""
        return local_ms + self.offset_ms

    def _leg_latency(self) -> float:
        if self.jitter_ms <= 0:
            return self.latency_ms
        return max(0.0, self.latency_ms + float(self.rng.normal(0.0, self.jitter_ms)))

    def probe(self, deadline_ms: float) -> Optional[ProbeResult]:
        """Same contract as HttpTimeProbe.probe()."""
        self.probe_count += 1
        sent_ms = self.clock.now()
        timeout_ms = max(deadline_ms - sent_ms, 1.0)

        if self.failure_rate > 0 and self.rng.random() < self.failure_rate:
            # Connection refused: costs one latency leg
            self.clock.advance(min(self.latency_ms, timeout_ms))
            self.failure_count += 1
            return None

        outbound_ms = self._leg_latency()
        inbound_ms = self._leg_latency()
        if outbound_ms + inbound_ms > timeout_ms:
            self.clock.advance(timeout_ms)
            self.failure_count += 1
            logger.debug(f"Simulated probe timed out after {timeout_ms:.0f}ms")
            return None

        server_seconds = math.floor(self.server_time_ms(sent_ms + outbound_ms) / 1000.0)
        self.clock.advance(outbound_ms + inbound_ms)

        round_trip_ms = outbound_ms + inbound_ms
        return ProbeResult(
            server_seconds=server_seconds,
            local_sample_time_ms=sent_ms + round_trip_ms / 2,
            round_trip_ms=round_trip_ms,
        )
