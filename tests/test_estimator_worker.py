"""
Unit tests for the Estimator Worker.

Runs the probe → refine → schedule loop against a simulated server and a
simulated clock, so multi-second runs complete instantly.
"""

import queue

import pytest

TRUE_OFFSET_MS = 2345.6


def _drain(outbox):
    reports = []
    while True:
        try:
            reports.append(outbox.get_nowait())
        except queue.Empty:
            return reports


def _worker(source, clock):
    from server_time.estimation.estimator_worker import EstimatorWorker
    return EstimatorWorker(source, clock=clock, sleep=clock.sleep)


class FailingProbe:
    """Time source that never answers."""

    def __init__(self):
        self.probe_count = 0
        self.closed = False

    def probe(self, deadline_ms):
        self.probe_count += 1
        return None

    def close(self):
        self.closed = True


class FlakyProbe:
    """Wraps a time source; every other probe fails after 10 ms."""

    def __init__(self, source):
        self.source = source
        self.calls = 0
        self.failures = 0

    def probe(self, deadline_ms):
        self.calls += 1
        if self.calls % 2 == 0:
            self.failures += 1
            self.source.clock.advance(10.0)
            return None
        return self.source.probe(deadline_ms)


class ExplodingProbe:
    """Time source with a bug."""

    def probe(self, deadline_ms):
        raise RuntimeError("probe bug")


class TestConvergence:
    """Fixed latency, no jitter: the run converges before the deadline."""

    def test_run_converges_to_true_offset(self, sim_clock):
        from server_time.estimation.simulated_source import SimulatedTimeSource
        from server_time.interfaces.messages import StartRun

        source = SimulatedTimeSource(sim_clock, offset_ms=TRUE_OFFSET_MS, latency_ms=10.0)
        worker = _worker(source, sim_clock)
        start = sim_clock.now()

        offset = worker.execute(StartRun(timeout_ms=8000, precision_ms=100))
        reports = _drain(worker.outbox)

        assert reports[-1].finished
        assert not any(r.finished for r in reports[:-1])
        assert reports[-1].offset_ms == offset
        assert offset == pytest.approx(TRUE_OFFSET_MS, abs=50.0)
        assert sim_clock.now() - start < 8000

    def test_interval_width_strictly_decreases(self, sim_clock):
        """Every accepted sample narrows the interval until converged."""
        from server_time.estimation.simulated_source import SimulatedTimeSource
        from server_time.estimation.interval_refiner import RunState, refine
        from server_time.estimation.scheduler import next_delay

        source = SimulatedTimeSource(sim_clock, offset_ms=-731.2, latency_ms=5.0)
        state = RunState.start(sim_clock.now(), 10000)
        widths = []

        while True:
            result = source.probe(state.deadline_ms)
            accepted = state.accepted
            state = refine(state, result)
            if state.accepted > accepted:
                widths.append(state.interval.width_ms)
            delay = next_delay(state, sim_clock.now(), 20)
            if delay is None:
                break
            sim_clock.sleep(delay)

        assert state.interval.width_ms <= 20
        assert len(widths) >= 3
        assert all(b < a for a, b in zip(widths, widths[1:]))

    @pytest.mark.parametrize("offset_ms", [0.0, 999.9, -12345.0, 86_400_000.5])
    def test_converges_for_various_offsets(self, sim_clock, offset_ms):
        from server_time.estimation.simulated_source import SimulatedTimeSource
        from server_time.interfaces.messages import StartRun

        source = SimulatedTimeSource(sim_clock, offset_ms=offset_ms, latency_ms=30.0)
        offset = _worker(source, sim_clock).execute(StartRun(timeout_ms=10000, precision_ms=100))

        assert offset == pytest.approx(offset_ms, abs=50.0)


class TestDeadline:
    """The run always ends within its budget."""

    @pytest.mark.parametrize("timeout_ms", [1, 500, 1500, 3000])
    def test_finished_within_budget(self, sim_clock, timeout_ms):
        from server_time.estimation.simulated_source import SimulatedTimeSource
        from server_time.interfaces.messages import StartRun

        source = SimulatedTimeSource(sim_clock, offset_ms=TRUE_OFFSET_MS,
                                     latency_ms=40.0, jitter_ms=15.0, seed=5)
        worker = _worker(source, sim_clock)
        start = sim_clock.now()

        worker.execute(StartRun(timeout_ms=timeout_ms, precision_ms=1))
        reports = _drain(worker.outbox)

        assert reports[-1].finished
        # Probe timeouts are bounded by the deadline (minimum 1 ms)
        assert sim_clock.now() <= start + timeout_ms + 1.0

    def test_slow_server_times_out(self, sim_clock):
        """Round trips longer than the budget never yield an estimate."""
        from server_time.estimation.simulated_source import SimulatedTimeSource
        from server_time.interfaces.messages import StartRun

        source = SimulatedTimeSource(sim_clock, latency_ms=5000.0)
        worker = _worker(source, sim_clock)

        assert worker.execute(StartRun(timeout_ms=2000, precision_ms=100)) is None
        assert source.failure_count >= 1


class TestNoSignal:
    """Every probe fails."""

    def test_final_report_has_no_offset(self, sim_clock):
        from server_time.estimation.simulated_source import SimulatedTimeSource
        from server_time.interfaces.messages import StartRun

        source = SimulatedTimeSource(sim_clock, failure_rate=1.0, seed=1)
        worker = _worker(source, sim_clock)

        offset = worker.execute(StartRun(timeout_ms=4000, precision_ms=100))
        reports = _drain(worker.outbox)

        assert offset is None
        assert all(r.offset_ms is None for r in reports)
        assert reports[-1].finished
        assert len(reports) == source.probe_count

    def test_failures_do_not_end_run(self, sim_clock):
        """Intermittent failures are retried; the run still converges."""
        from server_time.estimation.simulated_source import SimulatedTimeSource
        from server_time.interfaces.messages import StartRun

        source = FlakyProbe(SimulatedTimeSource(sim_clock, offset_ms=TRUE_OFFSET_MS, latency_ms=10.0))
        offset = _worker(source, sim_clock).execute(StartRun(timeout_ms=20000, precision_ms=100))

        assert source.failures > 0
        assert offset == pytest.approx(TRUE_OFFSET_MS, abs=50.0)

    def test_probe_exception_still_reports_finished(self, sim_clock):
        """A bug in the probe ends the run with a well-formed final report."""
        from server_time.interfaces.messages import StartRun

        worker = _worker(ExplodingProbe(), sim_clock)

        assert worker.execute(StartRun(timeout_ms=1000, precision_ms=100)) is None
        reports = _drain(worker.outbox)
        assert len(reports) == 1
        assert reports[0].finished
        assert reports[0].offset_ms is None


class TestWorkerThread:
    """Message passing and teardown."""

    def test_start_run_via_inbox(self, sim_clock):
        from server_time.estimation.simulated_source import SimulatedTimeSource
        from server_time.estimation.estimator_worker import WorkerState
        from server_time.interfaces.messages import StartRun

        source = SimulatedTimeSource(sim_clock, offset_ms=TRUE_OFFSET_MS, latency_ms=10.0)
        worker = _worker(source, sim_clock)
        assert worker.state == WorkerState.IDLE

        worker.start()
        worker.post(StartRun(timeout_ms=8000, precision_ms=100))

        report = worker.outbox.get(timeout=5)
        while not report.finished:
            report = worker.outbox.get(timeout=5)

        worker.terminate()
        worker.thread.join(timeout=5)

        assert not worker.thread.is_alive()
        assert worker.state == WorkerState.FINISHED
        assert report.offset_ms == pytest.approx(TRUE_OFFSET_MS, abs=50.0)

    def test_terminate_interrupts_sleep(self):
        """Teardown mid-run stops the worker without further reports."""
        from server_time.estimation.estimator_worker import EstimatorWorker
        from server_time.interfaces.messages import StartRun

        probe = FailingProbe()
        worker = EstimatorWorker(probe)
        worker.start()
        worker.post(StartRun(timeout_ms=60000, precision_ms=100))

        first = worker.outbox.get(timeout=5)
        worker.terminate()
        worker.thread.join(timeout=5)

        assert not first.finished
        assert not worker.thread.is_alive()
        assert worker.outbox.empty()
        assert probe.probe_count == 1
        assert probe.closed

    def test_terminate_before_start_run(self):
        from server_time.estimation.estimator_worker import EstimatorWorker

        probe = FailingProbe()
        worker = EstimatorWorker(probe)
        worker.start()
        worker.terminate()
        worker.thread.join(timeout=5)

        assert not worker.thread.is_alive()
        assert probe.probe_count == 0


class TestStartRunValidation:

    @pytest.mark.parametrize("kwargs", [{"timeout_ms": 0}, {"precision_ms": -5}])
    def test_rejects_non_positive_values(self, kwargs):
        from server_time.interfaces.messages import StartRun

        with pytest.raises(ValueError):
            StartRun(**kwargs)
