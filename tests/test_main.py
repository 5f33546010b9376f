"""
Tests for the command-line entry point wiring.
"""

import argparse
import json

import pytest


def _args(**overrides):
    values = {
        'simulate': True,
        'sim_offset_ms': 1234.5,
        'sim_latency_ms': 15.0,
        'sim_jitter_ms': 0.0,
        'sim_seed': 3,
    }
    values.update(overrides)
    return argparse.Namespace(**values)


class TestRunOnce:

    def test_simulated_run(self, event_bus, recorded_events):
        from server_time.config import ClockSyncSettings
        from server_time.interfaces.messages import SyncOutcome
        from server_time.main import _build_coordinator_kwargs, run_once
        from server_time.output.event_bus import CORRECTION_AVAILABLE

        settings = ClockSyncSettings()
        outcome = run_once(settings, event_bus, _build_coordinator_kwargs(_args(), settings))

        assert outcome.outcome == SyncOutcome.CORRECTED
        assert outcome.offset_ms == pytest.approx(1234.5, abs=50.0)
        assert recorded_events[0][0] == CORRECTION_AVAILABLE

    def test_disabled_returns_none(self, event_bus, recorded_events):
        from server_time.config import ClockSyncSettings
        from server_time.main import run_once
        from server_time.output.event_bus import RUN_COMPLETE

        outcome = run_once(ClockSyncSettings(enabled=False), event_bus, {})

        assert outcome is None
        assert recorded_events == [(RUN_COMPLETE,)]

    def test_http_wiring_without_simulation(self):
        from server_time.config import ClockSyncSettings
        from server_time.estimation.probe import HttpTimeProbe
        from server_time.main import _build_coordinator_kwargs

        settings = ClockSyncSettings(url="http://time.example")
        kwargs = _build_coordinator_kwargs(_args(simulate=False), settings)

        probe = kwargs['probe_factory']()
        try:
            assert isinstance(probe, HttpTimeProbe)
            assert set(kwargs) == {'probe_factory'}
        finally:
            probe.close()


class TestMain:

    def test_simulated_cli_prints_outcome(self, monkeypatch, capsys):
        from server_time import main as main_module

        monkeypatch.setattr('sys.argv', [
            'server-time', '--simulate', '--sim-offset-ms', '-2500', '--sim-seed', '1',
        ])
        main_module.main()

        data = json.loads(capsys.readouterr().out)
        assert data['outcome'] == 'CORRECTED'
        assert data['offset_ms'] == pytest.approx(-2500.0, abs=50.0)

    def test_disabled_by_config_exits_cleanly(self, monkeypatch, tmp_path, capsys):
        from server_time import main as main_module

        config = tmp_path / "config.toml"
        config.write_text("[sync]\nenabled = false\n")
        monkeypatch.setattr('sys.argv', ['server-time', '--config', str(config)])

        main_module.main()

        assert capsys.readouterr().out == ""
