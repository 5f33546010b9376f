"""
Tests for configuration loading.
"""

import pytest


class TestLoadConfig:

    def test_defaults_without_file(self):
        from server_time.config import load_config, DEFAULT_CONFIG

        assert load_config(None) == DEFAULT_CONFIG

    def test_missing_file_uses_defaults(self, tmp_path):
        from server_time.config import load_config, DEFAULT_CONFIG

        assert load_config(str(tmp_path / "absent.toml")) == DEFAULT_CONFIG

    def test_partial_file_merges_with_defaults(self, tmp_path):
        from server_time.config import load_config

        path = tmp_path / "server-time.toml"
        path.write_text('[sync]\nurl = "https://time.example"\nprecision_ms = 25\n')

        config = load_config(str(path))

        assert config['sync']['url'] == "https://time.example"
        assert config['sync']['precision_ms'] == 25
        assert config['sync']['timeout_ms'] == 8000
        assert config['output']['health_port'] == 0

    def test_defaults_are_not_shared(self):
        from server_time.config import load_config, DEFAULT_CONFIG

        load_config(None)['sync']['url'] = "mutated"

        assert DEFAULT_CONFIG['sync']['url'] != "mutated"

    def test_invalid_toml_raises(self, tmp_path):
        import toml
        from server_time.config import load_config

        path = tmp_path / "broken.toml"
        path.write_text("[sync\nurl = ")

        with pytest.raises(toml.TomlDecodeError):
            load_config(str(path))


class TestClockSyncSettings:

    def test_threshold_defaults_to_precision(self):
        from server_time.config import ClockSyncSettings

        assert ClockSyncSettings(precision_ms=40).threshold_ms == 40.0

    def test_explicit_threshold(self):
        from server_time.config import ClockSyncSettings

        settings = ClockSyncSettings(precision_ms=40, sync_threshold_ms=500)

        assert settings.threshold_ms == 500.0

    def test_from_config(self):
        from server_time.config import ClockSyncSettings

        settings = ClockSyncSettings.from_config({
            'sync': {
                'enabled': False,
                'url': "https://time.example",
                'timeout_ms': 3000,
                'precision_ms': 50,
                'sync_threshold_ms': 200,
            }
        })

        assert not settings.enabled
        assert settings.url == "https://time.example"
        assert settings.timeout_ms == 3000
        assert settings.precision_ms == 50
        assert settings.threshold_ms == 200.0

    def test_from_empty_config(self):
        from server_time.config import ClockSyncSettings
        from server_time.interfaces.messages import DEFAULT_PRECISION_MS, DEFAULT_TIMEOUT_MS

        settings = ClockSyncSettings.from_config({})

        assert settings.enabled
        assert settings.url == 'http://localhost:8000'
        assert settings.timeout_ms == DEFAULT_TIMEOUT_MS
        assert settings.precision_ms == DEFAULT_PRECISION_MS
        assert settings.sync_threshold_ms is None
