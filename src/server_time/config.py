"""
Configuration loading for server-time.

Configuration is a TOML file; missing sections and keys fall back to
DEFAULT_CONFIG. The settings relevant to clock sync are read once, at
startup, into a ClockSyncSettings instance.

Example:
    [sync]
    enabled = true
    url = "https://example.org"
    timeout_ms = 8000
    precision_ms = 100
    sync_threshold_ms = 100

    [output]
    health_port = 8080

    [daemon]
    interval_s = 300
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
import copy
import logging

import toml

from .interfaces.messages import DEFAULT_PRECISION_MS, DEFAULT_TIMEOUT_MS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    'sync': {
        'enabled': True,
        'url': 'http://localhost:8000',
        'timeout_ms': DEFAULT_TIMEOUT_MS,
        'precision_ms': DEFAULT_PRECISION_MS,
    },
    'output': {
        'health_port': 0,
    },
    'daemon': {
        'interval_s': 0,
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a TOML file.

    Args:
        config_path: Path to TOML file; defaults are used if None or missing

    Returns:
        Configuration dictionary with defaults filled in

    Raises:
        toml.TomlDecodeError: File exists but is not valid TOML
    """
    if config_path and Path(config_path).exists():
        with open(config_path, 'r') as f:
            loaded = toml.load(f)
        logger.info(f"Loaded configuration from {config_path}")
        return _merge(DEFAULT_CONFIG, loaded)

    if config_path:
        logger.warning(f"Config file {config_path} not found, using defaults")
    return copy.deepcopy(DEFAULT_CONFIG)


@dataclass(frozen=True)
class ClockSyncSettings:
    """Clock sync settings, read once at startup."""
    enabled: bool = True
    url: str = 'http://localhost:8000'
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    precision_ms: int = DEFAULT_PRECISION_MS
    sync_threshold_ms: Optional[float] = None

    @property
    def threshold_ms(self) -> float:
        """Offset magnitude below which no correction is published."""
        if self.sync_threshold_ms is None:
            return float(self.precision_ms)
        return float(self.sync_threshold_ms)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ClockSyncSettings":
        sync = config.get('sync', {})
        threshold = sync.get('sync_threshold_ms')
        return cls(
            enabled=bool(sync.get('enabled', True)),
            url=str(sync.get('url', cls.url)),
            timeout_ms=int(sync.get('timeout_ms', DEFAULT_TIMEOUT_MS)),
            precision_ms=int(sync.get('precision_ms', DEFAULT_PRECISION_MS)),
            sync_threshold_ms=float(threshold) if threshold is not None else None,
        )
