"""Output adapters - event bus for consumers, health monitoring."""

from .event_bus import EventBus, CORRECTION_AVAILABLE, RUN_COMPLETE
from .health_server import HealthServer

__all__ = ['EventBus', 'CORRECTION_AVAILABLE', 'RUN_COMPLETE', 'HealthServer']
