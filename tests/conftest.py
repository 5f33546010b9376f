"""
Pytest configuration and fixtures for server-time tests.
"""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))


@pytest.fixture
def sim_clock():
    """Simulated local clock starting at a fixed epoch instant."""
    from server_time.estimation.simulated_source import SimulatedClock
    return SimulatedClock(start_ms=1_700_000_000_000.0)


@pytest.fixture
def event_bus():
    """Fresh event bus."""
    from server_time.output.event_bus import EventBus
    return EventBus()


@pytest.fixture
def recorded_events(event_bus):
    """Subscribe a recorder to both clock sync topics."""
    from server_time.output.event_bus import CORRECTION_AVAILABLE, RUN_COMPLETE

    events = []
    recorder = object()
    event_bus.subscribe(recorder, CORRECTION_AVAILABLE,
                        lambda offset_ms: events.append((CORRECTION_AVAILABLE, offset_ms)))
    event_bus.subscribe(recorder, RUN_COMPLETE,
                        lambda: events.append((RUN_COMPLETE,)))
    return events
