"""
Publish/subscribe bus connecting the coordinator to offset consumers.

The bus is an ordinary object: build one and hand it to whoever publishes
or subscribes. Callbacks run synchronously on the publishing thread; an
exception raised by one is logged and does not reach the publisher.

Topics published by server-time:
    CORRECTION_AVAILABLE(offset_ms)  - offset worth applying
    RUN_COMPLETE()                   - estimation finished, whatever the result
"""

from typing import Any, Callable, Dict, Tuple
import logging
import threading

logger = logging.getLogger(__name__)

CORRECTION_AVAILABLE = "correction_available"
RUN_COMPLETE = "run_complete"

EventCallback = Callable[..., Any]


class EventBus:
    """Topic-based publish/subscribe, one callback per (subscriber, topic)."""

    def __init__(self):
        self._topics: Dict[str, Dict[int, Tuple[object, EventCallback]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, subscriber: object, topic: str, callback: EventCallback):
        """
        Register a callback for a topic.

        Raises:
            ValueError: subscriber already subscribed to this topic
        """
        with self._lock:
            callbacks = self._topics.setdefault(topic, {})
            if id(subscriber) in callbacks:
                raise ValueError(f'Subscriber is already subscribed to "{topic}".')
            # Holding the subscriber keeps its id() from being reused
            callbacks[id(subscriber)] = (subscriber, callback)

    def unsubscribe(self, subscriber: object, topic: str):
        with self._lock:
            callbacks = self._topics.get(topic)
            if callbacks is None:
                return
            callbacks.pop(id(subscriber), None)
            if not callbacks:
                del self._topics[topic]

    def publish(self, topic: str, *event_data: Any):
        """Invoke every callback subscribed to topic with event_data."""
        with self._lock:
            callbacks = [callback for _, callback in self._topics.get(topic, {}).values()]
        logger.debug(f"Publishing {topic} to {len(callbacks)} subscriber(s)")
        for callback in callbacks:
            try:
                callback(*event_data)
            except Exception:
                # One failing subscriber must not starve the others
                logger.exception(f"Subscriber callback for {topic} failed")

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, {}))

    def clear(self):
        with self._lock:
            self._topics.clear()
