"""Event bus for job lifecycle notifications.

The scheduler publishes ``job.queued``, ``job.started``, ``job.succeeded``,
``job.failed`` and ``job.cancelled`` with a data dict that always carries
``job_id`` and ``kind``.

Example:
    bus = get_event_bus()

    def on_done(data):
        log.info(f"job finished: {data['job_id']}")

    bus.subscribe("job.succeeded", on_done)
"""

from __future__ import annotations

import traceback
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from zipmason.core.logging import get_logger

_logger = get_logger(__name__)

JOB_QUEUED = "job.queued"
JOB_STARTED = "job.started"
JOB_SUCCEEDED = "job.succeeded"
JOB_FAILED = "job.failed"
JOB_CANCELLED = "job.cancelled"


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable[[dict[str, Any]], None]]] = defaultdict(list)
        self._all_subscribers: list[Callable[[str, dict[str, Any]], None]] = []

    def subscribe(self, event: str, callback: Callable[[dict[str, Any]], None]) -> None:
        """Subscribe to an event.

        Args:
            event: Event name
            callback: Callback function (receives event data dict)
        """
        self._subscribers[event].append(callback)

    def unsubscribe(self, event: str, callback: Callable[[dict[str, Any]], None]) -> None:
        if event in self._subscribers and callback in self._subscribers[event]:
            self._subscribers[event].remove(callback)

    def subscribe_all(self, callback: Callable[[str, dict[str, Any]], None]) -> None:
        """Subscribe to all published events.

        Args:
            callback: Callback function (receives event name and event data dict)
        """
        self._all_subscribers.append(callback)

    def publish(self, event: str, data: dict[str, Any] | None = None) -> None:
        """Publish an event. Handler errors are logged, never raised."""
        data = data or {}

        for cb_event in list(self._subscribers.get(event, [])):
            try:
                cb_event(data)
            except Exception as e:
                tb = traceback.format_exc()
                _logger.error(
                    f"Error in event handler for '{event}' (callback={cb_event}): "
                    f"{type(e).__name__}: {e}\n"
                    f"{tb}"
                )

        for cb_all in list(self._all_subscribers):
            try:
                cb_all(event, data)
            except Exception as e:
                tb = traceback.format_exc()
                _logger.error(
                    f"Error in all-event handler (event='{event}', callback={cb_all}): "
                    f"{type(e).__name__}: {e}\n"
                    f"{tb}"
                )

    def clear(self) -> None:
        self._subscribers.clear()
        self._all_subscribers.clear()


_global_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    global _global_bus
    if _global_bus is None:
        _global_bus = EventBus()
    return _global_bus
