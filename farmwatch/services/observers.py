from __future__ import annotations

import logging
from collections import deque
from typing import Optional

from ..domain.interfaces import SessionObserver
from ..domain.models import ActuatorKind, EventType, SensorReading, SessionEvent

logger = logging.getLogger(__name__)

# Transitions worth INFO; the rest go to DEBUG
_LOUD = {
    EventType.LOOP_STARTED,
    EventType.LOOP_STOPPED,
    EventType.LOOP_PAUSED,
    EventType.LOOP_RESUMED,
    EventType.DEGRADED,
    EventType.RECOVERED,
    EventType.RECOMMENDATION,
    EventType.SOURCE_CHANGED,
    EventType.ACTUATOR_APPLIED,
    EventType.OVERRIDE_CLEARED,
}
_WARN = {EventType.ACTUATOR_FAULTED, EventType.RECOMMENDATION_FAILED}


class ObserverHub:
    """Fans session events out to subscribers; a failing observer never reaches the loop."""

    def __init__(self, observers: Optional[list[SessionObserver]] = None) -> None:
        self._observers: list[SessionObserver] = list(observers or [])

    def subscribe(self, observer: SessionObserver) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: SessionObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def notify(self, event: SessionEvent) -> None:
        for obs in list(self._observers):
            try:
                obs.notify(event)
            except Exception:
                logger.exception("Observer %s failed on %s", type(obs).__name__, event.type.value)


class LoggingObserver:
    def notify(self, event: SessionEvent) -> None:
        if event.type in _WARN:
            level = logging.WARNING
        elif event.type in _LOUD:
            level = logging.INFO
        else:
            level = logging.DEBUG
        who = event.actuator.value if event.actuator else "-"
        logger.log(level, "session %s [%s] %s", event.type.value, who, event.payload)


class HistoryObserver:
    """Bounded reading history for charts plus the latest event per type."""

    def __init__(self, maxlen: int = 288) -> None:
        self._readings: deque[SensorReading] = deque(maxlen=maxlen)
        self._events: deque[SessionEvent] = deque(maxlen=maxlen)
        self.latest: dict[tuple[EventType, Optional[ActuatorKind]], SessionEvent] = {}

    def notify(self, event: SessionEvent) -> None:
        self.latest[(event.type, event.actuator)] = event
        if event.type is EventType.PHASE:
            return
        self._events.append(event)
        if event.type is EventType.READING:
            reading = event.payload.get("reading")
            if isinstance(reading, SensorReading):
                self._readings.append(reading)

    def readings(self, limit: Optional[int] = None) -> list[SensorReading]:
        return _tail(self._readings, limit)

    def events(self, limit: Optional[int] = None) -> list[SessionEvent]:
        return _tail(self._events, limit)


def _tail(items: deque, limit: Optional[int]) -> list:
    out = list(items)
    if limit is None:
        return out
    if limit <= 0:
        return []
    return out[-limit:]
