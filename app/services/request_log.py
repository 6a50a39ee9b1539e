"""
Observers receiving one event per authenticated ERP call attempt.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Iterable, List, Protocol

from app.schemas.sync import RequestLogEvent

logger = logging.getLogger(__name__)


class RequestObserver(Protocol):
    def record(self, event: RequestLogEvent) -> None:
        ...


class LoggingRequestObserver:
    """Write request events to the standard logger."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logging.getLogger("app.erp.requests")

    def record(self, event: RequestLogEvent) -> None:
        level = logging.INFO if event.outcome == "success" else logging.WARNING
        self._log.log(
            level,
            "%s %s -> %s in %sms (%s)%s",
            event.method,
            event.url,
            event.status if event.status is not None else "no response",
            event.duration_ms,
            event.outcome,
            f": {event.error}" if event.error else "",
        )


class RequestLogBuffer:
    """Keeps the most recent events in memory for the admin endpoint."""

    def __init__(self, max_entries: int = 500) -> None:
        self._events: Deque[RequestLogEvent] = deque(maxlen=max_entries)

    def record(self, event: RequestLogEvent) -> None:
        self._events.append(event)

    def recent(self, limit: int = 100) -> List[RequestLogEvent]:
        """Newest first."""
        if limit <= 0:
            return []
        return list(reversed(self._events))[:limit]

    def clear(self) -> None:
        self._events.clear()


class CompositeRequestObserver:
    """Fan an event out to several observers."""

    def __init__(self, observers: Iterable[RequestObserver]) -> None:
        self._observers = list(observers)

    def record(self, event: RequestLogEvent) -> None:
        for observer in self._observers:
            try:
                observer.record(event)
            except Exception:  # pylint: disable=broad-except
                logger.warning("Request observer %r failed", observer, exc_info=True)


__all__ = [
    "CompositeRequestObserver",
    "LoggingRequestObserver",
    "RequestLogBuffer",
    "RequestObserver",
]
