"""Explicit publish/subscribe channel for pipeline events."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from .logging import get_logger

EVENT_TYPES = (
    "ready",
    "analysis-complete",
    "drift-detected",
    "violations-detected",
    "patterns-updated",
    "score-changed",
    "error",
)

Handler = Callable[["Event"], None]

logger = get_logger("observers")


@dataclass(frozen=True)
class Event:
    type: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`."""

    def __init__(self, bus: "EventBus", token: int, event_type: Optional[str]) -> None:
        self._bus = bus
        self._token = token
        self.event_type = event_type

    @property
    def active(self) -> bool:
        return self._bus._has(self._token)

    def unsubscribe(self) -> None:
        self._bus._remove(self._token)


class EventBus:
    """Fans events out to subscribers.

    A subscriber registered for ``None`` receives every event type. A handler
    that raises is logged and does not prevent delivery to the others.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: Dict[int, tuple[Optional[str], Handler]] = {}
        self._next_token = 0

    def subscribe(self, handler: Handler, event_type: Optional[str] = None) -> Subscription:
        if event_type is not None and event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._handlers[token] = (event_type, handler)
        return Subscription(self, token, event_type)

    def publish(self, event: Event) -> None:
        with self._lock:
            targets: List[Handler] = [
                handler
                for wanted, handler in self._handlers.values()
                if wanted is None or wanted == event.type
            ]
        for handler in targets:
            try:
                handler(event)
            except Exception:
                logger.exception("Subscriber failed while handling %s event", event.type)

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    def _has(self, token: int) -> bool:
        with self._lock:
            return token in self._handlers

    def _remove(self, token: int) -> None:
        with self._lock:
            self._handlers.pop(token, None)


__all__ = ["EVENT_TYPES", "Event", "EventBus", "Handler", "Subscription"]
