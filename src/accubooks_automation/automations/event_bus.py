"""In-process publish/subscribe channel for named events."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

WILDCARD = "*"

Handler = Callable[[str, Any], None]


class EventBus:
    """Routes published events to subscribers by name ("*" receives all).

    Handlers run synchronously on the publishing thread; a failing handler
    is logged and does not stop delivery to the rest.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, name: str, handler: Handler) -> Callable[[], None]:
        """Subscribe *handler* to *name*. Returns a callable that unsubscribes."""
        with self._lock:
            self._subscribers[name].append(handler)
        return lambda: self.unsubscribe(name, handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        """Remove a handler. No-op if it is not subscribed."""
        with self._lock:
            handlers = self._subscribers.get(name)
            if handlers and handler in handlers:
                handlers.remove(handler)

    def publish(self, name: str, payload: Any = None) -> int:
        """Deliver an event to its subscribers. Returns the number of handlers called."""
        with self._lock:
            handlers = list(self._subscribers.get(name, []))
            if name != WILDCARD:
                handlers.extend(self._subscribers.get(WILDCARD, []))
        for handler in handlers:
            try:
                handler(name, payload)
            except Exception:
                logger.exception("EventBus handler failed for event %r", name)
        return len(handlers)
