"""
In-process event hooks for sync outcomes.
"""

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

SYNC_SUCCEEDED = "sync.succeeded"
SYNC_FAILED = "sync.failed"
SYNC_RECEIVED = "sync.received"


class EventBus:
    """Registry of listeners called synchronously when an event is emitted."""

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: Dict[str, List[Callable[..., Any]]] = defaultdict(list)

    def on(self, event: str, listener: Callable[..., Any]) -> Callable[..., Any]:
        """Register a listener. Returns it, so this also works as a decorator factory target."""
        with self._lock:
            self._listeners[event].append(listener)
        return listener

    def off(self, event: str, listener: Callable[..., Any]) -> None:
        with self._lock:
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

    def emit(self, event: str, **data: Any) -> None:
        """
        Call every listener for an event with the given keyword arguments.

        A failing listener is logged and does not stop the others or the sync.
        """
        with self._lock:
            listeners = list(self._listeners.get(event, ()))

        for listener in listeners:
            try:
                listener(**data)
            except Exception as e:
                logger.error(f"Listener for {event} failed: {e}")
