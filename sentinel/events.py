"""
In-process publish/subscribe registry for engine events.

Listeners are registered per event name and called synchronously on the
emitting thread. A failing listener is logged and skipped so that it can
never break the scheduler or the recovery chain.
"""

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

# Content lifecycle
CONTENT_UNAVAILABLE = "content:unavailable"
CONTENT_RECOVERED = "content:recovered"
CONTENT_RECOVERY_FAILED = "content:recovery-failed"
CONTENT_UNRECOVERABLE = "content:unrecoverable"

# Scheduler
BATCH_STARTED = "batch:started"
BATCH_COMPLETED = "batch:completed"
BATCH_ERROR = "batch:error"
WORKER_STARTED = "worker:started"
WORKER_STOPPED = "worker:stopped"

# Backups
BACKUP_CREATED = "backup:created"

Listener = Callable[[Dict[str, Any]], None]


class EventBus:
    """Registry of listeners keyed by event name."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._lock = threading.RLock()
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that removes it again."""
        with self._lock:
            self._listeners[event].append(listener)

        def _unsubscribe():
            self.unsubscribe(event, listener)

        return _unsubscribe

    def unsubscribe(self, event: str, listener: Listener) -> bool:
        with self._lock:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)
                return True
            return False

    def emit(self, event: str, payload: Optional[Dict[str, Any]] = None) -> int:
        """Deliver an event to every listener. Returns how many were called."""
        with self._lock:
            listeners = list(self._listeners.get(event, []))

        payload = payload or {}
        self._logger.debug(f"Emitting {event} to {len(listeners)} listener(s)")

        for listener in listeners:
            try:
                listener(payload)
            except Exception as e:
                self._logger.error(f"Listener for {event} raised: {e}")

        return len(listeners)

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._listeners.get(event, []))
