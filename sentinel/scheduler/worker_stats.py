"""Process-lifetime counters for the verification scheduler."""

import threading
from dataclasses import dataclass, asdict, fields
from typing import Dict


@dataclass
class _Counters:
    total_checked: int = 0
    total_available: int = 0
    total_unavailable: int = 0
    recovery_attempts: int = 0
    recovery_success: int = 0


class WorkerStats:
    """Thread-safe counters; not persisted, reset on demand."""

    def __init__(self):
        self._counters = _Counters()
        self._lock = threading.Lock()

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self._counters, name, getattr(self._counters, name) + amount)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return asdict(self._counters)

    def reset(self) -> None:
        with self._lock:
            for counter in fields(self._counters):
                setattr(self._counters, counter.name, 0)
