"""Sliding-window rate limiter keyed by endpoint and caller."""

import threading
import time
from collections import defaultdict, deque
from typing import Callable, DefaultDict, Deque, Optional

_rate_limit_storage: DefaultDict[str, Deque[float]] = defaultdict(deque)
_rate_limit_lock = threading.Lock()
_time_provider: Callable[[], float] = time.time


def check_rate_limit(key: str, identifier: Optional[str], limit: int, window: int) -> bool:
    """Record one hit and report whether the caller is over ``limit`` per ``window`` seconds."""
    storage_key = f"{identifier or 'anonymous'}:{key}"
    now = _time_provider()

    with _rate_limit_lock:
        entries = _rate_limit_storage[storage_key]
        cutoff = now - window
        while entries and entries[0] <= cutoff:
            entries.popleft()
        if len(entries) >= limit:
            return True
        entries.append(now)
        return False


def set_time_provider(func: Callable[[], float]) -> None:
    global _time_provider
    _time_provider = func


def reset() -> None:
    with _rate_limit_lock:
        _rate_limit_storage.clear()
