"""Small in-process TTL cache for per-user weekly views (dashboard, usage).

Keys look like ``<prefix>::user:<id>::<part>::<part>``. Writes drop the
writer's entries only; other users' weeks are unaffected.
"""

import copy
import time
from functools import partial
from threading import Lock
from typing import Callable, Dict, NamedTuple, Optional, Tuple


class CacheScope(NamedTuple):
    user_id: Optional[int]


CacheEntry = Tuple[float, object]

_cache_storage: Dict[str, CacheEntry] = {}
_cache_lock = Lock()
_time_provider: Callable[[], float] = time.time

DASHBOARD_CACHE_TTL = 60
USAGE_CACHE_TTL = 60


def build_cache_key(
    prefix: str, key_parts: Tuple, *, scope: Optional[CacheScope] = None
) -> str:
    parts = [prefix]
    if scope is not None:
        parts.append("user:anonymous" if scope.user_id is None else f"user:{scope.user_id}")
    parts.extend(str(part) for part in key_parts)
    return "::".join(parts)


def cache_get(prefix: str, key_parts: Tuple, *, scope: Optional[CacheScope] = None):
    key = build_cache_key(prefix, key_parts, scope=scope)
    with _cache_lock:
        entry = _cache_storage.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= _time_provider():
            del _cache_storage[key]
            return None
        return copy.deepcopy(value)


def cache_set(
    prefix: str,
    key_parts: Tuple,
    value: object,
    ttl: int,
    *,
    scope: Optional[CacheScope] = None,
) -> None:
    key = build_cache_key(prefix, key_parts, scope=scope)
    with _cache_lock:
        _cache_storage[key] = (_time_provider() + ttl, copy.deepcopy(value))


def invalidate_cache(prefix: str, *, scope: Optional[CacheScope] = None) -> None:
    """Drop entries under ``prefix``; for every user unless ``scope`` names one."""
    key_prefix = build_cache_key(prefix, (), scope=scope) + "::"
    with _cache_lock:
        for key in [key for key in _cache_storage if key.startswith(key_prefix)]:
            del _cache_storage[key]


def user_invalidator(user_id: int) -> Callable[[str], None]:
    """Callback handed to services so a write clears only its author's views."""
    return partial(invalidate_cache, scope=CacheScope(user_id))


def reset_cache() -> None:
    with _cache_lock:
        _cache_storage.clear()


def cache_size() -> int:
    with _cache_lock:
        return len(_cache_storage)


def cache_health() -> bool:
    key = build_cache_key("health", ("self-check",))
    cache_set("health", ("self-check",), True, 1)
    with _cache_lock:
        return _cache_storage.pop(key, None) is not None


def set_time_provider(func: Callable[[], float]) -> None:
    """Override time provider (used in tests)."""
    global _time_provider
    _time_provider = func
