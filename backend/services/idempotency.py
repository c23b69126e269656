import os
import time
from threading import Lock
from typing import Dict, Optional, Tuple

_IDEMPOTENCY_TTL_SECONDS = int(os.environ.get("IDEMPOTENCY_TTL_SECONDS", "600"))
_idempotency_lock = Lock()
_idempotency_store: Dict[Tuple[int, str, str], Tuple[float, dict, int]] = {}


def lookup(user_id: int, key: Optional[str], scope: str = "") -> Optional[Tuple[dict, int]]:
    """Replay the response stored for ``(user, scope, key)`` while it is fresh."""
    if not key:
        return None
    now = time.time()
    with _idempotency_lock:
        entry = _idempotency_store.get((user_id, scope, key))
        if not entry:
            return None
        created_at, payload, status = entry
        if now - created_at > _IDEMPOTENCY_TTL_SECONDS:
            _idempotency_store.pop((user_id, scope, key), None)
            return None
        return payload, status


def store_response(
    user_id: int, key: Optional[str], payload: dict, status: int, scope: str = ""
) -> None:
    if not key:
        return
    now = time.time()
    with _idempotency_lock:
        _idempotency_store[(user_id, scope, key)] = (now, payload, status)


def reset() -> None:
    with _idempotency_lock:
        _idempotency_store.clear()
