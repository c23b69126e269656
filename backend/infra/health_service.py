import time
from datetime import datetime, timezone
from typing import Dict, Tuple

import structlog

from infra import cache_manager
from repositories import health_repo

logger = structlog.get_logger("timegrid.backend")

SERVER_START_TIME = time.time()


def check_db_latency() -> Dict[str, object]:
    try:
        latency = health_repo.ping_latency_ms()
    except Exception as exc:
        logger.warning("health.db_check_failed", error=str(exc))
        return {"ok": False, "latencyMs": None}
    return {"ok": True, "latencyMs": latency}


def check_cache_state() -> bool:
    try:
        return cache_manager.cache_health()
    except Exception as exc:
        logger.warning("health.cache_check_failed", error=str(exc))
        return False


def current_uptime_seconds(server_start_time: float) -> float:
    return max(0.0, time.time() - server_start_time)


def build_health_summary(
    server_start_time: float = SERVER_START_TIME,
) -> Tuple[Dict[str, object], bool]:
    db_state = check_db_latency()
    cache_ok = check_cache_state()
    healthy = bool(db_state["ok"])
    summary = {
        "status": "ok" if healthy else "error",
        "uptimeSec": round(current_uptime_seconds(server_start_time), 2),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_state,
        "cache_ok": cache_ok,
    }
    return summary, healthy
