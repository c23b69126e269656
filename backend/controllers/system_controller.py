import time
from datetime import datetime

from flask import Blueprint, jsonify

from infra import health_service
from timeutils import format_date, monday_of, now_local

system_bp = Blueprint("system", __name__)


@system_bp.get("/")
def home():
    return jsonify({"status": "ok"}), 200


@system_bp.get("/health")
def health():
    summary, healthy = health_service.build_health_summary()
    status_code = 200 if healthy else 503
    return jsonify(summary), status_code


@system_bp.get("/time")
def server_time():
    """Server clock probe for diagnosing wall-clock drift against the browser."""
    now = now_local()
    offset = datetime.now().astimezone().utcoffset()
    return jsonify(
        {
            "serverNow": now.isoformat(),
            "serverEpochMs": int(time.time() * 1000),
            "tzOffsetMinutes": int(offset.total_seconds() // 60) if offset else 0,
            "weekStart": format_date(monday_of(now)),
        }
    )
