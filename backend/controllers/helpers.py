from typing import Any, Dict, Optional

from flask import current_app, g, request
from security import BadRequestError


def current_user_id() -> Optional[int]:
    user = getattr(g, "current_user", None)
    return user["id"] if user else None


def json_body(required: bool = True) -> Dict[str, Any]:
    """Request JSON as a dict; malformed or non-object bodies are a 400."""
    if not request.get_data(cache=True):
        if required:
            raise BadRequestError("Invalid JSON payload", code="invalid_json")
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequestError("Invalid JSON payload", code="invalid_json")
    return data


def query_truthy(name: str) -> bool:
    value = request.args.get(name)
    if value is None:
        return False
    return value.strip().lower() in ("1", "true", "yes")


def parse_pagination(
    default_limit: Optional[int] = None, max_limit: Optional[int] = None
) -> Dict[str, int]:
    if default_limit is None:
        default_limit = current_app.config.get("LOG_PAGE_DEFAULT", 20)
    if max_limit is None:
        max_limit = current_app.config.get("LOG_PAGE_MAX", 100)
    try:
        limit_raw = request.args.get("limit", default_limit)
        limit = int(limit_raw)
        if limit <= 0:
            raise ValueError
    except (TypeError, ValueError):
        raise BadRequestError("limit must be a positive integer", code="invalid_query")

    try:
        offset_raw = request.args.get("offset", 0)
        offset = int(offset_raw)
        if offset < 0:
            raise ValueError
    except (TypeError, ValueError):
        raise BadRequestError(
            "offset must be a non-negative integer", code="invalid_query"
        )

    limit = min(limit, max_limit)
    return {"limit": limit, "offset": offset}
