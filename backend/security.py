from typing import Any, Dict, Optional, Type

from flask import current_app, g, jsonify, request
from infra import rate_limiter
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from schemas import (
    ActivityCreatePayload,
    ActivityUpdatePayload,
    SegmentCreatePayload,
    SegmentListQuery,
    SegmentUpdatePayload,
    TimeLogCreatePayload,
    TimeLogListQuery,
    TimeLogStartPayload,
    TimeLogUpdatePayload,
    WeekQuery,
)


class ApiError(Exception):
    """Error surfaced to the caller as ``{"error": {code, message, details}}``."""

    default_code = "internal_error"
    default_status = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status = status or self.default_status
        self.details = details or {}


class BadRequestError(ApiError):
    default_code = "invalid_json"
    default_status = 400


class AuthError(ApiError):
    default_code = "unauthorized"
    default_status = 401


class NotFoundError(ApiError):
    default_code = "not_found"
    default_status = 404


class ConflictError(ApiError):
    default_code = "conflict"
    default_status = 409


class StateError(ApiError):
    default_code = "invalid_state"
    default_status = 409


class ValidationError(ApiError):
    default_code = "validation_error"
    default_status = 422


def rate_limit(endpoint_name: str, limit: int, window_seconds: int):
    """Wrapper for the infra rate limiter to be used in controllers."""
    user_obj = getattr(g, "current_user", None)
    if user_obj:
        identifier = f"user:{user_obj['id']}"
    else:
        identifier = (
            request.headers.get("X-API-Key") or request.remote_addr or "anonymous"
        )
    is_limited = rate_limiter.check_rate_limit(
        endpoint_name, identifier, limit, window_seconds
    )
    if is_limited:
        return error_response("too_many_requests", "Rate limit exceeded", 429)
    return None


def limit_endpoint(endpoint_name: str):
    """Apply the configured ``RATE_LIMITS`` entry for ``endpoint_name``."""
    limits = current_app.config.get("RATE_LIMITS", {}).get(endpoint_name)
    if not limits:
        return None
    return rate_limit(endpoint_name, limits["limit"], limits["window"])


def require_api_key():
    """Require API key when TIMEGRID_API_KEY is set."""
    api_key: Optional[str] = current_app.config.get("API_KEY")
    if not api_key:
        return None

    if request.method == "OPTIONS":
        return None

    public_endpoints = current_app.config.get("PUBLIC_ENDPOINTS", {"home"})
    if request.endpoint in public_endpoints:
        return None
    endpoint_name = (request.endpoint or "").split(".", 1)[-1]
    if endpoint_name in public_endpoints:
        return None

    provided = request.headers.get("X-API-Key") or request.args.get("api_key")
    if provided != api_key:
        return error_response("unauthorized", "Unauthorized", 401)
    return None


def error_response(
    code: str,
    message: str,
    status: int,
    details: Optional[Dict[str, Any]] = None,
):
    payload = {
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        }
    }
    return jsonify(payload), status


def api_error_response(exc: ApiError):
    return error_response(exc.code, exc.message, exc.status, exc.details)


def _field_name(loc) -> str:
    return ".".join(str(part) for part in loc or () if part != "__root__")


def _extract_error_info(exc: PydanticValidationError) -> tuple[str, Dict[str, Any]]:
    errors = exc.errors()
    fields = [name for name in (_field_name(err.get("loc")) for err in errors) if name]
    missing_fields = [
        _field_name(err.get("loc")) for err in errors if err.get("type") == "missing"
    ]
    if missing_fields:
        return (
            f"Missing required field(s): {', '.join(missing_fields)}",
            {"fields": missing_fields},
        )
    if errors:
        message = errors[0].get("msg") or ""
        if message.startswith("Value error, "):
            message = message.split(", ", 1)[1]
        first_field = _field_name(errors[0].get("loc"))
        if first_field and not message.startswith(first_field):
            message = f"{first_field}: {message}"
        if message:
            return message, {"fields": fields}
    return str(exc), {"fields": fields}


def _validate(model: Type[BaseModel], payload: Any) -> BaseModel:
    if not isinstance(payload, dict):
        raise BadRequestError("Invalid JSON payload", code="invalid_json")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        message, details = _extract_error_info(exc)
        raise ValidationError(message, details=details)


def _validate_query(model: Type[BaseModel], args: Any) -> BaseModel:
    params = {key: value for key, value in dict(args or {}).items() if value != ""}
    try:
        return model.model_validate(params)
    except PydanticValidationError as exc:
        message, details = _extract_error_info(exc)
        raise BadRequestError(message, code="invalid_query", details=details)


def validate_activity_create_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = _validate(ActivityCreatePayload, payload)
    return data.model_dump()


def validate_activity_update_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = _validate(ActivityUpdatePayload, payload)
    return data.to_update_dict()


def validate_segment_create_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = _validate(SegmentCreatePayload, payload)
    return data.to_segment_dict()


def validate_segment_update_payload(payload: Dict[str, Any]) -> SegmentUpdatePayload:
    return _validate(SegmentUpdatePayload, payload)


def validate_timelog_create_payload(payload: Dict[str, Any]) -> TimeLogCreatePayload:
    return _validate(TimeLogCreatePayload, payload)


def validate_timelog_update_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = _validate(TimeLogUpdatePayload, payload)
    return data.to_update_dict()


def validate_timelog_start_payload(payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    data = _validate(TimeLogStartPayload, payload if payload is not None else {})
    return data.model_dump()


def validate_timelog_query(args) -> Dict[str, Any]:
    return _validate_query(TimeLogListQuery, args).model_dump()


def validate_segment_query(args) -> Dict[str, Any]:
    return _validate_query(SegmentListQuery, args).model_dump()


def validate_week_query(args) -> Dict[str, Any]:
    return _validate_query(WeekQuery, args).model_dump()
