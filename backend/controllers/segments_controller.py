from flask import Blueprint, jsonify, request

from controllers.helpers import current_user_id, json_body
from infra.cache_manager import user_invalidator
from security import ApiError, api_error_response, error_response, limit_endpoint
from services import segments_service

segments_bp = Blueprint("segments", __name__)


@segments_bp.get("/schedule/segments")
def list_segments():
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    try:
        result = segments_service.list_segments(user_id=user_id, args=request.args)
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result)


@segments_bp.post("/schedule/segments")
def create_segment():
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    limited = limit_endpoint("add_segment")
    if limited:
        return limited

    try:
        result, status = segments_service.create_segment(
            user_id=user_id,
            payload=json_body(),
            idempotency_key=request.headers.get("X-Idempotency-Key"),
            invalidate_cache_cb=user_invalidator(user_id),
        )
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result), status


@segments_bp.patch("/schedule/segments/<int:segment_id>")
def update_segment(segment_id: int):
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    limited = limit_endpoint("update_segment")
    if limited:
        return limited

    try:
        result, status = segments_service.update_segment(
            segment_id,
            user_id=user_id,
            payload=json_body(),
            invalidate_cache_cb=user_invalidator(user_id),
        )
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result), status


@segments_bp.delete("/schedule/segments/<int:segment_id>")
def delete_segment(segment_id: int):
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    limited = limit_endpoint("delete_segment")
    if limited:
        return limited

    try:
        result, status = segments_service.delete_segment(
            segment_id, user_id=user_id, invalidate_cache_cb=user_invalidator(user_id)
        )
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result), status
