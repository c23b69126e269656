from flask import Blueprint, jsonify, request

from controllers.helpers import current_user_id, json_body, query_truthy
from infra.cache_manager import user_invalidator
from security import ApiError, api_error_response, error_response, limit_endpoint
from services import activities_service

activities_bp = Blueprint("activities", __name__)


@activities_bp.get("/activities")
def get_activities():
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    try:
        activities = activities_service.list_activities(
            user_id=user_id, active_only=query_truthy("activeOnly")
        )
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify({"activities": activities})


@activities_bp.post("/activities")
def add_activity():
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    limited = limit_endpoint("add_activity")
    if limited:
        return limited

    try:
        result, status = activities_service.add_activity(
            user_id=user_id,
            payload=json_body(),
            idempotency_key=request.headers.get("X-Idempotency-Key"),
            invalidate_cache_cb=user_invalidator(user_id),
        )
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result), status


@activities_bp.get("/activities/<int:activity_id>")
def get_activity(activity_id: int):
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    try:
        result = activities_service.get_activity(activity_id, user_id=user_id)
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result)


@activities_bp.patch("/activities/<int:activity_id>")
def update_activity(activity_id: int):
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    limited = limit_endpoint("update_activity")
    if limited:
        return limited

    try:
        result, status = activities_service.update_activity(
            activity_id,
            user_id=user_id,
            payload=json_body(),
            invalidate_cache_cb=user_invalidator(user_id),
        )
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result), status


@activities_bp.delete("/activities/<int:activity_id>")
def delete_activity(activity_id: int):
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    limited = limit_endpoint("delete_activity")
    if limited:
        return limited

    try:
        result, status = activities_service.delete_activity(
            activity_id, user_id=user_id, invalidate_cache_cb=user_invalidator(user_id)
        )
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result), status
