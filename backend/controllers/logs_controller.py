from flask import Blueprint, jsonify, request

from controllers.helpers import current_user_id, json_body, parse_pagination
from infra.cache_manager import user_invalidator
from security import ApiError, api_error_response, error_response, limit_endpoint
from services import timelogs_service

logs_bp = Blueprint("logs", __name__)


@logs_bp.get("/logs")
def list_logs():
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    try:
        pagination = parse_pagination()
        result = timelogs_service.list_logs(
            user_id=user_id,
            args=request.args,
            limit=pagination["limit"],
            offset=pagination["offset"],
        )
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result)


@logs_bp.post("/logs")
def create_log():
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    limited = limit_endpoint("add_log")
    if limited:
        return limited

    try:
        result, status = timelogs_service.create_log(
            user_id=user_id,
            payload=json_body(),
            idempotency_key=request.headers.get("X-Idempotency-Key"),
            invalidate_cache_cb=user_invalidator(user_id),
        )
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result), status


@logs_bp.patch("/logs/<int:log_id>")
def update_log(log_id: int):
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    limited = limit_endpoint("update_log")
    if limited:
        return limited

    try:
        result, status = timelogs_service.update_log(
            log_id,
            user_id=user_id,
            payload=json_body(),
            invalidate_cache_cb=user_invalidator(user_id),
        )
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result), status


@logs_bp.delete("/logs/<int:log_id>")
def delete_log(log_id: int):
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    limited = limit_endpoint("delete_log")
    if limited:
        return limited

    try:
        result, status = timelogs_service.delete_log(
            log_id, user_id=user_id, invalidate_cache_cb=user_invalidator(user_id)
        )
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result), status


@logs_bp.post("/logs/start")
def start_log():
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    limited = limit_endpoint("start_log")
    if limited:
        return limited

    try:
        result, status = timelogs_service.start_log(
            user_id=user_id,
            payload=json_body(required=False),
            invalidate_cache_cb=user_invalidator(user_id),
        )
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result), status


@logs_bp.post("/logs/terminate")
def terminate_log():
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    limited = limit_endpoint("terminate_log")
    if limited:
        return limited

    try:
        result, status = timelogs_service.terminate_log(
            user_id=user_id, invalidate_cache_cb=user_invalidator(user_id)
        )
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result), status


@logs_bp.get("/logs/current")
def current_log():
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    try:
        result = timelogs_service.current_log(user_id=user_id)
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result)
