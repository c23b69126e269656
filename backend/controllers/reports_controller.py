from flask import Blueprint, jsonify, request

from controllers.helpers import current_user_id
from security import ApiError, api_error_response, error_response
from services import dashboard_service, usage_service

reports_bp = Blueprint("reports", __name__)


@reports_bp.get("/dashboard")
def weekly_dashboard():
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    try:
        result = dashboard_service.weekly_dashboard(user_id=user_id, args=request.args)
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result)


@reports_bp.get("/segments/usage")
def segment_usage():
    user_id = current_user_id()
    if user_id is None:
        return error_response("unauthorized", "Missing user context", 401)

    try:
        result = usage_service.segment_usage(user_id=user_id, args=request.args)
    except ApiError as exc:
        return api_error_response(exc)
    return jsonify(result)
