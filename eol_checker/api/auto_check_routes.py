"""
Auto-Check API Routes - state, manual trigger, background runs and usage
"""
import logging

from flask import Blueprint, jsonify, request

from eol_checker.api.common import error_response, get_services, require_auth

logger = logging.getLogger(__name__)

auto_check_bp = Blueprint('auto_check', __name__)


@auto_check_bp.route('/get-auto-check-state', methods=['GET'])
@require_auth
def get_auto_check_state():
    """
    GET /api/get-auto-check-state

    Response:
        {"enabled": false, "dailyCounter": 0, "lastResetDate": "2024-01-01",
         "isRunning": false, "lastActivityTime": null}
    """
    try:
        response = jsonify(get_services().guard.get_state())
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate'
        return response
    except Exception as e:
        return error_response(e)


@auto_check_bp.route('/set-auto-check-state', methods=['POST'])
@require_auth
def set_auto_check_state():
    """
    Partial state update; only enabled, dailyCounter, lastResetDate,
    isRunning and lastActivityTime are accepted.
    POST /api/set-auto-check-state
    """
    try:
        updates = request.get_json(silent=True)
        if not isinstance(updates, dict):
            return jsonify({"success": False, "error": "JSON object body required"}), 400
        state = get_services().guard.update_state(updates)
        return jsonify({"success": True, "state": state})
    except Exception as e:
        return error_response(e)


@auto_check_bp.route('/auto-check/trigger', methods=['POST'])
@require_auth
def trigger_auto_check():
    """Start a background run now. POST /api/auto-check/trigger"""
    try:
        result = get_services().auto_check.manual_trigger()
        return jsonify(dict(result, success=True)), 202 if result['started'] else 200
    except Exception as e:
        return error_response(e)


@auto_check_bp.route('/auto-check/background', methods=['POST'])
@require_auth
def run_auto_check_background():
    """Run one background check (it chains itself). POST /api/auto-check/background"""
    try:
        data = request.get_json(silent=True) or {}
        get_services().auto_check.launcher(data.get('triggeredBy', 'chain'))
        return jsonify({"success": True, "message": "Background check started"}), 202
    except Exception as e:
        return error_response(e)


@auto_check_bp.route('/usage/search', methods=['GET'])
@require_auth
def search_usage():
    """Search API credits. GET /api/usage/search"""
    try:
        return jsonify(get_services().search_client.get_usage())
    except Exception as e:
        return error_response(e)


@auto_check_bp.route('/usage/llm', methods=['GET'])
@require_auth
def llm_usage():
    """LLM token headroom. GET /api/usage/llm"""
    try:
        services = get_services()
        usage = services.classifier.check_token_availability()
        usage['cooldownSeconds'] = services.guard.cooldown_seconds()
        return jsonify(usage)
    except Exception as e:
        return error_response(e)
