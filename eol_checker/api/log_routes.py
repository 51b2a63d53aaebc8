"""
Log and Auth API Routes - central log ingestion and the auth check
"""
from flask import Blueprint, jsonify, request

from eol_checker.api.common import current_user, error_response, is_authorized
from eol_checker.services.blob_store import get_log_store
from eol_checker.services.central_log import VALID_LEVELS, write_log_entry

log_bp = Blueprint('logs', __name__)


@log_bp.route('/log-ingest', methods=['POST'])
def log_ingest():
    """
    Store log entries sent by other services
    POST /api/log-ingest

    Request:
        {"level": "INFO", "source": "scraping-service", "message": "...", "context": {}}
        or a list of such entries
    """
    try:
        data = request.get_json(silent=True)
        entries = data if isinstance(data, list) else [data]
        store = get_log_store()
        keys = []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get('message'):
                return jsonify({"success": False, "error": "Each entry needs a message"}), 400
            level = str(entry.get('level') or 'INFO').upper()
            if level not in VALID_LEVELS:
                level = 'INFO'
            keys.append(write_log_entry(store, level, str(entry.get('source') or 'unknown'),
                                        str(entry['message']), entry.get('context')))
        return jsonify({"success": True, "stored": len(keys)})
    except Exception as e:
        return error_response(e)


@log_bp.route('/auth-check', methods=['GET'])
def auth_check():
    """GET /api/auth-check -> {"authenticated": bool, "user": {...} | null}"""
    try:
        return jsonify({"authenticated": is_authorized(), "user": current_user()})
    except Exception as e:
        return error_response(e)
