"""
Shared helpers for the API blueprints - service access, auth and error responses
"""
import hmac
import logging
from functools import wraps

from flask import current_app, jsonify, request

from eol_checker.errors import EOLCheckError, ValidationError

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'eol_checker'


def get_services():
    return current_app.extensions[EXTENSION_KEY]


def _request_token():
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        return header[7:].strip()
    return request.headers.get('X-API-Token') or request.cookies.get('auth_token')


def is_authorized() -> bool:
    """True when no API token is configured or the request carries it."""
    expected = get_services().settings.api_token
    if not expected:
        return True
    token = _request_token()
    return bool(token) and hmac.compare_digest(token, expected)


def current_user():
    if not is_authorized():
        return None
    return {'name': 'api' if get_services().settings.api_token else 'anonymous'}


def require_auth(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not is_authorized():
            return jsonify({"success": False, "error": "Unauthorized"}), 401
        return view(*args, **kwargs)
    return wrapper


def error_response(error: Exception):
    """Map an exception to the standard error body."""
    if isinstance(error, ValidationError):
        return jsonify({"success": False, "error": str(error), "errors": error.errors}), 400
    if isinstance(error, EOLCheckError):
        return jsonify({"success": False, "error": str(error)}), error.status_code
    logger.exception('Unexpected error')
    return jsonify({"success": False, "error": "Internal server error", "details": str(error)}), 500
