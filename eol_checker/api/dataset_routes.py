"""
Dataset API Routes - read and replace the tracked parts
"""
from flask import Blueprint, jsonify, request

from eol_checker.api.common import error_response, require_auth
from eol_checker.services import dataset

dataset_bp = Blueprint('dataset', __name__)


@dataset_bp.route('/dataset', methods=['GET'])
@require_auth
def get_dataset():
    """
    GET /api/dataset

    Response:
        {"success": true, "parts": [...], "total": 10}
    """
    try:
        parts = dataset.read_dataset()
        return jsonify({"success": True, "parts": parts, "total": len(parts)})
    except Exception as e:
        return error_response(e)


@dataset_bp.route('/dataset', methods=['POST'])
@require_auth
def save_dataset():
    """
    Replace the dataset
    POST /api/dataset

    Request:
        {"parts": [{"sap_number": "...", "model": "...", "manufacturer": "...", ...}]}
    """
    try:
        data = request.get_json(silent=True) or {}
        saved = dataset.replace_dataset(data.get('parts'))
        return jsonify({"success": True, "parts_saved": saved})
    except Exception as e:
        return error_response(e)
