"""
Job API Routes - Handle EOL check jobs (initialize, stages, status)
"""
import logging

from flask import Blueprint, jsonify, request

from eol_checker.api.common import error_response, get_services, require_auth
from eol_checker.errors import JobNotFoundError
from eol_checker.services.job_storage import job_status_snapshot

logger = logging.getLogger(__name__)

job_bp = Blueprint('jobs', __name__)


@job_bp.route('/initialize-job', methods=['POST'])
@require_auth
def initialize_job():
    """
    Create a job and decide its first stage
    POST /api/initialize-job

    Request:
        {"maker": "SMC", "model": "CDQ2B32-50DZ"}

    Response:
        {
            "jobId": "job_1700000000000_abc123def456",
            "status": "urls_ready",
            "urlCount": 1,
            "strategy": "direct_url"
        }
    """
    try:
        data = request.get_json(silent=True) or {}
        result = get_services().initializer.initialize(data.get('maker'), data.get('model'))
        return jsonify(result)
    except Exception as e:
        return error_response(e)


@job_bp.route('/fetch-url', methods=['POST'])
def fetch_url():
    """
    Fetch one URL entry of a job
    POST /api/fetch-url

    Request:
        {"jobId": "...", "urlIndex": 0, "url": "...", "title": "...", "snippet": "...",
         "scrapingMethod": "render", "model": "...", "jpUrl": "...", "usUrl": "..."}
    """
    try:
        body, status = get_services().fetch_stage.run(request.get_json(silent=True) or {})
        return jsonify(body), status
    except Exception as e:
        return error_response(e)


@job_bp.route('/scraping-callback', methods=['POST'])
def scraping_callback():
    """
    Receive content from the scraping service
    POST /api/scraping-callback

    Request:
        {"jobId": "...", "urlIndex": 0, "content": "...", "title": "...", "snippet": "...", "url": "..."}
    """
    try:
        body, status = get_services().fetch_stage.handle_callback(request.get_json(silent=True) or {})
        return jsonify(body), status
    except Exception as e:
        return error_response(e)


@job_bp.route('/analyze-job', methods=['POST'])
def analyze_job():
    """
    Run the classification for a job whose URLs are all done
    POST /api/analyze-job

    Request:
        {"jobId": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        body, status = get_services().analyze_stage.run(data.get('jobId'))
        return jsonify(body), status
    except Exception as e:
        return error_response(e)


@job_bp.route('/job-status/<job_id>', methods=['GET'])
@require_auth
def job_status(job_id):
    """
    Current job snapshot
    GET /api/job-status/<jobId>
    """
    try:
        job = get_services().storage.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        response = jsonify(job_status_snapshot(job))
        response.headers['Cache-Control'] = 'no-store'
        return response
    except Exception as e:
        return error_response(e)
