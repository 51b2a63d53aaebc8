"""
Stage Triggers - fire the fetch and analyze stages over HTTP
"""
import enum
import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from eol_checker import config
from eol_checker.services.job_types import HINT_FIELDS

logger = logging.getLogger(__name__)


class TriggerOutcome(enum.Enum):
    SUCCESS = 'success'
    FAILED = 'failed'
    # The call timed out on our side; the stage is most likely still running
    ASSUMED_RUNNING = 'assumed_running'


def fetch_payload(job_id: str, entry: Dict[str, Any]) -> Dict[str, Any]:
    """Body for POST /api/fetch-url built from a URL entry."""
    payload = {
        'jobId': job_id,
        'urlIndex': entry['index'],
        'url': entry['url'],
        'title': entry.get('title'),
        'snippet': entry.get('snippet'),
        'scrapingMethod': entry.get('scrapingMethod'),
    }
    for hint in HINT_FIELDS:
        if entry.get(hint) is not None:
            payload[hint] = entry[hint]
    return payload


class StageTriggers:
    """
    POST wrapper with linear backoff. Never raises; callers read the
    TriggerOutcome and the job record decides what happens next.
    """

    def __init__(self, base_url: str, session: Optional[requests.Session] = None,
                 timeout: float = config.TRIGGER_TIMEOUT_SECONDS,
                 max_retries: int = config.TRIGGER_MAX_RETRIES,
                 sleep: Callable[[float], None] = time.sleep):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_retries = max_retries
        self.sleep = sleep

    def trigger_fetch(self, job_id: str, entry: Dict[str, Any]) -> TriggerOutcome:
        return self._post('/api/fetch-url', fetch_payload(job_id, entry),
                          f"fetch URL {entry['index']} for job {job_id}")

    def trigger_analyze(self, job_id: str) -> TriggerOutcome:
        return self._post('/api/analyze-job', {'jobId': job_id}, f"analysis for job {job_id}")

    def _post(self, path: str, payload: Dict[str, Any], label: str) -> TriggerOutcome:
        url = f"{self.base_url}{path}"
        for attempt in range(self.max_retries + 1):
            try:
                response = self.session.post(url, json=payload, timeout=self.timeout)
                if 200 <= response.status_code < 300:
                    logger.info(f"Triggered {label}")
                    return TriggerOutcome.SUCCESS
                logger.warning(f"Trigger {label} returned {response.status_code} "
                               f"(attempt {attempt + 1}/{self.max_retries + 1})")
            except requests.Timeout:
                logger.info(f"Trigger {label} timed out after {self.timeout}s, assuming it is running")
                return TriggerOutcome.ASSUMED_RUNNING
            except requests.RequestException as e:
                logger.warning(f"Trigger {label} failed: {e} (attempt {attempt + 1}/{self.max_retries + 1})")

            if attempt < self.max_retries:
                self.sleep(config.TRIGGER_BACKOFF_SECONDS * (attempt + 1))

        logger.error(f"Failed to trigger {label} after {self.max_retries + 1} attempts")
        return TriggerOutcome.FAILED
