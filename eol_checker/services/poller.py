"""
Job Poller - drives a job to completion by polling its status and firing stage triggers
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from eol_checker import config
from eol_checker.errors import DailyLimitError, JobFailedError, JobNotFoundError, JobStatusError
from eol_checker.services.job_storage import JobStorage, job_status_snapshot
from eol_checker.services.job_types import (
    JOB_ANALYZING, JOB_COMPLETE, JOB_ERROR, JOB_URLS_READY, URL_PENDING,
    all_entries_terminal, unknown_result,
)
from eol_checker.services.triggers import StageTriggers, TriggerOutcome

logger = logging.getLogger(__name__)


class HttpJobStatusReader:
    """Reads GET /api/job-status/<jobId>."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None,
                 headers: Optional[Dict[str, str]] = None, timeout: float = 30):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.headers = headers or {}
        self.timeout = timeout

    def read(self, job_id: str) -> Dict[str, Any]:
        try:
            response = self.session.get(f"{self.base_url}/api/job-status/{job_id}",
                                        headers=self.headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise JobStatusError(f"Status read failed for job {job_id}: {e}") from e
        if not response.ok:
            raise JobStatusError(f"Status read for job {job_id} returned {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise JobStatusError(f"Status read for job {job_id} returned invalid JSON: {e}") from e


class StoreJobStatusReader:
    """Reads the job record in-process."""

    def __init__(self, storage: JobStorage):
        self.storage = storage

    def read(self, job_id: str) -> Dict[str, Any]:
        job = self.storage.get_job(job_id)
        if job is None:
            raise JobStatusError(str(JobNotFoundError(job_id)))
        return job_status_snapshot(job)


@dataclass
class PollSession:
    """Per-poll latches so one poll never fires the same stage twice."""
    job_id: str
    fetch_triggered: bool = False
    analyze_triggered: bool = False
    attempts: int = 0
    outcomes: List[TriggerOutcome] = field(default_factory=list)
    last_snapshot: Optional[Dict[str, Any]] = None


def timeout_result(attempts: int, interval: float = config.POLL_INTERVAL_SECONDS) -> Dict[str, Any]:
    minutes = attempts * interval / 60
    minutes_text = f"{minutes:g} minute" + ('' if minutes == 1 else 's')
    return unknown_result(
        f"EOL check timed out after {attempts} polling attempts ({minutes_text}). "
        f"The job may still complete in the background."
    )


class JobPoller:
    def __init__(self, reader, triggers: StageTriggers,
                 sleep: Callable[[float], None] = time.sleep,
                 max_attempts: int = config.POLL_MAX_ATTEMPTS,
                 interval: float = config.POLL_INTERVAL_SECONDS,
                 guard=None, context=None,
                 on_progress: Optional[Callable[[Dict[str, Any], int], None]] = None):
        self.reader = reader
        self.triggers = triggers
        self.sleep = sleep
        self.max_attempts = max_attempts
        self.interval = interval
        self.guard = guard
        self.context = context
        self.on_progress = on_progress

    def poll(self, job_id: str, session: Optional[PollSession] = None) -> Dict[str, Any]:
        """
        Poll until the job completes

        Args:
            job_id: Job to drive
            session: Latch holder, a fresh one per call by default

        Returns:
            The classification result, or the timeout result when the
            attempt budget runs out

        Raises:
            DailyLimitError: the job failed on the LLM daily token limit
            JobFailedError: the job ended in 'error'
            JobStatusError: the status read failed
        """
        session = session or PollSession(job_id)

        for attempt in range(1, self.max_attempts + 1):
            session.attempts = attempt
            snapshot = self.reader.read(job_id)
            session.last_snapshot = snapshot
            if self.on_progress:
                self.on_progress(snapshot, attempt)

            status = snapshot.get('status')
            urls = snapshot.get('urls') or []

            if status == JOB_COMPLETE:
                return snapshot.get('result') or unknown_result('Job completed without a result')

            if status == JOB_ERROR:
                self._raise_for_error(job_id, snapshot)

            if (status == JOB_URLS_READY and urls and urls[0].get('status') == URL_PENDING
                    and not session.fetch_triggered):
                session.fetch_triggered = True
                session.outcomes.append(self.triggers.trigger_fetch(job_id, urls[0]))
            elif (all_entries_terminal(urls) and status != JOB_ANALYZING
                    and not session.analyze_triggered):
                session.analyze_triggered = True
                session.outcomes.append(self.triggers.trigger_analyze(job_id))

            self.sleep(self.interval)

        logger.warning(f"Job {job_id} timed out after {self.max_attempts} polling attempts")
        return timeout_result(self.max_attempts, self.interval)

    def _raise_for_error(self, job_id: str, snapshot: Dict[str, Any]) -> None:
        message = snapshot.get('error') or 'Job failed'
        retry_seconds = snapshot.get('retrySeconds')
        if snapshot.get('isDailyLimit') and retry_seconds:
            if self.context is not None:
                self.context.note_cooldown(retry_seconds)
            if self.guard is not None:
                self.guard.record_daily_limit(retry_seconds)
            raise DailyLimitError(job_id, message, retry_seconds)
        raise JobFailedError(job_id, message)
