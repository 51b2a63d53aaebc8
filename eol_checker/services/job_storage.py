"""
Job Storage - persists one JSON record per EOL check job in the blob store
"""
import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from eol_checker import config
from eol_checker.errors import JobNotFoundError
from eol_checker.services.blob_store import BlobStore, get_jobs_store
from eol_checker.services.job_types import (
    ACTIVE_JOB_STATUSES, JOB_ANALYZING, JOB_COMPLETE, JOB_CREATED, JOB_ERROR,
    JOB_FETCHING, JOB_URLS_READY, TERMINAL_JOB_STATUSES, TERMINAL_URL_STATUSES,
    URL_COMPLETE, URL_ERROR, URL_FETCHING, URL_PENDING, all_entries_terminal, find_entry,
)

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_job_id(now: datetime) -> str:
    random_part = ''.join(secrets.choice(_ID_ALPHABET) for _ in range(12))
    return f"job_{int(now.timestamp() * 1000)}_{random_part}"


class JobStorage:
    """
    Job Record Store.

    Records are read-modify-written whole; there is no locking, the store is
    the only source of truth and every caller re-reads it.
    """

    def __init__(self, store: Optional[BlobStore] = None, clock: Callable[[], datetime] = utcnow):
        self.store = store or get_jobs_store()
        self.clock = clock

    # ------------------------------------------------------------------
    # Creation and retention
    # ------------------------------------------------------------------

    def create_job(self, maker: str, model: str) -> str:
        """
        Create a new job record after cleaning up old finished jobs.

        Returns:
            The new job id
        """
        self.cleanup_old_jobs()

        now = self.clock()
        job_id = generate_job_id(now)
        job = {
            'jobId': job_id,
            'maker': maker,
            'model': model,
            'status': JOB_CREATED,
            'urls': [],
            'urlResults': {},
            'finalResult': None,
            'error': None,
            'createdAt': to_iso(now),
        }
        self.store.set(job_id, job)
        logger.info(f"Created job {job_id} for {maker} {model}")
        return job_id

    def cleanup_old_jobs(self) -> int:
        """
        Delete complete/error jobs finished more than JOB_CLEANUP_DELAY_MINUTES ago.
        Never raises: a failed cleanup must not block job creation.
        """
        deleted = 0
        try:
            keys = self.store.list()
        except Exception as e:
            logger.error(f"Job cleanup error (non-fatal): {e}")
            return 0

        for key in keys:
            try:
                job = self.store.get(key)
                if job and self._should_delete(job):
                    if self.store.delete(key):
                        deleted += 1
                        logger.info(f"Cleaned up old job {key}")
                    else:
                        logger.info(f"Job {key} was already deleted by another process")
            except Exception as e:
                logger.error(f"Error processing job {key} during cleanup: {e}")

        if deleted:
            logger.info(f"Cleanup complete: deleted {deleted} old job(s)")
        return deleted

    def _should_delete(self, job: Dict[str, Any]) -> bool:
        # Never delete jobs that are actively being processed
        if job.get('status') in ACTIVE_JOB_STATUSES:
            return False
        if job.get('status') not in TERMINAL_JOB_STATUSES:
            return False
        completed_at = parse_iso(job.get('completedAt'))
        if completed_at is None:
            return False
        age = self.clock() - completed_at
        return age > timedelta(minutes=config.JOB_CLEANUP_DELAY_MINUTES)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        """
        Read a job and normalize stuck entries.

        URL entries left in 'fetching' past URL_FETCH_STALE_SECONDS become
        'error', and a job left in 'analyzing' past ANALYSIS_STALE_SECONDS
        becomes 'error'. Normalized records are written back.
        """
        job = self.store.get(job_id, strong=True)
        if job is None:
            return None
        if self._normalize_stuck(job):
            self.store.set(job_id, job)
        return job

    def require_job(self, job_id: str) -> Dict[str, Any]:
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _normalize_stuck(self, job: Dict[str, Any]) -> bool:
        now = self.clock()
        origin = parse_iso(job.get('createdAt'))
        changed = False

        if job.get('status') not in TERMINAL_JOB_STATUSES:
            for entry in job.get('urls') or []:
                if entry.get('status') != URL_FETCHING:
                    continue
                since = parse_iso(entry.get('fetchingSince')) or origin
                if since and (now - since).total_seconds() > config.URL_FETCH_STALE_SECONDS:
                    logger.warning(f"Job {job['jobId']}: URL {entry['index']} stuck in fetching, marking error")
                    entry['status'] = URL_ERROR
                    job.setdefault('urlResults', {})[str(entry['index'])] = {
                        'url': entry.get('url'),
                        'title': None,
                        'snippet': entry.get('snippet'),
                        'fullContent': f"[Fetch timed out after {config.URL_FETCH_STALE_SECONDS} seconds]",
                    }
                    changed = True

        if job.get('status') == JOB_ANALYZING:
            since = parse_iso(job.get('analyzingSince')) or origin
            if since and (now - since).total_seconds() > config.ANALYSIS_STALE_SECONDS:
                logger.warning(f"Job {job['jobId']}: stuck in analyzing, marking error")
                job['status'] = JOB_ERROR
                job['error'] = f"Analysis timed out after {config.ANALYSIS_STALE_SECONDS} seconds"
                job['completedAt'] = to_iso(now)
                changed = True

        return changed

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_job_urls(self, job_id: str, urls: List[Dict[str, Any]], status: str = JOB_URLS_READY) -> None:
        """Seed the job's URL list (once, by the initializer)."""
        job = self.require_job(job_id)
        job['urls'] = [dict(u, status=u.get('status') or URL_PENDING) for u in urls]
        job['urlResults'] = {}
        job['status'] = status
        self.store.set(job_id, job)
        logger.info(f"Saved {len(urls)} URLs to job {job_id}")

    def update_job_status(self, job_id: str, status: str, error: Optional[str] = None, **metadata) -> Dict[str, Any]:
        """
        Set the job status. Terminal states get a completedAt timestamp;
        extra keyword arguments (isDailyLimit, retrySeconds) are stored as-is.
        """
        job = self.require_job(job_id)
        now = self.clock()
        job['status'] = status
        if error:
            job['error'] = error
        if status == JOB_ANALYZING:
            job['analyzingSince'] = to_iso(now)
        if status in TERMINAL_JOB_STATUSES and not job.get('completedAt'):
            job['completedAt'] = to_iso(now)
        job.update(metadata)
        self.store.set(job_id, job)
        logger.info(f"Updated job {job_id} status to {status}")
        return job

    def mark_url_fetching(self, job_id: str, url_index: int) -> bool:
        """
        Move a URL entry from 'pending' to 'fetching'.

        Returns:
            False when the entry is missing or no longer pending, so the
            caller must not dispatch it again
        """
        job = self.require_job(job_id)
        entry = find_entry(job['urls'], url_index)
        if entry is None or entry.get('status') != URL_PENDING:
            return False

        entry['status'] = URL_FETCHING
        entry['fetchingSince'] = to_iso(self.clock())
        if job['status'] == JOB_URLS_READY:
            job['status'] = JOB_FETCHING
        self.store.set(job_id, job)
        logger.info(f"Marked URL {url_index} as fetching for job {job_id}")
        return True

    def save_url_result(self, job_id: str, url_index: int, result: Dict[str, Any],
                        status: str = URL_COMPLETE) -> bool:
        """
        Store the result for one URL entry, overwriting the entry's status and
        result keyed by index. A 'complete' entry is never downgraded to 'error'.

        Returns:
            True when every URL entry is now terminal
        """
        job = self.require_job(job_id)
        entry = find_entry(job['urls'], url_index)
        if entry is None:
            logger.warning(f"URL {url_index} not found in job {job_id}")
            return all_entries_terminal(job['urls'])

        if entry.get('status') == URL_COMPLETE and status != URL_COMPLETE:
            logger.info(f"URL {url_index} of job {job_id} already complete, ignoring {status} result")
            return all_entries_terminal(job['urls'])

        entry['status'] = status
        entry.pop('fetchingSince', None)
        job.setdefault('urlResults', {})[str(url_index)] = result
        self.store.set(job_id, job)

        done = all_entries_terminal(job['urls'])
        terminal_count = sum(1 for u in job['urls'] if u.get('status') in TERMINAL_URL_STATUSES)
        logger.info(f"Saved URL {url_index} result ({status}) for job {job_id}: {terminal_count}/{len(job['urls'])} done")
        return done

    def save_final_result(self, job_id: str, result: Dict[str, Any]) -> None:
        job = self.require_job(job_id)
        job['finalResult'] = result
        job['status'] = JOB_COMPLETE
        job['completedAt'] = to_iso(self.clock())
        self.store.set(job_id, job)
        logger.info(f"Saved final result for job {job_id}")


def job_status_snapshot(job: Dict[str, Any]) -> Dict[str, Any]:
    """The job-status response body consumed by the polling driver."""
    urls = job.get('urls') or []
    response = {
        'jobId': job['jobId'],
        'status': job['status'],
        'maker': job.get('maker'),
        'model': job.get('model'),
        'urlCount': len(urls),
        'completedUrls': sum(1 for u in urls if u.get('status') == URL_COMPLETE),
        'urls': urls,
        'error': job.get('error'),
        'createdAt': job.get('createdAt'),
        'completedAt': job.get('completedAt'),
        'isDailyLimit': job.get('isDailyLimit', False),
        'retrySeconds': job.get('retrySeconds'),
    }
    if job['status'] == JOB_COMPLETE and job.get('finalResult'):
        response['result'] = job['finalResult']
    return response
