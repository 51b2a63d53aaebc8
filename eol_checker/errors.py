"""
Exception types shared by the EOL check pipeline
"""
from typing import List, Optional


class EOLCheckError(Exception):
    """Base class for all pipeline errors."""

    status_code = 500


class ValidationError(EOLCheckError):
    """Bad maker/model input; rejected before any job record exists."""

    status_code = 400

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__('; '.join(self.errors) or 'Invalid input')


class JobNotFoundError(EOLCheckError):
    status_code = 404

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class SearchServiceError(EOLCheckError):
    """The external search API failed."""

    status_code = 502


class ScrapingError(EOLCheckError):
    """A scraping executor could not produce content for a URL."""

    status_code = 502


class ClassificationError(EOLCheckError):
    """The LLM call failed or returned an unusable answer."""

    status_code = 502


class RateLimitError(ClassificationError):
    """The LLM rejected the call because a token budget is exhausted."""

    status_code = 429

    def __init__(self, message: str, retry_seconds: Optional[float] = None, is_daily_limit: bool = False):
        super().__init__(message)
        self.retry_seconds = retry_seconds
        self.is_daily_limit = is_daily_limit


class JobStatusError(EOLCheckError):
    """Reading a job's status failed (transport error or non-2xx)."""


class JobFailedError(EOLCheckError):
    """A polled job ended in the 'error' state."""

    def __init__(self, job_id: str, message: Optional[str] = None):
        self.job_id = job_id
        super().__init__(message or 'Job failed')


class DailyLimitError(JobFailedError):
    """A polled job failed on the LLM daily token limit; carries the advisory cooldown."""

    status_code = 429

    def __init__(self, job_id: str, message: Optional[str], retry_seconds: Optional[float]):
        super().__init__(job_id, message)
        self.retry_seconds = retry_seconds
