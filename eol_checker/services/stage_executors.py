"""
Stage Executors - the fetch stage, the scraping callback and the analyze stage
"""
import logging
from typing import Any, Dict, Optional, Tuple

from eol_checker.errors import EOLCheckError, RateLimitError, ScrapingError, ValidationError
from eol_checker.services.classifier import ClassifierService, format_search_context
from eol_checker.services.job_storage import JobStorage
from eol_checker.services.job_types import (
    JOB_ANALYZING, JOB_ERROR, TERMINAL_JOB_STATUSES, URL_COMPLETE, URL_ERROR, URL_PENDING,
    BrowserQLMode, DirectFetchMode, IdecDualSiteMode, KeyenceInteractiveMode, NbkInteractiveMode,
    RenderMode, all_entries_terminal, find_entry, mode_from_fields,
)
from eol_checker.services.scraper import BrowserQLClient, ScrapingServiceClient, fetch_direct
from eol_checker.services.triggers import StageTriggers

logger = logging.getLogger(__name__)

StageResponse = Tuple[Dict[str, Any], int]


def continue_pipeline(storage: JobStorage, triggers: Optional[StageTriggers], job_id: str) -> None:
    """
    After a URL result is saved: trigger analysis when every entry is
    terminal, otherwise fetch the next pending entry. URLs are fetched one
    at a time because the scraping service handles a single browser.
    """
    if triggers is None:
        return
    job = storage.get_job(job_id)
    if job is None:
        return

    if all_entries_terminal(job['urls']):
        if job['status'] in (JOB_ANALYZING,) + TERMINAL_JOB_STATUSES:
            logger.info(f"Job {job_id} already {job['status']}, not triggering analysis")
            return
        logger.info(f"All URLs done for job {job_id}, triggering analysis")
        triggers.trigger_analyze(job_id)
        return

    next_entry = next((u for u in job['urls'] if u.get('status') == URL_PENDING), None)
    if next_entry is not None:
        logger.info(f"Triggering next URL {next_entry['index']} for job {job_id}")
        triggers.trigger_fetch(job_id, next_entry)


class FetchStage:
    def __init__(self, storage: JobStorage, scraping_client: ScrapingServiceClient,
                 browserql_client: BrowserQLClient, callback_url: str,
                 chain_triggers: Optional[StageTriggers] = None,
                 idec_jp_proxy: Optional[str] = None, idec_us_proxy: Optional[str] = None,
                 http_session=None):
        self.storage = storage
        self.scraping_client = scraping_client
        self.browserql_client = browserql_client
        self.callback_url = callback_url
        self.chain_triggers = chain_triggers
        self.idec_jp_proxy = idec_jp_proxy
        self.idec_us_proxy = idec_us_proxy
        self.http_session = http_session

    def run(self, payload: Dict[str, Any]) -> StageResponse:
        """
        Fetch one URL entry

        Args:
            payload: fetch-url request body

        Returns:
            (body, status): 202 when dispatched to the scraping service,
            200 when content (or an error result) was saved synchronously,
            200 with skipped=True when the entry is no longer pending

        Raises:
            ValidationError: missing jobId / urlIndex or unknown index
            JobNotFoundError: unknown job
        """
        job_id = payload.get('jobId')
        url_index = payload.get('urlIndex')
        if not job_id or not isinstance(url_index, int):
            raise ValidationError(['jobId and urlIndex are required'])

        job = self.storage.require_job(job_id)
        entry = find_entry(job['urls'], url_index)
        if entry is None:
            raise ValidationError([f"URL {url_index} not found in job {job_id}"])

        if not self.storage.mark_url_fetching(job_id, url_index):
            logger.info(f"URL {url_index} of job {job_id} is {entry.get('status')}, skipping duplicate fetch")
            return {'success': True, 'skipped': True, 'status': entry.get('status')}, 200

        fields = dict(payload)
        fields.update({k: v for k, v in entry.items() if v is not None})
        url = entry['url']
        logger.info(f"Fetching URL {url_index} for job {job_id}: {url} (method: {entry.get('scrapingMethod')})")

        try:
            mode = mode_from_fields(entry.get('scrapingMethod') or payload.get('scrapingMethod'), fields)
            page = self._execute(mode, job_id, entry)
        except (ScrapingError, ValueError) as e:
            logger.error(f"Fetch failed for URL {url_index} of job {job_id}: {e}")
            self._save(job_id, entry, {'content': f"[{e}]", 'title': None}, URL_ERROR)
            return {'success': False, 'error': str(e), 'method': entry.get('scrapingMethod')}, 200

        if page is None:
            return {'success': True, 'method': f"{mode.method}_pending"}, 202

        self._save(job_id, entry, page, URL_COMPLETE)
        return {'success': True, 'method': mode.method, 'contentLength': len(page['content'])}, 200

    def _execute(self, mode, job_id: str, entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Run the executor for a mode. None means the content arrives later via callback."""
        url_index = entry['index']

        if isinstance(mode, BrowserQLMode):
            return self.browserql_client.scrape(entry['url'])
        if isinstance(mode, NbkInteractiveMode):
            return self.browserql_client.scrape_nbk(mode.model)
        if isinstance(mode, DirectFetchMode):
            page = fetch_direct(entry['url'], session=self.http_session)
            if page is not None:
                return page
            # Binary document: the scraping service extracts it
            mode = RenderMode()
        if isinstance(mode, KeyenceInteractiveMode):
            self.scraping_client.scrape_keyence(mode.model, self.callback_url, job_id, url_index)
            return None
        if isinstance(mode, IdecDualSiteMode):
            self.scraping_client.scrape_idec_dual(
                mode.model, mode.jp_url, mode.us_url, self.callback_url, job_id, url_index,
                self.idec_jp_proxy, self.idec_us_proxy,
                title=entry.get('title'), snippet=entry.get('snippet'),
            )
            return None

        self.scraping_client.scrape_render(entry['url'], self.callback_url, job_id, url_index,
                                           title=entry.get('title'), snippet=entry.get('snippet'))
        return None

    def _save(self, job_id: str, entry: Dict[str, Any], page: Dict[str, Any], status: str) -> None:
        self.storage.save_url_result(job_id, entry['index'], {
            'url': page.get('url') or entry['url'],
            'title': page.get('title'),
            'snippet': entry.get('snippet'),
            'fullContent': page.get('content'),
        }, status=status)
        continue_pipeline(self.storage, self.chain_triggers, job_id)

    def handle_callback(self, payload: Dict[str, Any]) -> StageResponse:
        """Save content delivered by the scraping service and continue the pipeline."""
        job_id = payload.get('jobId')
        url_index = payload.get('urlIndex')
        if not job_id or not isinstance(url_index, int):
            raise ValidationError(['jobId and urlIndex are required'])

        content = payload.get('content')
        logger.info(f"Callback for job {job_id}, URL {url_index} ({len(content or '')} chars)")
        self.storage.require_job(job_id)
        all_done = self.storage.save_url_result(job_id, url_index, {
            'url': payload.get('url'),
            'title': payload.get('title'),
            'snippet': payload.get('snippet'),
            'fullContent': content,
        }, status=URL_COMPLETE if content else URL_ERROR)

        continue_pipeline(self.storage, self.chain_triggers, job_id)
        return {'success': True, 'allDone': all_done}, 200


class AnalyzeStage:
    def __init__(self, storage: JobStorage, classifier: ClassifierService, guard=None):
        self.storage = storage
        self.classifier = classifier
        self.guard = guard

    def run(self, job_id: Optional[str]) -> StageResponse:
        """
        Classify a job whose URL entries are all terminal

        Returns:
            (body, status): 200 with the result, 200 skipped when the job is
            not awaiting analysis, 429 on the LLM daily limit, 500 on failure

        Raises:
            ValidationError: missing jobId
            JobNotFoundError: unknown job
        """
        if not job_id:
            raise ValidationError(['jobId is required'])

        job = self.storage.require_job(job_id)
        if job['status'] in (JOB_ANALYZING,) + TERMINAL_JOB_STATUSES or not all_entries_terminal(job['urls']):
            logger.info(f"Job {job_id} is not awaiting analysis (status: {job['status']}), skipping")
            return {'success': True, 'skipped': True, 'status': job['status']}, 200

        self.storage.update_job_status(job_id, JOB_ANALYZING)
        try:
            self.classifier.wait_for_tokens()
            search_context = format_search_context(job)
            result = self.classifier.classify(job['maker'], job['model'], search_context)
        except RateLimitError as e:
            if e.is_daily_limit:
                self.storage.update_job_status(job_id, JOB_ERROR, str(e),
                                               isDailyLimit=True, retrySeconds=e.retry_seconds)
                if self.guard is not None and e.retry_seconds:
                    self.guard.record_daily_limit(e.retry_seconds)
                return {
                    'success': False,
                    'error': str(e),
                    'isDailyLimit': True,
                    'retrySeconds': e.retry_seconds,
                }, 429
            self.storage.update_job_status(job_id, JOB_ERROR, str(e))
            return {'success': False, 'error': str(e)}, e.status_code
        except EOLCheckError as e:
            logger.error(f"Analysis error for job {job_id}: {e}")
            self.storage.update_job_status(job_id, JOB_ERROR, str(e))
            return {'success': False, 'error': str(e)}, 500
        except Exception as e:
            logger.exception(f"Unexpected analysis error for job {job_id}")
            self.storage.update_job_status(job_id, JOB_ERROR, str(e))
            return {'success': False, 'error': str(e)}, 500

        self.storage.save_final_result(job_id, result)
        if self.guard is not None:
            self.guard.record_rate_limits(result.get('rateLimits'))
        logger.info(f"Analysis complete for job {job_id}: {result['status']}")
        return {'success': True, 'result': result}, 200
