"""
Job Initializer - validates input, creates the job and seeds its URL list
"""
import logging
from typing import Any, Dict

from eol_checker.config import MAX_IDENTIFIER_LENGTH
from eol_checker.errors import ValidationError
from eol_checker.services.job_storage import JobStorage
from eol_checker.services.job_types import (
    JOB_COMPLETE, JOB_READY_FOR_ANALYSIS, JOB_URLS_READY, URL_COMPLETE,
    DirectFetchMode, RenderMode, build_url_entry, unknown_result,
)
from eol_checker.services.search_client import SearchClient
from eol_checker.services.strategy_resolver import StrategyResolver
from eol_checker.services.validators import sanitize_string, validate_initialize_job

logger = logging.getLogger(__name__)

STRATEGY_VALIDATED_DIRECT_URL = 'validated_direct_url'
STRATEGY_DIRECT_URL = 'direct_url'
STRATEGY_SEARCH = 'search'


def _search_result_mode(url: str):
    if url.lower().split('?')[0].endswith('.pdf'):
        return DirectFetchMode()
    return RenderMode()


class JobInitializer:
    def __init__(self, storage: JobStorage, resolver: StrategyResolver, search_client: SearchClient):
        self.storage = storage
        self.resolver = resolver
        self.search_client = search_client

    def initialize(self, maker: Any, model: Any) -> Dict[str, Any]:
        """
        Create a job and decide its first stage

        Args:
            maker: Manufacturer name (raw request value)
            model: Model number (raw request value)

        Returns:
            {'jobId', 'status', 'urlCount', 'strategy'} plus 'message' when
            the job completed immediately

        Raises:
            ValidationError: invalid input, no job is created
            SearchServiceError: search API failure, the job stays 'created'
        """
        errors = validate_initialize_job({'maker': maker, 'model': model})
        if errors:
            raise ValidationError(errors)

        maker = sanitize_string(maker, MAX_IDENTIFIER_LENGTH)
        model = sanitize_string(model, MAX_IDENTIFIER_LENGTH)

        logger.info(f"Creating job for: {maker} {model}")
        job_id = self.storage.create_job(maker, model)

        strategy = self.resolver.resolve(maker, model)
        if strategy is not None:
            entry = build_url_entry(0, strategy.url, strategy.title or f"{maker} {model}",
                                    f"{maker} {model}", strategy.mode)

            if strategy.has_content:
                # Probe already scraped the page: go straight to analysis
                entry['status'] = URL_COMPLETE
                self.storage.save_job_urls(job_id, [entry], status=JOB_READY_FOR_ANALYSIS)
                self.storage.save_url_result(job_id, 0, {
                    'url': strategy.url,
                    'title': strategy.title,
                    'snippet': entry['snippet'],
                    'fullContent': strategy.content,
                })
                logger.info(f"Job {job_id} initialized with validated direct URL (content already scraped)")
                return {'jobId': job_id, 'status': JOB_READY_FOR_ANALYSIS, 'urlCount': 1,
                        'strategy': STRATEGY_VALIDATED_DIRECT_URL}

            self.storage.save_job_urls(job_id, [entry])
            logger.info(f"Job {job_id} initialized with direct URL strategy (method: {strategy.mode.method})")
            return {'jobId': job_id, 'status': JOB_URLS_READY, 'urlCount': 1,
                    'strategy': STRATEGY_DIRECT_URL}

        results = self.search_client.search(maker, model)
        if not results:
            logger.info(f"No search results found for {maker} {model}")
            self.storage.save_final_result(job_id, unknown_result('No search results found'))
            return {'jobId': job_id, 'status': JOB_COMPLETE, 'urlCount': 0,
                    'strategy': STRATEGY_SEARCH, 'message': 'No search results found'}

        entries = [
            build_url_entry(index, r['url'], r['title'], r['snippet'], _search_result_mode(r['url']))
            for index, r in enumerate(results)
        ]
        self.storage.save_job_urls(job_id, entries)
        logger.info(f"Job {job_id} initialized with {len(entries)} URLs")
        return {'jobId': job_id, 'status': JOB_URLS_READY, 'urlCount': len(entries),
                'strategy': STRATEGY_SEARCH}
