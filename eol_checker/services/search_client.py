"""
Search Client - Tavily web search and credit usage
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from eol_checker import config
from eol_checker.errors import SearchServiceError

logger = logging.getLogger(__name__)


class SearchClient:
    def __init__(self, api_key: Optional[str], include_domains: Optional[List[str]] = None,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.include_domains = list(include_domains or config.SEARCH_INCLUDE_DOMAINS)
        self.session = session or requests.Session()

    def search(self, maker: str, model: str) -> List[Dict[str, Any]]:
        """
        Search the allow-listed domains for a part

        Args:
            maker: Manufacturer name
            model: Model number

        Returns:
            List of {'url', 'title', 'snippet'} dictionaries (possibly empty)

        Raises:
            SearchServiceError: when the API key is missing or the call fails
        """
        if not self.api_key:
            raise SearchServiceError('TAVILY_API_KEY environment variable not set')

        payload = {
            'api_key': self.api_key,
            'query': f"{maker} {model}",
            'search_depth': 'advanced',
            'max_results': config.SEARCH_MAX_RESULTS,
            'include_domains': self.include_domains,
        }
        try:
            response = self.session.post(config.SEARCH_API_URL, json=payload,
                                         timeout=config.SEARCH_TIMEOUT_SECONDS)
        except requests.RequestException as e:
            raise SearchServiceError(f"Tavily API request failed: {e}") from e

        if not response.ok:
            logger.error(f"Tavily API error: {response.text[:500]}")
            raise SearchServiceError(f"Tavily API failed: {response.status_code}")

        try:
            results = response.json().get('results') or []
        except ValueError as e:
            raise SearchServiceError(f"Tavily API returned invalid JSON: {e}") from e
        logger.info(f"Tavily returned {len(results)} results for {maker} {model}")
        return [
            {
                'url': r.get('url'),
                'title': r.get('title'),
                'snippet': r.get('content') or '',
            }
            for r in results if r.get('url')
        ]

    def get_usage(self) -> Dict[str, Any]:
        """
        Read the account's credit usage.

        Returns:
            {'usage', 'limit', 'remaining', 'plan'}
        """
        if not self.api_key:
            raise SearchServiceError('TAVILY_API_KEY environment variable not set')
        try:
            response = self.session.get(
                config.SEARCH_USAGE_URL,
                headers={'Authorization': f"Bearer {self.api_key}"},
                timeout=config.SEARCH_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise SearchServiceError(f"Tavily usage request failed: {e}") from e

        if not response.ok:
            raise SearchServiceError(f"Tavily usage API failed: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise SearchServiceError(f"Tavily usage API returned invalid JSON: {e}") from e
        key = data.get('key') or {}
        usage = key.get('usage') or 0
        limit = key.get('limit') or 1000
        return {
            'usage': usage,
            'limit': limit,
            'remaining': limit - usage,
            'plan': (data.get('account') or {}).get('current_plan') or 'Unknown',
        }

    def remaining_credits(self) -> int:
        return self.get_usage()['remaining']
