"""
Scraper Clients - talk to the external scraping service, BrowserQL and plain HTTP
"""
import json
import logging
import re
import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import requests

from eol_checker import config
from eol_checker.errors import ScrapingError

logger = logging.getLogger(__name__)

DISPATCH_MAX_RETRIES = 3

# Extraction used by both the render service and BrowserQL so content looks the same
_PAGE_TEXT_SCRIPT = """
(() => {
    try {
        const scripts = document.querySelectorAll('script, style, noscript');
        scripts.forEach(el => el.remove());
        return JSON.stringify({ text: document.body.innerText, error: null });
    } catch (e) {
        return JSON.stringify({ text: null, error: e?.message ?? String(e) });
    }
})()
"""

_NBK_SEARCH_SCRIPT = """
(() => {
    try {
        const bodyDiv = document.querySelector('.topListSection-body');
        const items = bodyDiv ? bodyDiv.querySelectorAll('._item') : [];
        let productUrl = null;
        if (items.length > 0) {
            const link = items[0].querySelector('a._link');
            if (link) {
                const href = link.getAttribute('href') || '';
                productUrl = href.startsWith('http') ? href : `https://www.nbk1560.com${href}`;
            }
        }
        return JSON.stringify({ hasResults: items.length > 0, productUrl, error: null });
    } catch (e) {
        return JSON.stringify({ hasResults: false, productUrl: null, error: (e?.message ?? String(e)) });
    }
})()
"""

_TEXT_CONTENT_TYPES = ('text/', 'application/json', 'application/xml', 'application/xhtml')


class DispatchOutcome:
    """Result of handing a URL to the asynchronous scraping service."""

    ACCEPTED = 'accepted'
    # The service did not answer within the dispatch timeout; it keeps working in the background
    PROCESSING = 'processing'


class ScrapingServiceClient:
    """
    Client for the external headless-browser scraping service.

    Asynchronous endpoints deliver their content later through the
    scraping-callback route; the probe endpoint answers synchronously.
    """

    def __init__(self, base_url: str, session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.sleep = sleep

    def wake(self) -> bool:
        """Ping the health endpoint so a sleeping instance starts booting."""
        try:
            response = self.session.get(f"{self.base_url}/health", timeout=5)
            return response.ok
        except requests.RequestException as e:
            logger.warning(f"Scraping service health check failed: {e}")
            return False

    def probe(self, url: str, include_html: bool = False) -> Dict[str, Any]:
        """
        Scrape a URL synchronously (no callback).

        Returns:
            {'content': str, 'title': str | None, 'html': str | None}

        Raises:
            ScrapingError: on transport failure, non-2xx or an empty page
        """
        try:
            response = self.session.post(
                f"{self.base_url}/scrape",
                json={'url': url, 'includeHtml': include_html},
                timeout=config.PROBE_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise ScrapingError(f"Probe request failed: {e}") from e

        if not response.ok:
            raise ScrapingError(f"Probe returned {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise ScrapingError(f"Probe returned invalid JSON: {e}") from e
        content = data.get('content')
        if not content:
            raise ScrapingError('Probe returned empty content')
        return {'content': content, 'title': data.get('title'), 'html': data.get('html')}

    def scrape_render(self, url: str, callback_url: str, job_id: str, url_index: int,
                      title: Optional[str] = None, snippet: Optional[str] = None) -> str:
        payload = {
            'url': url,
            'callbackUrl': callback_url,
            'jobId': job_id,
            'urlIndex': url_index,
            'title': title,
            'snippet': snippet,
        }
        return self._dispatch('/scrape', payload, label='Render')

    def scrape_keyence(self, model: str, callback_url: str, job_id: str, url_index: int) -> str:
        payload = {
            'model': model,
            'callbackUrl': callback_url,
            'jobId': job_id,
            'urlIndex': url_index,
        }
        return self._dispatch('/scrape-keyence', payload, label='KEYENCE')

    def scrape_idec_dual(self, model: str, jp_url: str, us_url: str, callback_url: str,
                         job_id: str, url_index: int, jp_proxy: Optional[str], us_proxy: Optional[str],
                         title: Optional[str] = None, snippet: Optional[str] = None) -> str:
        if not jp_proxy or not us_proxy:
            raise ScrapingError('IDEC proxy configuration error - environment variables not set')
        payload = {
            'callbackUrl': callback_url,
            'jobId': job_id,
            'urlIndex': url_index,
            'title': title,
            'snippet': snippet,
            'extractionMode': 'idec_dual_site',
            'model': model,
            'jpProxyUrl': jp_proxy,
            'usProxyUrl': us_proxy,
            'jpUrl': jp_url,
            'usUrl': us_url,
        }
        return self._dispatch('/scrape-idec-dual', payload, label='IDEC dual-site')

    def _dispatch(self, path: str, payload: Dict[str, Any], label: str) -> str:
        """
        POST to an asynchronous endpoint with retries.

        A client-side timeout means the service is processing in the
        background and is not retried. A 503 means the service is restarting
        and gets a longer backoff.

        Raises:
            ScrapingError: after DISPATCH_MAX_RETRIES failed attempts
        """
        last_error = None
        restarting = False

        for attempt in range(1, DISPATCH_MAX_RETRIES + 1):
            logger.info(f"{label} invocation attempt {attempt}/{DISPATCH_MAX_RETRIES}")
            try:
                response = self.session.post(
                    f"{self.base_url}{path}",
                    json=payload,
                    timeout=config.SCRAPER_DISPATCH_TIMEOUT_SECONDS,
                )
                if response.ok:
                    logger.info(f"{label} successfully invoked on attempt {attempt}")
                    return DispatchOutcome.ACCEPTED
                if response.status_code == 503:
                    restarting = True
                    logger.warning(f"{label}: scraping service is restarting (503 response)")
                last_error = f"{response.status_code} - {response.text[:200]}"
                logger.error(f"{label} error response on attempt {attempt}: {last_error}")
            except requests.Timeout:
                logger.info(f"{label} call timed out after {config.SCRAPER_DISPATCH_TIMEOUT_SECONDS}s "
                            f"(processing in background)")
                return DispatchOutcome.PROCESSING
            except requests.RequestException as e:
                last_error = str(e)
                logger.error(f"{label} call failed on attempt {attempt}: {e}")

            if attempt < DISPATCH_MAX_RETRIES:
                if restarting:
                    backoff = 15 if attempt == 1 else 30
                else:
                    backoff = (2 ** attempt) * 0.5
                logger.info(f"Retrying {label} call in {backoff}s...")
                self.sleep(backoff)

        if restarting:
            raise ScrapingError('Scraping service was restarting - this URL will be retried on next check')
        raise ScrapingError(f"{label} failed after {DISPATCH_MAX_RETRIES} attempts: {last_error}")


class BrowserQLClient:
    """Synchronous scraping through the BrowserQL GraphQL endpoint."""

    def __init__(self, api_key: Optional[str], endpoint: str, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.endpoint = endpoint
        self.session = session or requests.Session()

    def _execute(self, query: str, variables: Optional[Dict[str, Any]] = None, label: str = 'BrowserQL') -> Dict[str, Any]:
        if not self.api_key:
            raise ScrapingError('BROWSERQL_API_KEY environment variable not set')

        body = {'query': query}
        if variables:
            body['variables'] = variables
        try:
            response = self.session.post(
                self.endpoint,
                params={'token': self.api_key},
                json=body,
                timeout=config.PROBE_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise ScrapingError(f"{label} request failed: {e}") from e

        if not response.ok:
            raise ScrapingError(f"{label} API error: {response.status_code} - {response.text[:200]}")

        try:
            result = response.json()
        except ValueError as e:
            raise ScrapingError(f"{label} returned invalid JSON: {e}") from e
        if result.get('errors'):
            raise ScrapingError(f"{label} GraphQL errors: {json.dumps(result['errors'])}")
        if not result.get('data'):
            raise ScrapingError(f"{label} returned no data")
        return result['data']

    def scrape(self, url: str) -> Dict[str, Any]:
        """
        Render a page and return its visible text.

        Returns:
            {'content': str, 'title': None}
        """
        logger.info(f"Scraping with BrowserQL: {url}")
        query = """
            mutation ScrapeUrl($url: String!) {
                goto(url: $url, waitUntil: networkIdle) {
                    status
                }
                pageContent: evaluate(content: \"\"\"%s\"\"\") {
                    value
                }
            }
        """ % _PAGE_TEXT_SCRIPT
        data = self._execute(query, {'url': url})
        if not data.get('pageContent'):
            raise ScrapingError('BrowserQL returned no data')

        evaluated = json.loads(data['pageContent']['value'])
        if evaluated.get('error'):
            raise ScrapingError(f"BrowserQL evaluation error: {evaluated['error']}")
        content = evaluated.get('text')
        if not content:
            raise ScrapingError('BrowserQL returned empty content')

        logger.info(f"BrowserQL scraped successfully: {len(content)} characters")
        return {'content': content, 'title': None}

    def scrape_nbk(self, model: str) -> Dict[str, Any]:
        """
        Two-step NBK flow: site search, then the first product page.
        No search hit is reported as content, not as an error.
        """
        search_term = model.replace('x', '').replace('-', '')
        search_url = (f"https://www.nbk1560.com/search/?q={quote(search_term)}&SelectedLanguage=ja-JP"
                      f"&page=1&imgsize=1&doctype=all&sort=0&pagemax=10&htmlLang=ja")
        logger.info(f"NBK: searching {search_url}")

        search_query = """
            mutation NBKSearch($searchUrl: String!) {
                goto(url: $searchUrl, waitUntil: networkIdle) {
                    status
                }
                searchInfo: evaluate(content: \"\"\"%s\"\"\") {
                    value
                }
            }
        """ % _NBK_SEARCH_SCRIPT
        data = self._execute(search_query, {'searchUrl': search_url}, label='NBK search')
        if not data.get('searchInfo'):
            raise ScrapingError('NBK search returned no data')

        info = json.loads(data['searchInfo']['value'])
        if info.get('error'):
            raise ScrapingError(f"NBK search page evaluation error: {info['error']}")
        if not info.get('hasResults') or not info.get('productUrl'):
            logger.info(f"NBK: no results found for model {model}")
            return {
                'content': f'[NBK Search: No results found for model "{model}". Preprocessed search term: "{search_term}"]',
                'title': 'NBK Search - No Results',
            }

        product_query = """
            mutation NBKProduct($productUrl: String!) {
                goto(url: $productUrl, waitUntil: networkIdle) {
                    status
                }
                productContent: text(selector: "body") {
                    text
                }
            }
        """
        data = self._execute(product_query, {'productUrl': info['productUrl']}, label='NBK product page')
        content = (data.get('productContent') or {}).get('text')
        if not content:
            raise ScrapingError('NBK product page returned empty content')

        logger.info(f"NBK: scraped product page ({len(content)} characters)")
        return {'content': content, 'title': 'NBK Product', 'url': info['productUrl']}


def fetch_direct(url: str, session: Optional[requests.Session] = None) -> Optional[Dict[str, Any]]:
    """
    Plain HTTP GET for text-like documents.

    Returns:
        {'content', 'title'} for text responses, or None when the document is
        binary (PDF) and needs the scraping service's extractor

    Raises:
        ScrapingError: on transport failure or non-2xx
    """
    session = session or requests.Session()
    try:
        response = session.get(url, timeout=config.DIRECT_FETCH_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        raise ScrapingError(f"Direct fetch failed: {e}") from e
    if not response.ok:
        raise ScrapingError(f"Direct fetch returned {response.status_code}")

    content_type = response.headers.get('Content-Type', '').lower()
    if not content_type.startswith(_TEXT_CONTENT_TYPES):
        return None

    text = response.text
    title_match = re.search(r'<title[^>]*>(.*?)</title>', text, re.IGNORECASE | re.DOTALL)
    return {'content': text, 'title': title_match.group(1).strip() if title_match else None}
