"""
Strategy Resolver - picks the first stage of a job from the manufacturer registry
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import quote, urljoin

from eol_checker.services.job_types import (
    BrowserQLMode, ExecutionMode, IdecDualSiteMode, KeyenceInteractiveMode,
    NbkInteractiveMode, RenderMode,
)

logger = logging.getLogger(__name__)

# Validation kinds
VALIDATE_NONE = None
VALIDATE_NO_RESULTS = 'no_results'
VALIDATE_EXTRACT_LINK = 'extract_link'
VALIDATE_NOT_FOUND = 'not_found'

NO_RESULTS_MARKERS = (
    'no results found',
    'no products found',
    '0 results',
    'no items match',
    'did not match any products',
    'your search returned no results',
    'we could not find any results',
    'no matches found',
)

NOT_FOUND_MARKERS = (
    'page not found',
    '404 not found',
    'the page you requested could not be found',
    '大変申し訳ございませんお探しのページが見つかりませんでした',
    'お探しのページが見つかりません',
    'ページが見つかりません',
)


@dataclass
class Strategy:
    """How the first stage of a job fetches its single URL."""
    url: str
    mode: ExecutionMode
    requires_validation: bool = False
    requires_extraction: bool = False
    requires_404_check: bool = False
    content: Optional[str] = None
    title: Optional[str] = None

    @property
    def has_content(self) -> bool:
        return self.content is not None


@dataclass(frozen=True)
class ManufacturerStrategy:
    """
    Registry descriptor.

    url_template is formatted with the URL-encoded model as {model};
    mode_factory receives (model, url) and builds the execution mode.
    """
    url_template: str
    mode_factory: Callable[[str, str], ExecutionMode] = field(default=lambda model, url: RenderMode())
    validation: Optional[str] = VALIDATE_NONE
    link_pattern: Optional[str] = None


def _idec_mode(model: str, url: str) -> IdecDualSiteMode:
    encoded = quote(model)
    return IdecDualSiteMode(
        model=model,
        jp_url=f"https://jp.idec.com/search?text={encoded}",
        us_url=f"https://us.idec.com/search?text={encoded}",
    )


_KEYENCE = ManufacturerStrategy(
    url_template='https://www.keyence.co.jp/',
    mode_factory=lambda model, url: KeyenceInteractiveMode(model=model),
)
_NBK = ManufacturerStrategy(
    url_template=('https://www.nbk1560.com/search/?q={model}&SelectedLanguage=ja-JP'
                  '&page=1&imgsize=1&doctype=all&sort=0&pagemax=10&htmlLang=ja'),
    mode_factory=lambda model, url: NbkInteractiveMode(model=model),
)
_OMRON = ManufacturerStrategy(
    url_template='https://www.fa.omron.co.jp/product/item/{model}/',
    validation=VALIDATE_NOT_FOUND,
)

MANUFACTURER_REGISTRY: Dict[str, ManufacturerStrategy] = {
    'SMC': ManufacturerStrategy(
        url_template='https://www.smcworld.com/webcatalog/s3s/ja-jp/detail/?partNumber={model}',
    ),
    'オリエンタルモーター': ManufacturerStrategy(
        url_template='https://www.orientalmotor.co.jp/ja/products/products-search/replacement?hinmei={model}',
        mode_factory=lambda model, url: BrowserQLMode(),
    ),
    'ミスミ': ManufacturerStrategy(
        url_template='https://jp.misumi-ec.com/vona2/result/?Keyword={model}',
    ),
    'NTN': ManufacturerStrategy(
        url_template='https://www.motion.com/products/search;q={model};facet_attributes.MANUFACTURER_NAME=NTN',
        mode_factory=lambda model, url: BrowserQLMode(),
        validation=VALIDATE_NO_RESULTS,
    ),
    'KEYENCE': _KEYENCE,
    'キーエンス': _KEYENCE,
    'IDEC': ManufacturerStrategy(
        url_template='https://jp.idec.com/search?text={model}',
        mode_factory=_idec_mode,
    ),
    'NBK': _NBK,
    '鍋屋バイテック': _NBK,
    'タキゲン': ManufacturerStrategy(
        url_template='https://www.takigen.co.jp/search?keyword={model}',
        validation=VALIDATE_EXTRACT_LINK,
        link_pattern=r'href=["\']([^"\']*/products/detail/[^"\']+)["\']',
    ),
    'オムロン': _OMRON,
    'OMRON': _OMRON,
}


def has_no_search_results(content: Optional[str]) -> bool:
    """True when a search page reports no hits (or is empty)."""
    if not content:
        return True
    lower = content.lower()
    for marker in NO_RESULTS_MARKERS:
        if marker in lower:
            logger.info(f'Detected "no results" pattern: "{marker}"')
            return True
    return False


def is_page_not_found(content: Optional[str]) -> bool:
    if not content:
        return True
    lower = content.lower()
    return any(marker in lower for marker in NOT_FOUND_MARKERS)


def extract_product_link(html: Optional[str], pattern: str, base_url: str) -> Optional[str]:
    """First product-detail link in the page, resolved against base_url."""
    if not html:
        return None
    match = re.search(pattern, html)
    if not match:
        return None
    return urljoin(base_url, match.group(1))


class StrategyResolver:
    """
    Resolve a manufacturer strategy, probing the page synchronously when the
    registry entry asks for validation. Probe failures resolve to None.
    """

    def __init__(self, scraping_client=None, browserql_client=None,
                 registry: Optional[Dict[str, ManufacturerStrategy]] = None):
        self.scraping_client = scraping_client
        self.browserql_client = browserql_client
        self.registry = MANUFACTURER_REGISTRY if registry is None else registry

    def lookup(self, maker: str, model: str) -> Optional[Tuple[ManufacturerStrategy, Strategy]]:
        descriptor = self.registry.get(maker.strip())
        if descriptor is None:
            return None
        model = model.strip()
        url = descriptor.url_template.format(model=quote(model, safe=''))
        strategy = Strategy(
            url=url,
            mode=descriptor.mode_factory(model, url),
            requires_validation=descriptor.validation == VALIDATE_NO_RESULTS,
            requires_extraction=descriptor.validation == VALIDATE_EXTRACT_LINK,
            requires_404_check=descriptor.validation == VALIDATE_NOT_FOUND,
        )
        return descriptor, strategy

    def resolve(self, maker: str, model: str) -> Optional[Strategy]:
        """
        Args:
            maker: Sanitized manufacturer name
            model: Sanitized model number

        Returns:
            A Strategy, or None when the job should fall back to web search
        """
        found = self.lookup(maker, model)
        if found is None:
            return None
        descriptor, strategy = found
        if descriptor.validation is VALIDATE_NONE:
            logger.info(f"Using direct URL strategy for {maker}: {strategy.url} (scraping: {strategy.mode.method})")
            return strategy

        try:
            page = self._probe(strategy)
        except Exception as e:
            logger.warning(f"Validation probe failed for {maker} {model}, falling back to search: {e}")
            return None

        if strategy.requires_extraction:
            link = extract_product_link(page.get('html') or page.get('content'), descriptor.link_pattern, strategy.url)
            if not link:
                logger.info(f"No product detail link found for {maker} {model}, falling back to search")
                return None
            logger.info(f"Resolved product detail page for {maker} {model}: {link}")
            strategy.url = link
            return strategy

        if strategy.requires_404_check:
            if is_page_not_found(page.get('content')):
                logger.info(f"Product page not found for {maker} {model}, falling back to search")
                return None
        elif has_no_search_results(page.get('content')):
            logger.info(f"No search results on manufacturer site for {maker} {model}, falling back to search")
            return None

        strategy.content = page.get('content')
        strategy.title = page.get('title')
        logger.info(f"Validated direct URL for {maker} {model} ({len(strategy.content)} characters)")
        return strategy

    def _probe(self, strategy: Strategy) -> Dict[str, Any]:
        if isinstance(strategy.mode, BrowserQLMode):
            if self.browserql_client is None:
                raise RuntimeError('No BrowserQL client configured')
            return self.browserql_client.scrape(strategy.url)
        if self.scraping_client is None:
            raise RuntimeError('No scraping client configured')
        return self.scraping_client.probe(strategy.url, include_html=strategy.requires_extraction)
