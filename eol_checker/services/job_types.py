"""
Job Types - status values, URL entry helpers and the execution mode variants
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

# Job status values: created -> urls_ready / ready_for_analysis -> fetching -> analyzing -> complete / error
JOB_CREATED = 'created'
JOB_URLS_READY = 'urls_ready'
JOB_FETCHING = 'fetching'
JOB_ANALYZING = 'analyzing'
JOB_READY_FOR_ANALYSIS = 'ready_for_analysis'
JOB_COMPLETE = 'complete'
JOB_ERROR = 'error'

JOB_STATUSES = (
    JOB_CREATED, JOB_URLS_READY, JOB_FETCHING, JOB_ANALYZING,
    JOB_READY_FOR_ANALYSIS, JOB_COMPLETE, JOB_ERROR,
)
ACTIVE_JOB_STATUSES = (JOB_CREATED, JOB_URLS_READY, JOB_FETCHING, JOB_ANALYZING, JOB_READY_FOR_ANALYSIS)
TERMINAL_JOB_STATUSES = (JOB_COMPLETE, JOB_ERROR)

# URL entry status values: pending -> fetching -> complete / error
URL_PENDING = 'pending'
URL_FETCHING = 'fetching'
URL_COMPLETE = 'complete'
URL_ERROR = 'error'

TERMINAL_URL_STATUSES = (URL_COMPLETE, URL_ERROR)


@dataclass(frozen=True)
class RenderMode:
    """Generic headless-browser render on the scraping service."""
    method = 'render'

    def hints(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class BrowserQLMode:
    """Cloudflare-capable renderer (synchronous)."""
    method = 'browserql'

    def hints(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class DirectFetchMode:
    """Plain HTTP fetch for document-like content (PDF, text)."""
    method = 'direct_fetch'

    def hints(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class KeyenceInteractiveMode:
    """Interactive site search on the scraping service, keyed by model."""
    model: str
    method = 'keyence_interactive'

    def hints(self) -> Dict[str, Any]:
        return {'model': self.model}


@dataclass(frozen=True)
class NbkInteractiveMode:
    """Two-step search -> product page flow, keyed by model."""
    model: str
    method = 'nbk_interactive'

    def hints(self) -> Dict[str, Any]:
        return {'model': self.model}


@dataclass(frozen=True)
class IdecDualSiteMode:
    """Japanese site first, US site as fallback."""
    model: str
    jp_url: str
    us_url: str
    method = 'idec_dual_site'

    def hints(self) -> Dict[str, Any]:
        return {'model': self.model, 'jpUrl': self.jp_url, 'usUrl': self.us_url}


ExecutionMode = Union[
    RenderMode, BrowserQLMode, DirectFetchMode,
    KeyenceInteractiveMode, NbkInteractiveMode, IdecDualSiteMode,
]

HINT_FIELDS = ('model', 'jpUrl', 'usUrl')


def mode_from_fields(method: Optional[str], fields: Dict[str, Any]) -> ExecutionMode:
    """
    Rebuild an execution mode from a URL entry or a fetch-url payload.

    Raises:
        ValueError: when the method needs hints the fields don't carry
    """
    method = method or RenderMode.method
    if method == RenderMode.method:
        return RenderMode()
    if method == BrowserQLMode.method:
        return BrowserQLMode()
    if method == DirectFetchMode.method:
        return DirectFetchMode()

    model = fields.get('model')
    if not model:
        raise ValueError(f"Scraping method '{method}' requires a model")
    if method == KeyenceInteractiveMode.method:
        return KeyenceInteractiveMode(model=model)
    if method == NbkInteractiveMode.method:
        return NbkInteractiveMode(model=model)
    if method == IdecDualSiteMode.method:
        jp_url, us_url = fields.get('jpUrl'), fields.get('usUrl')
        if not jp_url or not us_url:
            raise ValueError("Scraping method 'idec_dual_site' requires jpUrl and usUrl")
        return IdecDualSiteMode(model=model, jp_url=jp_url, us_url=us_url)

    raise ValueError(f"Unknown scraping method '{method}'")


def build_url_entry(index: int, url: str, title: str, snippet: str,
                    mode: ExecutionMode, status: str = URL_PENDING) -> Dict[str, Any]:
    """Create a URL entry carrying exactly the hint fields its mode needs."""
    entry = {
        'index': index,
        'url': url,
        'title': title,
        'snippet': snippet,
        'scrapingMethod': mode.method,
        'status': status,
    }
    entry.update(mode.hints())
    return entry


def entry_mode(entry: Dict[str, Any]) -> ExecutionMode:
    return mode_from_fields(entry.get('scrapingMethod'), entry)


def all_entries_terminal(urls: Iterable[Dict[str, Any]]) -> bool:
    """True when there is at least one entry and every entry is complete or error."""
    urls = list(urls or [])
    return bool(urls) and all(u.get('status') in TERMINAL_URL_STATUSES for u in urls)


def find_entry(urls: List[Dict[str, Any]], index: int) -> Optional[Dict[str, Any]]:
    for entry in urls or []:
        if entry.get('index') == index:
            return entry
    return None


def unknown_result(explanation: str) -> Dict[str, Any]:
    """The explicit 'insufficient information' classification."""
    return {
        'status': 'UNKNOWN',
        'explanation': explanation,
        'successor': {
            'status': 'UNKNOWN',
            'model': None,
            'explanation': ''
        }
    }
