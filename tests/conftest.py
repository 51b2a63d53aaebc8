"""
Pytest configuration and shared fixtures.

Provides an in-memory database, a controllable clock and fakes for every
external service (search, scraping, BrowserQL, LLM, HTTP triggers).
"""
from datetime import datetime, timedelta, timezone

import pytest
import requests

from eol_checker.config import Settings
from eol_checker.database.db_config import close_db, init_db
from eol_checker.errors import ScrapingError, SearchServiceError
from eol_checker.services.job_storage import JobStorage
from eol_checker.services.triggers import TriggerOutcome

TEST_TOKEN = 'test-token'


# ----------------------------------------------------------------------
# Time
# ----------------------------------------------------------------------

class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 5, 1, 3, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeSleep:
    """Records sleeps and optionally runs a hook on each one."""

    def __init__(self, hook=None):
        self.calls = []
        self.hook = hook

    def __call__(self, seconds):
        self.calls.append(seconds)
        if self.hook:
            self.hook(len(self.calls))


# ----------------------------------------------------------------------
# HTTP
# ----------------------------------------------------------------------

class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text='', headers=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self.headers = headers or {}

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._json is None:
            raise requests.exceptions.JSONDecodeError('Expecting value', self.text, 0)
        return self._json


class FakeSession:
    """
    Stand-in for requests.Session. Each queued item is a FakeResponse or an
    exception instance to raise; the last item repeats when the queue runs out.
    """

    def __init__(self, *responses):
        self.responses = list(responses) or [FakeResponse()]
        self.calls = []

    def _next(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url, **kwargs):
        return self._next('POST', url, kwargs)

    def get(self, url, **kwargs):
        return self._next('GET', url, kwargs)


# ----------------------------------------------------------------------
# Services
# ----------------------------------------------------------------------

class FakeSearchClient:
    def __init__(self, results=None, error=None, credits=1000):
        self.results = results or []
        self.error = error
        self.credits = credits
        self.queries = []

    def search(self, maker, model):
        self.queries.append((maker, model))
        if self.error:
            raise SearchServiceError(self.error)
        return list(self.results)

    def get_usage(self):
        return {'usage': 1000 - self.credits, 'limit': 1000, 'remaining': self.credits, 'plan': 'Test'}

    def remaining_credits(self):
        return self.credits


class FakeScrapingClient:
    def __init__(self, probe_page=None, probe_error=None, dispatch_error=None, healthy=True):
        self.probe_page = probe_page
        self.probe_error = probe_error
        self.dispatch_error = dispatch_error
        self.healthy = healthy
        self.probes = []
        self.dispatched = []

    def wake(self):
        return self.healthy

    def probe(self, url, include_html=False):
        self.probes.append(url)
        if self.probe_error:
            raise self.probe_error
        return self.probe_page

    def _dispatch(self, kind, *args):
        self.dispatched.append((kind,) + args)
        if self.dispatch_error:
            raise ScrapingError(self.dispatch_error)
        return 'accepted'

    def scrape_render(self, url, callback_url, job_id, url_index, title=None, snippet=None):
        return self._dispatch('render', url, job_id, url_index)

    def scrape_keyence(self, model, callback_url, job_id, url_index):
        return self._dispatch('keyence', model, job_id, url_index)

    def scrape_idec_dual(self, model, jp_url, us_url, callback_url, job_id, url_index,
                         jp_proxy, us_proxy, title=None, snippet=None):
        return self._dispatch('idec', model, job_id, url_index)


class FakeBrowserQLClient:
    def __init__(self, page=None, error=None):
        self.page = page or {'content': 'BrowserQL page text', 'title': None}
        self.error = error
        self.scraped = []

    def scrape(self, url):
        self.scraped.append(url)
        if self.error:
            raise ScrapingError(self.error)
        return dict(self.page)

    def scrape_nbk(self, model):
        self.scraped.append(('nbk', model))
        if self.error:
            raise ScrapingError(self.error)
        return {'content': f"NBK product page for {model}", 'title': 'NBK Product'}


class FakeClassifier:
    def __init__(self, result=None, error=None):
        self.result = result or {
            'status': 'ACTIVE',
            'explanation': 'Result #1: listed with price',
            'successor': {'status': 'UNKNOWN', 'model': None, 'explanation': 'Product is active, no successor needed'},
            'rateLimits': {'remainingTokens': 7000, 'resetSeconds': 2.0},
        }
        self.error = error
        self.calls = []

    def wait_for_tokens(self):
        pass

    def check_token_availability(self):
        return {'available': True, 'remainingTokens': 8000, 'resetSeconds': 0}

    def classify(self, maker, model, search_context):
        self.calls.append((maker, model, search_context))
        if self.error:
            raise self.error
        return dict(self.result)


class RecordingTriggers:
    def __init__(self, outcome=TriggerOutcome.SUCCESS):
        self.outcome = outcome
        self.fetches = []
        self.analyses = []

    def trigger_fetch(self, job_id, entry):
        self.fetches.append((job_id, entry['index']))
        return self.outcome

    def trigger_analyze(self, job_id):
        self.analyses.append(job_id)
        return self.outcome


# ----------------------------------------------------------------------
# Fixtures
# ----------------------------------------------------------------------

@pytest.fixture(autouse=True)
def database():
    """Fresh in-memory database per test."""
    init_db('sqlite://')
    yield
    close_db()


@pytest.fixture(autouse=True)
def no_real_http(monkeypatch):
    """Fail loudly if a test reaches the network through requests."""
    def refuse(self, method, url, *args, **kwargs):
        raise AssertionError(f"Unexpected real HTTP call: {method} {url}")
    monkeypatch.setattr(requests.Session, 'request', refuse)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(clock):
    return JobStorage(clock=clock)


@pytest.fixture
def make_job(storage):
    """Create a job with the given URL entry statuses and job status."""
    def factory(entry_statuses=('pending',), status='urls_ready', maker='Acme', model='X1'):
        job_id = storage.create_job(maker, model)
        urls = [
            {'index': i, 'url': f"https://example.com/{i}", 'title': f"Page {i}", 'snippet': '',
             'scrapingMethod': 'render', 'status': s}
            for i, s in enumerate(entry_statuses)
        ]
        storage.save_job_urls(job_id, urls, status=status)
        return job_id
    return factory


@pytest.fixture
def settings():
    return Settings(
        database_url='sqlite://',
        site_url='http://testserver',
        scraping_service_url='http://scraper.test',
        search_api_key='search-key',
        llm_api_key='llm-key',
        api_token=TEST_TOKEN,
        central_logging=False,
        enable_scheduler=False,
    )


@pytest.fixture
def fakes():
    return {
        'search_client': FakeSearchClient(),
        'scraping_client': FakeScrapingClient(),
        'browserql_client': FakeBrowserQLClient(),
        'classifier': FakeClassifier(),
        'chain_triggers': RecordingTriggers(),
    }


@pytest.fixture
def app(settings, fakes):
    from eol_checker.app import create_app

    app = create_app(settings, **fakes)
    app.config['TESTING'] = True
    launched = []
    app.extensions['eol_checker'].auto_check.launcher = launched.append
    app.extensions['eol_checker_launched'] = launched
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth():
    return {'Authorization': f"Bearer {TEST_TOKEN}"}
