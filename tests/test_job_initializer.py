"""
Tests for job initialization: validation, the direct URL strategies and the
search fallback.
"""
import pytest

from eol_checker.errors import SearchServiceError, ValidationError
from eol_checker.services.job_initializer import JobInitializer
from eol_checker.services.strategy_resolver import StrategyResolver
from tests.conftest import FakeBrowserQLClient, FakeScrapingClient, FakeSearchClient

SEARCH_RESULTS = [
    {'url': 'https://shop.example.com/x1', 'title': 'X1 product page', 'snippet': 'X1 in stock'},
    {'url': 'https://docs.example.com/x1-catalog.PDF', 'title': 'X1 catalog', 'snippet': 'catalog'},
]


def make_initializer(storage, search=None, scraping=None, browserql=None):
    resolver = StrategyResolver(scraping or FakeScrapingClient(), browserql or FakeBrowserQLClient())
    return JobInitializer(storage, resolver, search or FakeSearchClient())


def test_zero_search_results_completes_immediately(storage):
    response = make_initializer(storage).initialize('Acme', 'X1')

    assert response['status'] == 'complete'
    assert response['urlCount'] == 0
    assert response['strategy'] == 'search'
    assert response['message'] == 'No search results found'

    job = storage.get_job(response['jobId'])
    assert job['status'] == 'complete'
    assert job['finalResult']['status'] == 'UNKNOWN'
    assert job['finalResult']['explanation'] == 'No search results found'


def test_search_results_seed_pending_entries(storage):
    search = FakeSearchClient(results=SEARCH_RESULTS)
    response = make_initializer(storage, search=search).initialize('Acme', 'X1')

    assert response == {'jobId': response['jobId'], 'status': 'urls_ready', 'urlCount': 2, 'strategy': 'search'}
    urls = storage.get_job(response['jobId'])['urls']
    assert [u['index'] for u in urls] == [0, 1]
    assert [u['status'] for u in urls] == ['pending', 'pending']
    assert urls[0]['scrapingMethod'] == 'render'
    assert urls[1]['scrapingMethod'] == 'direct_fetch'
    assert search.queries == [('Acme', 'X1')]


def test_inputs_are_sanitized(storage):
    search = FakeSearchClient(results=SEARCH_RESULTS[:1])
    response = make_initializer(storage, search=search).initialize('  Acme ', ' X1\0 ')

    job = storage.get_job(response['jobId'])
    assert (job['maker'], job['model']) == ('Acme', 'X1')


def test_direct_url_strategy(storage):
    search = FakeSearchClient(results=SEARCH_RESULTS)
    response = make_initializer(storage, search=search).initialize('KEYENCE', 'LR-ZB250AN')

    assert response['status'] == 'urls_ready'
    assert response['strategy'] == 'direct_url'
    assert response['urlCount'] == 1
    entry = storage.get_job(response['jobId'])['urls'][0]
    assert entry['scrapingMethod'] == 'keyence_interactive'
    assert entry['model'] == 'LR-ZB250AN'
    assert search.queries == []


def test_validated_direct_url_has_content_ready(storage):
    scraping = FakeScrapingClient(probe_page={'content': 'E5CC 温度調節器 現行品', 'title': 'E5CC'})
    response = make_initializer(storage, scraping=scraping).initialize('オムロン', 'E5CC')

    assert response['status'] == 'ready_for_analysis'
    assert response['strategy'] == 'validated_direct_url'
    job = storage.get_job(response['jobId'])
    assert job['urls'][0]['status'] == 'complete'
    assert job['urlResults']['0']['fullContent'] == 'E5CC 温度調節器 現行品'


def test_failed_validation_falls_back_to_search(storage):
    scraping = FakeScrapingClient(probe_page={'content': 'ページが見つかりません', 'title': None})
    search = FakeSearchClient(results=SEARCH_RESULTS[:1])
    response = make_initializer(storage, search=search, scraping=scraping).initialize('オムロン', 'GONE')

    assert response['strategy'] == 'search'
    assert response['urlCount'] == 1


@pytest.mark.parametrize('maker, model', [
    ('Acme', ''),
    ('Acme', '   '),
    ('', 'X1'),
    (None, 'X1'),
    ('Acme', 42),
    ('Acme', 'X' * 201),
])
def test_invalid_input_creates_no_job(storage, maker, model):
    with pytest.raises(ValidationError):
        make_initializer(storage).initialize(maker, model)
    assert storage.store.list() == []


def test_search_failure_leaves_job_created(storage):
    search = FakeSearchClient(error='Search API error: 500')
    with pytest.raises(SearchServiceError):
        make_initializer(storage, search=search).initialize('Acme', 'X1')

    keys = storage.store.list()
    assert len(keys) == 1
    assert storage.get_job(keys[0])['status'] == 'created'
