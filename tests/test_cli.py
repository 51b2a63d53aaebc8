"""
Tests for the command line entry point (fake HTTP session, in-memory database).
"""
import json

import pytest

from eol_checker import cli
from eol_checker.services.container import build_services
from eol_checker.services.quota_guard import QuotaGuard
from tests.conftest import FakeResponse, FakeSession

RESULT = {
    'status': 'DISCONTINUED',
    'explanation': 'Result #1: production ended',
    'successor': {'status': 'UNKNOWN', 'model': None, 'explanation': ''},
}

INITIALIZED = {'jobId': 'job_1', 'status': 'urls_ready', 'urlCount': 1, 'strategy': 'search'}


class GuardWatchingSession(FakeSession):
    """Records whether a manual check was marked at each status read."""

    def __init__(self, *responses):
        super().__init__(*responses)
        self.marked = []

    def get(self, url, **kwargs):
        self.marked.append(QuotaGuard().is_manual_check_running())
        return super().get(url, **kwargs)


@pytest.fixture
def cli_env(monkeypatch, settings, fakes):
    monkeypatch.setattr(cli, 'load_settings', lambda: settings)
    # The database fixture already initialized the in-memory store
    monkeypatch.setattr(cli, 'init_db', lambda url: None)
    monkeypatch.setattr(cli, 'build_services', lambda s: build_services(s, **fakes))

    def use_session(session):
        monkeypatch.setattr(cli.requests, 'Session', lambda: session)
        return session
    return use_session


def test_parser_dispatch():
    parser = cli.build_parser()

    args = parser.parse_args(['check', 'Acme', 'X1', '--url', 'http://api.test'])
    assert args.func is cli._check
    assert (args.maker, args.model, args.url) == ('Acme', 'X1', 'http://api.test')

    assert parser.parse_args(['scheduled-run']).func is cli._scheduled_run
    assert parser.parse_args(['serve', '--port', '8080']).port == 8080

    with pytest.raises(SystemExit):
        parser.parse_args([])


class TestCheckCommand:
    def test_prints_the_result(self, cli_env, capsys):
        session = cli_env(GuardWatchingSession(
            FakeResponse(200, json_data=INITIALIZED),
            FakeResponse(200, json_data={'status': 'complete', 'result': RESULT}),
        ))

        assert cli.main(['check', 'Acme', 'X1']) == 0

        assert json.loads(capsys.readouterr().out) == RESULT
        method, url, kwargs = session.calls[0]
        assert (method, url) == ('POST', 'http://testserver/api/initialize-job')
        assert kwargs['json'] == {'maker': 'Acme', 'model': 'X1'}
        assert kwargs['headers'] == {'Authorization': 'Bearer test-token'}
        assert session.calls[1][1] == 'http://testserver/api/job-status/job_1'

    def test_marks_a_manual_check_while_polling(self, cli_env):
        session = cli_env(GuardWatchingSession(
            FakeResponse(200, json_data=INITIALIZED),
            FakeResponse(200, json_data={'status': 'complete', 'result': RESULT}),
        ))

        cli.main(['check', 'Acme', 'X1'])

        assert session.marked == [True]
        assert QuotaGuard().is_manual_check_running() is False

    def test_initialization_failure(self, cli_env, capsys):
        cli_env(FakeSession(FakeResponse(502, text='bad gateway')))

        assert cli.main(['check', 'Acme', 'X1']) == 1
        assert 'Initialization failed: 502' in capsys.readouterr().err
        assert QuotaGuard().is_manual_check_running() is False

    def test_failed_job(self, cli_env, capsys):
        cli_env(FakeSession(
            FakeResponse(200, json_data=INITIALIZED),
            FakeResponse(200, json_data={'status': 'error', 'error': 'Analysis failed'}),
        ))

        assert cli.main(['check', 'Acme', 'X1']) == 1
        assert 'Check failed' in capsys.readouterr().err
        assert QuotaGuard().is_manual_check_running() is False

    def test_daily_limit_exit_code(self, cli_env, capsys):
        cli_env(FakeSession(
            FakeResponse(200, json_data=INITIALIZED),
            FakeResponse(200, json_data={'status': 'error', 'error': 'Daily token limit reached',
                                         'isDailyLimit': True, 'retrySeconds': 900}),
        ))

        assert cli.main(['check', 'Acme', 'X1']) == 2
        assert 'retry 900s' in capsys.readouterr().err


class TestScheduledRunCommand:
    def test_disabled(self, cli_env, capsys):
        assert cli.main(['scheduled-run']) == 0
        assert json.loads(capsys.readouterr().out) == {'started': False, 'message': 'Auto-check disabled'}

    def test_held_off_by_a_manual_check(self, cli_env, capsys):
        guard = QuotaGuard()
        guard.update_state({'enabled': True})

        with guard.manual_check():
            cli.main(['scheduled-run'])

        assert json.loads(capsys.readouterr().out)['message'] == 'Manual check in progress'

    def test_runs_the_chain_in_process(self, cli_env, capsys):
        QuotaGuard().update_state({'enabled': True})

        assert cli.main(['scheduled-run']) == 0

        # No parts in the dataset: the in-process run stops and releases isRunning
        assert json.loads(capsys.readouterr().out)['started'] is True
        assert QuotaGuard().get_state()['isRunning'] is False
