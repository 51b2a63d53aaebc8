"""
Command line entry point: serve the API, check one part, or run the scheduled check
"""
import argparse
import json
import logging
import sys

import requests

from eol_checker.config import load_settings
from eol_checker.database.db_config import init_db
from eol_checker.errors import DailyLimitError, EOLCheckError
from eol_checker.services.central_log import configure_logging
from eol_checker.services.container import auth_headers, build_services
from eol_checker.services.poller import HttpJobStatusReader, JobPoller
from eol_checker.services.quota_guard import QuotaGuard
from eol_checker.services.triggers import StageTriggers

logger = logging.getLogger(__name__)


def _serve(args, settings):
    from eol_checker.app import create_app

    app = create_app(settings.override(enable_scheduler=settings.enable_scheduler or args.scheduler))
    app.run(host=args.host, port=args.port, debug=args.debug, threaded=True)
    return 0


def _check(args, settings):
    base_url = args.url or settings.site_url
    headers = auth_headers(settings)
    session = requests.Session()

    # Shares the auto-check state with the API so scheduled runs hold off
    init_db(settings.database_url)
    guard = QuotaGuard()

    with guard.manual_check():
        try:
            response = session.post(f"{base_url}/api/initialize-job",
                                    json={'maker': args.maker, 'model': args.model},
                                    headers=headers, timeout=120)
        except requests.RequestException as e:
            print(f"Initialization failed: {e}", file=sys.stderr)
            return 1
        if not response.ok:
            print(f"Initialization failed: {response.status_code} {response.text}", file=sys.stderr)
            return 1
        job = response.json()
        print(f"Job {job['jobId']} ({job.get('strategy')}, {job.get('urlCount')} URL(s))", file=sys.stderr)

        def progress(snapshot, attempt):
            print(f"  [{attempt}] {snapshot.get('status')} "
                  f"{snapshot.get('completedUrls', 0)}/{snapshot.get('urlCount', 0)} URLs", file=sys.stderr)

        poller = JobPoller(HttpJobStatusReader(base_url, session=session, headers=headers),
                           StageTriggers(base_url, session=session), on_progress=progress)
        try:
            result = poller.poll(job['jobId'])
        except DailyLimitError as e:
            retry = f"{e.retry_seconds:.0f}s" if e.retry_seconds is not None else 'later'
            print(f"LLM daily limit reached, retry {retry}: {e}", file=sys.stderr)
            return 2
        except EOLCheckError as e:
            print(f"Check failed: {e}", file=sys.stderr)
            return 1

    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


def _scheduled_run(args, settings):
    init_db(settings.database_url)
    services = build_services(settings)
    # Run the chain in this process instead of background threads
    services.auto_check.launcher = services.auto_check.run_background
    print(json.dumps(services.auto_check.scheduled_check(), ensure_ascii=False))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='eol-checker', description='End-of-life status checker for parts')
    subparsers = parser.add_subparsers(dest='command', required=True)

    serve = subparsers.add_parser('serve', help='Run the HTTP API')
    serve.add_argument('--host', default='0.0.0.0')
    serve.add_argument('--port', type=int, default=5000)
    serve.add_argument('--debug', action='store_true')
    serve.add_argument('--scheduler', action='store_true', help='Also run the daily auto-check scheduler')
    serve.set_defaults(func=_serve)

    check = subparsers.add_parser('check', help='Check one part through a running API')
    check.add_argument('maker')
    check.add_argument('model')
    check.add_argument('--url', help='API base URL (defaults to SITE_URL)')
    check.set_defaults(func=_check)

    scheduled = subparsers.add_parser('scheduled-run', help='Run the scheduled auto-check once')
    scheduled.set_defaults(func=_scheduled_run)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    configure_logging(settings.log_level)
    return args.func(args, settings)


if __name__ == '__main__':
    sys.exit(main())
