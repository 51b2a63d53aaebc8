"""
Service wiring - builds every service from one Settings snapshot
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from eol_checker import config
from eol_checker.config import Settings
from eol_checker.services.auto_check import AutoCheckService
from eol_checker.services.classifier import ClassifierService
from eol_checker.services.job_initializer import JobInitializer
from eol_checker.services.job_storage import JobStorage
from eol_checker.services.poller import HttpJobStatusReader, JobPoller
from eol_checker.services.quota_guard import QuotaGuard, RunContext
from eol_checker.services.scraper import BrowserQLClient, ScrapingServiceClient
from eol_checker.services.search_client import SearchClient
from eol_checker.services.stage_executors import AnalyzeStage, FetchStage
from eol_checker.services.strategy_resolver import StrategyResolver
from eol_checker.services.triggers import StageTriggers


def auth_headers(settings: Settings) -> Dict[str, str]:
    if not settings.api_token:
        return {}
    return {'Authorization': f"Bearer {settings.api_token}"}


@dataclass
class ServiceContainer:
    settings: Settings
    storage: JobStorage
    search_client: SearchClient
    scraping_client: ScrapingServiceClient
    browserql_client: BrowserQLClient
    resolver: StrategyResolver
    initializer: JobInitializer
    classifier: ClassifierService
    guard: QuotaGuard
    chain_triggers: StageTriggers
    fetch_stage: FetchStage
    analyze_stage: AnalyzeStage
    auto_check: AutoCheckService

    def make_poller(self, context: Optional[RunContext] = None, **kwargs) -> JobPoller:
        """Poller that drives a job over HTTP against this deployment."""
        reader = HttpJobStatusReader(self.settings.site_url, headers=auth_headers(self.settings))
        triggers = StageTriggers(self.settings.site_url, timeout=config.TRIGGER_TIMEOUT_SECONDS)
        return JobPoller(reader, triggers, guard=self.guard, context=context, **kwargs)


def build_services(settings: Settings, **overrides: Any) -> ServiceContainer:
    """
    Build the service graph. Keyword overrides replace individual services
    (tests pass fakes for the external clients).
    """
    def pick(name, factory):
        return overrides[name] if name in overrides else factory()

    storage = pick('storage', JobStorage)
    search_client = pick('search_client', lambda: SearchClient(settings.search_api_key, settings.include_domains))
    scraping_client = pick('scraping_client', lambda: ScrapingServiceClient(settings.scraping_service_url))
    browserql_client = pick('browserql_client',
                            lambda: BrowserQLClient(settings.browserql_api_key, settings.browserql_url))
    resolver = pick('resolver', lambda: StrategyResolver(scraping_client, browserql_client))
    initializer = pick('initializer', lambda: JobInitializer(storage, resolver, search_client))
    classifier = pick('classifier', lambda: ClassifierService(settings.llm_api_key, settings.llm_base_url,
                                                              settings.llm_model))
    guard = pick('guard', lambda: QuotaGuard(search_credits=search_client.remaining_credits))
    chain_triggers = pick('chain_triggers', lambda: StageTriggers(settings.site_url,
                                                                  timeout=config.CHAIN_TRIGGER_TIMEOUT_SECONDS))
    fetch_stage = pick('fetch_stage', lambda: FetchStage(
        storage, scraping_client, browserql_client,
        callback_url=f"{settings.site_url}/api/scraping-callback",
        chain_triggers=chain_triggers,
        idec_jp_proxy=settings.idec_jp_proxy,
        idec_us_proxy=settings.idec_us_proxy,
    ))
    analyze_stage = pick('analyze_stage', lambda: AnalyzeStage(storage, classifier, guard))

    container = ServiceContainer(
        settings=settings,
        storage=storage,
        search_client=search_client,
        scraping_client=scraping_client,
        browserql_client=browserql_client,
        resolver=resolver,
        initializer=initializer,
        classifier=classifier,
        guard=guard,
        chain_triggers=chain_triggers,
        fetch_stage=fetch_stage,
        analyze_stage=analyze_stage,
        auto_check=None,
    )
    container.auto_check = pick('auto_check', lambda: AutoCheckService(
        guard, initializer, container.make_poller,
        scraping_client=scraping_client, classifier=classifier,
    ))
    return container
