"""
Application configuration - environment settings, limits and the analysis prompt
"""
import os
from dataclasses import dataclass, field, replace
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# Database connection configuration
DB_HOST = os.getenv('DB_HOST', 'localhost')
DB_PORT = os.getenv('DB_PORT', '3306')
DB_USER = os.getenv('DB_USER', 'root')
DB_PASSWORD = os.getenv('DB_PASSWORD', '')
DB_NAME = os.getenv('DB_NAME', 'eol_checker')
DB_CHARSET = os.getenv('DB_CHARSET', 'utf8mb4')

DATABASE_URL = os.getenv(
    'DATABASE_URL',
    f"mysql+pymysql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}?charset={DB_CHARSET}"
)

# === JOB MANAGEMENT ===
JOB_CLEANUP_DELAY_MINUTES = 1440     # Delete finished jobs after 24 hours
URL_FETCH_STALE_SECONDS = 300        # A URL stuck in 'fetching' this long is marked 'error'
ANALYSIS_STALE_SECONDS = 300         # A job stuck in 'analyzing' this long is marked 'error'
MAX_IDENTIFIER_LENGTH = 200          # Max characters for maker / model

# === LOG MANAGEMENT ===
LOG_RETENTION_DAYS = 1

# === CONTENT TRUNCATION ===
MAX_CONTENT_LENGTH_PER_URL = 6500
MAX_TOTAL_CONTENT_LENGTH = 13000

# === SEARCH ===
SEARCH_API_URL = 'https://api.tavily.com/search'
SEARCH_USAGE_URL = 'https://api.tavily.com/usage'
SEARCH_MAX_RESULTS = 2               # 2 URLs to stay within LLM token limits
SEARCH_TIMEOUT_SECONDS = 30

# === SCRAPING ===
PROBE_TIMEOUT_SECONDS = 60           # Synchronous validation probe during initialization
SCRAPER_DISPATCH_TIMEOUT_SECONDS = 10
DIRECT_FETCH_TIMEOUT_SECONDS = 20

# === POLLING ===
POLL_MAX_ATTEMPTS = 60
POLL_INTERVAL_SECONDS = 2

# === TRIGGERS ===
TRIGGER_MAX_RETRIES = 2
TRIGGER_BACKOFF_SECONDS = 1          # Linear: 1s, 2s
TRIGGER_TIMEOUT_SECONDS = 120        # Interactive poll loop
CHAIN_TRIGGER_TIMEOUT_SECONDS = 10   # Server-side fire-and-forget

# === AUTO-CHECK LIMITS ===
MAX_AUTO_CHECKS_PER_DAY = 20
MIN_SEARCH_CREDITS_FOR_AUTO = 50
STUCK_RUN_MINUTES = 5
AUTO_CHECK_TIMEZONE = 'Asia/Tokyo'
AUTO_CHECK_SCHEDULE_CRON = '0 12 * * *'   # Daily at 21:00 GMT+9 (12:00 UTC)
AUTO_CHECK_CHAIN_DELAY_SECONDS = 2

# === LLM ===
LLM_MODEL = os.getenv('LLM_MODEL', 'openai/gpt-oss-120b')
LLM_BASE_URL = os.getenv('LLM_BASE_URL', 'https://api.groq.com/openai/v1')
LLM_MAX_RETRIES = 3
LLM_MIN_TOKENS_FOR_ANALYSIS = 500
LLM_MAX_COMPLETION_TOKENS = 8192

# Sites the generic search is restricted to
SEARCH_INCLUDE_DOMAINS = [
    'mitsubishielectric.co.jp',
    'sentei.nissei-gtr.co.jp',
    'orimvexta.co.jp',
    'tamron.com',
    'search.sugatsune.co.jp',
    'sanwa.co.jp',
    'jp.idec.com',
    'jp.misumi-ec.com',
    'mitsubishielectric.com',
    'daitron.co.jp',
    'directindustry.com',
    'sankyo-seisakusho.co.jp',
    'tsubakimoto.co.jp',
    'nbk1560.com',
    'habasit.com',
    'tps.co.jp/eol/',
    'shinkoh-faulhaber.jp',
    'misumi-ec.com',
    'takigen.co.jp',
    'manualslib.com',
    'mouser.jp',
    'digikey.jp',
    'rs-components.com',
    'monotaro.com',
    'fujielectric.co.jp',
    'panasonic.jp',
    'wago.com',
    'schmersal.com',
    'tdklamda.com',
    'phoenixcontact.com',
    'idec.com',
    'patlite.co.jp',
    'smcworld.com',
    'sanyodenki.co.jp',
    'orientalmotor.co.jp',
    'keyence.co.jp',
    'omron.co.jp',
    'ntn.co.jp',
]


@dataclass
class Settings:
    """Runtime settings snapshot handed to the app factory and services."""

    database_url: str = DATABASE_URL
    site_url: str = 'http://localhost:5000'
    scraping_service_url: str = 'http://localhost:3000'
    search_api_key: Optional[str] = None
    llm_api_key: Optional[str] = None
    llm_base_url: str = LLM_BASE_URL
    llm_model: str = LLM_MODEL
    browserql_api_key: Optional[str] = None
    browserql_url: str = 'https://production-sfo.browserless.io/stealth/bql'
    idec_jp_proxy: Optional[str] = None
    idec_us_proxy: Optional[str] = None
    api_token: Optional[str] = None
    log_level: str = 'INFO'
    central_logging: bool = True
    enable_scheduler: bool = False
    include_domains: List[str] = field(default_factory=lambda: list(SEARCH_INCLUDE_DOMAINS))

    def override(self, **changes) -> 'Settings':
        return replace(self, **changes)


def load_settings() -> Settings:
    """Build settings from the environment."""
    return Settings(
        database_url=DATABASE_URL,
        site_url=os.getenv('SITE_URL', 'http://localhost:5000').rstrip('/'),
        scraping_service_url=os.getenv('SCRAPING_SERVICE_URL', 'http://localhost:3000').rstrip('/'),
        search_api_key=os.getenv('TAVILY_API_KEY'),
        llm_api_key=os.getenv('LLM_API_KEY') or os.getenv('GROQ_API_KEY'),
        llm_base_url=LLM_BASE_URL,
        llm_model=LLM_MODEL,
        browserql_api_key=os.getenv('BROWSERQL_API_KEY'),
        browserql_url=os.getenv('BROWSERQL_API_URL', 'https://production-sfo.browserless.io/stealth/bql'),
        idec_jp_proxy=os.getenv('IDEC_JP_PROXY'),
        idec_us_proxy=os.getenv('IDEC_US_PROXY'),
        api_token=os.getenv('EOL_API_TOKEN'),
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        central_logging=_env_bool('CENTRAL_LOGGING', True),
        enable_scheduler=_env_bool('ENABLE_SCHEDULER', False),
    )


ANALYSIS_PROMPT = """TASK: Determine if the product "{model}" by {maker} is discontinued (end-of-life).

SEARCH RESULTS:
{search_context}

ANALYSIS RULES:

1) Exact Product Identification (MANDATORY)
- You are analyzing "{model}" ONLY
- Variants with ANY character difference (suffixes, prefixes, version numbers) are DIFFERENT products
- Only use information explicitly about "{model}"

2) Evidence of ACTIVE status
- Currently sold on the manufacturer's official website or by authorized retailers
- A price or delivery date is listed for "{model}"
- "{model}" is listed as the replacement/successor of another product
- A specification page with no indication of discontinuation means ACTIVE

3) Evidence of DISCONTINUED status (only with concrete proof)
- Listed in an official discontinuation/EOL table or announcement
- Clear statement tied to "{model}": "discontinued", "end of life", "end of sales", "production ended"
- Auction sites or secondhand listings are NOT evidence
- Appearing in a document about OTHER discontinued products is NOT evidence

4) Replacement Logic
- "X -> Y" or "Discontinued: X, Replacement: Y" means X is discontinued and Y is active

5) Successor Identification
- If discontinued: report a successor only when it is explicitly stated for this exact product
- If active: no successor needed

6) Insufficient Information
- When the information is insufficient or conflicting, return UNKNOWN and give the reason

Respond ONLY with valid JSON, no text before or after it:
{{
    "status": "ACTIVE" | "DISCONTINUED" | "UNKNOWN",
    "explanation": "ONE brief sentence citing the most definitive source (Result #N: URL, key evidence)",
    "successor": {{
        "status": "FOUND" | "UNKNOWN",
        "model": "model name or null",
        "explanation": "Brief explanation or 'Product is active, no successor needed'"
    }}
}}"""
