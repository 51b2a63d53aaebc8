"""
Classifier Service - Handles LLM calls for end-of-life classification
"""
import json
import logging
import re
import time
from typing import Any, Callable, Dict, Optional

import openai
from openai import OpenAI

from eol_checker import config
from eol_checker.config import ANALYSIS_PROMPT
from eol_checker.errors import ClassificationError, RateLimitError

logger = logging.getLogger(__name__)

VALID_STATUSES = ('ACTIVE', 'DISCONTINUED', 'UNKNOWN')
VALID_SUCCESSOR_STATUSES = ('FOUND', 'UNKNOWN')

_RETRY_AFTER_PATTERN = re.compile(r'Please try again in ((?:\d+h)?(?:\d+m)?(?:\d+(?:\.\d+)?s))')


def parse_time_to_seconds(value: str) -> float:
    """Parse durations such as '7m54.336s' or '2h30m15s' into seconds."""
    total = 0.0
    hours = re.search(r'(\d{1,2})h', value)
    if hours:
        total += int(hours.group(1)) * 3600
    minutes = re.search(r'(\d{1,2})m(?!s)', value)
    if minutes:
        total += int(minutes.group(1)) * 60
    seconds = re.search(r'(\d{1,2}(?:\.\d{1,3})?)s', value)
    if seconds:
        total += float(seconds.group(1))
    return total


def _parse_reset_header(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    match = re.match(r'^([\d.]+)s?$', value)
    if match:
        return float(match.group(1))
    return parse_time_to_seconds(value) or None


def extract_rate_limits(headers) -> Dict[str, Any]:
    """Read the token rate-limit headers of an LLM response."""
    remaining = headers.get('x-ratelimit-remaining-tokens')
    return {
        'remainingTokens': int(remaining) if remaining and remaining.isdigit() else None,
        'limitTokens': headers.get('x-ratelimit-limit-tokens'),
        'resetSeconds': _parse_reset_header(headers.get('x-ratelimit-reset-tokens')),
    }


def _truncate(content: str, max_length: int) -> str:
    """Cut at a sentence or line boundary when one is close to the limit."""
    if len(content) <= max_length:
        return content
    truncated = content[:max_length]
    cut_point = max(truncated.rfind('.'), truncated.rfind('\n'))
    if cut_point > max_length * 0.7:
        truncated = truncated[:cut_point + 1]
    return truncated + '\n\n[Content truncated due to length]'


def format_search_context(job: Dict[str, Any]) -> str:
    """
    Format a job's URL results for the analysis prompt

    Args:
        job: Job record with urls and urlResults

    Returns:
        Prompt section, at most MAX_TOTAL_CONTENT_LENGTH characters of results
    """
    formatted = ''
    total_chars = 0
    url_results = job.get('urlResults') or {}

    for position, entry in enumerate(job.get('urls') or [], start=1):
        result = url_results.get(str(entry['index'])) or {}
        section = '\n========================================\n'
        section += f"RESULT #{position}:\n"
        section += '========================================\n'
        section += f"Title: {result.get('title') or entry.get('title')}\n"
        section += f"URL: {result.get('url') or entry.get('url')}\n"
        section += f"Snippet: {entry.get('snippet') or ''}\n"

        content = result.get('fullContent')
        if content:
            if len(content) > config.MAX_CONTENT_LENGTH_PER_URL:
                logger.info(f"Truncating URL #{position} content from {len(content)} "
                            f"to {config.MAX_CONTENT_LENGTH_PER_URL} chars")
                content = _truncate(content, config.MAX_CONTENT_LENGTH_PER_URL)
            section += f"\nFULL PAGE CONTENT:\n{content}\n"
        else:
            section += '\n[Note: Could not fetch full content - using snippet only]\n'
        section += '\n========================================\n'

        if total_chars + len(section) > config.MAX_TOTAL_CONTENT_LENGTH:
            logger.info(f"Stopping at URL #{position} - total char limit would be exceeded")
            formatted += '\n[Note: Remaining URLs omitted to stay within token limits]\n'
            break
        formatted += section
        total_chars += len(section)

    logger.info(f"Formatted content: {total_chars} characters (~{round(total_chars / 4)} tokens)")
    return formatted.strip()


class ClassifierService:
    def __init__(self, api_key: Optional[str], base_url: str = config.LLM_BASE_URL,
                 model: str = config.LLM_MODEL, client: Optional[OpenAI] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """Initialize the OpenAI-compatible client (retries are handled here, not by the SDK)"""
        self.model = model
        self.sleep = sleep
        self.client = client or OpenAI(api_key=api_key or 'missing', base_url=base_url, max_retries=0)
        self.configured = bool(api_key) or client is not None

    def check_token_availability(self) -> Dict[str, Any]:
        """
        Ping the LLM with a one-token request and read the token headers.

        Returns:
            {'available': bool, 'remainingTokens': int | None, 'resetSeconds': float}
        """
        try:
            raw = self.client.chat.completions.with_raw_response.create(
                model=self.model,
                messages=[{'role': 'user', 'content': 'ping'}],
                max_completion_tokens=1,
            )
            limits = extract_rate_limits(raw.headers)
        except openai.RateLimitError as e:
            limits = extract_rate_limits(e.response.headers)
            limits['remainingTokens'] = limits['remainingTokens'] or 0
        except openai.OpenAIError as e:
            # If the check fails, assume tokens are available and let the real call decide
            logger.error(f"Failed to check LLM token availability: {e}")
            return {'available': True, 'remainingTokens': None, 'resetSeconds': 0}

        remaining = limits['remainingTokens']
        logger.info(f"LLM tokens remaining: {remaining}, reset in: {limits['resetSeconds'] or 'N/A'}s")
        return {
            'available': remaining is None or remaining > config.LLM_MIN_TOKENS_FOR_ANALYSIS,
            'remainingTokens': remaining,
            'resetSeconds': limits['resetSeconds'] or 0,
        }

    def wait_for_tokens(self) -> None:
        """Sleep until the per-minute token window resets when headroom is low."""
        check = self.check_token_availability()
        if not check['available'] and check['resetSeconds'] > 0:
            wait = check['resetSeconds'] + 1
            logger.info(f"LLM tokens low ({check['remainingTokens']}), waiting {wait:.1f}s for reset")
            self.sleep(wait)

    def classify(self, maker: str, model: str, search_context: str) -> Dict[str, Any]:
        """
        Classify a part from the formatted search context

        Args:
            maker: Manufacturer name
            model: Model number
            search_context: Output of format_search_context

        Returns:
            {'status', 'explanation', 'successor': {...}, 'rateLimits': {...}}

        Raises:
            RateLimitError: daily token limit reached (is_daily_limit=True)
            ClassificationError: retries exhausted or an unusable answer
        """
        if not self.configured:
            raise ClassificationError('LLM_API_KEY environment variable not set')

        prompt = ANALYSIS_PROMPT.format(model=model, maker=maker, search_context=search_context)
        raw = self._call_with_retry(prompt)

        completion = raw.parse()
        if not completion.choices or not completion.choices[0].message.content:
            raise ClassificationError('Unexpected response format from LLM')

        response_text = completion.choices[0].message.content.strip()
        parsed = self._parse_json_from_response(response_text)
        if parsed is None:
            raise ClassificationError('No JSON object found in LLM response')

        self._validate_result(parsed)
        parsed['rateLimits'] = extract_rate_limits(raw.headers)
        return parsed

    def _call_with_retry(self, prompt: str):
        last_error = None
        for attempt in range(1, config.LLM_MAX_RETRIES + 1):
            try:
                return self.client.chat.completions.with_raw_response.create(
                    model=self.model,
                    messages=[{'role': 'user', 'content': prompt}],
                    temperature=0,
                    max_completion_tokens=config.LLM_MAX_COMPLETION_TOKENS,
                    top_p=1,
                    stream=False,
                    response_format={'type': 'json_object'},
                    seed=1,
                )
            except openai.RateLimitError as e:
                body = e.response.text
                logger.error(f"LLM rate limit (attempt {attempt}): {body[:500]}")
                if 'tokens per day (TPD)' in body:
                    raise self._daily_limit_error(body) from e
                last_error = e
                if attempt < config.LLM_MAX_RETRIES:
                    reset = _parse_reset_header(e.response.headers.get('x-ratelimit-reset-tokens'))
                    self.sleep((reset if reset is not None else 60) + 2)
            except openai.OpenAIError as e:
                logger.error(f"LLM API attempt {attempt} failed: {e}")
                last_error = e
                if attempt < config.LLM_MAX_RETRIES:
                    self.sleep(2 * 2 ** (attempt - 1))

        if isinstance(last_error, openai.RateLimitError):
            raise RateLimitError(f"Rate limit exceeded after {config.LLM_MAX_RETRIES} attempts")
        raise ClassificationError(f"LLM API call failed after all retries: {last_error}")

    def _daily_limit_error(self, body: str) -> RateLimitError:
        retry_seconds = None
        detail = ''
        match = _RETRY_AFTER_PATTERN.search(body)
        if match:
            retry_seconds = parse_time_to_seconds(match.group(1))
            detail = f" Tokens will recover in approximately {match.group(1)}."
        logger.error(f"LLM daily token limit reached, EOL check cancelled.{detail}")
        return RateLimitError(
            f"Daily token limit reached (rolling 24h window). Analysis cancelled.{detail}",
            retry_seconds=retry_seconds,
            is_daily_limit=True,
        )

    def _validate_result(self, result: Any) -> None:
        if not isinstance(result, dict):
            raise ClassificationError(f"LLM response is not a JSON object: {type(result).__name__}")
        if result.get('status') not in VALID_STATUSES:
            raise ClassificationError(f"Invalid status in LLM response: {result.get('status')}")
        if not isinstance(result.get('explanation'), str):
            raise ClassificationError('Missing explanation in LLM response')
        successor = result.get('successor')
        if not isinstance(successor, dict) or successor.get('status') not in VALID_SUCCESSOR_STATUSES:
            raise ClassificationError('Invalid successor in LLM response')
        successor.setdefault('model', None)
        successor.setdefault('explanation', '')

    def _parse_json_from_response(self, response_text: str) -> Optional[Dict[str, Any]]:
        """
        Parse JSON from AI response text

        Args:
            response_text: Raw response text from AI

        Returns:
            Parsed JSON dictionary or None if parsing fails
        """
        # Strategy 1: Try parsing the entire message
        try:
            return json.loads(response_text)
        except json.JSONDecodeError:
            pass

        # Strategy 2: Look for JSON in markdown code blocks
        json_match = re.search(r'```(?:json)?\s*(\{[\s\S]*?\})\s*```', response_text, re.DOTALL)
        if json_match:
            try:
                return json.loads(json_match.group(1))
            except json.JSONDecodeError:
                pass

        # Strategy 3: Find the first balanced JSON object
        start_idx = response_text.find('{')
        if start_idx != -1:
            brace_count = 0
            for i in range(start_idx, len(response_text)):
                if response_text[i] == '{':
                    brace_count += 1
                elif response_text[i] == '}':
                    brace_count -= 1
                    if brace_count == 0:
                        try:
                            return json.loads(response_text[start_idx:i + 1])
                        except json.JSONDecodeError:
                            break
        return None
