"""
Quota Guard - daily limits, credit floor, LLM cooldown and stuck-run recovery for auto-checks
"""
import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo

from eol_checker import config
from eol_checker.services.blob_store import BlobStore, get_auto_check_store
from eol_checker.services.job_storage import parse_iso, to_iso, utcnow

logger = logging.getLogger(__name__)

STATE_KEY = 'state'
# Set while an interactive check runs; ignored once older than STUCK_RUN_MINUTES
MANUAL_CHECK_KEY = 'manualCheckStartedAt'
ALLOWED_FIELDS = ('enabled', 'dailyCounter', 'lastResetDate', 'isRunning', 'lastActivityTime')


@dataclass
class GuardDecision:
    allowed: bool
    reason: str = ''

    def __bool__(self):
        return self.allowed


@dataclass
class RunContext:
    """State of one scheduled or manual run, passed explicitly instead of kept in globals."""
    triggered_by: str = 'manual'
    cooldown_until: Optional[datetime] = None

    def note_cooldown(self, seconds: float, now: Optional[datetime] = None) -> None:
        self.cooldown_until = (now or utcnow()) + timedelta(seconds=seconds)

    def cooldown_remaining(self, now: Optional[datetime] = None) -> Optional[int]:
        if self.cooldown_until is None:
            return None
        remaining = (self.cooldown_until - (now or utcnow())).total_seconds()
        return math.ceil(remaining) if remaining > 0 else None


class QuotaGuard:
    def __init__(self, store: Optional[BlobStore] = None,
                 search_credits: Optional[Callable[[], int]] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store or get_auto_check_store()
        self.search_credits = search_credits
        self.clock = clock
        self.tz = ZoneInfo(config.AUTO_CHECK_TIMEZONE)

    def today(self) -> str:
        """Current date (YYYY-MM-DD) in the auto-check timezone."""
        return self.clock().astimezone(self.tz).date().isoformat()

    def _default_state(self) -> Dict[str, Any]:
        return {
            'enabled': False,
            'dailyCounter': 0,
            'lastResetDate': self.today(),
            'isRunning': False,
            'lastActivityTime': None,
        }

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    def get_state(self) -> Dict[str, Any]:
        """Read the state (strong consistency), creating the defaults on first read."""
        state = self.store.get(STATE_KEY, strong=True)
        if state is None:
            state = self._default_state()
            self.store.set(STATE_KEY, state)
        return state

    def update_state(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply a partial update. Only ALLOWED_FIELDS are taken; setting
        isRunning to true stamps lastActivityTime.
        """
        state = self.get_state()
        for name in ALLOWED_FIELDS:
            if name in updates:
                state[name] = updates[name]
        if updates.get('isRunning') and 'lastActivityTime' not in updates:
            state['lastActivityTime'] = to_iso(self.clock())
        self.store.set(STATE_KEY, state)
        logger.info(f"Auto-check state updated: {state}")
        return state

    def _write(self, state: Dict[str, Any]) -> None:
        self.store.set(STATE_KEY, state)

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def reset_daily_counter_if_needed(self) -> bool:
        """Zero the counter once per day boundary. Returns True when it reset."""
        state = self.get_state()
        today = self.today()
        if state.get('lastResetDate') == today:
            return False
        logger.info(f"New day detected ({today}), resetting counter from {state.get('dailyCounter')} to 0")
        state['dailyCounter'] = 0
        state['lastResetDate'] = today
        self._write(state)
        return True

    def record_attempt(self) -> int:
        state = self.get_state()
        state['dailyCounter'] = int(state.get('dailyCounter') or 0) + 1
        state['lastActivityTime'] = to_iso(self.clock())
        self._write(state)
        return state['dailyCounter']

    def touch(self) -> None:
        """Refresh lastActivityTime so a long check is not taken for a stuck run."""
        state = self.get_state()
        state['lastActivityTime'] = to_iso(self.clock())
        self._write(state)

    # ------------------------------------------------------------------
    # LLM cooldown
    # ------------------------------------------------------------------

    def record_daily_limit(self, retry_seconds: float) -> None:
        state = self.get_state()
        state['cooldownUntil'] = to_iso(self.clock() + timedelta(seconds=retry_seconds))
        self._write(state)
        logger.warning(f"LLM daily token limit reached, cooling down for {retry_seconds:.0f}s")

    def record_rate_limits(self, rate_limits: Optional[Dict[str, Any]]) -> None:
        """Store the LLM remaining-token signal; low headroom starts a short cooldown."""
        if not rate_limits:
            return
        state = self.get_state()
        remaining = rate_limits.get('remainingTokens')
        state['llmRemainingTokens'] = remaining
        reset = rate_limits.get('resetSeconds')
        if remaining is not None and remaining <= config.LLM_MIN_TOKENS_FOR_ANALYSIS and reset:
            state['cooldownUntil'] = to_iso(self.clock() + timedelta(seconds=reset))
        self._write(state)

    def cooldown_seconds(self) -> Optional[int]:
        until = parse_iso(self.get_state().get('cooldownUntil'))
        if until is None:
            return None
        remaining = (until - self.clock()).total_seconds()
        return math.ceil(remaining) if remaining > 0 else None

    # ------------------------------------------------------------------
    # Manual checks
    # ------------------------------------------------------------------

    def begin_manual_check(self) -> None:
        state = self.get_state()
        state[MANUAL_CHECK_KEY] = to_iso(self.clock())
        self._write(state)

    def end_manual_check(self) -> None:
        state = self.get_state()
        if state.pop(MANUAL_CHECK_KEY, None) is not None:
            self._write(state)

    @contextmanager
    def manual_check(self):
        """Hold automatic runs off while an interactive check is in progress."""
        self.begin_manual_check()
        try:
            yield
        finally:
            self.end_manual_check()

    def is_manual_check_running(self) -> bool:
        started = parse_iso(self.get_state().get(MANUAL_CHECK_KEY))
        if started is None:
            return False
        return self.clock() - started <= timedelta(minutes=config.STUCK_RUN_MINUTES)

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    def recover_stuck_run(self) -> bool:
        """
        Clear isRunning when the last activity is older than STUCK_RUN_MINUTES
        (or unknown). Returns True when it reset the flag.
        """
        state = self.get_state()
        if not state.get('isRunning'):
            return False
        last_activity = parse_iso(state.get('lastActivityTime'))
        if last_activity is not None:
            idle = self.clock() - last_activity
            if idle <= timedelta(minutes=config.STUCK_RUN_MINUTES):
                return False
        logger.warning(f"Auto-check stuck since {state.get('lastActivityTime')}, resetting isRunning")
        state['isRunning'] = False
        self._write(state)
        return True

    def can_proceed(self, context: Optional[RunContext] = None, allow_running: bool = False) -> GuardDecision:
        """
        Decide whether the next automatic check may start

        Args:
            context: The run asking; its in-memory cooldown is honored too
            allow_running: True for a run that already owns isRunning (chaining)

        Returns:
            GuardDecision, falsy with the reason when blocked
        """
        state = self.get_state()
        if not state.get('enabled'):
            return GuardDecision(False, 'Auto-check disabled')
        if state.get('isRunning') and not allow_running:
            return GuardDecision(False, 'Already running')
        if self.is_manual_check_running():
            return GuardDecision(False, 'Manual check in progress')

        cooldown = self.cooldown_seconds()
        if context is not None and context.cooldown_remaining(self.clock()):
            cooldown = max(cooldown or 0, context.cooldown_remaining(self.clock()))
        if cooldown:
            return GuardDecision(False, f"LLM token cooldown ({cooldown}s remaining)")

        self.reset_daily_counter_if_needed()
        counter = int(self.get_state().get('dailyCounter') or 0)
        if counter >= config.MAX_AUTO_CHECKS_PER_DAY:
            return GuardDecision(False, f"Daily limit reached ({config.MAX_AUTO_CHECKS_PER_DAY} checks)")

        if self.search_credits is not None:
            try:
                remaining = self.search_credits()
            except Exception as e:
                logger.warning(f"Could not read search credits, continuing: {e}")
            else:
                if remaining <= config.MIN_SEARCH_CREDITS_FOR_AUTO:
                    logger.warning(f"Search credits too low ({remaining}), disabling auto-check")
                    self.update_state({'enabled': False})
                    return GuardDecision(False, f"Search credits too low ({remaining})")

        return GuardDecision(True, 'OK')
