"""
Auto-Check Service - the scheduled daily driver that checks one part per run and chains itself
"""
import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from eol_checker import config
from eol_checker.errors import DailyLimitError, EOLCheckError
from eol_checker.services import dataset
from eol_checker.services.job_storage import utcnow
from eol_checker.services.poller import JobPoller, PollSession
from eol_checker.services.quota_guard import QuotaGuard, RunContext

logger = logging.getLogger(__name__)

# Refresh lastActivityTime every N poll attempts so a long check is not seen as stuck
ACTIVITY_TOUCH_EVERY = 15


class AutoCheckService:
    def __init__(self, guard: QuotaGuard, initializer, poller_factory: Callable[[RunContext], JobPoller],
                 scraping_client=None, classifier=None,
                 launcher: Optional[Callable[[str], None]] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], datetime] = utcnow):
        self.guard = guard
        self.initializer = initializer
        self.poller_factory = poller_factory
        self.scraping_client = scraping_client
        self.classifier = classifier
        self.launcher = launcher or self._launch_thread
        self.sleep = sleep
        self.clock = clock

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def scheduled_check(self) -> Dict[str, Any]:
        """Daily cron entry: gate on the guard, mark running and start the chain."""
        logger.info(f"Scheduled EOL check triggered at: {self.clock().isoformat()}")
        self.guard.recover_stuck_run()

        decision = self.guard.can_proceed(RunContext(triggered_by='scheduled'))
        if not decision:
            logger.info(f"Scheduled check skipped: {decision.reason}")
            return {'started': False, 'message': decision.reason}

        state = self.guard.update_state({'isRunning': True})
        self.launcher('scheduled')
        return {'started': True, 'message': 'Background EOL check started',
                'currentCounter': state.get('dailyCounter', 0)}

    def manual_trigger(self) -> Dict[str, Any]:
        """Start a run on demand (ignores the enabled flag only for the start gate)."""
        self.guard.recover_stuck_run()
        self.guard.reset_daily_counter_if_needed()

        state = self.guard.get_state()
        if state.get('isRunning'):
            return {'started': False, 'message': 'Already running'}
        if int(state.get('dailyCounter') or 0) >= config.MAX_AUTO_CHECKS_PER_DAY:
            return {'started': False, 'message': 'Daily limit reached'}

        state = self.guard.update_state({'isRunning': True})
        self.launcher('manual')
        return {'started': True, 'message': 'Background EOL check started',
                'currentCounter': state.get('dailyCounter', 0)}

    def run_background(self, triggered_by: str = 'chain') -> Dict[str, Any]:
        """
        Check ONE part, count it, and chain the next run while the guard allows it

        Returns:
            {'message', 'counter', 'success'}
        """
        logger.info(f"Background EOL check started ({triggered_by})")
        context = RunContext(triggered_by=triggered_by)
        try:
            return self._run_once(context)
        except Exception:
            logger.exception('Background check failed')
            self._stop()
            raise

    # ------------------------------------------------------------------
    # One run
    # ------------------------------------------------------------------

    def _run_once(self, context: RunContext) -> Dict[str, Any]:
        state = self.guard.get_state()
        if not state.get('enabled') and context.triggered_by != 'manual':
            return self._stop('Auto-check disabled')

        self.guard.reset_daily_counter_if_needed()
        if int(self.guard.get_state().get('dailyCounter') or 0) >= config.MAX_AUTO_CHECKS_PER_DAY:
            return self._stop('Daily limit reached')

        cooldown = self.guard.cooldown_seconds()
        if cooldown:
            return self._stop(f"LLM token cooldown ({cooldown}s remaining)")

        if self.scraping_client is not None and not self.scraping_client.wake():
            return self._stop('Scraping service not ready')

        if self.classifier is not None:
            self.classifier.wait_for_tokens()

        part = dataset.find_next_part()
        if part is None:
            return self._stop('No products to check')

        success = self.execute_check(part, context)
        counter = self.guard.record_attempt()
        logger.info(f"Check {'succeeded' if success else 'failed'}, counter now: "
                    f"{counter}/{config.MAX_AUTO_CHECKS_PER_DAY}")

        decision = self.guard.can_proceed(context, allow_running=True)
        if not decision:
            logger.info(f"Chain complete: {decision.reason}")
            self._stop()
            return {'message': f"Check completed, chain stopped: {decision.reason}",
                    'counter': counter, 'success': success}

        self.sleep(config.AUTO_CHECK_CHAIN_DELAY_SECONDS)
        self.guard.touch()
        self.launcher('chain')
        return {'message': 'Check completed, next check triggered', 'counter': counter, 'success': success}

    def execute_check(self, part: Dict[str, Any], context: RunContext) -> bool:
        """Initialize a job for a part, poll it and write the result back."""
        maker, model, sap_number = part.get('manufacturer'), part.get('model'), part.get('sap_number')
        logger.info(f"Executing EOL check for: {maker} {model} (SAP: {sap_number})")
        if not maker or not model:
            logger.info('Missing model or manufacturer, skipping')
            return False

        try:
            init = self.initializer.initialize(maker, model)
            poller = self.poller_factory(context)
            poller.on_progress = self._on_progress
            result = poller.poll(init['jobId'], PollSession(init['jobId']))
        except DailyLimitError as e:
            logger.warning(f"LLM daily limit reached while checking {maker} {model}: {e}")
            return False
        except EOLCheckError as e:
            logger.error(f"EOL check error for {maker} {model}: {e}")
            return False
        except Exception:
            # One bad check is counted as failed; the chain goes on
            logger.exception(f"Unexpected error checking {maker} {model}")
            return False

        dataset.apply_result(sap_number, result, self.clock())
        logger.info(f"EOL check completed for {maker} {model}: {result.get('status')}")
        return True

    def _on_progress(self, snapshot: Dict[str, Any], attempt: int) -> None:
        if attempt % ACTIVITY_TOUCH_EVERY == 0:
            self.guard.touch()

    def _stop(self, message: Optional[str] = None) -> Dict[str, Any]:
        self.guard.update_state({'isRunning': False})
        if message:
            logger.info(f"Background check stopped: {message}")
        return {'message': message or 'Stopped', 'counter': self.guard.get_state().get('dailyCounter', 0),
                'success': False}

    def _launch_thread(self, triggered_by: str) -> None:
        thread = threading.Thread(target=self._run_in_thread, args=(triggered_by,),
                                  name=f"auto-check-{triggered_by}", daemon=True)
        thread.start()

    def _run_in_thread(self, triggered_by: str) -> None:
        try:
            self.run_background(triggered_by)
        except Exception:
            # Already logged and isRunning cleared by run_background
            pass
