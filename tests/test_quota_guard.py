"""
Tests for the auto-check quota guard.
"""
import pytest

from eol_checker.services.job_storage import to_iso
from eol_checker.services.quota_guard import QuotaGuard, RunContext


@pytest.fixture
def credits():
    return {'remaining': 1000}


@pytest.fixture
def guard(clock, credits):
    return QuotaGuard(search_credits=lambda: credits['remaining'], clock=clock)


@pytest.fixture
def enabled(guard):
    guard.update_state({'enabled': True})
    return guard


def test_default_state_is_disabled(guard):
    state = guard.get_state()
    assert state == {
        'enabled': False,
        'dailyCounter': 0,
        'lastResetDate': '2024-05-01',
        'isRunning': False,
        'lastActivityTime': None,
    }
    decision = guard.can_proceed()
    assert not decision
    assert decision.reason == 'Auto-check disabled'


def test_update_state_keeps_allowed_fields_only(guard):
    state = guard.update_state({'enabled': True, 'cooldownUntil': 'x', 'hacked': 1})
    assert state['enabled'] is True
    assert 'hacked' not in state
    assert 'cooldownUntil' not in state


def test_setting_running_stamps_activity(guard, clock):
    state = guard.update_state({'isRunning': True})
    assert state['lastActivityTime'] == to_iso(clock())


def test_enabled_guard_allows(enabled):
    decision = enabled.can_proceed()
    assert decision
    assert decision.reason == 'OK'


def test_running_blocks_unless_chaining(enabled):
    enabled.update_state({'isRunning': True})
    assert enabled.can_proceed().reason == 'Already running'
    assert enabled.can_proceed(allow_running=True)


def test_manual_check_blocks(enabled):
    with enabled.manual_check():
        assert enabled.is_manual_check_running()
        assert enabled.can_proceed().reason == 'Manual check in progress'
        assert enabled.can_proceed(allow_running=True).reason == 'Manual check in progress'

    assert not enabled.is_manual_check_running()
    assert enabled.can_proceed()


def test_manual_check_marker_cleared_on_error(enabled):
    with pytest.raises(RuntimeError):
        with enabled.manual_check():
            raise RuntimeError('poll failed')
    assert 'manualCheckStartedAt' not in enabled.get_state()


def test_abandoned_manual_check_expires(enabled, clock):
    enabled.begin_manual_check()
    clock.advance(minutes=5)
    assert not enabled.can_proceed()

    clock.advance(minutes=1)
    assert enabled.can_proceed()


def test_manual_marker_cannot_be_set_through_state_updates(enabled):
    enabled.update_state({'manualCheckStartedAt': '2024-05-01T03:00:00Z'})
    assert not enabled.is_manual_check_running()


def test_daily_ceiling(enabled):
    for _ in range(19):
        enabled.record_attempt()
    assert enabled.can_proceed()

    assert enabled.record_attempt() == 20
    decision = enabled.can_proceed()
    assert not decision
    assert decision.reason == 'Daily limit reached (20 checks)'


def test_counter_resets_once_per_tokyo_day(enabled, clock):
    for _ in range(20):
        enabled.record_attempt()

    # 14:59 UTC is 23:59 in Tokyo: still the same day
    clock.advance(hours=11, minutes=59)
    assert enabled.reset_daily_counter_if_needed() is False

    clock.advance(minutes=1)
    assert enabled.reset_daily_counter_if_needed() is True
    assert enabled.reset_daily_counter_if_needed() is False
    state = enabled.get_state()
    assert state['dailyCounter'] == 0
    assert state['lastResetDate'] == '2024-05-02'
    assert enabled.can_proceed()


def test_low_credits_disable_auto_check(enabled, credits):
    credits['remaining'] = 50
    decision = enabled.can_proceed()
    assert not decision
    assert 'credits' in decision.reason
    assert enabled.get_state()['enabled'] is False


def test_credit_lookup_failure_does_not_block(clock):
    def broken():
        raise RuntimeError('usage endpoint down')

    guard = QuotaGuard(search_credits=broken, clock=clock)
    guard.update_state({'enabled': True})
    assert guard.can_proceed()


class TestStuckRunRecovery:
    def test_recent_activity_is_kept(self, enabled, clock):
        enabled.update_state({'isRunning': True})
        clock.advance(minutes=5)
        assert enabled.recover_stuck_run() is False
        assert enabled.get_state()['isRunning'] is True

    def test_stale_run_is_reset_once(self, enabled, clock):
        enabled.update_state({'isRunning': True})
        clock.advance(minutes=5, seconds=1)

        assert enabled.recover_stuck_run() is True
        assert enabled.recover_stuck_run() is False
        assert enabled.get_state()['isRunning'] is False

    def test_running_without_activity_is_stuck(self, enabled):
        enabled.update_state({'isRunning': True, 'lastActivityTime': None})
        assert enabled.recover_stuck_run() is True


class TestCooldown:
    def test_daily_limit_blocks_until_expiry(self, enabled, clock):
        enabled.record_daily_limit(600)
        assert enabled.cooldown_seconds() == 600
        assert 'cooldown' in enabled.can_proceed().reason

        clock.advance(seconds=601)
        assert enabled.cooldown_seconds() is None
        assert enabled.can_proceed()

    def test_low_remaining_tokens_start_cooldown(self, enabled):
        enabled.record_rate_limits({'remainingTokens': 200, 'resetSeconds': 30})
        assert enabled.get_state()['llmRemainingTokens'] == 200
        assert enabled.cooldown_seconds() == 30

    def test_healthy_remaining_tokens(self, enabled):
        enabled.record_rate_limits({'remainingTokens': 6000, 'resetSeconds': 30})
        assert enabled.cooldown_seconds() is None

    def test_run_context_cooldown_blocks(self, enabled):
        context = RunContext()
        context.note_cooldown(120)
        assert 'cooldown' in enabled.can_proceed(context).reason
