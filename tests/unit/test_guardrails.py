"""Unit tests for guardrail thresholds and the daily counter"""

from datetime import date

import pytest
from flow_gateway.domain.guardrails import (
    can_auto_top_up,
    check_guardrails,
    get_or_reset_daily_state,
    guardrail_outcome,
    record_auto_approved_payment,
)
from flow_gateway.domain.models import GuardrailConfig, UserPaymentState


@pytest.fixture
def fresh_state() -> UserPaymentState:
    return UserPaymentState(daily_auto_approved_cents=0, last_reset_date="2026-01-31")


def test_small_payment_proceeds_automatically(fresh_state):
    check = check_guardrails(2_500, fresh_state)

    assert check.can_proceed_auto is True
    assert check.requires_confirmation is False
    assert check.blocked_reason is None


def test_single_auto_threshold_is_inclusive(fresh_state):
    """RM50.00 exactly still auto-approves; one cent more needs confirmation"""
    assert check_guardrails(5_000, fresh_state).can_proceed_auto is True

    check = check_guardrails(5_001, fresh_state)
    assert check.requires_confirmation is True
    assert check.reason == "Amount exceeds auto-approve threshold (RM50.00)"


def test_high_value_requires_confirmation(fresh_state):
    check = check_guardrails(60_000, fresh_state)

    assert check.requires_confirmation is True
    assert check.reason == "Payments above RM500.00 require confirmation"


def test_daily_limit_would_be_exceeded():
    state = UserPaymentState(daily_auto_approved_cents=18_000, last_reset_date="2026-01-31")

    check = check_guardrails(3_000, state)

    assert check.requires_confirmation is True
    assert check.reason == "Daily auto-approved limit (RM200.00) would be exceeded"


def test_hard_block_above_ten_times_confirmation_threshold(fresh_state):
    check = check_guardrails(500_001, fresh_state)

    assert check.can_proceed_auto is False
    assert check.requires_confirmation is False
    assert check.blocked_reason == "Amount exceeds maximum allowed. Contact support."


def test_hard_block_boundary_is_confirmation(fresh_state):
    check = check_guardrails(500_000, fresh_state)

    assert check.blocked_reason is None
    assert check.requires_confirmation is True


def test_custom_config_thresholds(fresh_state):
    config = GuardrailConfig(max_single_payment_auto_cents=1_000, require_confirmation_above_cents=2_000)

    assert check_guardrails(1_500, fresh_state, config).requires_confirmation is True
    assert check_guardrails(20_001, fresh_state, config).blocked_reason is not None


def test_outcome_never_decreases_with_amount(fresh_state):
    """auto < confirm < blocked as the amount grows"""
    severity = {"auto": 0, "confirm": 1, "blocked": 2}
    previous = 0
    for amount in range(1_000, 600_001, 7_500):
        current = severity[guardrail_outcome(check_guardrails(amount, fresh_state))]
        assert current >= previous, f"Outcome regressed at {amount}"
        previous = current


def test_can_auto_top_up():
    assert can_auto_top_up(10_000) == (True, None)

    allowed, reason = can_auto_top_up(10_001)
    assert allowed is False
    assert reason == "Top-up of RM100.01 exceeds auto limit (RM100.00)"

    allowed, reason = can_auto_top_up(0)
    assert allowed is False
    assert reason == "Invalid top-up amount"


def test_daily_state_resets_on_new_day():
    state = UserPaymentState(daily_auto_approved_cents=15_000, last_reset_date="2026-01-31")

    reset = get_or_reset_daily_state(state, date(2026, 2, 1))

    assert reset.daily_auto_approved_cents == 0
    assert reset.last_reset_date == "2026-02-01"


def test_daily_state_reset_is_idempotent():
    state = UserPaymentState(daily_auto_approved_cents=15_000, last_reset_date="2026-01-31")
    today = date(2026, 2, 1)

    once = get_or_reset_daily_state(state, today)
    twice = get_or_reset_daily_state(once, today)

    assert twice == once
    assert get_or_reset_daily_state(state, date(2026, 1, 31)) is state


def test_record_auto_approved_payment_accumulates_after_reset():
    state = UserPaymentState(daily_auto_approved_cents=15_000, last_reset_date="2026-01-31")

    updated = record_auto_approved_payment(state, 2_000, date(2026, 2, 1))
    updated = record_auto_approved_payment(updated, 3_000, date(2026, 2, 1))

    assert updated.daily_auto_approved_cents == 5_000
    assert updated.last_reset_date == "2026-02-01"
