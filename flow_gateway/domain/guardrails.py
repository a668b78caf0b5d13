"""
Guardrails - decide when a payment proceeds automatically vs. stops to ask.

These are safety thresholds, not scoring. Pure functions, no I/O.
"""

from datetime import date
from typing import Optional, Tuple

from flow_gateway.domain.models import GuardrailCheck, GuardrailConfig, UserPaymentState
from flow_gateway.utils.date_utils import today_iso
from flow_gateway.utils.money import format_amount

DEFAULT_GUARDRAILS = GuardrailConfig()

# Absolute ceiling = require_confirmation_above * HARD_BLOCK_MULTIPLIER
HARD_BLOCK_MULTIPLIER = 10


def check_guardrails(
    amount_cents: int,
    state: UserPaymentState,
    config: GuardrailConfig = DEFAULT_GUARDRAILS,
) -> GuardrailCheck:
    """
    Evaluate guardrail rules in order; first match wins.

    1. amount > require_confirmation_above * 10 -> hard block
    2. amount > require_confirmation_above      -> confirm
    3. daily auto-approved + amount > daily cap -> confirm
    4. amount > max single auto payment         -> confirm
    5. otherwise                                -> proceed automatically
    """
    if amount_cents > config.require_confirmation_above_cents * HARD_BLOCK_MULTIPLIER:
        return GuardrailCheck(
            can_proceed_auto=False,
            requires_confirmation=False,
            blocked_reason="Amount exceeds maximum allowed. Contact support.",
        )

    if amount_cents > config.require_confirmation_above_cents:
        return GuardrailCheck(
            can_proceed_auto=False,
            requires_confirmation=True,
            reason=f"Payments above {format_amount(config.require_confirmation_above_cents)} require confirmation",
        )

    if state.daily_auto_approved_cents + amount_cents > config.daily_auto_limit_cents:
        return GuardrailCheck(
            can_proceed_auto=False,
            requires_confirmation=True,
            reason=f"Daily auto-approved limit ({format_amount(config.daily_auto_limit_cents)}) would be exceeded",
        )

    if amount_cents > config.max_single_payment_auto_cents:
        return GuardrailCheck(
            can_proceed_auto=False,
            requires_confirmation=True,
            reason=f"Amount exceeds auto-approve threshold ({format_amount(config.max_single_payment_auto_cents)})",
        )

    return GuardrailCheck(can_proceed_auto=True, requires_confirmation=False)


def guardrail_outcome(check: GuardrailCheck) -> str:
    """Collapse a check into auto | confirm | blocked (severity order)"""
    if check.blocked_reason:
        return "blocked"
    if check.requires_confirmation:
        return "confirm"
    return "auto"


def can_auto_top_up(
    topup_cents: int,
    config: GuardrailConfig = DEFAULT_GUARDRAILS,
) -> Tuple[bool, Optional[str]]:
    """
    Single-threshold check for top-ups. Never hard-blocks: a top-up is either
    auto-approved or needs confirmation.

    Returns: (allowed, reason)
    """
    if topup_cents <= 0:
        return False, "Invalid top-up amount"

    if topup_cents > config.max_auto_topup_cents:
        return False, (
            f"Top-up of {format_amount(topup_cents)} exceeds auto limit "
            f"({format_amount(config.max_auto_topup_cents)})"
        )

    return True, None


def get_or_reset_daily_state(state: UserPaymentState, today: Optional[date] = None) -> UserPaymentState:
    """
    Zero the counter once per calendar day.

    Compares ISO date strings, not timestamps, so 23:59:59 and 00:00:00 on
    the next day land in different buckets. Calling twice on the same day
    returns the state unchanged.
    """
    current_day = today_iso(today)
    if state.last_reset_date != current_day:
        return UserPaymentState(daily_auto_approved_cents=0, last_reset_date=current_day)
    return state


def record_auto_approved_payment(
    state: UserPaymentState,
    amount_cents: int,
    today: Optional[date] = None,
) -> UserPaymentState:
    """Return a new state with the auto-approved amount added (after any reset)"""
    current = get_or_reset_daily_state(state, today)
    return UserPaymentState(
        daily_auto_approved_cents=current.daily_auto_approved_cents + amount_cents,
        last_reset_date=current.last_reset_date,
    )
