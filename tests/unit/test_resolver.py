"""Unit tests for the priority waterfall"""

import pytest
from flow_gateway.domain.models import (
    FallbackPreference,
    FundingSource,
    FundingSourceType,
    PaymentRequest,
    ResolutionAction,
    StepAction,
)
from flow_gateway.domain.resolver import explain_resolution, find_default_card, resolve_payment


def source(name, type_, balance, priority, **kwargs) -> FundingSource:
    return FundingSource(
        id=f"src_{name.lower()}",
        name=name,
        type=type_,
        balance_cents=balance,
        priority=priority,
        **kwargs,
    )


def request(amount_cents: int) -> PaymentRequest:
    return PaymentRequest(amount_cents=amount_cents, currency="MYR", intent_id="intent_1")


@pytest.fixture
def wallet_bank_card():
    return [
        source("TNG", FundingSourceType.WALLET, 2_000, 1),
        source("Maybank", FundingSourceType.BANK, 50_000, 2),
        source("Visa", FundingSourceType.CREDIT_CARD, 0, 3),
    ]


def test_primary_covers_amount():
    sources = [source("TNG", FundingSourceType.WALLET, 8_000, 1)]

    resolution = resolve_payment(request(5_000), sources)

    assert resolution.action is ResolutionAction.USE_SINGLE_SOURCE
    assert len(resolution.steps) == 1
    assert resolution.steps[0].source_name == "TNG"
    assert resolution.steps[0].description == "Pay RM50.00 using TNG"
    assert resolution.requires_confirmation is False


def test_balance_equal_to_amount_covers():
    sources = [source("TNG", FundingSourceType.WALLET, 5_000, 1)]

    resolution = resolve_payment(request(5_000), sources)

    assert resolution.action is ResolutionAction.USE_SINGLE_SOURCE


def test_wallet_short_uses_default_card(wallet_bank_card):
    resolution = resolve_payment(request(5_000), wallet_bank_card, fallback_preference=FallbackPreference.USE_CARD)

    assert resolution.action is ResolutionAction.USE_FALLBACK
    assert resolution.steps[0].source_name == "Visa"
    assert resolution.preferred_card is True


def test_wallet_short_tops_up_from_bank(wallet_bank_card):
    resolution = resolve_payment(
        request(5_000), wallet_bank_card, fallback_preference=FallbackPreference.TOP_UP_WALLET
    )

    assert resolution.action is ResolutionAction.TOP_UP_WALLET
    top_up, charge = resolution.steps
    assert top_up.action is StepAction.TOP_UP
    assert top_up.source_name == "Maybank"
    assert top_up.amount_cents == 3_000
    assert top_up.description == "Add RM30.00 to TNG from Maybank"
    assert charge.action is StepAction.CHARGE
    assert charge.source_name == "TNG"
    assert charge.amount_cents == 5_000
    assert resolution.requires_confirmation is False


def test_refused_card_is_never_charged(wallet_bank_card):
    resolution = resolve_payment(request(5_000), wallet_bank_card, accepted_rails={"TNG", "Maybank"})

    assert resolution.action is ResolutionAction.TOP_UP_WALLET
    assert [(s.action, s.source_name) for s in resolution.steps] == [
        (StepAction.TOP_UP, "Maybank"),
        (StepAction.CHARGE, "TNG"),
    ]


def test_top_up_source_need_not_be_accepted(wallet_bank_card):
    resolution = resolve_payment(
        request(5_000),
        wallet_bank_card,
        fallback_preference=FallbackPreference.TOP_UP_WALLET,
        accepted_rails={"TNG"},
    )

    assert resolution.steps[0].source_name == "Maybank"
    assert resolution.steps[-1].source_name == "TNG"


def test_no_accepted_source_is_blocked(wallet_bank_card):
    resolution = resolve_payment(request(5_000), wallet_bank_card, accepted_rails={"DuitNow"})

    assert resolution.action is ResolutionAction.BLOCKED
    assert resolution.blocked_reason == "No payment methods available for this transaction"


def test_top_up_over_wallet_limit_needs_confirmation():
    sources = [
        source("TNG", FundingSourceType.WALLET, 2_000, 1, max_auto_topup_cents=1_000),
        source("Maybank", FundingSourceType.BANK, 50_000, 2),
    ]

    resolution = resolve_payment(request(5_000), sources, fallback_preference=FallbackPreference.TOP_UP_WALLET)

    assert resolution.action is ResolutionAction.TOP_UP_WALLET
    assert resolution.requires_confirmation is True
    assert resolution.confirmation_reason == "Top-up of RM30.00 exceeds auto limit (RM10.00)"


def test_use_card_without_card_falls_through_to_top_up():
    sources = [
        source("TNG", FundingSourceType.WALLET, 2_000, 1),
        source("Maybank", FundingSourceType.BANK, 50_000, 2),
    ]

    resolution = resolve_payment(request(5_000), sources, fallback_preference=FallbackPreference.USE_CARD)

    assert resolution.action is ResolutionAction.TOP_UP_WALLET


def test_ask_each_time_returns_no_steps(wallet_bank_card):
    resolution = resolve_payment(
        request(5_000), wallet_bank_card, fallback_preference=FallbackPreference.ASK_EACH_TIME
    )

    assert resolution.action is ResolutionAction.REQUIRES_CONFIRMATION
    assert resolution.steps == []
    assert resolution.requires_confirmation is True
    assert resolution.confirmation_reason == "TNG is short by RM30.00. Choose how to pay."


def test_no_linked_sources_is_blocked():
    sources = [source("TNG", FundingSourceType.WALLET, 10_000, 1, is_linked=False)]

    resolution = resolve_payment(request(5_000), sources)

    assert resolution.action is ResolutionAction.BLOCKED
    assert resolution.blocked_reason == "No payment methods available. Please link a funding source."


def test_unavailable_primary_is_skipped():
    sources = [
        source("TNG", FundingSourceType.WALLET, 10_000, 1, is_available=False),
        source("Maybank", FundingSourceType.BANK, 10_000, 2),
    ]

    resolution = resolve_payment(request(5_000), sources)

    assert resolution.action is ResolutionAction.USE_SINGLE_SOURCE
    assert resolution.steps[0].source_name == "Maybank"


def test_insufficient_funds_everywhere():
    sources = [
        source("TNG", FundingSourceType.WALLET, 1_000, 1),
        source("Maybank", FundingSourceType.BANK, 500, 2),
    ]

    resolution = resolve_payment(request(5_000), sources, fallback_preference=FallbackPreference.TOP_UP_WALLET)

    assert resolution.action is ResolutionAction.INSUFFICIENT_FUNDS
    assert resolution.steps == []
    assert resolution.blocked_reason == "Insufficient funds across all payment methods."


def test_bank_primary_short_falls_back_to_card():
    sources = [
        source("Maybank", FundingSourceType.BANK, 1_000, 1),
        source("Visa", FundingSourceType.DEBIT_CARD, 0, 2),
    ]

    resolution = resolve_payment(request(5_000), sources)

    assert resolution.action is ResolutionAction.USE_FALLBACK
    assert resolution.steps[0].source_name == "Visa"
    assert resolution.preferred_card is False


def test_guardrail_block_short_circuits(wallet_bank_card):
    resolution = resolve_payment(request(600_000), wallet_bank_card)

    assert resolution.action is ResolutionAction.BLOCKED
    assert resolution.steps == []


def test_guardrail_confirmation_is_merged(wallet_bank_card):
    wallet_bank_card[0].balance_cents = 100_000

    resolution = resolve_payment(request(8_000), wallet_bank_card)

    assert resolution.action is ResolutionAction.USE_SINGLE_SOURCE
    assert resolution.requires_confirmation is True
    assert resolution.confirmation_reason == "Amount exceeds auto-approve threshold (RM50.00)"


def test_per_source_confirmation_threshold():
    sources = [source("TNG", FundingSourceType.WALLET, 10_000, 1, require_confirm_above_cents=3_000)]

    resolution = resolve_payment(request(4_000), sources)

    assert resolution.requires_confirmation is True
    assert resolution.confirmation_reason == "Payments above RM30.00 from TNG require confirmation"


def test_equal_priorities_keep_caller_order():
    sources = [
        source("Boost", FundingSourceType.WALLET, 10_000, 1),
        source("TNG", FundingSourceType.WALLET, 10_000, 1),
    ]

    resolution = resolve_payment(request(5_000), sources)

    assert resolution.steps[0].source_name == "Boost"


def test_find_default_card_prefers_lowest_priority():
    sources = [
        source("Amex", FundingSourceType.CREDIT_CARD, 0, 5),
        source("Visa", FundingSourceType.DEBIT_CARD, 0, 3),
        source("TNG", FundingSourceType.WALLET, 0, 1),
    ]

    assert find_default_card(sources).name == "Visa"
    assert find_default_card(sources[2:]) is None


def test_explain_resolution(wallet_bank_card):
    top_up = resolve_payment(request(5_000), wallet_bank_card, fallback_preference=FallbackPreference.TOP_UP_WALLET)
    card = resolve_payment(request(5_000), wallet_bank_card)

    assert explain_resolution(top_up) == "Top up wallet from Maybank, then pay"
    assert explain_resolution(card) == "Using Visa as fallback"
