"""
Priority resolution engine - deterministic waterfall over the user's funding sources.

Resolution order:
1. Guardrails (hard block short-circuits)
2. Primary source (lowest priority value) if it covers the amount
3. Wallet short -> honour fallback preference: ask, charge default card, or top up
4. Generic fallback over the remaining sources (cards first)
5. Otherwise insufficient funds
"""

from dataclasses import replace
from typing import Collection, List, Optional

from flow_gateway.domain.guardrails import DEFAULT_GUARDRAILS, can_auto_top_up, check_guardrails
from flow_gateway.domain.models import (
    FallbackPreference,
    FundingSource,
    FundingSourceType,
    GuardrailConfig,
    PaymentRequest,
    PaymentResolution,
    ResolutionAction,
    ResolutionStep,
    StepAction,
    UserPaymentState,
)
from flow_gateway.utils.money import format_amount


def resolve_payment(
    request: PaymentRequest,
    sources: List[FundingSource],
    config: GuardrailConfig = DEFAULT_GUARDRAILS,
    state: Optional[UserPaymentState] = None,
    fallback_preference: FallbackPreference = FallbackPreference.USE_CARD,
    accepted_rails: Optional[Collection[str]] = None,
) -> PaymentResolution:
    """
    Main entry point: decide how to fund a payment request.

    Only sources named in `accepted_rails` (when given) are charged; any
    available source may still fund a top-up.
    """
    amount = request.amount_cents
    state = state or UserPaymentState(daily_auto_approved_cents=0, last_reset_date="")

    guardrail = check_guardrails(amount, state, config)
    if guardrail.blocked_reason:
        return PaymentResolution(
            action=ResolutionAction.BLOCKED,
            steps=[],
            requires_confirmation=False,
            total_amount_cents=amount,
            blocked_reason=guardrail.blocked_reason,
        )

    # sorted() is stable: equal priorities keep caller order
    available = sorted(
        (s for s in sources if s.is_linked and s.is_available),
        key=lambda s: s.priority,
    )
    if not available:
        return PaymentResolution(
            action=ResolutionAction.BLOCKED,
            steps=[],
            requires_confirmation=False,
            total_amount_cents=amount,
            blocked_reason="No payment methods available. Please link a funding source.",
        )

    chargeable = [s for s in available if accepted_rails is None or s.name in accepted_rails]
    if not chargeable:
        return PaymentResolution(
            action=ResolutionAction.BLOCKED,
            steps=[],
            requires_confirmation=False,
            total_amount_cents=amount,
            blocked_reason="No payment methods available for this transaction",
        )

    resolution = _resolve_with_primary(
        chargeable[0], amount, chargeable, available, config, fallback_preference, request.currency
    )
    resolution = _apply_source_threshold(resolution, available, request.currency)

    return replace(
        resolution,
        requires_confirmation=guardrail.requires_confirmation or resolution.requires_confirmation,
        confirmation_reason=guardrail.reason or resolution.confirmation_reason,
    )


def covers(source: FundingSource, amount_cents: int) -> bool:
    """Cards are credit lines: their balance never gates a charge. Boundary is inclusive."""
    if source.type.is_card:
        return True
    return source.balance_cents >= amount_cents


def find_default_card(sources: List[FundingSource]) -> Optional[FundingSource]:
    """Default card = the card-type source ranked first among cards"""
    cards = [s for s in sources if s.type.is_card]
    if not cards:
        return None
    return min(cards, key=lambda s: s.priority)


def _resolve_with_primary(
    primary: FundingSource,
    amount: int,
    chargeable: List[FundingSource],
    available: List[FundingSource],
    config: GuardrailConfig,
    fallback_preference: FallbackPreference,
    currency: str,
) -> PaymentResolution:
    if covers(primary, amount):
        return PaymentResolution(
            action=ResolutionAction.USE_SINGLE_SOURCE,
            steps=[_charge_step(primary, amount, currency)],
            requires_confirmation=False,
            total_amount_cents=amount,
        )

    others = [s for s in chargeable if s.id != primary.id]

    if primary.type is not FundingSourceType.WALLET:
        return _try_fallback(amount, others, currency)

    shortfall = amount - primary.balance_cents

    if fallback_preference is FallbackPreference.ASK_EACH_TIME:
        return PaymentResolution(
            action=ResolutionAction.REQUIRES_CONFIRMATION,
            steps=[],
            requires_confirmation=True,
            total_amount_cents=amount,
            confirmation_reason=(
                f"{primary.name} is short by {format_amount(shortfall, currency)}. Choose how to pay."
            ),
        )

    if fallback_preference is FallbackPreference.USE_CARD:
        card = find_default_card(others)
        if card is not None:
            return PaymentResolution(
                action=ResolutionAction.USE_FALLBACK,
                steps=[_charge_step(card, amount, currency)],
                requires_confirmation=False,
                total_amount_cents=amount,
                preferred_card=True,
            )

    top_up_sources = [s for s in available if s.id != primary.id]
    top_up = _try_top_up(primary, shortfall, amount, top_up_sources, config, currency)
    if top_up is not None:
        return top_up

    return _try_fallback(amount, others, currency)


def _try_top_up(
    wallet: FundingSource,
    shortfall: int,
    amount: int,
    others: List[FundingSource],
    config: GuardrailConfig,
    currency: str,
) -> Optional[PaymentResolution]:
    """Top up the wallet from the best non-card source that covers the shortfall"""
    for source in others:
        if source.type.is_card or source.balance_cents < shortfall:
            continue

        topup_config = config
        if wallet.max_auto_topup_cents is not None:
            topup_config = replace(config, max_auto_topup_cents=wallet.max_auto_topup_cents)
        allowed, reason = can_auto_top_up(shortfall, topup_config)

        return PaymentResolution(
            action=ResolutionAction.TOP_UP_WALLET,
            steps=[
                ResolutionStep(
                    action=StepAction.TOP_UP,
                    source_id=source.id,
                    source_type=source.type,
                    source_name=source.name,
                    amount_cents=shortfall,
                    description=f"Add {format_amount(shortfall, currency)} to {wallet.name} from {source.name}",
                ),
                _charge_step(wallet, amount, currency),
            ],
            requires_confirmation=not allowed,
            confirmation_reason=reason,
            total_amount_cents=amount,
        )

    return None


def _try_fallback(amount: int, sources: List[FundingSource], currency: str) -> PaymentResolution:
    """Any card wins (no balance check); otherwise the first source with enough balance"""
    chosen = next((s for s in sources if s.type.is_card), None)
    if chosen is None:
        chosen = next((s for s in sources if s.balance_cents >= amount), None)

    if chosen is None:
        return PaymentResolution(
            action=ResolutionAction.INSUFFICIENT_FUNDS,
            steps=[],
            requires_confirmation=False,
            total_amount_cents=amount,
            blocked_reason="Insufficient funds across all payment methods.",
        )

    return PaymentResolution(
        action=ResolutionAction.USE_FALLBACK,
        steps=[_charge_step(chosen, amount, currency)],
        requires_confirmation=False,
        total_amount_cents=amount,
    )


def _apply_source_threshold(
    resolution: PaymentResolution,
    sources: List[FundingSource],
    currency: str,
) -> PaymentResolution:
    """Per-source confirmation threshold on the charged source"""
    charge = next((s for s in resolution.steps if s.action is StepAction.CHARGE), None)
    if charge is None:
        return resolution

    source = next((s for s in sources if s.id == charge.source_id), None)
    threshold = source.require_confirm_above_cents if source else None
    if threshold is None or charge.amount_cents <= threshold:
        return resolution

    return replace(
        resolution,
        requires_confirmation=True,
        confirmation_reason=resolution.confirmation_reason
        or f"Payments above {format_amount(threshold, currency)} from {source.name} require confirmation",
    )


def _charge_step(source: FundingSource, amount: int, currency: str) -> ResolutionStep:
    return ResolutionStep(
        action=StepAction.CHARGE,
        source_id=source.id,
        source_type=source.type,
        source_name=source.name,
        amount_cents=amount,
        description=f"Pay {format_amount(amount, currency)} using {source.name}",
    )


def explain_resolution(resolution: PaymentResolution) -> str:
    """Explain a resolution in human-readable format"""
    action = resolution.action
    if action is ResolutionAction.USE_SINGLE_SOURCE:
        return f"Pay directly from {resolution.steps[0].source_name}"
    if action is ResolutionAction.TOP_UP_WALLET:
        top_up = next(s for s in resolution.steps if s.action is StepAction.TOP_UP)
        return f"Top up wallet from {top_up.source_name}, then pay"
    if action is ResolutionAction.USE_FALLBACK:
        return f"Using {resolution.steps[0].source_name} as fallback"
    if action is ResolutionAction.REQUIRES_CONFIRMATION:
        return f"Confirmation required: {resolution.confirmation_reason}"
    if action is ResolutionAction.BLOCKED:
        return resolution.blocked_reason or "Payment blocked"
    return "Not enough funds available"
