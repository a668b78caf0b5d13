"""
Smart rail scoring - multi-factor ranking of connected payment rails.

Scoring factors (each 0-100):
1. Compatibility: rail has the intent's capability AND the payee accepts it
2. Balance: can the rail cover the amount without a top-up?
3. Priority: user's configured ordering
4. History: share of the user's recent successful payments on this rail
5. Health: connector status

Weights sum to 100, so the weighted total stays within [0, 100].
"""

from typing import Dict, List, Optional, Sequence

from flow_gateway.domain.models import (
    ConnectorStatus,
    FundingSource,
    IntentType,
    RailCandidate,
    RailScores,
    ScoredRail,
    SmartResolutionContext,
    SmartResolutionResult,
    TopUpSource,
)
from flow_gateway.utils.money import format_amount

WEIGHTS = {
    "compatibility": 35,
    "balance": 30,
    "priority": 15,
    "history": 10,
    "health": 10,
}

INTENT_CAPABILITY = {
    IntentType.PAY_MERCHANT: "can_pay_qr",
    IntentType.SEND_MONEY: "can_p2p",
    IntentType.REQUEST_MONEY: "can_receive",
    IntentType.PAY_BILL: "can_pay",
}

HEALTH_SCORES = {
    ConnectorStatus.AVAILABLE: 100,
    ConnectorStatus.DEGRADED: 50,
    ConnectorStatus.UNAVAILABLE: 0,
}

MAX_ALTERNATIVES = 3
HISTORY_NEUTRAL = 50


def score_compatibility(rail: RailCandidate, context: SmartResolutionContext) -> int:
    required = INTENT_CAPABILITY[context.intent_type]
    if not rail.capabilities.get(required):
        return 0

    if context.intent_type is IntentType.PAY_MERCHANT and context.merchant_rails:
        return 100 if rail.name in context.merchant_rails else 0

    if context.intent_type is IntentType.SEND_MONEY and context.recipient_wallets:
        if rail.name == context.recipient_preferred_wallet:
            return 100
        if rail.name in context.recipient_wallets:
            return 80
        return 30

    return 70


def score_balance(rail: RailCandidate, amount_cents: int) -> tuple[int, bool, int]:
    """
    Returns: (score, requires_top_up, top_up_amount_cents)

    Cards have no balance dependency. Partial coverage >= 50% caps at 60,
    below 50% caps at 30; both flag a top-up for the shortfall.
    """
    if rail.type == "card" or rail.balance_cents >= amount_cents:
        return 100, False, 0

    coverage = rail.balance_cents / amount_cents if amount_cents > 0 else 0.0
    shortfall = amount_cents - rail.balance_cents

    if coverage >= 0.5:
        return round(coverage * 60), True, shortfall
    return round(coverage * 30), True, shortfall


def score_priority(rail: RailCandidate) -> int:
    if rail.priority <= 1:
        return 100
    if rail.priority == 2:
        return 80
    if rail.priority == 3:
        return 60
    if rail.priority == 4:
        return 40
    return 20


def score_history(rail: RailCandidate, history: Dict[str, int]) -> int:
    total = sum(history.values())
    if total == 0:
        return HISTORY_NEUTRAL
    return round(history.get(rail.name, 0) / total * 100)


def score_health(rail: RailCandidate) -> int:
    return HEALTH_SCORES.get(rail.status, 50)


def weighted_total(scores: RailScores) -> float:
    return (
        scores.compatibility * WEIGHTS["compatibility"]
        + scores.balance * WEIGHTS["balance"]
        + scores.priority * WEIGHTS["priority"]
        + scores.history * WEIGHTS["history"]
        + scores.health * WEIGHTS["health"]
    ) / 100


def score_rail(rail: RailCandidate, context: SmartResolutionContext, history: Dict[str, int]) -> ScoredRail:
    balance, requires_top_up, top_up_amount = score_balance(rail, context.amount_cents)
    scores = RailScores(
        compatibility=score_compatibility(rail, context),
        balance=balance,
        priority=score_priority(rail),
        history=score_history(rail, history),
        health=score_health(rail),
    )
    return ScoredRail(
        rail=rail,
        scores=scores,
        total_score=weighted_total(scores),
        requires_top_up=requires_top_up,
        top_up_amount_cents=top_up_amount,
    )


def rank_rails(
    rails: Sequence[RailCandidate],
    context: SmartResolutionContext,
    history: Dict[str, int],
) -> List[ScoredRail]:
    """
    Score, drop unusable rails (compatibility 0 or health 0) and sort.

    Ties on total score go to the lower priority value, then to the rail
    name, so the ranking never depends on input order.
    """
    scored = [score_rail(rail, context, history) for rail in rails]
    usable = [r for r in scored if r.scores.compatibility > 0 and r.scores.health > 0]
    usable.sort(key=lambda r: (-r.total_score, r.rail.priority, r.rail.name))
    for rail in usable:
        rail.explanation = explain_rail(rail, context)
    return usable


def explain_rail(scored: ScoredRail, context: SmartResolutionContext) -> str:
    parts = []

    if scored.scores.compatibility == 100:
        if context.intent_type is IntentType.SEND_MONEY and context.recipient_preferred_wallet == scored.name:
            parts.append(f"{scored.name} is recipient's preferred wallet")
        elif context.merchant_rails and scored.name in context.merchant_rails:
            parts.append(f"Merchant accepts {scored.name}")
        else:
            parts.append(f"{scored.name} is available")

    if scored.scores.balance == 100:
        if scored.rail.type != "card":
            parts.append(f"sufficient balance ({format_amount(scored.rail.balance_cents)})")
    elif scored.scores.balance > 0:
        parts.append(f"needs top-up of {format_amount(scored.top_up_amount_cents)}")

    if scored.rail.priority == 1:
        parts.append("your preferred payment method")

    return ", ".join(parts) or "Available for payment"


def find_top_up_source(
    sources: Sequence[FundingSource],
    exclude_rail: str,
    amount_cents: int,
) -> Optional[TopUpSource]:
    """Prefer a bank with enough balance, else any linked source with enough balance"""
    candidates = sorted(
        (s for s in sources if s.is_linked and s.is_available and s.name != exclude_rail),
        key=lambda s: s.priority,
    )
    chosen = next((s for s in candidates if s.type.value == "bank" and s.balance_cents >= amount_cents), None)
    if chosen is None:
        chosen = next((s for s in candidates if s.balance_cents >= amount_cents), None)
    if chosen is None:
        return None
    return TopUpSource(name=chosen.name, source_id=chosen.id, source_type=chosen.type)


def smart_resolve(
    context: SmartResolutionContext,
    rails: Sequence[RailCandidate],
    history: Dict[str, int],
    sources: Sequence[FundingSource],
) -> SmartResolutionResult:
    """Score all rails and recommend the best one, with up to three alternatives"""
    if not rails:
        return SmartResolutionResult(
            success=False,
            explanation="No payment apps connected. Please connect at least one wallet or bank.",
        )

    ranked = rank_rails(rails, context, history)
    if not ranked:
        merchant_info = ""
        if context.merchant_rails:
            merchant_info = f"Merchant accepts: {', '.join(context.merchant_rails)}. "
        return SmartResolutionResult(
            success=False,
            explanation=f"{merchant_info}None of your connected apps match. Please connect a compatible payment app.",
        )

    recommended = ranked[0]
    top_up_source = None
    if recommended.requires_top_up:
        top_up_source = find_top_up_source(sources, recommended.name, recommended.top_up_amount_cents)

    return SmartResolutionResult(
        success=True,
        explanation=recommended.explanation,
        recommended_rail=recommended,
        alternatives=ranked[1 : 1 + MAX_ALTERNATIVES],
        requires_top_up=recommended.requires_top_up,
        top_up_amount_cents=recommended.top_up_amount_cents or None,
        top_up_source=top_up_source,
    )


def get_resolution_summary(result: SmartResolutionResult) -> str:
    """One-line summary of why a rail was chosen"""
    if not result.success or result.recommended_rail is None:
        return result.explanation

    rail = result.recommended_rail
    parts = [f"Using {rail.name}"]
    if result.requires_top_up and result.top_up_amount_cents:
        source = result.top_up_source.name if result.top_up_source else "bank"
        parts.append(f"(top-up {format_amount(result.top_up_amount_cents)} from {source})")
    if rail.scores.compatibility == 100 and rail.scores.balance == 100:
        parts.append("• Best match")
    return " ".join(parts)
