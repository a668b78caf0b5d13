"""
Resolve engine - turns an Intent into a persisted ResolutionPlan.

Flow:
1. Resolution gates (identity + device)
2. Load intent, candidate connectors, funding sources, daily state
3. Run the priority waterfall or the smart scorer
4. Consent check on the chosen rail, risk level, reason codes
5. Pick execution mode and persist the plan
"""

import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from flow_gateway.config import settings
from flow_gateway.domain.exceptions import PlanNotFoundError
from flow_gateway.domain.guardrails import (
    can_auto_top_up,
    check_guardrails,
    get_or_reset_daily_state,
    guardrail_outcome,
)
from flow_gateway.domain.models import (
    ConnectorStatus,
    ExecutionMode,
    FailureType,
    FundingSource,
    GateResult,
    GuardrailCheck,
    GuardrailConfig,
    IntentType,
    PaymentRequest,
    ResolutionAction,
    ResolutionStep,
    ResolutionStrategy,
    RuntimeMode,
    StepAction,
    UserPaymentState,
)
from flow_gateway.domain.plans import assign_risk_level, build_reason_codes, charge_step, explain_plan, top_up_amount
from flow_gateway.domain.resolver import resolve_payment
from flow_gateway.infrastructure.database.models import Connector, Intent, ResolutionPlan
from flow_gateway.infrastructure.database.repositories import (
    AccessRepository,
    DailyStateRepository,
    IntentRepository,
    PlanRepository,
    RailRepository,
)
from flow_gateway.infrastructure.observability.logging import log_resolution
from flow_gateway.infrastructure.observability.metrics import record_resolution
from flow_gateway.services.gates import check_consent_gate, check_resolution_gates
from flow_gateway.services.smart_resolution import load_funding_sources, run_smart_resolution
from flow_gateway.utils.date_utils import today_iso
from flow_gateway.utils.money import format_amount

INTENT_CAPABILITY_MAP = {
    IntentType.PAY_MERCHANT: "can_pay_qr",
    IntentType.SEND_MONEY: "can_p2p",
    IntentType.REQUEST_MONEY: "can_p2p",
    IntentType.PAY_BILL: "can_pay",
}

PENDING_CONNECTOR_DEGRADED = "connector_degraded"


@dataclass
class ResolveResult:
    success: bool
    plan_id: Optional[str] = None
    plan: Optional[Dict[str, Any]] = None
    explanation: Optional[str] = None
    error: Optional[str] = None
    failure_type: Optional[FailureType] = None
    gate_result: Optional[GateResult] = None


@dataclass
class _PlanDraft:
    """Strategy output before consent, risk and persistence are applied"""

    action: str
    steps: List[ResolutionStep] = field(default_factory=list)
    chosen_rail: Optional[str] = None
    fallback_rail: Optional[str] = None
    requires_confirmation: bool = False
    confirmation_reason: Optional[str] = None
    preferred_card: bool = False
    error: Optional[str] = None
    failure_type: Optional[FailureType] = None


def current_guardrails() -> GuardrailConfig:
    return GuardrailConfig(
        max_auto_topup_cents=settings.max_auto_topup_cents,
        max_single_payment_auto_cents=settings.max_single_payment_auto_cents,
        require_confirmation_above_cents=settings.require_confirmation_above_cents,
        daily_auto_limit_cents=settings.daily_auto_limit_cents,
    )


def plan_to_dict(plan: ResolutionPlan) -> Dict[str, Any]:
    steps = [ResolutionStep.from_dict(s) for s in plan.steps or []]
    return {
        "id": str(plan.id),
        "intent_id": str(plan.intent_id),
        "strategy": plan.strategy,
        "chosen_rail": plan.chosen_rail,
        "fallback_rail": plan.fallback_rail,
        "steps": [s.to_dict() for s in steps],
        "topup_needed": plan.topup_needed,
        "topup_amount_cents": int(plan.topup_amount_cents or 0),
        "execution_mode": plan.execution_mode,
        "pending_reason": plan.pending_reason,
        "reason_codes": list(plan.reason_codes or []),
        "risk_level": plan.risk_level,
        "requires_confirmation": plan.requires_confirmation,
        "confirmation_reason": plan.confirmation_reason,
        "status": plan.status,
        "explanation": explain_plan(steps),
    }


def candidate_connectors(
    db: Session,
    user_id: str,
    intent_type: IntentType,
    rails_available: Optional[List[str]] = None,
) -> List[Connector]:
    """Usable connectors with the capability the intent needs, limited to what the payee accepts"""
    required = INTENT_CAPABILITY_MAP[intent_type]
    return [
        c
        for c in RailRepository(db).list_connectors(user_id)
        if c.status != ConnectorStatus.UNAVAILABLE.value
        and (c.capabilities or {}).get(required)
        and (not rails_available or c.name in rails_available)
    ]


def _resolve_priority(
    db: Session,
    intent: Intent,
    candidates: List[Connector],
    sources: List[FundingSource],
    config: GuardrailConfig,
    state: UserPaymentState,
) -> _PlanDraft:
    fallback_preference = AccessRepository(db).get_fallback_preference(intent.user_id)
    resolution = resolve_payment(
        PaymentRequest(amount_cents=int(intent.amount_cents), currency=intent.currency, intent_id=str(intent.id)),
        sources,
        config,
        state,
        fallback_preference,
        accepted_rails={c.name for c in candidates},
    )

    if resolution.action in (ResolutionAction.BLOCKED, ResolutionAction.INSUFFICIENT_FUNDS):
        return _PlanDraft(
            action=resolution.action.value,
            error=resolution.blocked_reason or "Unable to process payment",
            failure_type=(
                FailureType.INSUFFICIENT_FUNDS
                if resolution.action is ResolutionAction.INSUFFICIENT_FUNDS
                else FailureType.RISK_BLOCKED
            ),
        )

    charge = charge_step(resolution.steps)
    chosen = charge.source_name if charge else None
    return _PlanDraft(
        action=resolution.action.value,
        steps=resolution.steps,
        chosen_rail=chosen,
        fallback_rail=next((c.name for c in candidates if c.name != chosen), None),
        requires_confirmation=resolution.requires_confirmation,
        confirmation_reason=resolution.confirmation_reason,
        preferred_card=resolution.preferred_card,
    )


def _resolve_smart(
    db: Session,
    intent: Intent,
    sources: List[FundingSource],
    config: GuardrailConfig,
    guardrail: GuardrailCheck,
) -> _PlanDraft:
    if guardrail.blocked_reason:
        return _PlanDraft(action="BLOCKED", error=guardrail.blocked_reason, failure_type=FailureType.RISK_BLOCKED)

    result = run_smart_resolution(db, intent)
    if not result.success or result.recommended_rail is None:
        return _PlanDraft(action="NO_RECOMMENDATION", error=result.explanation)

    recommended = result.recommended_rail
    if result.requires_top_up and result.top_up_source is None:
        return _PlanDraft(
            action=ResolutionAction.INSUFFICIENT_FUNDS.value,
            error="Insufficient funds across all payment methods.",
            failure_type=FailureType.INSUFFICIENT_FUNDS,
        )

    amount = int(intent.amount_cents)
    by_id = {s.id: s for s in sources}
    rail_source = by_id.get(recommended.rail.funding_source_id)
    requires_confirmation = guardrail.requires_confirmation
    confirmation_reason = guardrail.reason
    steps = []

    if result.requires_top_up:
        shortfall = recommended.top_up_amount_cents
        top_up_source = result.top_up_source
        wallet_limit = rail_source.max_auto_topup_cents if rail_source else None
        topup_config = config if wallet_limit is None else replace(config, max_auto_topup_cents=wallet_limit)
        allowed, reason = can_auto_top_up(shortfall, topup_config)
        if not allowed:
            requires_confirmation = True
            confirmation_reason = confirmation_reason or reason
        steps.append(
            ResolutionStep(
                action=StepAction.TOP_UP,
                source_id=top_up_source.source_id,
                source_type=top_up_source.source_type,
                source_name=top_up_source.name,
                amount_cents=shortfall,
                description=(
                    f"Add {format_amount(shortfall, intent.currency)} to {recommended.name} from {top_up_source.name}"
                ),
            )
        )

    steps.append(
        ResolutionStep(
            action=StepAction.CHARGE,
            source_id=rail_source.id if rail_source else None,
            source_type=rail_source.type if rail_source else None,
            source_name=recommended.name,
            amount_cents=amount,
            description=f"Pay {format_amount(amount, intent.currency)} using {recommended.name}",
        )
    )

    return _PlanDraft(
        action=(ResolutionAction.TOP_UP_WALLET if result.requires_top_up else ResolutionAction.USE_SINGLE_SOURCE).value,
        steps=steps,
        chosen_rail=recommended.name,
        fallback_rail=result.alternatives[0].name if result.alternatives else None,
        requires_confirmation=requires_confirmation,
        confirmation_reason=confirmation_reason,
        preferred_card=recommended.rail.type == "card",
    )


def _choose_execution_mode(
    connector: Optional[Connector],
    requested: Optional[ExecutionMode],
) -> tuple[ExecutionMode, Optional[str]]:
    if requested is not None:
        return requested, None
    if connector is not None and connector.status == ConnectorStatus.DEGRADED.value:
        return ExecutionMode.ASYNC, PENDING_CONNECTOR_DEGRADED
    return ExecutionMode.SYNC, None


def resolve_intent(
    db: Session,
    user_id: str,
    device_id: str,
    intent_id: str,
    strategy: ResolutionStrategy = ResolutionStrategy.PRIORITY,
    execution_mode: Optional[ExecutionMode] = None,
    mode: RuntimeMode = RuntimeMode.STRICT,
    request_id: str = "internal",
) -> ResolveResult:
    start_time = time.time()

    gate = check_resolution_gates(db, user_id, device_id, mode)
    if not gate.passed:
        return ResolveResult(success=False, error=gate.blocked_reason, gate_result=gate)

    intent = IntentRepository(db).get_intent(intent_id, user_id)
    if intent is None:
        return ResolveResult(success=False, error="Payment request not found")

    metadata = intent.intent_metadata or {}
    candidates = candidate_connectors(db, user_id, IntentType(intent.type), metadata.get("rails_available"))
    # The smart scorer explains incompatibility itself
    if not candidates and strategy is ResolutionStrategy.PRIORITY:
        record_resolution(strategy.value, "NO_CANDIDATES")
        return ResolveResult(success=False, error="No payment methods available for this transaction")

    sources = load_funding_sources(db, user_id)
    if not sources:
        record_resolution(strategy.value, "NO_SOURCES")
        return ResolveResult(success=False, error="No funding sources available")

    config = current_guardrails()
    state = get_or_reset_daily_state(DailyStateRepository(db).get_state(user_id, today_iso()))
    amount = int(intent.amount_cents)
    guardrail = check_guardrails(amount, state, config)

    if strategy is ResolutionStrategy.SMART:
        draft = _resolve_smart(db, intent, sources, config, guardrail)
    else:
        draft = _resolve_priority(db, intent, candidates, sources, config, state)

    if draft.error:
        db.commit()
        record_resolution(strategy.value, draft.action, guardrail_outcome(guardrail))
        duration_ms = (time.time() - start_time) * 1000
        log_resolution(user_id, str(intent.id), strategy.value, draft.action, None, duration_ms, request_id)
        return ResolveResult(success=False, error=draft.error, failure_type=draft.failure_type)

    chosen_connector = None
    if draft.chosen_rail is not None:
        chosen_connector = RailRepository(db).get_connector_by_name(user_id, draft.chosen_rail)
    if draft.chosen_rail is None:
        consent_passed = True
    elif chosen_connector is None:
        consent_passed = False
    else:
        consent_passed = check_consent_gate(db, user_id, str(chosen_connector.id), mode).passed

    risk_level = assign_risk_level(
        amount,
        draft.requires_confirmation,
        high_above_cents=config.require_confirmation_above_cents,
        medium_above_cents=settings.medium_risk_amount_cents,
    )
    topup_cents = top_up_amount(draft.steps)
    reason_codes = build_reason_codes(
        topup_needed=topup_cents > 0,
        risk_level=risk_level,
        consent_passed=consent_passed,
        requires_confirmation=draft.requires_confirmation,
        preferred_card=draft.preferred_card,
    )
    chosen_mode, pending_reason = _choose_execution_mode(chosen_connector, execution_mode)

    plan = PlanRepository(db).create_plan(
        user_id=user_id,
        intent_id=intent.id,
        strategy=strategy.value,
        chosen_rail=draft.chosen_rail,
        fallback_rail=draft.fallback_rail,
        steps=[s.to_dict() for s in draft.steps],
        topup_needed=topup_cents > 0,
        topup_amount_cents=topup_cents,
        execution_mode=chosen_mode.value,
        pending_reason=pending_reason,
        reason_codes=reason_codes,
        risk_level=risk_level.value,
        requires_confirmation=draft.requires_confirmation,
        confirmation_reason=draft.confirmation_reason,
        status="ready",
    )
    db.commit()

    record_resolution(strategy.value, draft.action, guardrail_outcome(guardrail))
    log_resolution(
        user_id,
        str(intent.id),
        strategy.value,
        draft.action,
        draft.chosen_rail,
        (time.time() - start_time) * 1000,
        request_id,
    )

    snapshot = plan_to_dict(plan)
    return ResolveResult(
        success=True,
        plan_id=snapshot["id"],
        plan=snapshot,
        explanation=snapshot["explanation"] or draft.confirmation_reason,
    )


def get_plan(db: Session, user_id: str, plan_id: str) -> ResolutionPlan:
    """
    Raises:
        PlanNotFoundError: Unknown plan or owned by another user
    """
    plan = PlanRepository(db).get_plan(plan_id, user_id)
    if plan is None:
        raise PlanNotFoundError(f"Plan {plan_id} not found")
    return plan
