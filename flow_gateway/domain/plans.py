"""Resolution plan assembly helpers - risk level, reason codes, explanations"""

from typing import List, Sequence

from flow_gateway.domain.models import ResolutionStep, RiskLevel, StepAction

REASON_TOPUP_REQUIRED = "TOPUP_REQUIRED"
REASON_HIGH_VALUE = "HIGH_VALUE"
REASON_CONSENT_NEEDED = "CONSENT_NEEDED"
REASON_CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
REASON_FALLBACK_CARD = "FALLBACK_CARD"


def assign_risk_level(
    amount_cents: int,
    requires_confirmation: bool,
    high_above_cents: int,
    medium_above_cents: int,
) -> RiskLevel:
    """
    Map amount and confirmation requirement to a risk level.

    - high:   above the always-confirm threshold
    - medium: above the medium threshold, or the user must confirm
    - low:    everything else
    """
    if amount_cents > high_above_cents:
        return RiskLevel.HIGH
    if amount_cents > medium_above_cents or requires_confirmation:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def build_reason_codes(
    topup_needed: bool,
    risk_level: RiskLevel,
    consent_passed: bool,
    requires_confirmation: bool,
    preferred_card: bool = False,
) -> List[str]:
    codes = []
    if topup_needed:
        codes.append(REASON_TOPUP_REQUIRED)
    if risk_level is RiskLevel.HIGH:
        codes.append(REASON_HIGH_VALUE)
    if not consent_passed:
        codes.append(REASON_CONSENT_NEEDED)
    if requires_confirmation:
        codes.append(REASON_CONFIRMATION_REQUIRED)
    if preferred_card:
        codes.append(REASON_FALLBACK_CARD)
    return codes


def charge_step(steps: Sequence[ResolutionStep]) -> ResolutionStep | None:
    return next((s for s in steps if s.action is StepAction.CHARGE), None)


def top_up_amount(steps: Sequence[ResolutionStep]) -> int:
    return sum(s.amount_cents for s in steps if s.action is StepAction.TOP_UP)


def explain_plan(steps: Sequence[ResolutionStep]) -> str:
    """Join step descriptions: "Add RM30.00 ... Then Pay RM50.00 ..." """
    return ". Then ".join(s.description for s in steps if s.description)
