"""Pydantic schemas for API request/response validation"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from flow_gateway.domain.models import (
    ExecutionMode,
    GateResult,
    ResolutionStrategy,
    ScoredRail,
    SmartResolutionResult,
)
from flow_gateway.domain.smart_scoring import get_resolution_summary


class GateResultSchema(BaseModel):
    passed: bool
    blocked_reason: Optional[str] = None
    blocked_code: Optional[str] = None

    @classmethod
    def from_domain(cls, gate: Optional[GateResult]) -> Optional["GateResultSchema"]:
        if gate is None:
            return None
        return cls(
            passed=gate.passed,
            blocked_reason=gate.blocked_reason,
            blocked_code=gate.blocked_code.value if gate.blocked_code else None,
        )


# Intents


class QRIntentRequest(BaseModel):
    """Request body for POST /v1/intents/qr"""

    qr_payload_id: str = Field(..., min_length=1, description="Scanned QR payload identifier")
    amount_cents: Optional[int] = Field(None, gt=0, description="Amount for static QR codes")


class SendMoneyRequest(BaseModel):
    """Request body for POST /v1/intents/send"""

    contact_id: str = Field(..., min_length=1)
    amount_cents: int = Field(..., gt=0)
    note: Optional[str] = None


class PayBillRequest(BaseModel):
    """Request body for POST /v1/intents/bill"""

    biller_account_id: str = Field(..., min_length=1)
    amount_cents: int = Field(..., gt=0)


class RequestMoneyRequest(BaseModel):
    """Request body for POST /v1/intents/request"""

    from_name: str = Field(..., min_length=1)
    from_phone: str = Field(..., min_length=1)
    amount_cents: int = Field(..., gt=0)
    note: Optional[str] = None


class IntentResponse(BaseModel):
    success: bool
    intent_id: Optional[str] = None
    error: Optional[str] = None
    gate_result: Optional[GateResultSchema] = None


# Resolution


class ResolveRequest(BaseModel):
    """Request body for POST /v1/intents/{intent_id}/resolve"""

    strategy: ResolutionStrategy = ResolutionStrategy.PRIORITY
    execution_mode: Optional[ExecutionMode] = Field(None, description="Defaults from connector health")


class ResolutionStepSchema(BaseModel):
    action: str
    source_id: Optional[str] = None
    source_type: Optional[str] = None
    source_name: Optional[str] = None
    amount_cents: int
    description: Optional[str] = None


class PlanSchema(BaseModel):
    """Persisted resolution plan"""

    id: str
    intent_id: str
    strategy: str
    chosen_rail: Optional[str] = None
    fallback_rail: Optional[str] = None
    steps: List[ResolutionStepSchema]
    topup_needed: bool
    topup_amount_cents: int
    execution_mode: str
    pending_reason: Optional[str] = None
    reason_codes: List[str]
    risk_level: str
    requires_confirmation: bool
    confirmation_reason: Optional[str] = None
    status: str
    explanation: str


class ResolveResponse(BaseModel):
    success: bool
    plan_id: Optional[str] = None
    plan: Optional[PlanSchema] = None
    explanation: Optional[str] = None
    error: Optional[str] = None
    failure_type: Optional[str] = None
    gate_result: Optional[GateResultSchema] = None


class ScoredRailSchema(BaseModel):
    name: str
    type: str
    status: str
    total_score: float
    scores: Dict[str, int]
    requires_top_up: bool
    top_up_amount_cents: int
    explanation: str

    @classmethod
    def from_domain(cls, scored: ScoredRail) -> "ScoredRailSchema":
        return cls(
            name=scored.name,
            type=scored.rail.type,
            status=scored.rail.status.value,
            total_score=scored.total_score,
            scores=vars(scored.scores),
            requires_top_up=scored.requires_top_up,
            top_up_amount_cents=scored.top_up_amount_cents,
            explanation=scored.explanation,
        )


class PreviewResponse(BaseModel):
    """Response for GET /v1/intents/{intent_id}/preview"""

    success: bool
    explanation: str
    summary: str
    recommended_rail: Optional[ScoredRailSchema] = None
    alternatives: List[ScoredRailSchema] = []
    requires_top_up: bool = False
    top_up_amount_cents: Optional[int] = None
    top_up_source: Optional[str] = None

    @classmethod
    def from_domain(cls, result: SmartResolutionResult) -> "PreviewResponse":
        return cls(
            success=result.success,
            explanation=result.explanation,
            summary=get_resolution_summary(result),
            recommended_rail=ScoredRailSchema.from_domain(result.recommended_rail) if result.recommended_rail else None,
            alternatives=[ScoredRailSchema.from_domain(r) for r in result.alternatives],
            requires_top_up=result.requires_top_up,
            top_up_amount_cents=result.top_up_amount_cents,
            top_up_source=result.top_up_source.name if result.top_up_source else None,
        )


# Execution


class ExecuteRequest(BaseModel):
    """Request body for POST /v1/plans/{plan_id}/execute"""

    confirmed: bool = Field(False, description="User confirmed a plan that requires confirmation")


class ExecuteResponse(BaseModel):
    success: bool
    transaction_id: Optional[str] = None
    status: Optional[str] = None
    failure_type: Optional[str] = None
    error: Optional[str] = None
    signature_id: Optional[str] = None
    gate_result: Optional[GateResultSchema] = None


class TransactionResponse(BaseModel):
    """Response for GET /v1/transactions/{transaction_id}"""

    transaction_id: str
    intent_id: str
    plan_id: str
    status: str
    failure_type: Optional[str] = None
    receipt: Dict[str, Any]
    created_at: str


class CancelResponse(BaseModel):
    success: bool
    error: Optional[str] = None


class ActivityItem(BaseModel):
    """Single entry in the activity feed"""

    id: str
    intent_id: str
    intent_type: str
    amount_cents: int
    currency: str
    status: str
    trigger: str
    rail_used: Optional[str] = None
    merchant_name: Optional[str] = None
    recipient_name: Optional[str] = None
    reference: Optional[str] = None
    created_at: str


class ActivityResponse(BaseModel):
    """Response for GET /v1/activity"""

    user_id: str
    items: List[ActivityItem]
