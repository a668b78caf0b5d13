"""Intent endpoints - create, resolve and preview payment intents"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from flow_gateway.api.dependencies import get_device_id, get_request_id, get_runtime_mode, get_user_id, parse_id
from flow_gateway.api.v1.schemas import (
    GateResultSchema,
    IntentResponse,
    PayBillRequest,
    PreviewResponse,
    QRIntentRequest,
    RequestMoneyRequest,
    ResolveRequest,
    ResolveResponse,
    SendMoneyRequest,
)
from flow_gateway.domain.exceptions import IntentNotFoundError
from flow_gateway.domain.models import RuntimeMode
from flow_gateway.infrastructure.database.session import get_db
from flow_gateway.services.intents import (
    IntentResult,
    create_intent_from_qr,
    create_intent_pay_bill,
    create_intent_request_money,
    create_intent_send_money,
    get_intent,
)
from flow_gateway.services.resolution import resolve_intent
from flow_gateway.services.smart_resolution import get_smart_resolution_preview

router = APIRouter()


def _intent_response(result: IntentResult) -> IntentResponse:
    return IntentResponse(
        success=result.success,
        intent_id=result.intent_id,
        error=result.error,
        gate_result=GateResultSchema.from_domain(result.gate_result),
    )


@router.post("/intents/qr", response_model=IntentResponse)
def create_qr_intent(
    request_body: QRIntentRequest,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
    mode: RuntimeMode = Depends(get_runtime_mode),
):
    """Create a PayMerchant intent from a scanned QR code"""
    qr_payload_id = parse_id(request_body.qr_payload_id, "QR payload")
    try:
        result = create_intent_from_qr(db, user_id, qr_payload_id, request_body.amount_cents, mode)
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=500, detail="Internal server error")
    return _intent_response(result)


@router.post("/intents/send", response_model=IntentResponse)
def create_send_intent(
    request_body: SendMoneyRequest,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
    mode: RuntimeMode = Depends(get_runtime_mode),
):
    """Create a SendMoney intent to a saved contact"""
    contact_id = parse_id(request_body.contact_id, "contact")
    try:
        result = create_intent_send_money(
            db, user_id, contact_id, request_body.amount_cents, request_body.note, mode
        )
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=500, detail="Internal server error")
    return _intent_response(result)


@router.post("/intents/bill", response_model=IntentResponse)
def create_bill_intent(
    request_body: PayBillRequest,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
    mode: RuntimeMode = Depends(get_runtime_mode),
):
    biller_account_id = parse_id(request_body.biller_account_id, "biller account")
    try:
        result = create_intent_pay_bill(db, user_id, biller_account_id, request_body.amount_cents, mode)
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=500, detail="Internal server error")
    return _intent_response(result)


@router.post("/intents/request", response_model=IntentResponse)
def create_request_intent(
    request_body: RequestMoneyRequest,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
    mode: RuntimeMode = Depends(get_runtime_mode),
):
    try:
        result = create_intent_request_money(
            db,
            user_id,
            request_body.from_name,
            request_body.from_phone,
            request_body.amount_cents,
            request_body.note,
            mode,
        )
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=500, detail="Internal server error")
    return _intent_response(result)


@router.post("/intents/{intent_id}/resolve", response_model=ResolveResponse)
def resolve(
    intent_id: str,
    request: Request,
    request_body: Optional[ResolveRequest] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
    device_id: str = Depends(get_device_id),
    mode: RuntimeMode = Depends(get_runtime_mode),
):
    """
    Turn an intent into a persisted resolution plan.

    Gate, consent and guardrail outcomes come back with success=false;
    only malformed ids and unexpected errors are HTTP errors.
    """
    intent_id = parse_id(intent_id, "intent")
    request_id = get_request_id(request)
    request_body = request_body or ResolveRequest()

    try:
        result = resolve_intent(
            db,
            user_id,
            device_id,
            intent_id,
            strategy=request_body.strategy,
            execution_mode=request_body.execution_mode,
            mode=mode,
            request_id=request_id,
        )
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    return ResolveResponse(
        success=result.success,
        plan_id=result.plan_id,
        plan=result.plan,
        explanation=result.explanation,
        error=result.error,
        failure_type=result.failure_type.value if result.failure_type else None,
        gate_result=GateResultSchema.from_domain(result.gate_result),
    )


@router.get("/intents/{intent_id}/preview", response_model=PreviewResponse)
def preview(
    intent_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    """Score every rail for an intent without creating a plan"""
    intent_id = parse_id(intent_id, "intent")
    try:
        get_intent(db, user_id, intent_id)
    except IntentNotFoundError:
        raise HTTPException(status_code=404, detail="Intent not found")

    return PreviewResponse.from_domain(get_smart_resolution_preview(db, user_id, intent_id))
