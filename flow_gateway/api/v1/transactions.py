"""Transaction endpoints - status, cancellation and the activity feed"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from flow_gateway.api.dependencies import get_request_id, get_user_id, parse_id
from flow_gateway.api.v1.schemas import ActivityItem, ActivityResponse, CancelResponse, TransactionResponse
from flow_gateway.domain.exceptions import TransactionNotFoundError
from flow_gateway.infrastructure.database.session import get_db
from flow_gateway.services.execution import cancel_transaction, get_transaction, list_activity

router = APIRouter()


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
def read_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    transaction_id = parse_id(transaction_id, "transaction")
    try:
        transaction = get_transaction(db, user_id, transaction_id)
    except TransactionNotFoundError:
        raise HTTPException(status_code=404, detail="Transaction not found")

    return TransactionResponse(
        transaction_id=str(transaction.id),
        intent_id=str(transaction.intent_id),
        plan_id=str(transaction.plan_id),
        status=transaction.status,
        failure_type=transaction.failure_type,
        receipt=transaction.receipt or {},
        created_at=transaction.created_at.isoformat(),
    )


@router.post("/transactions/{transaction_id}/cancel", response_model=CancelResponse)
def cancel(
    transaction_id: str,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    """Cancel a pending transaction; terminal transactions are left untouched"""
    transaction_id = parse_id(transaction_id, "transaction")
    try:
        get_transaction(db, user_id, transaction_id)
        result = cancel_transaction(db, user_id, transaction_id)
    except TransactionNotFoundError:
        raise HTTPException(status_code=404, detail="Transaction not found")
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=500, detail="Internal server error")

    return CancelResponse(success=result.success, error=result.error)


@router.get("/activity", response_model=ActivityResponse)
def get_activity(
    limit: int = Query(20, ge=1, le=100, description="Maximum entries to return"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    """
    Recent payments for the caller, newest first.

    Returns:
        Activity entries with the rail used and merchant or recipient
    """
    items = [
        ActivityItem(
            id=str(entry.id),
            intent_id=str(entry.intent_id),
            intent_type=entry.intent_type,
            amount_cents=int(entry.amount_cents),
            currency=entry.currency,
            status=entry.status,
            trigger=entry.trigger,
            rail_used=entry.rail_used,
            merchant_name=entry.merchant_name,
            recipient_name=entry.recipient_name,
            reference=entry.reference,
            created_at=entry.created_at.isoformat(),
        )
        for entry in list_activity(db, user_id, limit)
    ]

    return ActivityResponse(user_id=user_id, items=items)
