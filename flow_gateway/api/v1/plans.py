"""Plan endpoints - read a resolution plan and execute it"""

import logging
from typing import Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from flow_gateway.api.dependencies import (
    get_connector_client,
    get_device_id,
    get_request_id,
    get_runtime_mode,
    get_security_service,
    get_session_factory,
    get_user_id,
    parse_id,
)
from flow_gateway.api.v1.schemas import ExecuteRequest, ExecuteResponse, GateResultSchema, PlanSchema
from flow_gateway.config import settings
from flow_gateway.domain.exceptions import PlanNotFoundError
from flow_gateway.domain.models import RuntimeMode, TransactionStatus
from flow_gateway.infrastructure.clients.connectors import ConnectorClient
from flow_gateway.infrastructure.database.session import get_db
from flow_gateway.services.execution import execute_plan
from flow_gateway.services.jobs import drain_pending_jobs_after
from flow_gateway.services.resolution import get_plan, plan_to_dict
from flow_gateway.services.security import SecurityService

router = APIRouter()


@router.get("/plans/{plan_id}", response_model=PlanSchema)
def read_plan(
    plan_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    """
    Retrieve a resolution plan with its steps and explanation.

    Returns:
        Plan details, including status (ready/executing/consumed)
    """
    plan_id = parse_id(plan_id, "plan")
    try:
        plan = get_plan(db, user_id, plan_id)
    except PlanNotFoundError:
        raise HTTPException(status_code=404, detail="Plan not found")

    return PlanSchema(**plan_to_dict(plan))


@router.post("/plans/{plan_id}/execute", response_model=ExecuteResponse)
async def execute(
    plan_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    request_body: Optional[ExecuteRequest] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
    device_id: str = Depends(get_device_id),
    mode: RuntimeMode = Depends(get_runtime_mode),
    connector: ConnectorClient = Depends(get_connector_client),
    security: SecurityService = Depends(get_security_service),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """
    Execute a ready plan at most once.

    Flow:
    1. Gates, pause flag and confirmation check
    2. Pre-payment security (rate limit, signing, audit)
    3. Sync: connector calls now. Async: pending transaction + queued job
    4. Pending transactions are completed by a delayed background drain
    """
    plan_id = parse_id(plan_id, "plan")
    request_id = get_request_id(request)
    request_body = request_body or ExecuteRequest()

    try:
        result = await execute_plan(
            db,
            user_id,
            device_id,
            plan_id,
            confirmed=request_body.confirmed,
            connector=connector,
            security=security,
            mode=mode,
            request_id=request_id,
        )
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    if result.status is TransactionStatus.PENDING:
        background_tasks.add_task(
            drain_pending_jobs_after,
            settings.async_completion_delay_seconds,
            session_factory,
        )

    return ExecuteResponse(
        success=result.success,
        transaction_id=result.transaction_id,
        status=result.status.value if result.status else None,
        failure_type=result.failure_type.value if result.failure_type else None,
        error=result.error,
        signature_id=result.signature.id if result.signature else None,
        gate_result=GateResultSchema.from_domain(result.gate_result),
    )
