"""Durable job runner that completes async (pending) transactions exactly once"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from flow_gateway.domain.models import FailureType, TransactionStatus
from flow_gateway.infrastructure.database.models import Intent, PendingJob, ResolutionPlan, Transaction
from flow_gateway.infrastructure.database.repositories import (
    IntentRepository,
    JobRepository,
    PlanRepository,
    RailRepository,
    TransactionRepository,
)
from flow_gateway.infrastructure.database.session import SessionLocal
from flow_gateway.infrastructure.observability.metrics import record_execution
from flow_gateway.services.execution import (
    COMPLETE_TRANSACTION_JOB,
    INSUFFICIENT_BALANCE,
    apply_balance_mutations,
    count_auto_approved,
    plan_steps,
    record_activity,
)
from flow_gateway.services.intents import intent_to_dict
from flow_gateway.services.resolution import plan_to_dict
from flow_gateway.services.security import SecurityService
from flow_gateway.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


def complete_pending_transaction(db: Session, job: PendingJob, security: Optional[SecurityService] = None) -> bool:
    """
    pending -> success for the job's transaction, or pending -> failed when
    the balances no longer cover the plan.

    Returns False without side effects when the transaction is no longer
    pending (cancelled, or already completed by another runner).
    """
    txns = TransactionRepository(db)
    transaction = txns.get_transaction(job.transaction_id)
    if transaction is None or transaction.status != TransactionStatus.PENDING.value:
        logger.info(
            "Pending job skipped",
            extra={"job_id": str(job.id), "status": transaction.status if transaction else None},
        )
        return False

    plan = PlanRepository(db).get_plan(transaction.plan_id, transaction.user_id)
    intent = IntentRepository(db).get_intent(transaction.intent_id, transaction.user_id)
    if plan is None or intent is None:
        logger.error("Pending job references missing plan or intent", extra={"job_id": str(job.id)})
        return False

    steps = plan_steps(plan)
    connector_calls = [
        {
            "connector": s.source_name or plan.chosen_rail,
            "action": s.action.value,
            "amount_cents": s.amount_cents,
            "result": "success",
        }
        for s in steps
    ]
    security = security or SecurityService(db)

    if not apply_balance_mutations(RailRepository(db), steps):
        db.rollback()
        return _fail_pending_transaction(db, job, transaction, plan, intent, connector_calls, security)

    receipt = dict(transaction.receipt or {})
    receipt["completed_at"] = utcnow().isoformat()
    if not txns.transition(transaction.id, TransactionStatus.PENDING, TransactionStatus.SUCCESS, receipt=receipt):
        db.rollback()
        return False

    txns.add_execution_log(
        intent.user_id,
        transaction.id,
        intent_to_dict(intent),
        plan_to_dict(plan),
        connector_calls,
        {"success": True, "async": True, "signature_id": (job.payload or {}).get("signature_id")},
    )
    record_activity(txns, intent, plan, transaction, TransactionStatus.SUCCESS)
    db.commit()

    count_auto_approved(db, plan, intent)
    security.post_payment_audit_log(
        intent.user_id,
        str(transaction.id),
        str(intent.id),
        True,
        int(intent.amount_cents),
        intent.payee_name,
        plan.chosen_rail,
    )
    record_execution(TransactionStatus.SUCCESS.value)
    return True


def _fail_pending_transaction(
    db: Session,
    job: PendingJob,
    transaction: Transaction,
    plan: ResolutionPlan,
    intent: Intent,
    connector_calls: List[Dict[str, Any]],
    security: SecurityService,
) -> bool:
    """pending -> failed when the balances no longer cover the plan; nothing is debited"""
    txns = TransactionRepository(db)
    receipt = dict(transaction.receipt or {})
    receipt.update(error=INSUFFICIENT_BALANCE, failure_type=FailureType.INSUFFICIENT_FUNDS.value)
    if not txns.transition(
        transaction.id,
        TransactionStatus.PENDING,
        TransactionStatus.FAILED,
        receipt=receipt,
        failure_type=FailureType.INSUFFICIENT_FUNDS,
    ):
        db.rollback()
        return False

    txns.add_execution_log(
        intent.user_id,
        transaction.id,
        intent_to_dict(intent),
        plan_to_dict(plan),
        connector_calls,
        {"success": False, "async": True, "error": INSUFFICIENT_BALANCE},
    )
    record_activity(txns, intent, plan, transaction, TransactionStatus.FAILED)
    db.commit()

    logger.warning(
        "Pending transaction failed",
        extra={"job_id": str(job.id), "transaction_id": str(transaction.id), "failure_type": "insufficient_funds"},
    )
    security.post_payment_audit_log(
        intent.user_id,
        str(transaction.id),
        str(intent.id),
        False,
        int(intent.amount_cents),
        intent.payee_name,
        plan.chosen_rail,
        INSUFFICIENT_BALANCE,
    )
    record_execution(TransactionStatus.FAILED.value, FailureType.INSUFFICIENT_FUNDS.value)
    return False


def complete_due_jobs(db: Session, now: Optional[datetime] = None, security: Optional[SecurityService] = None) -> int:
    """Claim and run every due job; returns how many transactions were completed"""
    jobs = JobRepository(db)
    completed = 0

    for job in jobs.due_jobs(now or utcnow()):
        if not jobs.claim(job.id):
            continue
        db.commit()

        if job.job_type == COMPLETE_TRANSACTION_JOB and complete_pending_transaction(db, job, security):
            completed += 1

        jobs.mark_done(job.id)
        db.commit()

    if completed:
        logger.info("Pending jobs completed", extra={"completed": completed})
    return completed


def drain_pending_jobs(session_factory: Callable[[], Session] = SessionLocal) -> int:
    """Run due jobs in a session of their own (startup, background tasks)"""
    db = session_factory()
    try:
        return complete_due_jobs(db)
    finally:
        db.close()


async def drain_pending_jobs_after(delay_seconds: float, session_factory: Callable[[], Session] = SessionLocal) -> None:
    await asyncio.sleep(delay_seconds)
    await asyncio.to_thread(drain_pending_jobs, session_factory)


async def poll_pending_jobs(interval_seconds: float, session_factory: Callable[[], Session] = SessionLocal) -> None:
    """Keep completing due jobs until cancelled (application lifetime)"""
    while True:
        try:
            await asyncio.to_thread(drain_pending_jobs, session_factory)
        except Exception as e:
            logger.error(f"Pending job poll failed: {e}")
        await asyncio.sleep(interval_seconds)
