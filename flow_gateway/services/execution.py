"""
Execution engine - runs a persisted ResolutionPlan and records a Transaction.

Transaction states: pending -> {success, failed, cancelled}. Sync plans
resolve straight to success or failed; async plans start pending and are
completed by the job runner. Terminal states are never left: every status
change is a conditional UPDATE on the expected prior state.
"""

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from flow_gateway.config import settings
from flow_gateway.domain.exceptions import TransactionNotFoundError
from flow_gateway.domain.models import (
    ExecutionMode,
    FailureType,
    GateCode,
    GateResult,
    IntentType,
    ResolutionStep,
    RuntimeMode,
    StepAction,
    TransactionSignature,
    TransactionStatus,
)
from flow_gateway.domain.plans import charge_step
from flow_gateway.infrastructure.clients.connectors import ConnectorClient, build_connector_client
from flow_gateway.infrastructure.database.models import Intent, ResolutionPlan, Transaction, TransactionLog
from flow_gateway.infrastructure.database.repositories import (
    AccessRepository,
    DailyStateRepository,
    IntentRepository,
    JobRepository,
    PlanRepository,
    RailRepository,
    TransactionRepository,
)
from flow_gateway.infrastructure.observability.logging import log_execution
from flow_gateway.infrastructure.observability.metrics import record_execution
from flow_gateway.services.gates import check_resolution_gates
from flow_gateway.services.intents import intent_to_dict
from flow_gateway.services.resolution import plan_to_dict
from flow_gateway.services.security import SecurityService
from flow_gateway.utils.date_utils import today_iso, utcnow

logger = logging.getLogger(__name__)

COMPLETE_TRANSACTION_JOB = "complete_transaction"
GENERIC_FAILURE_MESSAGE = "Something went wrong. Please try again."
ALREADY_EXECUTED = "This payment plan has already been executed"
INSUFFICIENT_BALANCE = "Insufficient balance to complete this payment"

TRIGGERS = {
    IntentType.PAY_MERCHANT: "qr_scan",
    IntentType.SEND_MONEY: "contact",
    IntentType.REQUEST_MONEY: "request",
    IntentType.PAY_BILL: "bill_payment",
}


@dataclass
class ExecutionResult:
    success: bool
    transaction_id: Optional[str] = None
    status: Optional[TransactionStatus] = None
    failure_type: Optional[FailureType] = None
    error: Optional[str] = None
    signature: Optional[TransactionSignature] = None
    gate_result: Optional[GateResult] = None


@dataclass
class CancelResult:
    success: bool
    error: Optional[str] = None


def user_message(failure_type: FailureType, error: Optional[str]) -> str:
    """Unknown failures get a generic message; the cause stays in the audit trail"""
    if failure_type is FailureType.UNKNOWN or not error:
        return GENERIC_FAILURE_MESSAGE
    return error


def plan_steps(plan: ResolutionPlan) -> List[ResolutionStep]:
    return [ResolutionStep.from_dict(s) for s in plan.steps or []]


def record_activity(
    txns: TransactionRepository,
    intent: Intent,
    plan: ResolutionPlan,
    transaction: Transaction,
    status: TransactionStatus,
) -> None:
    """Activity feed entry; merchant fields for merchant/bill payments, recipient fields for P2P"""
    intent_type = IntentType(intent.type)
    is_merchant = intent_type in (IntentType.PAY_MERCHANT, IntentType.PAY_BILL)
    txns.add_activity(
        user_id=intent.user_id,
        intent_id=intent.id,
        intent_type=intent.type,
        amount_cents=int(intent.amount_cents),
        currency=intent.currency,
        status=status.value,
        trigger=TRIGGERS.get(intent_type, "manual"),
        rail_used=plan.chosen_rail,
        merchant_name=intent.payee_name if is_merchant else None,
        merchant_id=intent.payee_identifier if is_merchant else None,
        recipient_name=None if is_merchant else intent.payee_name,
        recipient_id=None if is_merchant else intent.payee_identifier,
        reference=str(transaction.id)[:8].upper(),
    )


def apply_balance_mutations(rails: RailRepository, steps: Sequence[ResolutionStep]) -> bool:
    """
    Top-up moves money from the source into the charged wallet; a charge
    debits wallet and bank sources. Cards pass through untouched.

    Each debit is conditional on the balance covering it. Returns False as
    soon as one is refused; the caller rolls the whole set back.
    """
    charge = charge_step(steps)
    for step in steps:
        is_card = step.source_type is not None and step.source_type.is_card
        if step.action is StepAction.TOP_UP:
            if step.source_id and not is_card and not rails.debit_balance(step.source_id, step.amount_cents):
                return False
            if charge is not None and charge.source_id:
                rails.credit_balance(charge.source_id, step.amount_cents)
        elif step.source_id and not is_card and not rails.debit_balance(step.source_id, step.amount_cents):
            return False
    return True


def count_auto_approved(db: Session, plan: ResolutionPlan, intent: Intent) -> None:
    """Only payments that went through without confirmation use the daily auto budget"""
    if plan.requires_confirmation:
        return
    DailyStateRepository(db).increment(intent.user_id, today_iso(), int(intent.amount_cents))


def _gate_failure(gate: GateResult) -> ExecutionResult:
    failure_type = (
        FailureType.IDENTITY_BLOCKED if gate.blocked_code is GateCode.IDENTITY_BLOCKED else FailureType.RISK_BLOCKED
    )
    return ExecutionResult(success=False, error=gate.blocked_reason, failure_type=failure_type, gate_result=gate)


async def execute_plan(
    db: Session,
    user_id: str,
    device_id: str,
    plan_id: str,
    confirmed: bool = False,
    connector: Optional[ConnectorClient] = None,
    security: Optional[SecurityService] = None,
    mode: RuntimeMode = RuntimeMode.STRICT,
    request_id: str = "internal",
) -> ExecutionResult:
    """
    Execute a ready plan at most once.

    Flow:
    1. Resolution gates, then the pause flag
    2. Load plan and intent; refuse plans needing an unconfirmed confirmation
    3. Claim the plan: ready -> executing, only one caller wins
    4. Pre-payment security check (rate limit, signing, audit)
    5. Async: pending transaction + durable job. Sync: connector calls per step
    """
    start_time = time.time()

    result = await _execute(db, user_id, device_id, plan_id, confirmed, connector, security, mode)

    status = result.status.value if result.status else "rejected"
    failure_type = result.failure_type.value if result.failure_type else None
    record_execution(status, failure_type)
    log_execution(
        user_id,
        str(plan_id),
        status,
        failure_type,
        result.transaction_id,
        (time.time() - start_time) * 1000,
        request_id,
    )
    return result


async def _execute(
    db: Session,
    user_id: str,
    device_id: str,
    plan_id: str,
    confirmed: bool,
    connector: Optional[ConnectorClient],
    security: Optional[SecurityService],
    mode: RuntimeMode,
) -> ExecutionResult:
    gate = check_resolution_gates(db, user_id, device_id, mode)
    db.commit()
    if not gate.passed:
        return _gate_failure(gate)

    if AccessRepository(db).is_paused(user_id):
        return ExecutionResult(success=False, error="FLOW is currently paused", failure_type=FailureType.USER_PAUSED)

    plans = PlanRepository(db)
    plan = plans.get_plan(plan_id, user_id)
    if plan is None:
        return ExecutionResult(success=False, error="Payment plan not found")

    intent = IntentRepository(db).get_intent(plan.intent_id, user_id)
    if intent is None:
        return ExecutionResult(success=False, error="Payment request not found")

    if plan.status != "ready":
        return ExecutionResult(success=False, error=ALREADY_EXECUTED)

    steps = plan_steps(plan)
    if not steps:
        return ExecutionResult(
            success=False,
            error=f"Choose a payment method to continue. {plan.confirmation_reason or ''}".strip(),
        )

    if plan.requires_confirmation and not confirmed:
        return ExecutionResult(
            success=False,
            error=f"Confirmation required: {plan.confirmation_reason or 'please confirm this payment'}",
        )

    if not plans.transition(plan.id, "ready", "executing"):
        db.rollback()
        logger.info("Plan already claimed", extra={"plan_id": str(plan.id)})
        return ExecutionResult(success=False, error=ALREADY_EXECUTED)
    db.commit()

    security = security or SecurityService(db)
    try:
        check = security.pre_payment_security_check(
            user_id,
            str(intent.id),
            str(plan.id),
            int(intent.amount_cents),
            intent.payee_name,
            plan.chosen_rail,
        )
        if not check.approved:
            # Nothing ran yet: the plan goes back to ready
            plans.transition(plan.id, "executing", "ready")
            db.commit()
            return ExecutionResult(
                success=False,
                error=check.error or "Security check failed",
                failure_type=check.failure_type or FailureType.RISK_BLOCKED,
            )

        if plan.execution_mode == ExecutionMode.ASYNC.value:
            return _execute_async(db, plan, intent, check.signature)
        connector = connector or build_connector_client()
        return await _execute_sync(db, plan, intent, steps, check.signature, connector, security)
    except IntegrityError:
        # transactions.plan_id is unique: a second transaction for this plan is refused
        db.rollback()
        logger.warning("Duplicate execution refused", extra={"plan_id": str(plan.id)})
        return ExecutionResult(success=False, error=ALREADY_EXECUTED)
    except Exception as e:
        db.rollback()
        logger.exception("Plan execution crashed", extra={"plan_id": str(plan.id)})
        return _record_failure(db, plan, intent, [], FailureType.UNKNOWN, str(e), security)


def _receipt(intent: Intent, plan: ResolutionPlan, **extra: Any) -> Dict[str, Any]:
    receipt = {
        "amount_cents": int(intent.amount_cents),
        "currency": intent.currency,
        "payee": intent.payee_name,
        "rail": plan.chosen_rail,
    }
    receipt.update(extra)
    return receipt


def _execute_async(
    db: Session,
    plan: ResolutionPlan,
    intent: Intent,
    signature: Optional[TransactionSignature],
) -> ExecutionResult:
    txns = TransactionRepository(db)
    signature_id = signature.id if signature else None
    transaction = txns.create_transaction(
        user_id=intent.user_id,
        intent_id=intent.id,
        plan_id=plan.id,
        status=TransactionStatus.PENDING,
        receipt=_receipt(intent, plan, initiated_at=utcnow().isoformat(), signature_id=signature_id),
    )
    JobRepository(db).enqueue(
        COMPLETE_TRANSACTION_JOB,
        transaction.id,
        payload={"plan_id": str(plan.id), "signature_id": signature_id},
        run_at=utcnow() + timedelta(seconds=settings.async_completion_delay_seconds),
    )
    PlanRepository(db).transition(plan.id, "executing", "consumed")
    db.commit()

    logger.info(
        "Async execution scheduled",
        extra={"plan_id": str(plan.id), "transaction_id": str(transaction.id), "pending_reason": plan.pending_reason},
    )
    return ExecutionResult(
        success=True,
        transaction_id=str(transaction.id),
        status=TransactionStatus.PENDING,
        signature=signature,
    )


def _record_failure(
    db: Session,
    plan: ResolutionPlan,
    intent: Intent,
    connector_calls: List[Dict[str, Any]],
    failure_type: FailureType,
    error: Optional[str],
    security: SecurityService,
) -> ExecutionResult:
    """Failed transaction with its logs; the plan is consumed and no balance changes"""
    txns = TransactionRepository(db)
    transaction = txns.create_transaction(
        user_id=intent.user_id,
        intent_id=intent.id,
        plan_id=plan.id,
        status=TransactionStatus.FAILED,
        receipt={"error": error, "failure_type": failure_type.value},
        failure_type=failure_type,
    )
    txns.add_execution_log(
        intent.user_id,
        transaction.id,
        intent_to_dict(intent),
        plan_to_dict(plan),
        connector_calls,
        {"success": False, "error": error},
    )
    record_activity(txns, intent, plan, transaction, TransactionStatus.FAILED)
    PlanRepository(db).transition(plan.id, "executing", "consumed")
    db.commit()

    security.post_payment_audit_log(
        intent.user_id,
        str(transaction.id),
        str(intent.id),
        False,
        int(intent.amount_cents),
        intent.payee_name,
        plan.chosen_rail,
        error,
    )
    return ExecutionResult(
        success=False,
        transaction_id=str(transaction.id),
        status=TransactionStatus.FAILED,
        failure_type=failure_type,
        error=user_message(failure_type, error),
    )


async def _execute_sync(
    db: Session,
    plan: ResolutionPlan,
    intent: Intent,
    steps: List[ResolutionStep],
    signature: Optional[TransactionSignature],
    connector: ConnectorClient,
    security: SecurityService,
) -> ExecutionResult:
    connector_calls: List[Dict[str, Any]] = []

    for step in steps:
        rail = step.source_name or plan.chosen_rail
        outcome = await connector.call(rail, step.action.value, step.amount_cents)
        connector_calls.append(
            {
                "connector": rail,
                "action": step.action.value,
                "amount_cents": step.amount_cents,
                "result": "success" if outcome.success else "failed",
                "failure_type": outcome.failure_type.value if outcome.failure_type else None,
                "latency_ms": round(outcome.latency_ms, 2),
                "timestamp": utcnow().isoformat(),
            }
        )

        if not outcome.success:
            # Remaining steps are not attempted and no balance changes
            failure_type = outcome.failure_type or FailureType.UNKNOWN
            return _record_failure(db, plan, intent, connector_calls, failure_type, outcome.error, security)

    # Debits land in the same DB transaction as the success record, or not at all
    if not apply_balance_mutations(RailRepository(db), steps):
        db.rollback()
        return _record_failure(
            db, plan, intent, connector_calls, FailureType.INSUFFICIENT_FUNDS, INSUFFICIENT_BALANCE, security
        )

    txns = TransactionRepository(db)
    signature_id = signature.id if signature else None
    transaction = txns.create_transaction(
        user_id=intent.user_id,
        intent_id=intent.id,
        plan_id=plan.id,
        status=TransactionStatus.SUCCESS,
        receipt=_receipt(intent, plan, completed_at=utcnow().isoformat(), signature_id=signature_id),
    )
    txns.add_execution_log(
        intent.user_id,
        transaction.id,
        intent_to_dict(intent),
        plan_to_dict(plan),
        connector_calls,
        {"success": True, "signature_id": signature_id},
    )
    record_activity(txns, intent, plan, transaction, TransactionStatus.SUCCESS)
    PlanRepository(db).transition(plan.id, "executing", "consumed")
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
    return ExecutionResult(
        success=True,
        transaction_id=str(transaction.id),
        status=TransactionStatus.SUCCESS,
        signature=signature,
    )


def cancel_transaction(db: Session, user_id: str, transaction_id: str) -> CancelResult:
    """Only pending transactions can move to cancelled"""
    txns = TransactionRepository(db)
    transaction = txns.get_transaction(transaction_id, user_id)
    if transaction is None:
        return CancelResult(success=False, error="Transaction not found")

    if transaction.status != TransactionStatus.PENDING.value or not txns.transition(
        transaction.id, TransactionStatus.PENDING, TransactionStatus.CANCELLED
    ):
        db.rollback()
        return CancelResult(success=False, error="Only pending transactions can be cancelled")

    db.commit()
    logger.info("Transaction cancelled", extra={"user_id": user_id, "transaction_id": str(transaction.id)})
    return CancelResult(success=True)


def get_transaction(db: Session, user_id: str, transaction_id: str) -> Transaction:
    """
    Raises:
        TransactionNotFoundError: Unknown transaction or owned by another user
    """
    transaction = TransactionRepository(db).get_transaction(transaction_id, user_id)
    if transaction is None:
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
    return transaction


def list_activity(db: Session, user_id: str, limit: int = 20) -> List[TransactionLog]:
    return TransactionRepository(db).list_activity(user_id, limit)
