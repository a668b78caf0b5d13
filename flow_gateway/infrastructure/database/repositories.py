"""Data access layer for orchestration entities"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from flow_gateway.domain import models as domain
from flow_gateway.infrastructure.database.models import (
    BillerAccount,
    Connector,
    Consent,
    Contact,
    DailyPaymentState,
    ExecutionLog,
    FundingSource,
    Intent,
    PendingJob,
    QRPayload,
    ResolutionPlan,
    Transaction,
    TransactionLog,
    TrustedDevice,
    User,
    UserSettings,
)
from flow_gateway.utils.date_utils import utcnow

IdLike = Union[str, uuid.UUID]


def as_uuid(value: IdLike) -> uuid.UUID:
    """Coerce an id; raises ValueError on malformed input"""
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def to_domain_source(row: FundingSource) -> domain.FundingSource:
    return domain.FundingSource(
        id=str(row.id),
        name=row.name,
        type=domain.FundingSourceType(row.type),
        balance_cents=int(row.balance_cents),
        priority=row.priority,
        is_linked=row.linked_status == "linked",
        is_available=bool(row.available),
        currency=row.currency,
        max_auto_topup_cents=row.max_auto_topup_cents,
        require_confirm_above_cents=row.require_confirm_above_cents,
    )


class AccessRepository:
    """Users, trusted devices, consents and per-user settings"""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_device(self, user_id: str, device_id: str) -> Optional[TrustedDevice]:
        return (
            self.db.query(TrustedDevice)
            .filter(TrustedDevice.user_id == user_id, TrustedDevice.device_id == device_id)
            .first()
        )

    def touch_device(self, device: TrustedDevice) -> None:
        device.last_seen_at = utcnow()
        self.db.flush()

    def register_device(self, user_id: str, device_id: str) -> TrustedDevice:
        device = TrustedDevice(user_id=user_id, device_id=device_id, trusted=True, last_seen_at=utcnow())
        self.db.add(device)
        self.db.flush()
        return device

    def get_consent(self, user_id: str, connector_id: IdLike) -> Optional[Consent]:
        return (
            self.db.query(Consent)
            .filter(Consent.user_id == user_id, Consent.connector_id == as_uuid(connector_id))
            .first()
        )

    def get_settings(self, user_id: str) -> Optional[UserSettings]:
        return self.db.query(UserSettings).filter(UserSettings.user_id == user_id).first()

    def is_paused(self, user_id: str) -> bool:
        user_settings = self.get_settings(user_id)
        return bool(user_settings and user_settings.flow_paused)

    def get_fallback_preference(self, user_id: str) -> domain.FallbackPreference:
        user_settings = self.get_settings(user_id)
        if user_settings is None or not user_settings.fallback_preference:
            return domain.FallbackPreference.USE_CARD
        return domain.FallbackPreference(user_settings.fallback_preference)


class IntentRepository:
    """Intents and the records they are created from"""

    def __init__(self, db: Session):
        self.db = db

    def create_intent(
        self,
        user_id: str,
        intent_type: domain.IntentType,
        payee_name: str,
        payee_identifier: str,
        amount_cents: int,
        currency: str,
        metadata: Dict[str, Any],
    ) -> Intent:
        db_intent = Intent(
            user_id=user_id,
            type=intent_type.value,
            payee_name=payee_name,
            payee_identifier=payee_identifier,
            amount_cents=amount_cents,
            currency=currency,
            intent_metadata=metadata,
        )
        self.db.add(db_intent)
        self.db.flush()
        return db_intent

    def get_intent(self, intent_id: IdLike, user_id: str) -> Optional[Intent]:
        return (
            self.db.query(Intent)
            .filter(Intent.id == as_uuid(intent_id), Intent.user_id == user_id)
            .first()
        )

    def get_qr_payload(self, qr_payload_id: IdLike, user_id: str) -> Optional[QRPayload]:
        return (
            self.db.query(QRPayload)
            .filter(QRPayload.id == as_uuid(qr_payload_id), QRPayload.user_id == user_id)
            .first()
        )

    def get_contact(self, contact_id: IdLike, user_id: str) -> Optional[Contact]:
        return (
            self.db.query(Contact)
            .filter(Contact.id == as_uuid(contact_id), Contact.user_id == user_id)
            .first()
        )

    def get_biller_account(self, biller_account_id: IdLike, user_id: str) -> Optional[BillerAccount]:
        return (
            self.db.query(BillerAccount)
            .filter(BillerAccount.id == as_uuid(biller_account_id), BillerAccount.user_id == user_id)
            .first()
        )


class RailRepository:
    """Funding sources, connectors and rail usage history"""

    def __init__(self, db: Session):
        self.db = db

    def list_funding_sources(self, user_id: str, linked_only: bool = True) -> List[FundingSource]:
        """Sources ordered by priority (lower = preferred)"""
        query = self.db.query(FundingSource).filter(FundingSource.user_id == user_id)
        if linked_only:
            query = query.filter(FundingSource.linked_status == "linked")
        return query.order_by(FundingSource.priority.asc(), FundingSource.name.asc()).all()

    def list_connectors(self, user_id: str) -> List[Connector]:
        return self.db.query(Connector).filter(Connector.user_id == user_id).order_by(Connector.name.asc()).all()

    def get_connector_by_name(self, user_id: str, name: str) -> Optional[Connector]:
        return (
            self.db.query(Connector)
            .filter(Connector.user_id == user_id, Connector.name == name)
            .first()
        )

    def debit_balance(self, source_id: IdLike, amount_cents: int) -> bool:
        """
        Conditional server-side decrement: one UPDATE guarded by
        balance_cents >= amount. False when the balance does not cover it.
        """
        updated = (
            self.db.query(FundingSource)
            .filter(FundingSource.id == as_uuid(source_id), FundingSource.balance_cents >= amount_cents)
            .update(
                {
                    FundingSource.balance_cents: FundingSource.balance_cents - amount_cents,
                    FundingSource.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    def credit_balance(self, source_id: IdLike, amount_cents: int) -> int:
        return (
            self.db.query(FundingSource)
            .filter(FundingSource.id == as_uuid(source_id))
            .update(
                {
                    FundingSource.balance_cents: FundingSource.balance_cents + amount_cents,
                    FundingSource.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )

    def success_counts_by_rail(self, user_id: str, since: datetime) -> Dict[str, int]:
        """Successful payments per rail since a cutoff (feeds history scoring)"""
        rows = (
            self.db.query(TransactionLog.rail_used, func.count(TransactionLog.id))
            .filter(
                TransactionLog.user_id == user_id,
                TransactionLog.status == "success",
                TransactionLog.rail_used.isnot(None),
                TransactionLog.created_at >= since,
            )
            .group_by(TransactionLog.rail_used)
            .all()
        )
        return {rail: int(count) for rail, count in rows}


class PlanRepository:
    """Repository for resolution plans"""

    def __init__(self, db: Session):
        self.db = db

    def create_plan(self, **fields: Any) -> ResolutionPlan:
        db_plan = ResolutionPlan(**fields)
        self.db.add(db_plan)
        self.db.flush()
        return db_plan

    def get_plan(self, plan_id: IdLike, user_id: str) -> Optional[ResolutionPlan]:
        return (
            self.db.query(ResolutionPlan)
            .filter(ResolutionPlan.id == as_uuid(plan_id), ResolutionPlan.user_id == user_id)
            .first()
        )

    def transition(self, plan_id: IdLike, from_status: str, to_status: str) -> bool:
        """Conditional status change; False when another caller got there first"""
        updated = (
            self.db.query(ResolutionPlan)
            .filter(ResolutionPlan.id == as_uuid(plan_id), ResolutionPlan.status == from_status)
            .update({ResolutionPlan.status: to_status}, synchronize_session=False)
        )
        return updated == 1


class TransactionRepository:
    """Transactions plus their execution and activity logs"""

    def __init__(self, db: Session):
        self.db = db

    def create_transaction(
        self,
        user_id: str,
        intent_id: IdLike,
        plan_id: IdLike,
        status: domain.TransactionStatus,
        receipt: Dict[str, Any],
        failure_type: Optional[domain.FailureType] = None,
    ) -> Transaction:
        db_txn = Transaction(
            user_id=user_id,
            intent_id=as_uuid(intent_id),
            plan_id=as_uuid(plan_id),
            status=status.value,
            failure_type=failure_type.value if failure_type else None,
            receipt=receipt,
        )
        self.db.add(db_txn)
        self.db.flush()
        return db_txn

    def get_transaction(self, transaction_id: IdLike, user_id: Optional[str] = None) -> Optional[Transaction]:
        query = self.db.query(Transaction).filter(Transaction.id == as_uuid(transaction_id))
        if user_id is not None:
            query = query.filter(Transaction.user_id == user_id)
        return query.first()

    def transition(
        self,
        transaction_id: IdLike,
        from_status: domain.TransactionStatus,
        to_status: domain.TransactionStatus,
        receipt: Optional[Dict[str, Any]] = None,
        failure_type: Optional[domain.FailureType] = None,
    ) -> bool:
        """Conditional state change; terminal states are never left"""
        if from_status.is_terminal:
            return False
        values: Dict[Any, Any] = {Transaction.status: to_status.value, Transaction.updated_at: utcnow()}
        if receipt is not None:
            values[Transaction.receipt] = receipt
        if failure_type is not None:
            values[Transaction.failure_type] = failure_type.value
        updated = (
            self.db.query(Transaction)
            .filter(Transaction.id == as_uuid(transaction_id), Transaction.status == from_status.value)
            .update(values, synchronize_session=False)
        )
        return updated == 1

    def add_execution_log(
        self,
        user_id: str,
        transaction_id: IdLike,
        intent_snapshot: Dict[str, Any],
        plan_snapshot: Dict[str, Any],
        connector_calls: List[Dict[str, Any]],
        outcome: Dict[str, Any],
    ) -> ExecutionLog:
        entry = ExecutionLog(
            user_id=user_id,
            transaction_id=as_uuid(transaction_id),
            intent_snapshot=intent_snapshot,
            plan_snapshot=plan_snapshot,
            connector_calls=connector_calls,
            outcome=outcome,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def add_activity(self, **fields: Any) -> TransactionLog:
        entry = TransactionLog(**fields)
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_activity(self, user_id: str, limit: int = 20) -> List[TransactionLog]:
        return (
            self.db.query(TransactionLog)
            .filter(TransactionLog.user_id == user_id)
            .order_by(TransactionLog.created_at.desc())
            .limit(limit)
            .all()
        )

    def list_execution_logs(self, transaction_id: IdLike) -> List[ExecutionLog]:
        return (
            self.db.query(ExecutionLog)
            .filter(ExecutionLog.transaction_id == as_uuid(transaction_id))
            .all()
        )


class DailyStateRepository:
    """Server-side daily auto-approved counter keyed by (user, ISO day)"""

    def __init__(self, db: Session):
        self.db = db

    def get_state(self, user_id: str, day: str) -> domain.UserPaymentState:
        row = (
            self.db.query(DailyPaymentState)
            .filter(DailyPaymentState.user_id == user_id, DailyPaymentState.day == day)
            .first()
        )
        return domain.UserPaymentState(
            daily_auto_approved_cents=int(row.auto_approved_cents) if row else 0,
            last_reset_date=day,
        )

    def increment(self, user_id: str, day: str, amount_cents: int) -> None:
        """
        Atomic increment; inserts the day's row on first use.

        Commits. On a concurrent first insert the unique key rejects the
        loser, which retries as an increment.
        """
        if self._add(user_id, day, amount_cents):
            self.db.commit()
            return

        try:
            self.db.add(DailyPaymentState(user_id=user_id, day=day, auto_approved_cents=amount_cents))
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            self._add(user_id, day, amount_cents)
            self.db.commit()

    def _add(self, user_id: str, day: str, amount_cents: int) -> bool:
        updated = (
            self.db.query(DailyPaymentState)
            .filter(DailyPaymentState.user_id == user_id, DailyPaymentState.day == day)
            .update(
                {DailyPaymentState.auto_approved_cents: DailyPaymentState.auto_approved_cents + amount_cents},
                synchronize_session=False,
            )
        )
        return updated == 1


class JobRepository:
    """Durable pending-work queue"""

    def __init__(self, db: Session):
        self.db = db

    def enqueue(self, job_type: str, transaction_id: IdLike, payload: Dict[str, Any], run_at: datetime) -> PendingJob:
        job = PendingJob(
            job_type=job_type,
            transaction_id=as_uuid(transaction_id),
            payload=payload,
            run_at=run_at,
        )
        self.db.add(job)
        self.db.flush()
        return job

    def due_jobs(self, now: datetime, limit: int = 50) -> List[PendingJob]:
        return (
            self.db.query(PendingJob)
            .filter(PendingJob.status == "queued", PendingJob.run_at <= now)
            .order_by(PendingJob.run_at.asc())
            .limit(limit)
            .all()
        )

    def claim(self, job_id: IdLike) -> bool:
        """queued -> running; exactly one worker wins"""
        updated = (
            self.db.query(PendingJob)
            .filter(PendingJob.id == as_uuid(job_id), PendingJob.status == "queued")
            .update(
                {
                    PendingJob.status: "running",
                    PendingJob.attempts: PendingJob.attempts + 1,
                    PendingJob.last_attempt_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    def mark_done(self, job_id: IdLike) -> None:
        (
            self.db.query(PendingJob)
            .filter(PendingJob.id == as_uuid(job_id))
            .update({PendingJob.status: "done"}, synchronize_session=False)
        )
