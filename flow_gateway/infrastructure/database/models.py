"""SQLAlchemy ORM models for the payment orchestration store"""

import uuid
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    PrimaryKeyConstraint,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from flow_gateway.utils.date_utils import utcnow

Base = declarative_base()


# ---------------------------------------------------------------------------
# Identity & access
# ---------------------------------------------------------------------------


class User(Base):
    """Identity record supplied by the session provider"""

    __tablename__ = "users"

    id = Column(Text, primary_key=True)
    identity_status = Column(Text, nullable=False, default="active")  # pending | active | suspended | revoked
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TrustedDevice(Base):
    __tablename__ = "trusted_devices"
    __table_args__ = (UniqueConstraint("user_id", "device_id", name="uq_trusted_device"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    device_id = Column(Text, nullable=False)
    trusted = Column(Boolean, nullable=False, default=True)
    last_seen_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Consent(Base):
    __tablename__ = "consents"
    __table_args__ = (UniqueConstraint("user_id", "connector_id", name="uq_consent"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    connector_id = Column(UUID(as_uuid=True), ForeignKey("connectors.id", ondelete="CASCADE"), nullable=False)
    status = Column(Text, nullable=False, default="active")  # active | revoked | expired
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class UserSettings(Base):
    __tablename__ = "user_settings"

    user_id = Column(Text, primary_key=True)
    flow_paused = Column(Boolean, nullable=False, default=False)
    paused_at = Column(DateTime(timezone=True), nullable=True)
    fallback_preference = Column(Text, nullable=False, default="use_card")


# ---------------------------------------------------------------------------
# Rails
# ---------------------------------------------------------------------------


class FundingSource(Base):
    """Linked wallet/bank/card. Balance is mutated only by the execution engine."""

    __tablename__ = "funding_sources"
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_funding_source_name"),
        CheckConstraint("balance_cents >= 0", name="ck_funding_source_balance_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    type = Column(Text, nullable=False)  # wallet | bank | debit_card | credit_card
    balance_cents = Column(BigInteger, nullable=False, default=0)
    currency = Column(Text, nullable=False, default="MYR")
    priority = Column(Integer, nullable=False, default=99)
    linked_status = Column(Text, nullable=False, default="linked")  # unlinked | linked | error
    available = Column(Boolean, nullable=False, default=True)
    max_auto_topup_cents = Column(BigInteger, nullable=True)
    require_confirm_above_cents = Column(BigInteger, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class Connector(Base):
    """Live channel behind a rail; joined to FundingSource by name"""

    __tablename__ = "connectors"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_connector_name"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    type = Column(Text, nullable=False)  # wallet | bank | card | biller
    status = Column(Text, nullable=False, default="available")  # available | degraded | unavailable
    capabilities = Column(JSON, nullable=False, default=dict)


# ---------------------------------------------------------------------------
# Intent sources
# ---------------------------------------------------------------------------


class QRPayload(Base):
    __tablename__ = "qr_payloads"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    merchant_name = Column(Text, nullable=True)
    reference_id = Column(Text, nullable=True)
    amount_cents = Column(BigInteger, nullable=True)
    currency = Column(Text, nullable=True)
    rails_available = Column(JSON, nullable=True)
    raw_payload = Column(Text, nullable=True)


class Contact(Base):
    __tablename__ = "contacts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    phone = Column(Text, nullable=False)
    supported_wallets = Column(JSON, nullable=True)
    default_wallet = Column(Text, nullable=True)


class BillerAccount(Base):
    __tablename__ = "biller_accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    biller_name = Column(Text, nullable=False)
    account_reference = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="linked")  # linked | unlinked | error


# ---------------------------------------------------------------------------
# Intent -> plan -> transaction
# ---------------------------------------------------------------------------


class Intent(Base):
    """Payment intent. Immutable once inserted."""

    __tablename__ = "intents"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    type = Column(Text, nullable=False)  # PayMerchant | SendMoney | RequestMoney | PayBill
    payee_name = Column(Text, nullable=False)
    payee_identifier = Column(Text, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    currency = Column(Text, nullable=False, default="MYR")
    intent_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    plans = relationship("ResolutionPlan", back_populates="intent", cascade="all, delete-orphan")


class ResolutionPlan(Base):
    """
    Persisted resolution. Immutable except for `status`, which is the
    at-most-once execution token: ready -> executing -> consumed.
    """

    __tablename__ = "resolution_plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    intent_id = Column(UUID(as_uuid=True), ForeignKey("intents.id", ondelete="CASCADE"), nullable=False)
    strategy = Column(Text, nullable=False, default="priority")  # priority | smart
    chosen_rail = Column(Text, nullable=True)
    fallback_rail = Column(Text, nullable=True)
    steps = Column(JSON, nullable=False, default=list)
    topup_needed = Column(Boolean, nullable=False, default=False)
    topup_amount_cents = Column(BigInteger, nullable=False, default=0)
    execution_mode = Column(Text, nullable=False, default="sync")  # sync | async
    pending_reason = Column(Text, nullable=True)
    reason_codes = Column(JSON, nullable=False, default=list)
    risk_level = Column(Text, nullable=False, default="low")
    requires_confirmation = Column(Boolean, nullable=False, default=False)
    confirmation_reason = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="ready")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    intent = relationship("Intent", back_populates="plans")


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    intent_id = Column(UUID(as_uuid=True), ForeignKey("intents.id", ondelete="CASCADE"), nullable=False)
    # Unique: a plan yields at most one transaction
    plan_id = Column(
        UUID(as_uuid=True), ForeignKey("resolution_plans.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    status = Column(Text, nullable=False)  # pending | success | failed | cancelled
    failure_type = Column(Text, nullable=True)
    receipt = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Append-only logs
# ---------------------------------------------------------------------------


class ExecutionLog(Base):
    __tablename__ = "execution_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    transaction_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    intent_snapshot = Column(JSON, nullable=False)
    plan_snapshot = Column(JSON, nullable=False)
    connector_calls = Column(JSON, nullable=False, default=list)
    outcome = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TransactionLog(Base):
    """Human-readable activity feed entry"""

    __tablename__ = "transaction_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    intent_id = Column(UUID(as_uuid=True), nullable=False)
    intent_type = Column(Text, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    currency = Column(Text, nullable=False)
    status = Column(Text, nullable=False)
    trigger = Column(Text, nullable=False)  # qr_scan | contact | request | bill_payment | manual
    rail_used = Column(Text, nullable=True)
    merchant_name = Column(Text, nullable=True)
    merchant_id = Column(Text, nullable=True)
    recipient_name = Column(Text, nullable=True)
    recipient_id = Column(Text, nullable=True)
    reference = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class AuditLog(Base):
    """Hash-chained audit entry: hash = sha256(previous_hash + entry)"""

    __tablename__ = "audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=True, index=True)
    action = Column(Text, nullable=False)
    entity_type = Column(Text, nullable=False)
    entity_id = Column(Text, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    risk_score = Column(Integer, nullable=False, default=0)
    previous_hash = Column(Text, nullable=True)
    hash = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class RateLimitWindow(Base):
    __tablename__ = "rate_limits"
    __table_args__ = (UniqueConstraint("user_id", "action_type", "window_start", name="uq_rate_limit_window"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    action_type = Column(Text, nullable=False)
    window_start = Column(DateTime(timezone=True), nullable=False)
    request_count = Column(Integer, nullable=False, default=0)


class TransactionSignatureRecord(Base):
    __tablename__ = "transaction_signatures"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    intent_id = Column(Text, nullable=False)
    plan_id = Column(Text, nullable=False)
    signature_type = Column(Text, nullable=False, default="execution")
    payload_hash = Column(Text, nullable=False)
    signature = Column(Text, nullable=False)
    verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


# ---------------------------------------------------------------------------
# Server-side counters & durable work
# ---------------------------------------------------------------------------


class DailyPaymentState(Base):
    """Auto-approved total per (user, ISO day). A new day is a new row, so no reset job exists."""

    __tablename__ = "daily_payment_state"
    __table_args__ = (PrimaryKeyConstraint("user_id", "day", name="pk_daily_payment_state"),)

    user_id = Column(Text, nullable=False)
    day = Column(Text, nullable=False)
    auto_approved_cents = Column(BigInteger, nullable=False, default=0)


class PendingJob(Base):
    """Durable queue for deferred async completion (status: queued | running | done)"""

    __tablename__ = "pending_jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_type = Column(Text, nullable=False)
    transaction_id = Column(UUID(as_uuid=True), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(Text, nullable=False, default="queued")
    run_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
