"""Integration tests for rate limiting, signing and the audit chain"""

import uuid
from unittest.mock import MagicMock

from flow_gateway.domain.models import FailureType
from flow_gateway.infrastructure.database.models import AuditLog, RateLimitWindow, TransactionSignatureRecord
from flow_gateway.infrastructure.security.audit import AuditSink
from flow_gateway.infrastructure.security.rate_limiter import RateLimiter
from flow_gateway.infrastructure.security.signer import TransactionSigner, canonical_json
from flow_gateway.services.security import PAYMENT_ACTION, SecurityService


def security_check(service: SecurityService, user_id: str):
    return service.pre_payment_security_check(
        user_id, str(uuid.uuid4()), str(uuid.uuid4()), 5_000, "Kopi Corner", "TNG"
    )


def test_canonical_json_is_order_independent():
    assert canonical_json({"b": 1, "a": [1, 2]}) == canonical_json({"a": [1, 2], "b": 1}) == '{"a":[1,2],"b":1}'


def test_pre_payment_check_signs_records_and_audits(db, world):
    service = SecurityService(db)

    result = security_check(service, world.user_id)

    assert result.approved is True
    assert result.signature is not None
    assert len(result.signature.signature) == 64
    assert db.query(TransactionSignatureRecord).count() == 1
    window = db.query(RateLimitWindow).filter(RateLimitWindow.action_type == PAYMENT_ACTION).one()
    assert window.request_count == 1
    audit = db.query(AuditLog).one()
    assert audit.action == "PAYMENT_INITIATED"
    assert audit.payload["signature_id"] == result.signature.id


def test_rate_limited_payment_is_rejected(db, world):
    limiter = RateLimiter(db, limits={PAYMENT_ACTION: 1, "api.call": 100})
    service = SecurityService(db, rate_limiter=limiter)

    assert security_check(service, world.user_id).approved is True
    result = security_check(service, world.user_id)

    assert result.approved is False
    assert result.error == "Too many payment attempts. Try again in a moment."
    assert result.failure_type is FailureType.RISK_BLOCKED
    assert result.rate_limit.remaining == 0
    rejected = db.query(AuditLog).filter(AuditLog.action == "PAYMENT_RATE_LIMITED").one()
    assert rejected.risk_score == 50


def test_signing_failure_fails_closed(db, world):
    service = SecurityService(db, signer=TransactionSigner(db, signing_key=""))

    result = security_check(service, world.user_id)

    assert result.approved is False
    assert result.error == "Unable to secure transaction. Please try again."
    assert result.failure_type is FailureType.RISK_BLOCKED
    assert db.query(AuditLog).filter(AuditLog.action == "PAYMENT_SIGNING_FAILED").one().risk_score == 70
    assert db.query(RateLimitWindow).count() == 0


def test_rate_limiter_fails_open():
    broken_db = MagicMock()
    broken_db.query.side_effect = RuntimeError("database unavailable")

    result = RateLimiter(broken_db).check("user_aina", PAYMENT_ACTION)

    assert result.allowed is True
    assert result.remaining == 10
    broken_db.rollback.assert_called_once()


def test_rate_limiter_unknown_action_uses_api_call_limit(db):
    limiter = RateLimiter(db, limits={"api.call": 3})

    assert limiter.limit_for("report.export") == 3


def test_rate_limiter_counts_within_window(db):
    limiter = RateLimiter(db, limits={"intent.create": 2, "api.call": 100})

    limiter.record("user_aina", "intent.create")
    assert limiter.check("user_aina", "intent.create").remaining == 1
    limiter.record("user_aina", "intent.create")
    assert limiter.check("user_aina", "intent.create").allowed is False
    assert limiter.check("user_other", "intent.create").allowed is True


def test_signature_verification(db):
    signer = TransactionSigner(db, signing_key="test-key")
    signature = signer.sign("intent_1", "plan_1", {"amount_cents": 5_000})

    assert signer.verify(signature.id) is True
    assert db.query(TransactionSignatureRecord).one().verified is True
    assert signer.verify(str(uuid.uuid4())) is False
    assert signer.verify("not-a-uuid") is False


def test_audit_chain_detects_tampering(db):
    audit = AuditSink(db)
    first = audit.log("PAYMENT_INITIATED", "intent", "i1", {"amount_cents": 5_000}, user_id="user_aina")
    second = audit.log("PAYMENT_COMPLETED", "transaction", "t1", {"amount_cents": 5_000}, user_id="user_aina")

    assert db.query(AuditLog).filter(AuditLog.hash == second.hash).one().previous_hash == first.hash
    assert audit.verify_chain() is True

    db.query(AuditLog).filter(AuditLog.entity_id == "i1").update({AuditLog.payload: {"amount_cents": 1}})
    db.commit()

    assert audit.verify_chain() is False


def test_audit_is_best_effort():
    broken_db = MagicMock()
    broken_db.query.side_effect = RuntimeError("database unavailable")

    assert AuditSink(broken_db).log("PAYMENT_COMPLETED", "transaction", "t1", {}) is None
    broken_db.rollback.assert_called_once()


def test_post_payment_audit_risk_scores(db, world):
    service = SecurityService(db)

    service.post_payment_audit_log(world.user_id, "t1", "i1", True, 5_000, "Kopi Corner", "TNG")
    service.post_payment_audit_log(world.user_id, "t2", "i2", False, 5_000, "Kopi Corner", "TNG", "Connection timeout")

    completed = db.query(AuditLog).filter(AuditLog.action == "PAYMENT_COMPLETED").one()
    failed = db.query(AuditLog).filter(AuditLog.action == "PAYMENT_FAILED").one()
    assert completed.risk_score == 0
    assert failed.risk_score == 30
    assert failed.payload["error"] == "Connection timeout"


def test_service_verifies_issued_signatures(db, world):
    service = SecurityService(db)
    signature = security_check(service, world.user_id).signature

    assert service.verify_signature(signature.id) is True
    assert service.verify_signature(str(uuid.uuid4())) is False
