"""
Security wrapper around plan execution.

Three collaborators with different failure policies:
- rate limiter: fails open
- signer: fails closed, the only fatal one
- audit sink: best-effort
"""

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from flow_gateway.domain.exceptions import SigningUnavailableError
from flow_gateway.domain.models import FailureType, SecurityCheckResult
from flow_gateway.infrastructure.security.audit import AuditSink
from flow_gateway.infrastructure.security.rate_limiter import RateLimiter
from flow_gateway.infrastructure.security.signer import TransactionSigner

PAYMENT_ACTION = "payment.execute"

RISK_RATE_LIMITED = 50
RISK_SIGNING_FAILED = 70
RISK_INITIATED = 0
RISK_COMPLETED = 0
RISK_FAILED = 30


class SecurityService:
    def __init__(
        self,
        db: Session,
        rate_limiter: Optional[RateLimiter] = None,
        signer: Optional[TransactionSigner] = None,
        audit: Optional[AuditSink] = None,
    ):
        self.db = db
        self.rate_limiter = rate_limiter or RateLimiter(db)
        self.signer = signer or TransactionSigner(db)
        self.audit = audit or AuditSink(db)

    def pre_payment_security_check(
        self,
        user_id: str,
        intent_id: str,
        plan_id: str,
        amount_cents: int,
        payee_name: str,
        rail: Optional[str],
    ) -> SecurityCheckResult:
        """
        Sequence: rate-limit check, sign, record the rate-limit hit, audit
        the initiation. A rate-limit or signing rejection is audited and
        returned as not approved.
        """
        rate_limit = self.rate_limiter.check(user_id, PAYMENT_ACTION)
        if not rate_limit.allowed:
            self.audit.log(
                "PAYMENT_RATE_LIMITED",
                "intent",
                intent_id,
                {"amount_cents": amount_cents, "payee_name": payee_name, "remaining": rate_limit.remaining},
                risk_score=RISK_RATE_LIMITED,
                user_id=user_id,
            )
            return SecurityCheckResult(
                approved=False,
                rate_limit=rate_limit,
                error="Too many payment attempts. Try again in a moment.",
                failure_type=FailureType.RISK_BLOCKED,
            )

        try:
            signature = self.signer.sign(
                intent_id,
                plan_id,
                {"amount_cents": amount_cents, "payee_name": payee_name, "rail": rail},
            )
        except SigningUnavailableError as e:
            self.audit.log(
                "PAYMENT_SIGNING_FAILED",
                "intent",
                intent_id,
                {"amount_cents": amount_cents, "payee_name": payee_name, "error": str(e)},
                risk_score=RISK_SIGNING_FAILED,
                user_id=user_id,
            )
            return SecurityCheckResult(
                approved=False,
                error="Unable to secure transaction. Please try again.",
                failure_type=FailureType.RISK_BLOCKED,
            )

        self.rate_limiter.record(user_id, PAYMENT_ACTION)
        self.audit.log(
            "PAYMENT_INITIATED",
            "intent",
            intent_id,
            {"amount_cents": amount_cents, "payee_name": payee_name, "rail": rail, "signature_id": signature.id},
            risk_score=RISK_INITIATED,
            user_id=user_id,
        )

        return SecurityCheckResult(approved=True, signature=signature, rate_limit=rate_limit)

    def post_payment_audit_log(
        self,
        user_id: str,
        transaction_id: Optional[str],
        intent_id: str,
        success: bool,
        amount_cents: int,
        payee_name: str,
        rail: Optional[str],
        error: Optional[str] = None,
    ) -> None:
        payload: Dict[str, Any] = {
            "intent_id": intent_id,
            "amount_cents": amount_cents,
            "payee_name": payee_name,
            "rail": rail,
            "success": success,
            "error": error,
        }
        self.audit.log(
            "PAYMENT_COMPLETED" if success else "PAYMENT_FAILED",
            "transaction",
            transaction_id,
            payload,
            risk_score=RISK_COMPLETED if success else RISK_FAILED,
            user_id=user_id,
        )

    def verify_signature(self, signature_id: str) -> bool:
        return self.signer.verify(signature_id)
